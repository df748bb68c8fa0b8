"""
Celery tasks for the reminder scan and archive cleanup.

Workers run outside the Flask app, so each task builds its own Config and
initialises the engine on first use.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from dotenv import load_dotenv

import db as db_module
from app.tasks import celery_app
from config import Config
from services.archive_cleanup import run_archive_cleanup
from services.task_reminders import run_task_reminders


_log = logging.getLogger("scheduler")
_init_lock = threading.Lock()


def _worker_config() -> Config:
    load_dotenv()
    cfg = Config()
    with _init_lock:
        if db_module.engine is None:
            db_module.init_engine(cfg.DATABASE_URL)
    return cfg


def _in_session(name: str, job: Callable[[Any, Config], dict]) -> dict:
    cfg = _worker_config()
    db = db_module.SessionLocal()
    try:
        out = job(db, cfg)
        db.commit()
        _log.info("%s ok result=%s", name, out)
        return out
    except Exception:
        db.rollback()
        _log.exception("%s failed", name)
        raise
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_task_reminders(self):
    """Send reminders for every task whose reminder window has opened."""
    try:
        return _in_session("task reminders", run_task_reminders)
    except Exception as exc:
        raise self.retry(exc=exc)


@celery_app.task(bind=True, autoretry_for=(Exception,), retry_backoff=True, max_retries=3)
def cleanup_archived_records(self, retention_days: int | None = None):
    return _in_session(
        "archive cleanup",
        lambda db, cfg: run_archive_cleanup(db, retention_days=retention_days or cfg.ARCHIVE_RETENTION_DAYS),
    )
