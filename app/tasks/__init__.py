"""
Celery app for the CRM's periodic maintenance work.

Usage:
    celery -A app.tasks.celery_app worker --loglevel=INFO
    celery -A app.tasks.celery_app beat --loglevel=INFO
"""
from __future__ import annotations

import os

from celery import Celery


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except Exception:
        return default


def make_celery() -> Celery:
    """
    Create and configure the Celery app with a Redis broker.

    Environment variables:
        REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)
        CELERY_RESULT_BACKEND: Optional separate result backend
        REMINDER_INTERVAL_MINUTES: Beat period of the reminder scan (default 5)
    """
    redis_url = os.getenv("REDIS_URL", "") or "redis://localhost:6379/0"
    result_backend = os.getenv("CELERY_RESULT_BACKEND", redis_url)

    app = Celery(
        "staffing_crm",
        broker=redis_url,
        backend=result_backend,
        include=["app.tasks.maintenance"],
    )

    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone=os.getenv("APP_TIMEZONE", "UTC"),
        enable_utc=True,
        result_expires=86400,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=_env_int("CELERY_CONCURRENCY", 2),
        task_default_retry_delay=60,
    )

    app.conf.beat_schedule = {
        "task-reminders": {
            "task": "app.tasks.maintenance.send_task_reminders",
            "schedule": max(1, _env_int("REMINDER_INTERVAL_MINUTES", 5)) * 60.0,
        },
        "archive-cleanup": {
            "task": "app.tasks.maintenance.cleanup_archived_records",
            "schedule": 86400.0,
        },
    }

    return app


celery_app = make_celery()
