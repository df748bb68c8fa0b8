"""
Maintenance triggers for external schedulers.

`/api/cron/*` runs a job synchronously in the request; `/api/jobs/*` hands it
to a Celery worker and lets the caller poll the result. Every endpoint
requires `Authorization: Bearer <CRON_SECRET>`.
"""
from __future__ import annotations

import hmac
import logging

from flask import Blueprint, current_app, g, request

from app.tasks import celery_app
from app.tasks.maintenance import cleanup_archived_records, send_task_reminders
from db import SessionLocal
from services.archive_cleanup import run_archive_cleanup
from services.task_reminders import run_task_reminders
from utils import err, ok

jobs_bp = Blueprint("jobs", __name__)

_log = logging.getLogger("scheduler")

_ASYNC_JOBS = {
    "task-reminders": send_task_reminders,
    "archive-cleanup": cleanup_archived_records,
}


def _check_cron_secret():
    cfg = current_app.config["CFG"]
    if not cfg.CRON_SECRET:
        _log.error("cron call rejected: CRON_SECRET is not configured")
        return err("INTERNAL", "Cron secret not configured", http_status=500)
    authz = str(request.headers.get("Authorization") or "").strip()
    supplied = authz.split(" ", 1)[1].strip() if authz.lower().startswith("bearer ") else ""
    if not supplied or not hmac.compare_digest(supplied, cfg.CRON_SECRET):
        return err("AUTH_INVALID", "Unauthorized", http_status=401)
    return None


def _run_now(name: str, job):
    denied = _check_cron_secret()
    if denied is not None:
        return denied

    cfg = current_app.config["CFG"]
    db = SessionLocal()
    try:
        out = job(db, cfg)
        db.commit()
        _log.info("cron %s ok request_id=%s", name, getattr(g, "request_id", ""))
        return ok(out)
    except Exception as e:
        db.rollback()
        _log.exception("cron %s failed", name)
        detail = "" if cfg.IS_PRODUCTION else f": {type(e).__name__}"
        return err("INTERNAL", f"Cron job {name} failed{detail}", http_status=500)
    finally:
        db.close()


@jobs_bp.post("/api/cron/task-reminders")
def cron_task_reminders():
    return _run_now("task-reminders", run_task_reminders)


@jobs_bp.post("/api/cron/archive-cleanup")
def cron_archive_cleanup():
    return _run_now(
        "archive-cleanup",
        lambda db, cfg: run_archive_cleanup(db, retention_days=cfg.ARCHIVE_RETENTION_DAYS),
    )


@jobs_bp.post("/api/jobs/<name>")
def enqueue_job(name: str):
    """
    Queue a maintenance job on the Celery worker.

    Returns:
        { "ok": true, "data": { "job_id": "...", "status": "queued" } }
    """
    denied = _check_cron_secret()
    if denied is not None:
        return denied
    task = _ASYNC_JOBS.get(name)
    if task is None:
        return err("NOT_FOUND", f"Unknown job: {name}", http_status=404)

    res = task.apply_async()
    return ok({"job_id": res.id, "job": name, "status": "queued"}, http_status=202)


@jobs_bp.get("/api/jobs/<job_id>")
def get_job_status(job_id: str):
    denied = _check_cron_secret()
    if denied is not None:
        return denied

    res = celery_app.AsyncResult(job_id)
    out = {"job_id": job_id, "status": res.state}
    if res.state == "PENDING":
        out["message"] = "Job is queued or unknown"
    elif res.state == "SUCCESS":
        out["result"] = res.result
    elif res.state == "FAILURE":
        out["error"] = str(res.info) if res.info else "Unknown error"
    elif res.state == "REVOKED":
        out["message"] = "Job was cancelled"
    return ok(out)


@jobs_bp.delete("/api/jobs/<job_id>")
def cancel_job(job_id: str):
    denied = _check_cron_secret()
    if denied is not None:
        return denied
    celery_app.control.revoke(job_id)
    return ok({"job_id": job_id, "status": "revoked"})
