from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from conftest import CRON_SECRET


def _auth(secret=CRON_SECRET):
    return {"Authorization": f"Bearer {secret}"}


def test_cron_rejects_wrong_or_missing_secret(app_client):
    _app, client = app_client
    assert client.post("/api/cron/task-reminders").status_code == 401
    res = client.post("/api/cron/task-reminders", headers=_auth("nope"))
    assert res.status_code == 401
    assert res.get_json()["error"]["message"] == "Unauthorized"


def test_cron_requires_configured_secret(app_client):
    app, client = app_client
    app.config["CFG"].CRON_SECRET = ""
    res = client.post("/api/cron/archive-cleanup", headers=_auth())
    assert res.status_code == 500
    assert res.get_json()["error"]["message"] == "Cron secret not configured"


def test_cron_runs_jobs_synchronously(app_client):
    _app, client = app_client
    with patch("services.task_reminders.send_mail"):
        res = client.post("/api/cron/task-reminders", headers=_auth())
    assert res.status_code == 200
    assert res.get_json()["data"]["processed"] == 0

    res = client.post("/api/cron/archive-cleanup", headers=_auth())
    assert res.status_code == 200
    assert res.get_json()["data"] == {"organizations": 0, "hiringManagers": 0}


def test_enqueue_job_hands_off_to_celery(app_client):
    _app, client = app_client
    task = MagicMock()
    task.apply_async.return_value = MagicMock(id="job-123")
    with patch.dict("app.routes.jobs._ASYNC_JOBS", {"task-reminders": task}):
        res = client.post("/api/jobs/task-reminders", headers=_auth())
    assert res.status_code == 202
    assert res.get_json()["data"] == {"job_id": "job-123", "job": "task-reminders", "status": "queued"}

    assert client.post("/api/jobs/unknown", headers=_auth()).status_code == 404


def test_job_status_reads_celery_result(app_client):
    _app, client = app_client
    result = MagicMock(state="SUCCESS", result={"sent": 2})
    with patch("app.routes.jobs.celery_app") as celery:
        celery.AsyncResult.return_value = result
        res = client.get("/api/jobs/job-123", headers=_auth())
    assert res.get_json()["data"] == {"job_id": "job-123", "status": "SUCCESS", "result": {"sent": 2}}


@pytest.mark.parametrize("module", ["app.tasks.maintenance", "services.task_reminders", "actions"])
def test_worker_modules_import_in_fresh_interpreter(module):
    # Celery workers import the task modules before anything else.
    root = Path(__file__).resolve().parent.parent
    proc = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        cwd=root,
        capture_output=True,
        text=True,
        timeout=60,
    )
    assert proc.returncode == 0, proc.stderr
