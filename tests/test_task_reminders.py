from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from db import SessionLocal
from models import EmailTemplate, Task
from services.task_reminders import (
    diagnose_reminders,
    due_instant,
    get_tasks_due_for_reminder,
    parse_reminder_to_minutes,
    run_task_reminders,
)
from utils import iso_utc_now


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "value,expected",
    [
        ("1 day", 1440),
        ("2 days", 2880),
        ("2 hours", 120),
        ("1h", 60),
        ("30 min", 30),
        ("5", 5),
        (15, 15),
        ("", None),
        ("None", None),
        (None, None),
        ("soon", None),
    ],
)
def test_parse_reminder_to_minutes(value, expected):
    assert parse_reminder_to_minutes(value) == expected


def test_due_instant_defaults_to_midnight_utc():
    assert due_instant("2024-05-01", None) == datetime(2024, 5, 1, 0, 0, tzinfo=timezone.utc)
    assert due_instant("2024-05-01", "14:30") == datetime(2024, 5, 1, 14, 30, tzinfo=timezone.utc)
    assert due_instant("2024-05-01", "99:00") == datetime(2024, 5, 1, 0, 0, tzinfo=timezone.utc)
    assert due_instant("", "10:00") is None


def _task(db, user_id, **kw) -> int:
    now = iso_utc_now()
    fields = {
        "title": "Follow up",
        "created_by": user_id,
        "custom_fields": "{}",
        "created_at": now,
        "updated_at": now,
    }
    fields.update(kw)
    task = Task(**fields)
    db.add(task)
    db.commit()
    return int(task.id)


def test_due_scan_applies_lead_time_and_filters(seed_user):
    uid = seed_user("owner@example.com")
    with SessionLocal() as db:
        due_now = _task(db, uid, due_date="2024-05-01", due_time="13:00:00", reminder_minutes_before_due=60)
        via_custom = _task(db, uid, due_date="2024-05-02", custom_fields=json.dumps({"Reminder": "1 day"}))
        too_early = _task(db, uid, due_date="2024-05-01", due_time="14:00:00", reminder_minutes_before_due=60)
        _task(db, uid, due_date="2024-04-30", reminder_minutes_before_due=10, is_completed=True)
        _task(db, uid, due_date="2024-04-30", reminder_minutes_before_due=10, reminder_sent_at=iso_utc_now())
        _task(db, uid, due_date="2024-04-30")
        _task(db, uid, due_date="2024-04-30", custom_fields=json.dumps({"Reminder": "None"}))

        ids = [item["task"].id for item in get_tasks_due_for_reminder(db, now=NOW)]

    assert due_now in ids
    assert via_custom in ids
    assert too_early not in ids
    assert len(ids) == 2


def test_run_sends_once_to_owner_and_assignee(app_client, seed_user):
    app, _client = app_client
    cfg = app.config["CFG"]
    owner = seed_user("owner@example.com", name="Olive Owner")
    assignee = seed_user("assignee@example.com", name="Andy Assignee")
    with SessionLocal() as db:
        task_id = _task(db, owner, assigned_to=assignee, due_date="2024-05-01", due_time="12:30", reminder_minutes_before_due=60)

    with patch("services.task_reminders.send_mail") as send:
        with SessionLocal() as db:
            out = run_task_reminders(db, cfg, now=NOW)
        with SessionLocal() as db:
            again = run_task_reminders(db, cfg, now=NOW)

    assert out["success"] is True
    assert out["processed"] == 1
    assert out["sent"] == 1
    assert out["errors"] == []
    assert again["processed"] == 0

    send.assert_called_once()
    kwargs = send.call_args.kwargs
    assert kwargs["to"] == ["owner@example.com", "assignee@example.com"]
    assert kwargs["subject"] == "Task reminder: Follow up"
    assert f"/dashboard/tasks/view?id={task_id}" in kwargs["html"]

    with SessionLocal() as db:
        assert db.get(Task, task_id).reminder_sent_at


def test_run_uses_stored_template(app_client, seed_user):
    app, _client = app_client
    cfg = app.config["CFG"]
    owner = seed_user("owner@example.com")
    with SessionLocal() as db:
        now = iso_utc_now()
        db.add(
            EmailTemplate(
                template_name="Reminder",
                subject="Due: {{taskTitle}}",
                body="Task {{taskTitle}}\n{{taskLink}}",
                type="TASK_REMINDER",
                created_at=now,
                updated_at=now,
            )
        )
        db.commit()
        _task(db, owner, title="<Call>", due_date="2024-05-01", reminder_minutes_before_due=30)

    with patch("services.task_reminders.send_mail") as send:
        with SessionLocal() as db:
            run_task_reminders(db, cfg, now=NOW)

    kwargs = send.call_args.kwargs
    assert kwargs["subject"] == "Due: &lt;Call&gt;"
    assert "<br/>" in kwargs["html"]
    assert "<a href=" in kwargs["html"]


def test_failed_send_is_reported_and_retried_later(app_client, seed_user):
    app, _client = app_client
    cfg = app.config["CFG"]
    owner = seed_user("owner@example.com")
    with SessionLocal() as db:
        task_id = _task(db, owner, due_date="2024-05-01", reminder_minutes_before_due=30)

    with patch("services.task_reminders.send_mail", side_effect=RuntimeError("graph unavailable")):
        with SessionLocal() as db:
            out = run_task_reminders(db, cfg, now=NOW)

    assert out["sent"] == 0
    assert out["errors"] == [{"taskId": task_id, "error": "graph unavailable"}]
    with SessionLocal() as db:
        assert db.get(Task, task_id).reminder_sent_at is None


def test_reminders_run_requires_internal_token_or_admin(api, app_client, recruiter, admin):
    _app, client = app_client
    _uid, token = recruiter
    _aid, admin_token = admin

    assert api("TASK_REMINDERS_RUN", {}, token).status_code == 403

    with patch("services.task_reminders.send_mail"):
        res = client.post("/api/tasks/reminders/run", headers={"X-Internal-Token": "test-internal-token"})
        assert res.status_code == 200
        assert res.get_json()["data"]["success"] is True

        res = api("TASK_REMINDERS_RUN", {}, admin_token)
        assert res.status_code == 200

    res = client.post("/api/tasks/reminders/run", headers={"X-Internal-Token": "wrong"})
    assert res.status_code == 401


def test_diagnose_explains_each_task(seed_user):
    uid = seed_user("owner@example.com")
    with SessionLocal() as db:
        matching = _task(db, uid, due_date="2024-05-01", due_time="13:00:00", reminder_minutes_before_due=60)
        done = _task(db, uid, due_date="2024-04-30", reminder_minutes_before_due=10, is_completed=True)
        bare = _task(db, uid, due_date="2024-04-29")

        by_id = {item["id"]: item for item in diagnose_reminders(db, now=NOW)}

    assert by_id[matching]["reason_not_matching"] == "should match"
    assert by_id[matching]["reminder_minutes"] == 60
    assert by_id[matching]["reminder_time"] == "2024-05-01T12:00:00+00:00"
    assert by_id[matching]["time_until_reminder_minutes"] == 0
    assert by_id[done]["reason_not_matching"] == "task is completed"
    assert by_id[bare]["reason_not_matching"] == "no reminder field set"
    assert by_id[bare]["reminder_time"] is None


def test_diagnose_action_is_admin_only(api, recruiter, admin):
    _uid, token = recruiter
    _aid, admin_token = admin

    assert api("TASK_REMINDERS_DIAGNOSE", {}, token).status_code == 403
    res = api("TASK_REMINDERS_DIAGNOSE", {}, admin_token)
    assert res.status_code == 200
    assert res.get_json()["data"] == {"tasks": [], "count": 0}
