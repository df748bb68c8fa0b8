"""
Task reminder scan and delivery.

A task is due for a reminder when it is open, has a due date, has not been
reminded yet, and `due - reminder_minutes <= now`. The reminder lead time
comes from `reminder_minutes_before_due` or, failing that, the free-form
`Reminder` custom field ("1 day", "2 hours", "30 min", "15").
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, time, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import aliased

from config import Config
from models import HiringManager, Organization, Task, User
from services.email_service import send_mail
from services.email_templates import TASK_REMINDER, get_template_by_type
from services.template_renderer import button_html, newlines_to_br, render_template
from utils import iso_utc_now, json_load_object, parse_date_maybe


_log = logging.getLogger("reminders")

_REMINDER_RE = re.compile(r"(\d+)\s*(minute|minutes|min|hour|hours|hr|day|days|d|h|m)?", re.IGNORECASE)
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?")
_NO_REMINDER = {"", "none", "null"}


def parse_reminder_to_minutes(value: Any) -> Optional[int]:
    """
    "1 day" -> 1440, "2 hours" -> 120, "5" -> 5, "" / "None" -> None.

    Units starting with "d" are days and with "h" hours; anything else
    (including no unit) is minutes.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    s = str(value).strip()
    if s.lower() in _NO_REMINDER:
        return None
    m = _REMINDER_RE.search(s)
    if not m:
        return None
    n = int(m.group(1))
    unit = (m.group(2) or "").lower()
    if unit.startswith("d"):
        return n * 1440
    if unit.startswith("h"):
        return n * 60
    return n


def _parse_time(value: Any) -> time:
    m = _TIME_RE.match(str(value or "").strip())
    if not m:
        return time(0, 0, 0)
    h, mi, sec = int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)
    if h > 23 or mi > 59 or sec > 59:
        return time(0, 0, 0)
    return time(h, mi, sec)


def due_instant(due_date: Any, due_time: Any) -> Optional[datetime]:
    """Due date at 00:00 UTC plus the due time, as an aware UTC datetime."""
    d = parse_date_maybe(due_date)
    if not d:
        return None
    day = datetime.fromisoformat(d).date()
    return datetime.combine(day, _parse_time(due_time), tzinfo=timezone.utc)


def reminder_minutes_for(legacy_minutes: Any, custom_fields: Any) -> Optional[int]:
    if legacy_minutes:
        return parse_reminder_to_minutes(legacy_minutes)
    cf = json_load_object(custom_fields)
    return parse_reminder_to_minutes(cf.get("Reminder"))


def _has_reminder_setting(task: Task) -> bool:
    if task.reminder_minutes_before_due is not None:
        return True
    raw = json_load_object(task.custom_fields).get("Reminder")
    return raw is not None and str(raw) not in {"", "None"}


def _reminder_query():
    creator = aliased(User)
    assignee = aliased(User)
    return (
        select(
            Task,
            creator.email.label("created_by_email"),
            creator.name.label("created_by_name"),
            assignee.email.label("assigned_to_email"),
            assignee.name.label("assigned_to_name"),
            Organization.name.label("organization_name"),
            HiringManager.first_name.label("hm_first_name"),
            HiringManager.last_name.label("hm_last_name"),
        )
        .outerjoin(creator, creator.id == Task.created_by)
        .outerjoin(assignee, assignee.id == Task.assigned_to)
        .outerjoin(Organization, Organization.id == Task.organization_id)
        .outerjoin(HiringManager, HiringManager.id == Task.hiring_manager_id)
    )


def _candidate_from_row(row) -> dict[str, Any]:
    task: Task = row[0]
    hm_name = " ".join(x for x in [row.hm_first_name or "", row.hm_last_name or ""] if x).strip()
    return {
        "task": task,
        "created_by_email": row.created_by_email or "",
        "created_by_name": row.created_by_name or "",
        "assigned_to_email": row.assigned_to_email or "",
        "assigned_to_name": row.assigned_to_name or "",
        "organization_name": row.organization_name or "",
        "hiring_manager_name": hm_name,
    }


def get_tasks_due_for_reminder(db, now: Optional[datetime] = None) -> list[dict[str, Any]]:
    now = now or datetime.now(timezone.utc)
    q = (
        _reminder_query()
        .where(Task.reminder_sent_at.is_(None))
        .where(Task.is_completed.is_(False))
        .where(Task.due_date.isnot(None))
        .where(Task.due_date != "")
        .order_by(Task.due_date.asc(), Task.id.asc())
    )

    out: list[dict[str, Any]] = []
    for row in db.execute(q).all():
        task: Task = row[0]
        if not _has_reminder_setting(task):
            continue
        minutes = reminder_minutes_for(task.reminder_minutes_before_due, task.custom_fields)
        if minutes is None or minutes <= 0:
            continue
        due = due_instant(task.due_date, task.due_time)
        if due is None:
            continue
        remind_at = due - timedelta(minutes=minutes)
        if remind_at <= now:
            item = _candidate_from_row(row)
            item["reminder_minutes"] = minutes
            item["reminder_time"] = remind_at
            out.append(item)
    return out


def mark_reminder_sent(db, task_id: int) -> None:
    task = db.get(Task, int(task_id))
    if task is not None:
        task.reminder_sent_at = iso_utc_now()


def _reminder_already_sent(db, task_id: int) -> bool:
    sent_at = db.execute(select(Task.reminder_sent_at).where(Task.id == int(task_id))).scalar_one_or_none()
    return bool(sent_at)


def _compose(item: dict[str, Any], template: Optional[dict], cfg: Config) -> tuple[str, str, str]:
    task: Task = item["task"]
    title = task.title or "Task"
    due_date = task.due_date or ""
    due_time = task.due_time or ""
    if due_date and due_time:
        due_str = f"{due_date} {due_time}"
    else:
        due_str = due_date or "Not set"

    task_link = f"{cfg.FRONTEND_URL}/dashboard/tasks/view?id={task.id}"
    link_html = button_html(task_link, "View Task")

    variables = {
        "taskTitle": title,
        "taskDescription": task.description or "",
        "dueDate": due_date or "Not set",
        "dueTime": due_time,
        "dueDateAndTime": due_str,
        "assignedTo": item.get("assigned_to_name") or "Not assigned",
        "createdBy": item.get("created_by_name") or "Unknown",
        "organizationName": item.get("organization_name") or "",
        "hiringManagerName": item.get("hiring_manager_name") or "",
        "taskLink": task_link,
    }
    safe_keys = ["taskLink"]

    if template:
        subject = render_template(template.get("subject"), variables, safe_keys)
        html = newlines_to_br(render_template(template.get("body"), {**variables, "taskLink": link_html}, safe_keys))
        text = render_template(template.get("body"), variables, safe_keys)
        return subject, html, text

    subject = f"Task reminder: {title}"
    html = render_template(
        "<p>This is a reminder for the following task:</p>"
        "<p><strong>{{taskTitle}}</strong></p>"
        "<p>Due: {{dueDateAndTime}}</p>"
        "<p>You are receiving this as the task owner or assignee.</p>"
        "<p>{{taskLink}}</p>",
        {**variables, "taskLink": link_html},
        safe_keys,
    )
    text = f"Task reminder: {title}. Due: {due_str}. View task: {task_link}"
    return subject, html, text


def run_task_reminders(db, cfg: Config, now: Optional[datetime] = None) -> dict[str, Any]:
    """
    Send every due reminder. Commits after each task so a reminder that went
    out is never sent again when a later task fails.
    """

    items = get_tasks_due_for_reminder(db, now=now)
    _log.info("reminder scan found %s task(s)", len(items))

    template = get_template_by_type(db, TASK_REMINDER)
    sent = 0
    errors: list[dict[str, Any]] = []

    for item in items:
        task: Task = item["task"]
        task_id = int(task.id)

        if _reminder_already_sent(db, task_id):
            _log.info("task %s already reminded, skipping", task_id)
            continue

        recipients: list[str] = []
        if item["created_by_email"]:
            recipients.append(item["created_by_email"])
        if item["assigned_to_email"] and item["assigned_to_email"] != item["created_by_email"]:
            recipients.append(item["assigned_to_email"])

        if not recipients:
            errors.append({"taskId": task_id, "error": "No email for owner or assigned to"})
            mark_reminder_sent(db, task_id)
            db.commit()
            continue

        try:
            subject, html, text = _compose(item, template, cfg)
            send_mail(cfg, to=recipients, subject=subject, html=html, text=text)
            mark_reminder_sent(db, task_id)
            db.commit()
            sent += 1
        except Exception as e:
            db.rollback()
            _log.exception("reminder for task %s failed", task_id)
            errors.append({"taskId": task_id, "error": str(e)})

    message = f"Processed {len(items)} task(s), sent {sent} reminder(s)"
    _log.info(message)
    return {"success": True, "message": message, "processed": len(items), "sent": sent, "errors": errors}


def diagnose_reminders(db, now: Optional[datetime] = None, due_date_filter: str = "", limit: int = 50) -> list[dict[str, Any]]:
    now = now or datetime.now(timezone.utc)
    q = select(Task)
    if due_date_filter:
        q = q.where(Task.due_date.like(f"{due_date_filter}%"))
    else:
        q = q.where(Task.due_date.isnot(None)).where(Task.due_date != "")
    q = q.order_by(Task.due_date.desc(), Task.due_time.desc()).limit(max(1, min(500, int(limit or 50))))

    out: list[dict[str, Any]] = []
    for task in db.execute(q).scalars().all():
        if task.reminder_sent_at:
            reason = "reminder_sent_at is set"
        elif task.is_completed:
            reason = "task is completed"
        elif not task.due_date:
            reason = "no due_date"
        elif not _has_reminder_setting(task):
            reason = "no reminder field set"
        else:
            reason = "should match"

        minutes = reminder_minutes_for(task.reminder_minutes_before_due, task.custom_fields)
        due = due_instant(task.due_date, task.due_time)
        remind_at = due - timedelta(minutes=minutes) if (due and minutes and minutes > 0) else None

        out.append(
            {
                "id": int(task.id),
                "title": task.title,
                "due_date": task.due_date,
                "due_time": task.due_time,
                "reminder_minutes_before_due": task.reminder_minutes_before_due,
                "custom_fields_reminder": json_load_object(task.custom_fields).get("Reminder"),
                "reminder_sent_at": task.reminder_sent_at,
                "is_completed": bool(task.is_completed),
                "reason_not_matching": reason,
                "reminder_minutes": minutes,
                "reminder_time": remind_at.isoformat() if remind_at else None,
                "time_until_reminder_minutes": round((remind_at - now).total_seconds() / 60) if remind_at else None,
                "current_time": now.isoformat(),
            }
        )
    return out
