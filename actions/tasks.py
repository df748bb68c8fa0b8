from __future__ import annotations

import json
import re
from typing import Any, Optional

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import aliased

from actions.helpers import (
    actor_id,
    append_audit,
    append_history,
    custom_fields_for_create,
    entity_out,
    flush_or_map,
    merge_custom_fields,
    normalize_about_references,
    require_id,
    require_login,
    row_to_dict,
)
from models import HiringManager, Job, Organization, Task, TaskHistory, TaskNote, User
from services.task_reminders import diagnose_reminders, run_task_reminders
from utils import ApiError, AuthContext, has_any, is_privileged, iso_utc_now, parse_date_maybe, pick, to_bool, to_int_or_none, today_utc


_CLOCK_RE = re.compile(r"(\d{1,2}):(\d{2})(?::(\d{2}))?")
_CLOCK_ONLY_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_DATE_IN_TEXT_RE = re.compile(r"\d{4}-\d{2}-\d{2}")
_DATE_PREFIX_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})")

# camelCase key -> (snake_case key, column)
_UPDATE_FIELDS = {
    "title": ("title", "title"),
    "description": ("description", "description"),
    "dueDate": ("due_date", "due_date"),
    "owner": ("owner", "owner"),
    "priority": ("priority", "priority"),
    "status": ("status", "status"),
}
_UPDATE_ID_FIELDS = {
    "organizationId": ("organization_id", "organization_id"),
    "hiringManagerId": ("hiring_manager_id", "hiring_manager_id"),
    "jobId": ("job_id", "job_id"),
    "assignedTo": ("assigned_to", "assigned_to"),
    "reminderMinutesBeforeDue": ("reminder_minutes_before_due", "reminder_minutes_before_due"),
}

_FK_ON_WRITE = ("BAD_REQUEST", "Referenced record does not exist", 400)


def _clock(m: re.Match) -> str:
    h, mi, sec = m.group(1), m.group(2), m.group(3) or "00"
    return f"{int(h):02d}:{mi}:{sec}"


def normalize_due_time(value: Any, due_date: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """
    Return (due_time, due_date).

    A datetime string ("2024-05-01T14:30" or "2024-05-01 14:30:00") yields its
    time part and, when no due date was given, its date part. "HH:MM" becomes
    "HH:MM:SS". Anything else is dropped.
    """

    if value is None:
        return None, due_date
    s = str(value).strip()
    if not s:
        return None, due_date

    if "T" in s or (" " in s and _DATE_IN_TEXT_RE.search(s)):
        parts = s.split("T" if "T" in s else " ")
        if len(parts) < 2:
            return None, due_date
        m = _CLOCK_RE.search(parts[1])
        due_time = _clock(m) if m else None
        if not due_date:
            dm = _DATE_PREFIX_RE.match(parts[0])
            if dm:
                due_date = dm.group(1)
        return due_time, due_date

    m = _CLOCK_ONLY_RE.match(s)
    return (_clock(m) if m else None), due_date


def _due_date_or_error(value: Any) -> Optional[str]:
    if value is None or str(value).strip() == "":
        return None
    d = parse_date_maybe(value)
    if not d:
        raise ApiError("BAD_REQUEST", "Invalid due date")
    return d


def _task_query():
    creator = aliased(User)
    assignee = aliased(User)
    completer = aliased(User)
    return (
        select(
            Task,
            creator.name.label("created_by_name"),
            assignee.name.label("assigned_to_name"),
            completer.name.label("completed_by_name"),
            HiringManager.first_name.label("hm_first"),
            HiringManager.last_name.label("hm_last"),
            Job.job_title.label("job_title"),
            Organization.name.label("organization_name"),
        )
        .outerjoin(creator, creator.id == Task.created_by)
        .outerjoin(assignee, assignee.id == Task.assigned_to)
        .outerjoin(completer, completer.id == Task.completed_by)
        .outerjoin(HiringManager, HiringManager.id == Task.hiring_manager_id)
        .outerjoin(Job, Job.id == Task.job_id)
        .outerjoin(Organization, Organization.id == Task.organization_id)
    )


def _scope_to_user(q, auth: AuthContext):
    if is_privileged(auth):
        return q
    uid = actor_id(auth)
    return q.where(or_(Task.created_by == uid, Task.assigned_to == uid))


def _row_out(row) -> dict[str, Any]:
    hm_name = " ".join(x for x in [row.hm_first or "", row.hm_last or ""] if x)
    return entity_out(
        row[0],
        created_by_name=row.created_by_name or "",
        assigned_to_name=row.assigned_to_name or "",
        completed_by_name=row.completed_by_name or "",
        hiring_manager_name=hm_name,
        job_title=row.job_title or "",
        organization_name=row.organization_name or "",
    )


def _task_out(db, task_id: int) -> dict[str, Any]:
    row = db.execute(_task_query().where(Task.id == int(task_id))).first()
    return _row_out(row) if row else {}


def _apply_update(db, task_id: int, data: dict, auth: AuthContext) -> Task:
    """
    Apply a partial update. Raises FORBIDDEN for a missing task or a caller
    who is neither creator, assignee nor admin.
    """

    task = db.get(Task, int(task_id))
    if not task:
        raise ApiError("FORBIDDEN", "Task not found")
    uid = actor_id(auth)
    if not is_privileged(auth) and task.created_by != uid and task.assigned_to != uid:
        raise ApiError("FORBIDDEN", "You do not have permission to update this task")

    before = row_to_dict(task)
    changed = False

    if has_any(data, "isCompleted", "is_completed"):
        completed = to_bool(pick(data, "isCompleted", "is_completed"))
        if completed and not task.is_completed:
            task.completed_at = iso_utc_now()
            task.completed_by = uid or task.created_by
        elif not completed and task.is_completed:
            task.completed_at = None
            task.completed_by = None
        task.is_completed = completed
        changed = True

    if has_any(data, "customFields", "custom_fields"):
        task.custom_fields = json.dumps(merge_custom_fields(task.custom_fields, pick(data, "customFields", "custom_fields")))
        changed = True

    for camel, (snake, column) in _UPDATE_FIELDS.items():
        if not has_any(data, camel, snake):
            continue
        value = pick(data, camel, snake)
        if column == "due_date":
            value = _due_date_or_error(value)
        setattr(task, column, value)
        changed = True

    if has_any(data, "dueTime", "due_time"):
        task.due_time, task.due_date = normalize_due_time(pick(data, "dueTime", "due_time"), task.due_date)
        changed = True

    for camel, (snake, column) in _UPDATE_ID_FIELDS.items():
        if has_any(data, camel, snake):
            setattr(task, column, to_int_or_none(pick(data, camel, snake)))
            changed = True

    if not changed:
        return task

    if not str(task.title or "").strip():
        raise ApiError("BAD_REQUEST", "Task title is required")

    task.updated_at = iso_utc_now()
    flush_or_map(db, on_fk=_FK_ON_WRITE)
    append_history(
        db,
        TaskHistory,
        task_id=int(task.id),
        action="UPDATE",
        details={"before": before, "after": row_to_dict(task)},
        performed_by=uid or task.created_by,
    )
    return task


def task_create(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    title = str(pick(data, "title", default="") or "").strip()
    if not title:
        raise ApiError("BAD_REQUEST", "Task title is required")

    due_date = _due_date_or_error(pick(data, "dueDate", "due_date"))
    due_time, due_date = normalize_due_time(pick(data, "dueTime", "due_time"), due_date)
    reminder = pick(data, "reminderMinutesBeforeDue", "reminder_minutes_before_due")

    now = iso_utc_now()
    task = Task(
        title=title,
        description=pick(data, "description"),
        is_completed=to_bool(pick(data, "isCompleted", "is_completed", default=False)),
        due_date=due_date,
        due_time=due_time,
        organization_id=to_int_or_none(pick(data, "organizationId", "organization_id")),
        hiring_manager_id=to_int_or_none(pick(data, "hiringManagerId", "hiring_manager_id")),
        job_id=to_int_or_none(pick(data, "jobId", "job_id")),
        owner=pick(data, "owner"),
        priority=str(pick(data, "priority", default="") or "") or "Medium",
        status=str(pick(data, "status", default="") or "") or "Pending",
        created_by=actor_id(auth),
        assigned_to=to_int_or_none(pick(data, "assignedTo", "assigned_to")),
        reminder_minutes_before_due=to_int_or_none(reminder),
        custom_fields=json.dumps(custom_fields_for_create(pick(data, "customFields", "custom_fields"))),
        created_at=now,
        updated_at=now,
    )
    if task.is_completed:
        task.completed_at = now
        task.completed_by = actor_id(auth)
    db.add(task)
    flush_or_map(db, on_fk=_FK_ON_WRITE)

    append_history(db, TaskHistory, task_id=int(task.id), action="CREATE", details=data or {}, performed_by=actor_id(auth))
    return {"message": "Task created successfully", "task": _task_out(db, int(task.id))}


def task_list(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    q = _scope_to_user(_task_query(), auth)

    org_id = to_int_or_none(pick(data, "organizationId", "organization_id"))
    if org_id is not None:
        q = q.where(Task.organization_id == org_id)
    hm_id = to_int_or_none(pick(data, "hiringManagerId", "hiring_manager_id"))
    if hm_id is not None:
        q = q.where(Task.hiring_manager_id == hm_id)
    if has_any(data, "isCompleted", "is_completed"):
        q = q.where(Task.is_completed.is_(to_bool(pick(data, "isCompleted", "is_completed"))))

    q = q.order_by(Task.due_date.asc().nulls_last(), Task.created_at.desc(), Task.id.desc())
    return {"tasks": [_row_out(r) for r in db.execute(q).all()]}


def task_get(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    task_id = require_id(data, "id", "taskId", label="task id")
    row = db.execute(_scope_to_user(_task_query().where(Task.id == task_id), auth)).first()
    if not row:
        raise ApiError("NOT_FOUND", "Task not found")
    return {"task": _row_out(row)}


def task_update(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    task_id = require_id(data, "id", "taskId", label="task id")
    updates = {k: v for k, v in (data or {}).items() if k not in {"id", "taskId"}}
    task = _apply_update(db, task_id, updates, auth)
    return {"message": "Task updated successfully", "task": _task_out(db, int(task.id))}


def task_complete(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    task_id = require_id(data, "id", "taskId", label="task id")
    task = _apply_update(db, task_id, {"isCompleted": True, "status": "Completed"}, auth)
    return {"message": "Task marked as complete", "task": _task_out(db, int(task.id))}


def task_incomplete(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    task_id = require_id(data, "id", "taskId", label="task id")
    task = _apply_update(db, task_id, {"isCompleted": False, "status": "Pending"}, auth)
    return {"message": "Task marked as incomplete", "task": _task_out(db, int(task.id))}


def task_bulk_update(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    ids = (data or {}).get("ids")
    updates = (data or {}).get("updates")
    if not isinstance(ids, list) or not ids:
        raise ApiError("BAD_REQUEST", "IDs array is required and must not be empty")
    if not isinstance(updates, dict):
        raise ApiError("BAD_REQUEST", "Updates object is required")

    results: dict[str, list] = {"successful": [], "failed": [], "errors": []}
    for raw_id in ids:
        task_id = to_int_or_none(raw_id)
        if task_id is None:
            results["failed"].append(raw_id)
            results["errors"].append({"id": raw_id, "error": "Invalid task ID"})
            continue
        try:
            with db.begin_nested():
                _apply_update(db, task_id, dict(updates), auth)
            results["successful"].append(task_id)
        except ApiError as e:
            results["failed"].append(task_id)
            results["errors"].append({"id": task_id, "error": e.message})

    return {
        "message": f"Updated {len(results['successful'])} of {len(ids)} tasks",
        "results": results,
    }


def task_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    task_id = require_id(data, "id", "taskId", label="task id")
    task = db.get(Task, task_id)
    if not task:
        raise ApiError("FORBIDDEN", "Task not found")
    if not is_privileged(auth) and task.created_by != actor_id(auth):
        raise ApiError("FORBIDDEN", "You do not have permission to delete this task")

    snapshot = row_to_dict(task)
    db.delete(task)
    flush_or_map(db, on_fk=("CONFLICT", "Cannot delete task as it is referenced by other records", 409))
    # task_history cascades with the task, so the DELETE record goes to the audit log.
    append_audit(db, entityType="TASK", entityId=task_id, action="TASK_DELETE", actor=auth, meta={"task": snapshot})
    return {"message": "Task deleted successfully", "id": task_id}


def task_note_add(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    task_id = require_id(data, "id", "taskId", label="task id")
    text = str(pick(data, "text", default="") or "").strip()
    if not text:
        raise ApiError("BAD_REQUEST", "Note text is required")
    if not db.get(Task, task_id):
        raise ApiError("NOT_FOUND", "Task not found")

    refs = normalize_about_references(pick(data, "aboutReferences", "about_references"))
    note = TaskNote(
        task_id=task_id,
        text=text,
        action=pick(data, "action"),
        about_references=json.dumps(refs) if refs is not None else None,
        created_by=actor_id(auth),
        created_at=iso_utc_now(),
    )
    db.add(note)
    flush_or_map(db, on_fk=("NOT_FOUND", "Task not found", 404))
    append_history(db, TaskHistory, task_id=task_id, action="ADD_NOTE", details={"noteId": int(note.id), "text": text}, performed_by=actor_id(auth))
    return {"note": entity_out(note)}


def task_notes_list(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    task_id = require_id(data, "id", "taskId", label="task id")
    rows = db.execute(
        select(TaskNote, User.name.label("created_by_name"))
        .outerjoin(User, User.id == TaskNote.created_by)
        .where(TaskNote.task_id == task_id)
        .order_by(TaskNote.created_at.desc(), TaskNote.id.desc())
    ).all()
    return {"notes": [entity_out(r[0], created_by_name=r.created_by_name or "") for r in rows]}


def task_history_list(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    task_id = require_id(data, "id", "taskId", label="task id")
    rows = db.execute(
        select(TaskHistory, User.name.label("performed_by_name"))
        .outerjoin(User, User.id == TaskHistory.performed_by)
        .where(TaskHistory.task_id == task_id)
        .order_by(TaskHistory.performed_at.desc(), TaskHistory.id.desc())
    ).all()
    return {"history": [entity_out(r[0], performed_by_name=r.performed_by_name or "") for r in rows]}


def task_stats(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    today = today_utc()
    open_ = Task.is_completed.is_(False)
    q = select(
        func.count(Task.id),
        func.count(case((Task.is_completed.is_(True), 1))),
        func.count(case((open_, 1))),
        func.count(case(((Task.due_date < today) & open_, 1))),
        func.count(case(((Task.due_date == today) & open_, 1))),
    )
    if not is_privileged(auth):
        uid = actor_id(auth)
        q = q.where(or_(Task.created_by == uid, Task.assigned_to == uid))
    total, completed, pending, overdue, due_today = db.execute(q).one()
    return {
        "stats": {
            "total_tasks": int(total or 0),
            "completed_tasks": int(completed or 0),
            "pending_tasks": int(pending or 0),
            "overdue_tasks": int(overdue or 0),
            "due_today": int(due_today or 0),
        }
    }


def task_reminders_run(data, auth: AuthContext | None, db, cfg):
    return run_task_reminders(db, cfg)


def task_reminders_diagnose(data, auth: AuthContext | None, db, cfg):
    items = diagnose_reminders(
        db,
        due_date_filter=str(pick(data, "dueDate", "due_date", default="") or "").strip(),
        limit=to_int_or_none(pick(data, "limit")) or 50,
    )
    return {"tasks": items, "count": len(items)}
