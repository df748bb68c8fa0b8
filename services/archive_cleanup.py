from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import delete, select, update

from models import (
    Document,
    HiringManager,
    HiringManagerHistory,
    HiringManagerNote,
    Job,
    Organization,
    OrganizationHistory,
    OrganizationNote,
    ScheduledTask,
    Task,
)
from utils import iso_utc_now, json_load_object, to_iso_utc


_log = logging.getLogger("cleanup")

ARCHIVE_CLEANUP = "archive_cleanup"


def schedule_archive_cleanup(db, *, payload: dict[str, Any], days: int = 7, now: Optional[datetime] = None) -> ScheduledTask:
    now = now or datetime.now(timezone.utc)
    row = ScheduledTask(
        task_type=ARCHIVE_CLEANUP,
        task_data=json.dumps(payload, sort_keys=True),
        scheduled_for=to_iso_utc(now + timedelta(days=days)),
        status="pending",
        created_at=to_iso_utc(now),
    )
    db.add(row)
    return row


def _complete_scheduled(db, key: str, entity_id: int, at: str) -> int:
    rows = (
        db.execute(
            select(ScheduledTask)
            .where(ScheduledTask.task_type == ARCHIVE_CLEANUP)
            .where(ScheduledTask.status == "pending")
        )
        .scalars()
        .all()
    )
    n = 0
    for r in rows:
        if str(json_load_object(r.task_data).get(key)) == str(entity_id):
            r.status = "completed"
            r.completed_at = at
            n += 1
    return n


def _purge_hiring_manager(db, hm_id: int) -> None:
    db.execute(update(Task).where(Task.hiring_manager_id == hm_id).values(hiring_manager_id=None))
    db.execute(delete(HiringManagerNote).where(HiringManagerNote.hiring_manager_id == hm_id))
    db.execute(delete(HiringManagerHistory).where(HiringManagerHistory.hiring_manager_id == hm_id))
    db.execute(delete(Document).where(Document.entity_type == "hiring_manager").where(Document.entity_id == hm_id))
    db.execute(delete(HiringManager).where(HiringManager.id == hm_id))


def run_archive_cleanup(db, now: Optional[datetime] = None, retention_days: int = 7) -> dict[str, Any]:
    """
    Hard-delete organizations and hiring managers archived more than
    `retention_days` ago, with their notes, history and documents, and mark
    the matching `archive_cleanup` scheduled tasks completed.

    Runs inside the caller's transaction; the caller commits or rolls back.
    """

    now = now or datetime.now(timezone.utc)
    cutoff = to_iso_utc(now - timedelta(days=retention_days))
    at = iso_utc_now()

    orgs = (
        db.execute(
            select(Organization.id, Organization.name)
            .where(Organization.status == "Archived")
            .where(Organization.archived_at.isnot(None))
            .where(Organization.archived_at <= cutoff)
        )
        .all()
    )
    for org_id, org_name in orgs:
        _log.info("cleaning up archived organization %s (id=%s)", org_name, org_id)
        hm_ids = db.execute(select(HiringManager.id).where(HiringManager.organization_id == org_id)).scalars().all()
        for hm_id in hm_ids:
            _purge_hiring_manager(db, int(hm_id))
        db.execute(update(Task).where(Task.job_id.in_(select(Job.id).where(Job.organization_id == org_id))).values(job_id=None))
        db.execute(delete(Job).where(Job.organization_id == org_id))
        db.execute(delete(OrganizationNote).where(OrganizationNote.organization_id == org_id))
        db.execute(delete(OrganizationHistory).where(OrganizationHistory.organization_id == org_id))
        db.execute(delete(Document).where(Document.entity_type == "organization").where(Document.entity_id == org_id))
        db.execute(delete(Organization).where(Organization.id == org_id))
        _complete_scheduled(db, "organization_id", int(org_id), at)

    hms = (
        db.execute(
            select(HiringManager.id, HiringManager.first_name, HiringManager.last_name)
            .where(HiringManager.status == "Archived")
            .where(HiringManager.archived_at.isnot(None))
            .where(HiringManager.archived_at <= cutoff)
        )
        .all()
    )
    for hm_id, first_name, last_name in hms:
        name = f"{last_name or ''}, {first_name or ''}".strip(", ") or f"ID {hm_id}"
        _log.info("cleaning up archived hiring manager %s (id=%s)", name, hm_id)
        _purge_hiring_manager(db, int(hm_id))
        _complete_scheduled(db, "hiring_manager_id", int(hm_id), at)

    _log.info("archive cleanup processed %s organization(s), %s hiring manager(s)", len(orgs), len(hms))
    return {"organizations": len(orgs), "hiringManagers": len(hms)}


def apply_archive_status(db, row, *, key: str, previous_status: Optional[str], reason: str = "Deletion", days: int = 7) -> None:
    """
    Keep archive bookkeeping in step with a status change on an organization
    or hiring manager: entering "Archived" stamps archived_at and schedules the
    hard delete; leaving it clears the stamp.
    """

    if row.status == "Archived" and previous_status != "Archived":
        now = datetime.now(timezone.utc)
        row.archived_at = to_iso_utc(now)
        row.archive_reason = row.archive_reason or reason
        schedule_archive_cleanup(db, payload={key: int(row.id)}, days=days, now=now)
    elif row.status != "Archived" and previous_status == "Archived":
        row.archived_at = None
        row.archive_reason = None
