from __future__ import annotations

import json
from typing import Any, Optional

from sqlalchemy import select

from actions.helpers import (
    actor_id,
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
from models import HiringManager, HiringManagerHistory, HiringManagerNote, Organization, User
from services.archive_cleanup import apply_archive_status
from utils import ApiError, AuthContext, has_any, is_privileged, iso_utc_now, pick, to_bool, to_int_or_none


_FIELD_MAP = {
    "firstName": "first_name",
    "lastName": "last_name",
    "status": "status",
    "title": "title",
    "email": "email",
    "phone": "phone",
}


def full_name(hm: HiringManager) -> str:
    """`Last, First`, the form jobs store in their free-text hiring_manager column."""
    return f"{hm.last_name or ''}, {hm.first_name or ''}"


def _resolve_organization_id(db, value: Any) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    s = str(value).strip()
    if s.isdigit():
        return int(s)
    # Non-numeric values are looked up by organization name.
    org_id = db.execute(select(Organization.id).where(Organization.name == s)).scalar_one_or_none()
    return int(org_id) if org_id is not None else None


def _hm_query():
    return (
        select(HiringManager, User.name.label("created_by_name"), Organization.name.label("organization_name"))
        .outerjoin(User, User.id == HiringManager.created_by)
        .outerjoin(Organization, Organization.id == HiringManager.organization_id)
    )


def _row_out(row) -> dict[str, Any]:
    hm: HiringManager = row[0]
    return entity_out(
        hm,
        full_name=full_name(hm),
        created_by_name=row.created_by_name or "",
        organization_name=row.organization_name or "",
    )


def add_hm_note(
    db,
    hiring_manager_id: int,
    text: str,
    user_id: Optional[int],
    *,
    action: Optional[str] = None,
    about_references: Any = None,
) -> HiringManagerNote:
    """Insert a note plus its ADD_NOTE history row; flushes so the id is known."""
    refs = normalize_about_references(about_references)
    note = HiringManagerNote(
        hiring_manager_id=int(hiring_manager_id),
        text=text,
        action=action,
        about_references=json.dumps(refs) if refs is not None else None,
        created_by=user_id,
        created_at=iso_utc_now(),
    )
    db.add(note)
    db.flush()
    append_history(
        db,
        HiringManagerHistory,
        hiring_manager_id=int(hiring_manager_id),
        action="ADD_NOTE",
        details={"noteId": int(note.id), "text": text},
        performed_by=user_id,
    )
    return note


def hm_create(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    first = str(pick(data, "firstName", "first_name", default="") or "").strip()
    last = str(pick(data, "lastName", "last_name", default="") or "").strip()
    if not first or not last:
        raise ApiError("BAD_REQUEST", "First name and last name are required")

    now = iso_utc_now()
    hm = HiringManager(
        first_name=first,
        last_name=last,
        status=str(pick(data, "status", default="Active") or "Active"),
        title=pick(data, "title"),
        email=pick(data, "email"),
        phone=pick(data, "phone"),
        organization_id=_resolve_organization_id(db, pick(data, "organizationId", "organization_id")),
        custom_fields=json.dumps(custom_fields_for_create(pick(data, "customFields", "custom_fields"))),
        created_by=actor_id(auth),
        created_at=now,
        updated_at=now,
    )
    db.add(hm)
    flush_or_map(db, on_fk=("BAD_REQUEST", "Invalid organization or user reference", 400))

    append_history(db, HiringManagerHistory, hiring_manager_id=int(hm.id), action="CREATE", details=row_to_dict(hm), performed_by=actor_id(auth))
    return {"hiringManager": entity_out(hm, full_name=full_name(hm))}


def hm_list(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    q = _hm_query()
    org_id = to_int_or_none(pick(data, "organizationId", "organization_id"))
    if org_id is not None:
        q = q.where(HiringManager.organization_id == org_id)
    if not is_privileged(auth):
        q = q.where(HiringManager.created_by == actor_id(auth))
    if not to_bool(pick(data, "includeArchived", default=True)):
        q = q.where(HiringManager.status != "Archived")
    q = q.order_by(HiringManager.created_at.desc(), HiringManager.id.desc())
    return {"hiringManagers": [_row_out(r) for r in db.execute(q).all()]}


def hm_get(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    hm_id = require_id(data, "id", "hiringManagerId", label="hiring manager id")
    row = db.execute(_hm_query().where(HiringManager.id == hm_id)).first()
    if not row:
        raise ApiError("NOT_FOUND", "Hiring manager not found")
    return {"hiringManager": _row_out(row)}


def hm_update(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    hm_id = require_id(data, "id", "hiringManagerId", label="hiring manager id")
    hm = db.get(HiringManager, hm_id)
    if not hm:
        raise ApiError("NOT_FOUND", "Hiring manager not found")
    if hm.created_by != actor_id(auth) and not is_privileged(auth):
        raise ApiError("FORBIDDEN", "You do not have permission to update this hiring manager")

    before = row_to_dict(hm)
    changed = False
    for key, column in _FIELD_MAP.items():
        if has_any(data, key, column):
            value = pick(data, key, column)
            setattr(hm, column, None if value == "" else value)
            changed = True
    if has_any(data, "organizationId", "organization_id"):
        hm.organization_id = _resolve_organization_id(db, pick(data, "organizationId", "organization_id"))
        changed = True
    if has_any(data, "customFields", "custom_fields"):
        hm.custom_fields = json.dumps(merge_custom_fields(hm.custom_fields, pick(data, "customFields", "custom_fields")))
        changed = True

    if not changed:
        return {"hiringManager": entity_out(hm, full_name=full_name(hm))}

    if not str(hm.first_name or "").strip() or not str(hm.last_name or "").strip():
        raise ApiError("BAD_REQUEST", "First name and last name are required")

    apply_archive_status(db, hm, key="hiring_manager_id", previous_status=before.get("status"), days=cfg.ARCHIVE_RETENTION_DAYS)
    hm.updated_at = iso_utc_now()
    flush_or_map(db, on_fk=("BAD_REQUEST", "Invalid organization reference", 400))
    append_history(
        db,
        HiringManagerHistory,
        hiring_manager_id=hm_id,
        action="UPDATE",
        details={"before": before, "after": row_to_dict(hm)},
        performed_by=actor_id(auth) or hm.created_by,
    )
    return {"hiringManager": entity_out(hm, full_name=full_name(hm))}


def hm_note_add(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    hm_id = require_id(data, "id", "hiringManagerId", label="hiring manager id")
    text = str(pick(data, "text", default="") or "").strip()
    if not text:
        raise ApiError("BAD_REQUEST", "Note text is required")
    if not db.get(HiringManager, hm_id):
        raise ApiError("NOT_FOUND", "Hiring manager not found")

    note = add_hm_note(
        db,
        hm_id,
        text,
        actor_id(auth),
        action=pick(data, "action"),
        about_references=pick(data, "aboutReferences", "about_references"),
    )
    return {"note": entity_out(note)}


def hm_notes_list(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    hm_id = require_id(data, "id", "hiringManagerId", label="hiring manager id")
    rows = db.execute(
        select(HiringManagerNote, User.name.label("created_by_name"))
        .outerjoin(User, User.id == HiringManagerNote.created_by)
        .where(HiringManagerNote.hiring_manager_id == hm_id)
        .order_by(HiringManagerNote.created_at.desc(), HiringManagerNote.id.desc())
    ).all()
    return {"notes": [entity_out(r[0], created_by_name=r.created_by_name or "") for r in rows]}


def hm_history_list(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    hm_id = require_id(data, "id", "hiringManagerId", label="hiring manager id")
    rows = db.execute(
        select(HiringManagerHistory, User.name.label("performed_by_name"))
        .outerjoin(User, User.id == HiringManagerHistory.performed_by)
        .where(HiringManagerHistory.hiring_manager_id == hm_id)
        .order_by(HiringManagerHistory.performed_at.desc(), HiringManagerHistory.id.desc())
    ).all()
    return {"history": [entity_out(r[0], performed_by_name=r.performed_by_name or "") for r in rows]}
