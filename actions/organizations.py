from __future__ import annotations

import json
from typing import Any

from sqlalchemy import delete, select

from actions.helpers import (
    actor_id,
    append_audit,
    append_history,
    custom_fields_for_create,
    entity_out,
    flush_or_map,
    merge_custom_fields,
    require_id,
    require_login,
    row_to_dict,
)
from models import Document, Organization, OrganizationHistory, OrganizationNote, User
from services.archive_cleanup import apply_archive_status
from utils import ApiError, AuthContext, has_any, is_privileged, iso_utc_now, pick, to_int_or_none


_TEXT_FIELDS = {
    "name": "name",
    "nicknames": "nicknames",
    "website": "website",
    "status": "status",
    "overview": "overview",
    "address": "address",
    "parentOrganization": "parent_organization",
    "contractOnFile": "contract_on_file",
    "contractSignedBy": "contract_signed_by",
    "dateContractSigned": "date_contract_signed",
    "yearFounded": "year_founded",
    "permFee": "perm_fee",
    "contactPhone": "contact_phone",
    "address2": "address2",
    "city": "city",
    "state": "state",
    "zipCode": "zip_code",
}
_INT_FIELDS = {
    "numEmployees": "num_employees",
    "numOffices": "num_offices",
}


def _org_query():
    return select(Organization, User.name.label("created_by_name")).outerjoin(User, User.id == Organization.created_by)


def _scope(q, auth: AuthContext):
    if is_privileged(auth):
        return q
    return q.where(Organization.created_by == actor_id(auth))


def _load_for_write(db, org_id: int, auth: AuthContext, verb: str) -> Organization:
    org = db.get(Organization, org_id)
    if not org:
        raise ApiError("FORBIDDEN", "Organization not found")
    if not is_privileged(auth) and org.created_by != actor_id(auth):
        raise ApiError("FORBIDDEN", f"You do not have permission to {verb} this organization")
    return org


def org_create(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    name = str(pick(data, "name", default="") or "").strip()
    if not name:
        raise ApiError("BAD_REQUEST", "Organization name is required")

    now = iso_utc_now()
    org = Organization(
        name=name,
        status="Active",
        contract_on_file="No",
        custom_fields=json.dumps(custom_fields_for_create(pick(data, "customFields", "custom_fields"))),
        created_by=actor_id(auth),
        created_at=now,
        updated_at=now,
    )
    for camel, column in _TEXT_FIELDS.items():
        if column == "name":
            continue
        value = pick(data, camel, column)
        if value is not None and value != "":
            setattr(org, column, value)
    for camel, column in _INT_FIELDS.items():
        setattr(org, column, to_int_or_none(pick(data, camel, column)))

    db.add(org)
    flush_or_map(db, on_fk=("BAD_REQUEST", "Referenced record does not exist", 400))
    append_history(db, OrganizationHistory, organization_id=int(org.id), action="CREATE", details=row_to_dict(org), performed_by=actor_id(auth))
    return {"message": "Organization created successfully", "organization": entity_out(org)}


def org_list(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    q = _scope(_org_query(), auth).order_by(Organization.created_at.desc(), Organization.id.desc())
    rows = db.execute(q).all()
    out = [entity_out(r[0], created_by_name=r.created_by_name or "") for r in rows]
    return {"count": len(out), "organizations": out}


def org_get(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    org_id = require_id(data, "id", "organizationId", label="organization id")
    row = db.execute(_scope(_org_query().where(Organization.id == org_id), auth)).first()
    if not row:
        raise ApiError("NOT_FOUND", "Organization not found or you do not have permission to view it")
    return {"organization": entity_out(row[0], created_by_name=row.created_by_name or "")}


def org_update(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    org_id = require_id(data, "id", "organizationId", label="organization id")
    org = _load_for_write(db, org_id, auth, "update")

    before = row_to_dict(org)
    changed = False
    for camel, column in _TEXT_FIELDS.items():
        if has_any(data, camel, column):
            setattr(org, column, pick(data, camel, column))
            changed = True
    for camel, column in _INT_FIELDS.items():
        if has_any(data, camel, column):
            setattr(org, column, to_int_or_none(pick(data, camel, column)))
            changed = True
    if has_any(data, "customFields", "custom_fields"):
        org.custom_fields = json.dumps(merge_custom_fields(org.custom_fields, pick(data, "customFields", "custom_fields")))
        changed = True

    if not changed:
        return {"organization": entity_out(org)}
    if not str(org.name or "").strip():
        raise ApiError("BAD_REQUEST", "Organization name is required")
    if not org.status:
        org.status = "Active"

    apply_archive_status(db, org, key="organization_id", previous_status=before.get("status"), days=cfg.ARCHIVE_RETENTION_DAYS)
    org.updated_at = iso_utc_now()
    flush_or_map(db, on_fk=("BAD_REQUEST", "Referenced record does not exist", 400))
    append_history(
        db,
        OrganizationHistory,
        organization_id=org_id,
        action="UPDATE",
        details={"before": before, "after": row_to_dict(org)},
        performed_by=actor_id(auth) or org.created_by,
    )
    return {"message": "Organization updated successfully", "organization": entity_out(org)}


def org_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    org_id = require_id(data, "id", "organizationId", label="organization id")
    org = _load_for_write(db, org_id, auth, "delete")

    snapshot = row_to_dict(org)
    db.delete(org)
    flush_or_map(db, on_fk=("CONFLICT", "Cannot delete organization as it is referenced by other records", 409))
    db.execute(delete(Document).where(Document.entity_type == "organization").where(Document.entity_id == org_id))
    # Notes and history cascade with the row, so the DELETE record goes to the audit log.
    append_audit(db, entityType="ORGANIZATION", entityId=org_id, action="ORG_DELETE", actor=auth, meta={"organization": snapshot})
    return {"message": "Organization deleted successfully", "id": org_id}


def org_note_add(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    org_id = require_id(data, "id", "organizationId", label="organization id")
    text = str(pick(data, "text", default="") or "").strip()
    if not text:
        raise ApiError("BAD_REQUEST", "Note text is required")

    note = OrganizationNote(organization_id=org_id, text=text, created_by=actor_id(auth), created_at=iso_utc_now())
    db.add(note)
    flush_or_map(db, on_fk=("NOT_FOUND", "Organization not found", 404))
    append_history(
        db,
        OrganizationHistory,
        organization_id=org_id,
        action="ADD_NOTE",
        details={"noteId": int(note.id), "text": text},
        performed_by=actor_id(auth),
    )
    return {"note": entity_out(note)}


def org_notes_list(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    org_id = require_id(data, "id", "organizationId", label="organization id")
    rows = db.execute(
        select(OrganizationNote, User.name.label("created_by_name"))
        .outerjoin(User, User.id == OrganizationNote.created_by)
        .where(OrganizationNote.organization_id == org_id)
        .order_by(OrganizationNote.created_at.desc(), OrganizationNote.id.desc())
    ).all()
    return {"notes": [entity_out(r[0], created_by_name=r.created_by_name or "") for r in rows]}


def org_history_list(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    org_id = require_id(data, "id", "organizationId", label="organization id")
    rows = db.execute(
        select(OrganizationHistory, User.name.label("performed_by_name"))
        .outerjoin(User, User.id == OrganizationHistory.performed_by)
        .where(OrganizationHistory.organization_id == org_id)
        .order_by(OrganizationHistory.performed_at.desc(), OrganizationHistory.id.desc())
    ).all()
    return {"history": [entity_out(r[0], performed_by_name=r.performed_by_name or "") for r in rows]}


def org_documents_list(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    org_id = require_id(data, "id", "organizationId", label="organization id")
    rows: list[Any] = (
        db.execute(
            select(Document)
            .where(Document.entity_type == "organization")
            .where(Document.entity_id == org_id)
            .order_by(Document.created_at.desc(), Document.id.desc())
        )
        .scalars()
        .all()
    )
    return {"documents": [entity_out(d) for d in rows]}
