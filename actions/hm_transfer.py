"""
Hiring manager transfer workflow.

A transfer moves a hiring manager's notes, documents, tasks and jobs to
another hiring manager and archives the source. Requests start `pending`
and end `approved` or `denied`. Approval and denial are gated by a
conditional UPDATE on `status = 'pending'`, so a second approval of the
same request always fails.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import aliased

from actions.helpers import actor_id, append_audit, entity_out, require_id, require_login
from actions.hiring_managers import add_hm_note, full_name
from config import Config
from models import Document, HiringManager, HiringManagerNote, HiringManagerTransfer, Job, ScheduledTask, Task, User
from services.archive_cleanup import ARCHIVE_CLEANUP
from services.email_service import send_mail
from services.email_templates import HIRING_MANAGER_TRANSFER_REQUEST, get_template_by_type
from services.template_renderer import button_html, escape_html, newlines_to_br, render_template
from utils import ApiError, AuthContext, iso_utc_now, parse_datetime_maybe, pick, to_int_or_none, to_iso_utc


_log = logging.getLogger("transfer")

PENDING = "pending"
APPROVED = "approved"
DENIED = "denied"


def _transfer_query():
    src = aliased(HiringManager)
    tgt = aliased(HiringManager)
    return (
        select(
            HiringManagerTransfer,
            src.first_name.label("src_first"),
            src.last_name.label("src_last"),
            src.organization_id.label("source_organization_id"),
            tgt.first_name.label("tgt_first"),
            tgt.last_name.label("tgt_last"),
            tgt.organization_id.label("target_organization_id"),
        )
        .outerjoin(src, src.id == HiringManagerTransfer.source_hiring_manager_id)
        .outerjoin(tgt, tgt.id == HiringManagerTransfer.target_hiring_manager_id)
    )


def _name_or_blank(last: Optional[str], first: Optional[str]) -> str:
    if last is None and first is None:
        return ""
    return f"{last or ''}, {first or ''}"


def load_transfer(db, transfer_id: int) -> Optional[dict[str, Any]]:
    """Transfer row plus both hiring managers' display names and organization ids."""
    row = db.execute(_transfer_query().where(HiringManagerTransfer.id == int(transfer_id))).first()
    if not row:
        return None
    return entity_out(
        row[0],
        source_hm_name=_name_or_blank(row.src_last, row.src_first),
        target_hm_name=_name_or_blank(row.tgt_last, row.tgt_first),
        source_organization_id=row.source_organization_id,
        target_organization_id=row.target_organization_id,
    )


def _require_transfer(db, transfer_id: int) -> dict[str, Any]:
    transfer = load_transfer(db, transfer_id)
    if not transfer:
        raise ApiError("NOT_FOUND", "Transfer request not found")
    return transfer


def _display_names(transfer: dict[str, Any]) -> tuple[str, str]:
    source = transfer.get("source_hm_name") or transfer.get("source_record_number") or ""
    target = transfer.get("target_hm_name") or transfer.get("target_record_number") or ""
    return source, target


def _format_request_date(value: Any) -> str:
    dt = parse_datetime_maybe(value)
    if not dt:
        return str(value or "")
    return dt.strftime("%Y-%m-%d %H:%M UTC")


# Emails


def send_transfer_request_email(db, cfg: Config, transfer: dict[str, Any], requester: dict[str, str]) -> None:
    if not cfg.PAYROLL_EMAIL:
        _log.warning("PAYROLL_EMAIL not configured; transfer %s request email not sent", transfer["id"])
        return

    approval_url = f"{cfg.FRONTEND_URL}/dashboard/hiring-managers/transfer/{transfer['id']}/approve"
    deny_url = f"{cfg.FRONTEND_URL}/dashboard/hiring-managers/transfer/{transfer['id']}/deny"
    approve_btn = button_html(approval_url, "Approve Transfer", color="#4CAF50")
    deny_btn = button_html(deny_url, "Deny Transfer", color="#f44336")
    source_name, target_name = _display_names(transfer)

    variables = {
        "requestedBy": requester.get("name") or "Unknown",
        "requestedByEmail": requester.get("email") or "",
        "sourceRecordNumber": transfer.get("source_record_number") or "",
        "targetRecordNumber": transfer.get("target_record_number") or "",
        "requestDate": _format_request_date(transfer.get("created_at")),
        "approvalUrl": approval_url,
        "denyUrl": deny_url,
    }
    safe_keys = ["approvalUrl", "denyUrl"]

    template = get_template_by_type(db, HIRING_MANAGER_TRANSFER_REQUEST)
    if template:
        subject = render_template(template.get("subject"), variables, safe_keys)
        html = newlines_to_br(
            render_template(template.get("body"), {**variables, "approvalUrl": approve_btn, "denyUrl": deny_btn}, safe_keys)
        )
    else:
        subject = f"Hiring Manager Transfer Request: {variables['sourceRecordNumber']} → {variables['targetRecordNumber']}"
        html = (
            "<h2>Hiring Manager Transfer Request</h2>"
            "<p>A transfer request has been submitted (hiring manager to hiring manager):</p>"
            "<ul>"
            f"<li><strong>Requested By:</strong> {escape_html(variables['requestedBy'])} ({escape_html(variables['requestedByEmail'])})</li>"
            f"<li><strong>Source Hiring Manager:</strong> {escape_html(source_name)} ({escape_html(variables['sourceRecordNumber'])})</li>"
            f"<li><strong>Target Hiring Manager:</strong> {escape_html(target_name)} ({escape_html(variables['targetRecordNumber'])})</li>"
            f"<li><strong>Request Date:</strong> {escape_html(variables['requestDate'])}</li>"
            "</ul>"
            "<p>If approved, notes, documents, tasks, and jobs linked to the source hiring manager will be moved "
            "to the target. The source hiring manager will be archived.</p>"
            "<p>Please review and approve or deny:</p>"
            f"<p>{approve_btn} {deny_btn}</p>"
        )

    send_mail(cfg, to=cfg.PAYROLL_EMAIL, subject=subject, html=html)


def send_approval_email(cfg: Config, transfer: dict[str, Any]) -> None:
    if not transfer.get("requested_by_email"):
        return
    source_name, target_name = _display_names(transfer)
    src_no = transfer.get("source_record_number") or ""
    tgt_no = transfer.get("target_record_number") or ""
    send_mail(
        cfg,
        to=transfer["requested_by_email"],
        subject=f"Hiring Manager Transfer Approved: {src_no} → {tgt_no}",
        html=(
            "<h2>Hiring Manager Transfer Approved</h2>"
            "<p>Your hiring manager transfer request has been approved and executed:</p>"
            "<ul>"
            f"<li><strong>Source Hiring Manager:</strong> {escape_html(source_name)} ({escape_html(src_no)}) - <strong>Archived</strong></li>"
            f"<li><strong>Target Hiring Manager:</strong> {escape_html(target_name)} ({escape_html(tgt_no)})</li>"
            "</ul>"
            "<p><strong>What was transferred:</strong></p>"
            "<ul><li>Notes</li><li>Documents</li><li>Tasks</li><li>Jobs (linked to source hiring manager)</li></ul>"
            "<p>The source hiring manager record has been archived.</p>"
        ),
    )


def send_denial_email(cfg: Config, transfer: dict[str, Any], reason: str) -> None:
    if not transfer.get("requested_by_email"):
        return
    source_name, target_name = _display_names(transfer)
    src_no = transfer.get("source_record_number") or ""
    tgt_no = transfer.get("target_record_number") or ""
    send_mail(
        cfg,
        to=transfer["requested_by_email"],
        subject=f"Hiring Manager Transfer Denied: {src_no} → {tgt_no}",
        html=(
            "<h2>Hiring Manager Transfer Denied</h2>"
            "<p>Your hiring manager transfer request has been denied:</p>"
            "<ul>"
            f"<li><strong>Source:</strong> {escape_html(source_name)} ({escape_html(src_no)})</li>"
            f"<li><strong>Target:</strong> {escape_html(target_name)} ({escape_html(tgt_no)})</li>"
            f"<li><strong>Denial Reason:</strong> {escape_html(reason)}</li>"
            "</ul>"
            "<p>No changes have been made.</p>"
        ),
    )


# Migration


def execute_transfer(db, transfer: dict[str, Any], *, approved_by: Optional[int], retention_days: int = 7) -> None:
    """
    Move notes, documents, tasks and jobs from the source to the target
    hiring manager, archive the source and schedule its cleanup.

    Runs in the caller's transaction as one unit: a failure part way leaves
    none of the moves applied once the caller rolls back.
    """

    source_id = int(transfer["source_hiring_manager_id"])
    target_id = int(transfer["target_hiring_manager_id"])
    source = db.get(HiringManager, source_id)
    target = db.get(HiringManager, target_id)
    if source is None or target is None:
        raise ApiError("NOT_FOUND", "Source or target hiring manager not found")

    now_dt = datetime.now(timezone.utc)
    now = to_iso_utc(now_dt)
    source_name = full_name(source)
    target_name = full_name(target)

    db.execute(
        update(HiringManagerNote)
        .where(HiringManagerNote.hiring_manager_id == source_id)
        .values(hiring_manager_id=target_id)
        .execution_options(synchronize_session=False)
    )
    db.execute(
        update(Document)
        .where(Document.entity_type == "hiring_manager")
        .where(Document.entity_id == source_id)
        .values(entity_id=target_id, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.execute(
        update(Task)
        .where(Task.hiring_manager_id == source_id)
        .values(hiring_manager_id=target_id, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    # Jobs reference their hiring manager by organization and "Last, First" text.
    if source.organization_id is not None:
        moved_jobs = db.execute(
            update(Job)
            .where(Job.organization_id == source.organization_id)
            .where(func.trim(func.coalesce(Job.hiring_manager, "")) == source_name)
            .values(organization_id=target.organization_id, hiring_manager=target_name, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
    else:
        moved_jobs = 0

    add_hm_note(
        db,
        source_id,
        f"Transfer approved: All data moved to {transfer.get('target_record_number') or ''}. Status changed to Archived.",
        approved_by,
    )
    add_hm_note(
        db,
        target_id,
        f"Transfer approved: Received notes, documents, tasks, and jobs from {transfer.get('source_record_number') or ''}.",
        approved_by,
    )

    source.status = "Archived"
    source.archived_at = now
    source.archive_reason = "Transfer"
    source.updated_at = now

    db.add(
        ScheduledTask(
            task_type=ARCHIVE_CLEANUP,
            task_data=json.dumps({"hiring_manager_id": source_id}),
            scheduled_for=to_iso_utc(now_dt + timedelta(days=retention_days)),
            status="pending",
            created_at=now,
        )
    )
    db.flush()
    _log.info("transfer %s executed: hm %s -> hm %s (jobs moved=%s)", transfer["id"], source_id, target_id, moved_jobs)


def _set_status(db, transfer_id: int, values: dict[str, Any]) -> None:
    res = db.execute(
        update(HiringManagerTransfer)
        .where(HiringManagerTransfer.id == int(transfer_id))
        .where(HiringManagerTransfer.status == PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise ApiError("CONFLICT", "Transfer request not found or already processed")


# Actions


def hm_transfer_create(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    source_raw = pick(data, "source_hiring_manager_id", "sourceHiringManagerId")
    target_raw = pick(data, "target_hiring_manager_id", "targetHiringManagerId")
    if not source_raw or not target_raw:
        raise ApiError("BAD_REQUEST", "Source and target hiring manager IDs are required")
    source_id = to_int_or_none(source_raw)
    target_id = to_int_or_none(target_raw)
    if source_id is None or target_id is None:
        raise ApiError("BAD_REQUEST", "Source and target hiring manager IDs are required")
    if source_id == target_id:
        raise ApiError("BAD_REQUEST", "Cannot transfer to the same hiring manager")

    if not db.get(HiringManager, source_id) or not db.get(HiringManager, target_id):
        raise ApiError("NOT_FOUND", "Source or target hiring manager not found")

    uid = actor_id(auth)
    user = db.get(User, uid) if uid is not None else None
    requester = {
        "name": str(pick(data, "requested_by", "requestedBy", default="") or "") or (user.name if user else "") or "Unknown",
        "email": str(pick(data, "requested_by_email", "requestedByEmail", default="") or "") or (user.email if user else "") or "",
    }

    now = iso_utc_now()
    row = HiringManagerTransfer(
        source_hiring_manager_id=source_id,
        target_hiring_manager_id=target_id,
        requested_by=uid,
        requested_by_name=requester["name"],
        requested_by_email=requester["email"],
        source_record_number=str(pick(data, "source_record_number", "sourceRecordNumber", default="") or "") or f"HM-{source_id}",
        target_record_number=str(pick(data, "target_record_number", "targetRecordNumber", default="") or "") or f"HM-{target_id}",
        status=PENDING,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.flush()

    append_audit(db, entityType="HM_TRANSFER", entityId=row.id, action="HM_TRANSFER_CREATE", actor=auth, at=now, meta={"source": source_id, "target": target_id})

    transfer = load_transfer(db, int(row.id))
    try:
        send_transfer_request_email(db, cfg, transfer, requester)
    except Exception:
        _log.exception("transfer %s request email failed", row.id)

    return {"message": "Hiring manager transfer request created successfully", "transfer": transfer}


def hm_transfer_get(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    transfer_id = require_id(data, "id", "transferId", label="transfer id")
    transfer = load_transfer(db, transfer_id)
    if not transfer:
        raise ApiError("NOT_FOUND", "Transfer request not found")
    return {"transfer": transfer}


def hm_transfer_approve(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    transfer_id = require_id(data, "id", "transferId", label="transfer id")
    _require_transfer(db, transfer_id)

    approver = actor_id(auth)
    now = iso_utc_now()
    _set_status(db, transfer_id, {"status": APPROVED, "approved_by": approver, "approved_at": now, "updated_at": now})
    # Committed before the migration; a failed migration leaves the transfer approved.
    db.commit()

    transfer = load_transfer(db, transfer_id)
    try:
        execute_transfer(db, transfer, approved_by=approver, retention_days=getattr(cfg, "ARCHIVE_RETENTION_DAYS", 7))
    except Exception:
        _log.exception("transfer %s approved but data migration failed", transfer_id)
        raise
    append_audit(db, entityType="HM_TRANSFER", entityId=transfer_id, action="HM_TRANSFER_APPROVE", actor=auth, at=now)

    try:
        send_approval_email(cfg, transfer)
    except Exception:
        _log.exception("transfer %s approval email failed", transfer_id)

    return {"message": "Hiring manager transfer approved and executed successfully", "transfer": transfer}


def hm_transfer_deny(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    transfer_id = require_id(data, "id", "transferId", label="transfer id")
    reason = str(pick(data, "denial_reason", "denialReason", default="") or "").strip()
    if not reason:
        raise ApiError("BAD_REQUEST", "Denial reason is required")
    _require_transfer(db, transfer_id)

    approver = actor_id(auth)
    now = iso_utc_now()
    _set_status(db, transfer_id, {"status": DENIED, "denial_reason": reason, "approved_by": approver, "approved_at": now, "updated_at": now})
    transfer = load_transfer(db, transfer_id)

    try:
        with db.begin_nested():
            add_hm_note(db, transfer["source_hiring_manager_id"], f"Transfer denied: {reason}", approver)
            add_hm_note(db, transfer["target_hiring_manager_id"], f"Transfer denied: {reason}", approver)
    except Exception:
        _log.exception("transfer %s denial notes failed", transfer_id)

    append_audit(db, entityType="HM_TRANSFER", entityId=transfer_id, action="HM_TRANSFER_DENY", actor=auth, at=now, remark=reason)

    try:
        send_denial_email(cfg, transfer, reason)
    except Exception:
        _log.exception("transfer %s denial email failed", transfer_id)

    return {"message": "Transfer denied successfully", "transfer": transfer}
