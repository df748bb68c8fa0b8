from __future__ import annotations

from sqlalchemy import select

from actions.helpers import append_audit, require_id
from models import EmailTemplate
from services.email_templates import invalidate_template_cache, serialize_template
from utils import ApiError, AuthContext, iso_utc_now, pick


def email_template_list(data, auth: AuthContext | None, db, cfg):
    rows = db.execute(select(EmailTemplate).order_by(EmailTemplate.id.asc())).scalars().all()
    return {"templates": [serialize_template(r) for r in rows]}


def email_template_get(data, auth: AuthContext | None, db, cfg):
    tid = require_id(data, "id", label="template id")
    row = db.get(EmailTemplate, tid)
    if not row:
        raise ApiError("NOT_FOUND", "Template not found")
    return {"template": serialize_template(row)}


def email_template_upsert(data, auth: AuthContext | None, db, cfg):
    template_type = str(pick(data, "type", default="") or "").strip().upper()
    template_name = str(pick(data, "templateName", "template_name", default="") or "").strip()
    subject = str(pick(data, "subject", default="") or "")
    body = str(pick(data, "body", default="") or "")

    if not template_type:
        raise ApiError("BAD_REQUEST", "Template type is required")
    if not subject.strip() or not body.strip():
        raise ApiError("BAD_REQUEST", "Subject and body are required")
    if len(template_type) > 80:
        raise ApiError("BAD_REQUEST", "Template type is too long")

    now = iso_utc_now()
    row = db.execute(select(EmailTemplate).where(EmailTemplate.type == template_type)).scalars().first()
    created = row is None
    if created:
        row = EmailTemplate(type=template_type, created_at=now)
        db.add(row)
    row.template_name = template_name or template_type
    row.subject = subject
    row.body = body
    row.updated_at = now
    db.flush()

    invalidate_template_cache()
    append_audit(
        db,
        entityType="EMAIL_TEMPLATE",
        entityId=row.id,
        action="EMAIL_TEMPLATE_UPSERT",
        actor=auth,
        at=now,
        meta={"type": template_type, "created": created},
    )
    return {"template": serialize_template(row), "created": created}


def email_template_delete(data, auth: AuthContext | None, db, cfg):
    tid = require_id(data, "id", label="template id")
    row = db.get(EmailTemplate, tid)
    if not row:
        raise ApiError("NOT_FOUND", "Template not found")
    template_type = row.type
    db.delete(row)
    invalidate_template_cache()
    append_audit(db, entityType="EMAIL_TEMPLATE", entityId=tid, action="EMAIL_TEMPLATE_DELETE", actor=auth, meta={"type": template_type})
    return {"deleted": True, "id": tid}
