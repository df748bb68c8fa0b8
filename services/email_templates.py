"""Email template lookup by type, cached in the process-local lookup cache."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import select

from cache_layer import MISSING, cache_get, cache_invalidate_prefix, cache_set, make_cache_key
from models import EmailTemplate


_CACHE_NS = "EMAIL_TEMPLATE"

TASK_REMINDER = "TASK_REMINDER"
HIRING_MANAGER_TRANSFER_REQUEST = "HIRING_MANAGER_TRANSFER_REQUEST"


def serialize_template(row: EmailTemplate) -> dict:
    return {
        "id": int(row.id),
        "template_name": row.template_name or "",
        "subject": row.subject or "",
        "body": row.body or "",
        "type": row.type or "",
        "created_at": row.created_at or "",
        "updated_at": row.updated_at or "",
    }


def get_template_by_type(db, template_type: str) -> Optional[dict]:
    """Template for `template_type` as a plain dict (cached), or None."""
    t = str(template_type or "").strip().upper()
    if not t:
        return None
    key = make_cache_key(_CACHE_NS, t)
    cached = cache_get(key)
    if cached is MISSING:
        return None
    if isinstance(cached, dict):
        return cached

    row = db.execute(select(EmailTemplate).where(EmailTemplate.type == t)).scalars().first()
    out = serialize_template(row) if row else None
    cache_set(key, out if out else MISSING)
    return out


def invalidate_template_cache() -> int:
    return cache_invalidate_prefix(make_cache_key(_CACHE_NS))
