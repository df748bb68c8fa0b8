from __future__ import annotations

import json
import os
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError

from models import AuditLog
from utils import ApiError, AuthContext, iso_utc_now, json_load_any, json_load_object, safe_json_string


def require_login(auth: AuthContext | None) -> AuthContext:
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Authentication required")
    return auth


def actor_id(auth: AuthContext | None) -> Optional[int]:
    if not auth or not auth.valid or auth.userId is None:
        return None
    try:
        return int(auth.userId)
    except (TypeError, ValueError):
        return None


def require_id(data: dict | None, *keys: str, label: str = "id") -> int:
    for k in keys:
        raw = (data or {}).get(k)
        if raw is None or str(raw).strip() == "":
            continue
        try:
            return int(str(raw).strip())
        except ValueError:
            raise ApiError("BAD_REQUEST", f"Invalid {label}")
    raise ApiError("BAD_REQUEST", f"Missing {label}")


def row_to_dict(row) -> dict[str, Any]:
    """Column snapshot of an ORM row (used for before/after history details)."""
    if row is None:
        return {}
    return {c.name: getattr(row, c.name) for c in row.__table__.columns}


def merge_custom_fields(existing: Any, incoming: Any) -> dict:
    """
    Shallow merge: keys present in `incoming` overwrite, other stored keys stay.

    `incoming` may be a dict or a JSON string; an unparsable string is rejected.
    """

    base = json_load_object(existing)
    if incoming is None:
        return base
    if isinstance(incoming, str):
        try:
            incoming = json.loads(incoming) if incoming.strip() else {}
        except ValueError:
            raise ApiError("BAD_REQUEST", "Invalid customFields JSON")
    if not isinstance(incoming, dict):
        raise ApiError("BAD_REQUEST", "customFields must be an object")
    return {**base, **incoming}


def custom_fields_for_create(value: Any) -> dict:
    """Create-time custom fields; anything unparsable is stored as {}."""
    if isinstance(value, dict):
        return dict(value)
    return json_load_object(value)


def normalize_about_references(value: Any) -> Optional[list]:
    if value is None or value == "" or value == []:
        return None
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return [value]
        return parsed if isinstance(parsed, list) else [parsed]
    if isinstance(value, list):
        return value
    return [value]


def is_foreign_key_violation(exc: BaseException) -> bool:
    orig = getattr(exc, "orig", None)
    code = str(getattr(orig, "pgcode", "") or getattr(orig, "sqlstate", "") or "")
    if code == "23503":
        return True
    msg = str(orig or exc)
    return "FOREIGN KEY constraint failed" in msg or "violates foreign key constraint" in msg


def flush_or_map(db, *, on_fk: tuple[str, str, int]) -> None:
    """
    Flush pending writes; a foreign-key violation becomes the given
    (code, message, http_status) ApiError, anything else propagates.
    """

    try:
        db.flush()
    except IntegrityError as e:
        if is_foreign_key_violation(e):
            code, message, status = on_fk
            raise ApiError(code, message, http_status=status)
        raise


def append_audit(
    db,
    *,
    entityType: str,
    entityId: Any,
    action: str,
    actor: AuthContext | None,
    at: str | None = None,
    stageTag: str = "",
    remark: str = "",
    meta: dict | None = None,
    correlation_id: str = "",
) -> None:
    db.add(
        AuditLog(
            logId=f"LOG-{os.urandom(16).hex()}",
            entityType=str(entityType or ""),
            entityId=str(entityId if entityId is not None else ""),
            action=str(action or ""),
            stageTag=str(stageTag or action or ""),
            remark=str(remark or ""),
            actorUserId=str(actor.userId if actor and actor.userId is not None else "SYSTEM"),
            actorRole=str(actor.role if actor else "SYSTEM"),
            actorEmail=str(actor.email if actor else ""),
            at=at or iso_utc_now(),
            correlationId=str(correlation_id or ""),
            metaJson=safe_json_string(meta or {}),
        )
    )


_JSON_COLUMNS = ("about_references", "details", "task_data")


def entity_out(row, **extra) -> dict[str, Any]:
    """Snake_case API shape of a row, with stored JSON columns decoded."""
    out = row_to_dict(row)
    if "custom_fields" in out:
        out["custom_fields"] = json_load_object(out["custom_fields"])
    for k in _JSON_COLUMNS:
        if k in out and isinstance(out[k], str):
            out[k] = json_load_any(out[k])
    out.update(extra)
    return out


def append_history(db, model, *, action: str, details: Any, performed_by: Optional[int], **owner: Any) -> None:
    """Add a `*_history` row; `owner` carries the parent foreign key, e.g. task_id=5."""
    db.add(
        model(
            action=action,
            details=safe_json_string(details if details is not None else {}),
            performed_by=performed_by,
            performed_at=iso_utc_now(),
            **owner,
        )
    )
