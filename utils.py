from __future__ import annotations

import hashlib
import json
import re
import time
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Optional

from flask import jsonify


_DEFAULT_HTTP_STATUS = {
    "BAD_REQUEST": 400,
    "AUTH_INVALID": 401,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "INTERNAL": 500,
}


class ApiError(Exception):
    def __init__(self, code: str, message: str, http_status: int | None = None):
        super().__init__(message)
        self.code = str(code or "INTERNAL")
        self.message = str(message or "")
        self.http_status = int(http_status or _DEFAULT_HTTP_STATUS.get(self.code, 400))


@dataclass
class AuthContext:
    valid: bool
    userId: Any
    email: str
    role: str
    expiresAt: str


def ok(data: Any = None, http_status: int = 200):
    return jsonify({"ok": True, "data": data}), http_status


def err(code: str, message: str, http_status: int = 400):
    return jsonify({"ok": False, "error": {"code": code, "message": message}}), http_status


ROLES = ("candidate", "recruiter", "developer", "admin", "owner")
PRIVILEGED_ROLES = {"admin", "owner"}


def normalize_role(role: Any) -> str:
    return str(role or "").strip().lower()


def is_privileged(auth: Optional[AuthContext]) -> bool:
    return bool(auth and auth.valid and normalize_role(auth.role) in PRIVILEGED_ROLES)


def iso_utc_now() -> str:
    return to_iso_utc(datetime.now(timezone.utc))


def to_iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_datetime_maybe(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    s = str(value or "").strip()
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def today_utc() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def parse_date_maybe(value: Any) -> Optional[str]:
    """Return `YYYY-MM-DD` for a date, datetime or ISO string; None otherwise."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    s = str(value or "").strip()
    if not s:
        return None
    m = re.match(r"^(\d{4}-\d{2}-\d{2})", s)
    if not m:
        return None
    try:
        return date.fromisoformat(m.group(1)).isoformat()
    except ValueError:
        return None


def new_uuid() -> str:
    return str(uuid.uuid4())


def now_monotonic() -> float:
    return time.monotonic()


def sha256_hex(value: str) -> str:
    return hashlib.sha256(str(value or "").encode("utf-8")).hexdigest()


def parse_json_body(raw: str) -> dict:
    try:
        body = json.loads(raw or "{}")
    except Exception:
        raise ApiError("BAD_REQUEST", "Invalid JSON body")
    if not isinstance(body, dict):
        raise ApiError("BAD_REQUEST", "Invalid JSON body")
    return body


def pick(data: dict | None, *keys: str, default: Any = None) -> Any:
    """First present (not None) value among `keys`; callers pass camelCase and snake_case spellings."""
    src = data or {}
    for k in keys:
        if k in src and src[k] is not None:
            return src[k]
    return default


def has_any(data: dict | None, *keys: str) -> bool:
    src = data or {}
    return any(k in src for k in keys)


def to_int_or_none(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    s = str(value).strip()
    if not s:
        return None
    m = re.match(r"^[+-]?\d+", s)
    if not m:
        return None
    return int(m.group(0))


def json_load_object(value: Any) -> dict:
    """Decode a stored JSON object; anything unparsable or non-object becomes {}."""
    if isinstance(value, dict):
        return dict(value)
    s = str(value or "").strip()
    if not s:
        return {}
    try:
        out = json.loads(s)
    except Exception:
        return {}
    return out if isinstance(out, dict) else {}


def json_load_any(value: Any) -> Any:
    s = str(value or "").strip()
    if not s:
        return None
    try:
        return json.loads(s)
    except Exception:
        return None


def safe_json_string(value: Any) -> str:
    try:
        return json.dumps(value, default=str)
    except Exception:
        return "{}"


_REDACT_KEYS = {"password", "currentpassword", "newpassword", "passwordhash", "token", "sessiontoken", "secret"}


def redact_for_audit(data: Any) -> Any:
    if isinstance(data, dict):
        out = {}
        for k, v in data.items():
            if str(k).replace("_", "").lower() in _REDACT_KEYS:
                out[k] = "***"
            else:
                out[k] = redact_for_audit(v)
        return out
    if isinstance(data, list):
        return [redact_for_audit(x) for x in data[:50]]
    if isinstance(data, str) and len(data) > 500:
        return data[:500] + "..."
    return data


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}
    return bool(value)
