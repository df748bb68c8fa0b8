from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select

from models import Session as DbSession, User
from utils import ApiError, AuthContext, iso_utc_now, new_uuid, normalize_role, parse_datetime_maybe, sha256_hex, to_iso_utc


PUBLIC_ACTIONS = {"LOGIN"}

STAFF = ["recruiter", "developer", "admin", "owner"]
ADMINS = ["admin", "owner"]
ANY_ROLE = ["candidate"] + STAFF


STATIC_RBAC_PERMISSIONS: dict[str, list[str]] = {
    "LOGIN": ["PUBLIC"],
    "LOGOUT": ANY_ROLE,
    "GET_ME": ANY_ROLE,
    # Users
    "USER_CREATE": ADMINS,
    "USER_LIST": STAFF,
    "USER_GET": STAFF,
    "USER_SEARCH": STAFF,
    "USER_STATS": ADMINS,
    "USER_UPDATE_PROFILE": ANY_ROLE,
    "USER_UPDATE_PASSWORD": ANY_ROLE,
    "USER_DELETE": ADMINS,
    # Offices / teams
    "OFFICE_CREATE": ADMINS,
    "OFFICE_LIST": STAFF,
    "TEAM_CREATE": ADMINS,
    "TEAM_LIST": STAFF,
    "TEAM_GET": STAFF,
    "TEAM_UPDATE": ADMINS,
    "TEAM_DELETE": ADMINS,
    "TEAM_MEMBER_ADD": ADMINS,
    "TEAM_MEMBER_REMOVE": ADMINS,
    # Organizations
    "ORG_CREATE": STAFF,
    "ORG_LIST": STAFF,
    "ORG_GET": STAFF,
    "ORG_UPDATE": STAFF,
    "ORG_DELETE": STAFF,
    "ORG_NOTE_ADD": STAFF,
    "ORG_NOTES_LIST": STAFF,
    "ORG_HISTORY_LIST": STAFF,
    "ORG_DOCUMENTS_LIST": STAFF,
    # Hiring managers
    "HM_CREATE": STAFF,
    "HM_LIST": STAFF,
    "HM_GET": STAFF,
    "HM_UPDATE": STAFF,
    "HM_NOTE_ADD": STAFF,
    "HM_NOTES_LIST": STAFF,
    "HM_HISTORY_LIST": STAFF,
    # Hiring manager transfers
    "HM_TRANSFER_CREATE": STAFF,
    "HM_TRANSFER_GET": STAFF,
    "HM_TRANSFER_APPROVE": STAFF,
    "HM_TRANSFER_DENY": STAFF,
    # Tasks
    "TASK_CREATE": STAFF,
    "TASK_LIST": STAFF,
    "TASK_GET": STAFF,
    "TASK_UPDATE": STAFF,
    "TASK_DELETE": STAFF,
    "TASK_BULK_UPDATE": STAFF,
    "TASK_COMPLETE": STAFF,
    "TASK_INCOMPLETE": STAFF,
    "TASK_NOTE_ADD": STAFF,
    "TASK_NOTES_LIST": STAFF,
    "TASK_HISTORY_LIST": STAFF,
    "TASK_STATS": STAFF,
    "TASK_REMINDERS_DIAGNOSE": ADMINS,
    "TASK_REMINDERS_RUN": ADMINS,
    # Documents
    "DOCUMENT_CREATE": STAFF,
    "DOCUMENT_LIST": STAFF,
    "DOCUMENT_GET": STAFF,
    "DOCUMENT_UPDATE": STAFF,
    "DOCUMENT_DELETE": STAFF,
    # Email templates
    "EMAIL_TEMPLATE_LIST": STAFF,
    "EMAIL_TEMPLATE_GET": STAFF,
    "EMAIL_TEMPLATE_UPSERT": ADMINS,
    "EMAIL_TEMPLATE_DELETE": ADMINS,
    # Maintenance
    "ARCHIVE_CLEANUP_RUN": ADMINS,
}


def is_public_action(action: str) -> bool:
    return str(action or "").upper() in PUBLIC_ACTIONS


def _invalid() -> AuthContext:
    return AuthContext(valid=False, userId=None, email="", role="", expiresAt="")


def system_auth() -> AuthContext:
    """Context for scheduler/cron invocations; acts as an admin with no user row."""
    return AuthContext(valid=True, userId=None, email="SYSTEM", role="admin", expiresAt="")


def issue_session_token(db, *, user: User, session_ttl_minutes: int) -> dict[str, str]:
    token = "ST-" + new_uuid().replace("-", "") + new_uuid().replace("-", "")
    now = datetime.now(timezone.utc)
    issued_at = to_iso_utc(now)
    expires_at = to_iso_utc(now + timedelta(minutes=session_ttl_minutes))

    db.add(
        DbSession(
            sessionId="SES-" + new_uuid(),
            tokenHash=sha256_hex(token),
            tokenPrefix=token[:12],
            userId=int(user.id),
            email=str(user.email or ""),
            role=normalize_role(user.role),
            issuedAt=issued_at,
            expiresAt=expires_at,
            lastSeenAt=issued_at,
            revokedAt="",
            revokedBy="",
        )
    )
    return {"sessionToken": token, "expiresAt": expires_at}


def revoke_session_token(db, token: str, *, revoked_by: str) -> bool:
    if not token:
        return False
    ses = db.execute(select(DbSession).where(DbSession.tokenHash == sha256_hex(token))).scalar_one_or_none()
    if not ses or ses.revokedAt:
        return False
    ses.revokedAt = iso_utc_now()
    ses.revokedBy = str(revoked_by or "")
    return True


def revoke_user_sessions(db, *, user_id: int, revoked_by: str) -> int:
    """Revoke every active session of a user (deactivation, password change)."""
    rows = (
        db.execute(select(DbSession).where(DbSession.userId == int(user_id)).where(DbSession.revokedAt == ""))
        .scalars()
        .all()
    )
    now = iso_utc_now()
    for s in rows:
        s.revokedAt = now
        s.revokedBy = str(revoked_by or "")
    return len(rows)


def validate_session_token(db, token: Any) -> AuthContext:
    if not token or not isinstance(token, str):
        return _invalid()

    ses = db.execute(select(DbSession).where(DbSession.tokenHash == sha256_hex(token))).scalar_one_or_none()
    if not ses or ses.revokedAt:
        return _invalid()

    exp_dt = parse_datetime_maybe(ses.expiresAt)
    if exp_dt and exp_dt < datetime.now(timezone.utc):
        return _invalid()

    usr = db.get(User, int(ses.userId))
    if not usr:
        return _invalid()
    if not bool(usr.status):
        raise ApiError("FORBIDDEN", "Your account has been deactivated")

    # Avoid writing on every request: update lastSeenAt at most once per interval.
    try:
        interval_s = int(str(os.getenv("SESSION_LAST_SEEN_UPDATE_SECONDS", "300") or "300"))
    except Exception:
        interval_s = 300
    last_dt = parse_datetime_maybe(ses.lastSeenAt)
    if interval_s <= 0 or not last_dt or (datetime.now(timezone.utc) - last_dt).total_seconds() >= interval_s:
        ses.lastSeenAt = iso_utc_now()

    return AuthContext(
        valid=True,
        userId=int(usr.id),
        email=str(usr.email or ""),
        role=normalize_role(usr.role),
        expiresAt=str(ses.expiresAt or ""),
    )


def assert_permission(role: str, action: str) -> None:
    role_l = normalize_role(role)
    action_u = str(action or "").upper().strip()

    if is_public_action(action_u):
        return

    allowed = STATIC_RBAC_PERMISSIONS.get(action_u)
    if not allowed:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")
    if not role_l or role_l == "public":
        raise ApiError("AUTH_INVALID", "Login required")
    if role_l not in allowed:
        raise ApiError("FORBIDDEN", "Access denied. Insufficient permissions.")


def role_or_public(auth: Optional[AuthContext]) -> str:
    if not auth or not auth.valid:
        return "PUBLIC"
    return normalize_role(auth.role) or "PUBLIC"
