from __future__ import annotations

from sqlalchemy import func, or_, select

from actions.helpers import actor_id, append_audit, entity_out, flush_or_map, require_id, require_login
from auth import issue_session_token, revoke_session_token, revoke_user_sessions
from models import Office, Team, TeamMember, User
from passwords import hash_password, verify_password
from utils import ROLES, ApiError, AuthContext, has_any, iso_utc_now, normalize_role, pick, to_int_or_none


def _user_out(user: User, **extra) -> dict:
    out = entity_out(user, **extra)
    out.pop("password_hash", None)
    return out


def _find_by_email(db, email: str):
    e = str(email or "").strip().lower()
    if not e:
        return None
    return db.execute(select(User).where(func.lower(User.email) == e)).scalars().first()


def _user_query():
    return (
        select(User, Office.name.label("office_name"), Team.name.label("team_name"))
        .outerjoin(Office, Office.id == User.office_id)
        .outerjoin(Team, Team.id == User.team_id)
    )


def _role_or_error(value) -> str:
    role = normalize_role(value) or "recruiter"
    if role not in ROLES:
        raise ApiError("BAD_REQUEST", f"Invalid role: {role}")
    return role


def login(data, auth: AuthContext | None, db, cfg):
    email = str(pick(data, "email", default="") or "").strip().lower()
    password = str(pick(data, "password", default="") or "")
    if not email or not password:
        raise ApiError("BAD_REQUEST", "Email and password are required")

    user = _find_by_email(db, email)
    # Same message for unknown email and wrong password.
    if not user or not verify_password(password, user.password_hash):
        raise ApiError("AUTH_INVALID", "Invalid email or password")
    if not bool(user.status):
        raise ApiError("FORBIDDEN", "Your account has been deactivated")

    ses = issue_session_token(db, user=user, session_ttl_minutes=cfg.SESSION_TTL_MINUTES)
    user.last_login_at = iso_utc_now()

    append_audit(
        db,
        entityType="AUTH",
        entityId=user.id,
        action="LOGIN",
        stageTag="AUTH_LOGIN",
        actor=AuthContext(valid=True, userId=user.id, email=user.email, role=normalize_role(user.role), expiresAt=ses["expiresAt"]),
    )
    return {
        "sessionToken": ses["sessionToken"],
        "expiresAt": ses["expiresAt"],
        "me": {"userId": int(user.id), "email": user.email, "name": user.name or "", "role": normalize_role(user.role)},
    }


def logout(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    revoked = revoke_session_token(db, str(pick(data, "sessionToken", default="") or ""), revoked_by=str(auth.userId))
    return {"loggedOut": True, "revoked": revoked}


def get_me(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    row = db.execute(_user_query().where(User.id == actor_id(auth))).first()
    if not row:
        raise ApiError("AUTH_INVALID", "User missing")
    return {"me": _user_out(row[0], office_name=row.office_name or "", team_name=row.team_name or "")}


def user_create(data, auth: AuthContext | None, db, cfg):
    name = str(pick(data, "name", default="") or "").strip()
    email = str(pick(data, "email", default="") or "").strip().lower()
    if not name or not email:
        raise ApiError("BAD_REQUEST", "Name and email are required")
    if _find_by_email(db, email):
        raise ApiError("CONFLICT", "User with this email already exists")

    now = iso_utc_now()
    user = User(
        name=name,
        email=email,
        password_hash=hash_password(pick(data, "password", default="")),
        role=_role_or_error(pick(data, "role", "userType", "user_type")),
        status=True,
        phone=str(pick(data, "phone", default="") or ""),
        office_id=to_int_or_none(pick(data, "officeId", "office_id")),
        team_id=to_int_or_none(pick(data, "teamId", "team_id")),
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    flush_or_map(db, on_fk=("BAD_REQUEST", "Office or team not found", 400))

    if user.team_id is not None:
        db.add(TeamMember(team_id=user.team_id, user_id=user.id, role="member", created_at=now))
        db.flush()

    append_audit(db, entityType="USER", entityId=user.id, action="USER_CREATE", actor=auth, at=now, meta={"role": user.role})
    return {"user": _user_out(user)}


def user_list(data, auth: AuthContext | None, db, cfg):
    rows = db.execute(_user_query().where(User.status.is_(True)).order_by(User.name.asc())).all()
    return {"users": [_user_out(r[0], office_name=r.office_name or "", team_name=r.team_name or "") for r in rows]}


def user_get(data, auth: AuthContext | None, db, cfg):
    user_id = require_id(data, "id", "userId", label="user id")
    row = db.execute(_user_query().where(User.id == user_id)).first()
    if not row:
        raise ApiError("NOT_FOUND", "User not found")
    return {"user": _user_out(row[0], office_name=row.office_name or "", team_name=row.team_name or "")}


def user_update_profile(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    user = db.get(User, actor_id(auth))
    if not user:
        raise ApiError("NOT_FOUND", "User not found")

    if has_any(data, "email"):
        email = str(pick(data, "email", default="") or "").strip().lower()
        if not email:
            raise ApiError("BAD_REQUEST", "Email is required")
        other = _find_by_email(db, email)
        if other and int(other.id) != int(user.id):
            raise ApiError("CONFLICT", "Email is already in use")
        user.email = email
    if has_any(data, "name"):
        name = str(pick(data, "name", default="") or "").strip()
        if not name:
            raise ApiError("BAD_REQUEST", "Name is required")
        user.name = name
    if has_any(data, "phone"):
        user.phone = str(pick(data, "phone", default="") or "")

    user.updated_at = iso_utc_now()
    db.flush()
    append_audit(db, entityType="USER", entityId=user.id, action="USER_UPDATE_PROFILE", actor=auth)
    return {"user": _user_out(user)}


def user_update_password(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    current = str(pick(data, "currentPassword", "current_password", default="") or "")
    new = str(pick(data, "newPassword", "new_password", default="") or "")
    if not current or not new:
        raise ApiError("BAD_REQUEST", "Current password and new password are required")

    user = db.get(User, actor_id(auth))
    if not user:
        raise ApiError("NOT_FOUND", "User not found")
    if not verify_password(current, user.password_hash):
        raise ApiError("AUTH_INVALID", "Current password is incorrect")

    user.password_hash = hash_password(new)
    user.updated_at = iso_utc_now()
    revoked = revoke_user_sessions(db, user_id=int(user.id), revoked_by="PASSWORD_CHANGE")
    append_audit(db, entityType="USER", entityId=user.id, action="USER_UPDATE_PASSWORD", actor=auth, meta={"revokedSessions": revoked})
    return {"message": "Password updated successfully", "revokedSessions": revoked}


def user_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    user_id = require_id(data, "id", "userId", label="user id")
    if user_id == actor_id(auth):
        raise ApiError("BAD_REQUEST", "You cannot deactivate your own account")
    user = db.get(User, user_id)
    if not user or not user.status:
        raise ApiError("NOT_FOUND", "User not found")

    user.status = False
    user.updated_at = iso_utc_now()
    revoked = revoke_user_sessions(db, user_id=user_id, revoked_by=str(auth.userId))
    append_audit(db, entityType="USER", entityId=user_id, action="USER_DELETE", actor=auth, meta={"revokedSessions": revoked})
    return {"deleted": True, "id": user_id}


def user_search(data, auth: AuthContext | None, db, cfg):
    term = str(pick(data, "q", "query", "search", default="") or "").strip().lower()
    q = _user_query().where(User.status.is_(True))
    if term:
        like = f"%{term}%"
        q = q.where(or_(func.lower(User.name).like(like), func.lower(User.email).like(like)))
    limit = max(1, min(100, to_int_or_none(pick(data, "limit")) or 20))
    rows = db.execute(q.order_by(User.name.asc()).limit(limit)).all()
    return {"users": [_user_out(r[0], office_name=r.office_name or "", team_name=r.team_name or "") for r in rows]}


def user_stats(data, auth: AuthContext | None, db, cfg):
    by_role = dict(
        db.execute(select(User.role, func.count(User.id)).where(User.status.is_(True)).group_by(User.role)).all()
    )
    active = db.execute(select(func.count(User.id)).where(User.status.is_(True))).scalar_one()
    inactive = db.execute(select(func.count(User.id)).where(User.status.is_(False))).scalar_one()
    return {
        "stats": {
            "total_users": int(active or 0) + int(inactive or 0),
            "active_users": int(active or 0),
            "inactive_users": int(inactive or 0),
            "by_role": {normalize_role(k): int(v or 0) for k, v in by_role.items()},
        }
    }
