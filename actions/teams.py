from __future__ import annotations

from sqlalchemy import delete, select

from actions.helpers import append_audit, entity_out, flush_or_map, require_id
from models import Office, Team, TeamMember, User
from utils import ApiError, AuthContext, has_any, iso_utc_now, pick, to_int_or_none


def _members(db, team_id: int) -> list[dict]:
    rows = db.execute(
        select(TeamMember, User.name.label("user_name"), User.email.label("user_email"))
        .join(User, User.id == TeamMember.user_id)
        .where(TeamMember.team_id == int(team_id))
        .where(User.status.is_(True))
        .order_by(User.name.asc())
    ).all()
    return [entity_out(r[0], user_name=r.user_name or "", user_email=r.user_email or "") for r in rows]


def _active_team(db, team_id: int) -> Team:
    team = db.get(Team, int(team_id))
    if not team or not team.status:
        raise ApiError("NOT_FOUND", "Team not found")
    return team


def office_create(data, auth: AuthContext | None, db, cfg):
    name = str(pick(data, "name", "buildingName", "building_name", default="") or "").strip()
    if not name:
        raise ApiError("BAD_REQUEST", "Office name is required")
    now = iso_utc_now()
    office = Office(name=name, address=str(pick(data, "address", default="") or ""), status=True, created_at=now, updated_at=now)
    db.add(office)
    db.flush()
    append_audit(db, entityType="OFFICE", entityId=office.id, action="OFFICE_CREATE", actor=auth, at=now)
    return {"office": entity_out(office)}


def office_list(data, auth: AuthContext | None, db, cfg):
    rows = db.execute(select(Office).where(Office.status.is_(True)).order_by(Office.name.asc())).scalars().all()
    return {"offices": [entity_out(o) for o in rows]}


def team_create(data, auth: AuthContext | None, db, cfg):
    name = str(pick(data, "name", default="") or "").strip()
    if not name:
        raise ApiError("BAD_REQUEST", "Team name is required")
    now = iso_utc_now()
    team = Team(
        name=name,
        office_id=to_int_or_none(pick(data, "officeId", "office_id")),
        description=str(pick(data, "description", default="") or ""),
        status=True,
        created_at=now,
        updated_at=now,
    )
    db.add(team)
    flush_or_map(db, on_fk=("BAD_REQUEST", "Office not found", 400))
    append_audit(db, entityType="TEAM", entityId=team.id, action="TEAM_CREATE", actor=auth, at=now)
    return {"team": entity_out(team)}


def team_list(data, auth: AuthContext | None, db, cfg):
    rows = db.execute(
        select(Team, Office.name.label("office_name"))
        .outerjoin(Office, Office.id == Team.office_id)
        .where(Team.status.is_(True))
        .order_by(Team.name.asc())
    ).all()
    return {"teams": [entity_out(r[0], office_name=r.office_name or "") for r in rows]}


def team_get(data, auth: AuthContext | None, db, cfg):
    team_id = require_id(data, "id", "teamId", label="team id")
    team = _active_team(db, team_id)
    return {"team": entity_out(team), "members": _members(db, team_id)}


def team_update(data, auth: AuthContext | None, db, cfg):
    team_id = require_id(data, "id", "teamId", label="team id")
    team = _active_team(db, team_id)

    # Only fields present in the request change.
    name = pick(data, "name")
    if name is not None:
        if not str(name).strip():
            raise ApiError("BAD_REQUEST", "Team name is required")
        team.name = str(name).strip()
    if has_any(data, "officeId", "office_id") and pick(data, "officeId", "office_id") is not None:
        team.office_id = to_int_or_none(pick(data, "officeId", "office_id"))
    if pick(data, "description") is not None:
        team.description = str(pick(data, "description"))
    team.updated_at = iso_utc_now()
    flush_or_map(db, on_fk=("BAD_REQUEST", "Office not found", 400))
    append_audit(db, entityType="TEAM", entityId=team_id, action="TEAM_UPDATE", actor=auth)
    return {"team": entity_out(team)}


def team_delete(data, auth: AuthContext | None, db, cfg):
    team_id = require_id(data, "id", "teamId", label="team id")
    team = _active_team(db, team_id)
    db.execute(delete(TeamMember).where(TeamMember.team_id == team_id))
    team.status = False
    team.updated_at = iso_utc_now()
    append_audit(db, entityType="TEAM", entityId=team_id, action="TEAM_DELETE", actor=auth)
    return {"deleted": True, "id": team_id}


def team_member_add(data, auth: AuthContext | None, db, cfg):
    team_id = require_id(data, "id", "teamId", label="team id")
    user_id = require_id(data, "userId", "user_id", label="user id")
    role = str(pick(data, "role", default="member") or "member").strip() or "member"
    _active_team(db, team_id)
    if not db.get(User, user_id):
        raise ApiError("NOT_FOUND", "User not found")

    member = db.execute(
        select(TeamMember).where(TeamMember.team_id == team_id).where(TeamMember.user_id == user_id)
    ).scalar_one_or_none()
    if member:
        member.role = role
    else:
        member = TeamMember(team_id=team_id, user_id=user_id, role=role, created_at=iso_utc_now())
        db.add(member)
    db.flush()
    append_audit(db, entityType="TEAM", entityId=team_id, action="TEAM_MEMBER_ADD", actor=auth, meta={"userId": user_id, "role": role})
    return {"member": entity_out(member)}


def team_member_remove(data, auth: AuthContext | None, db, cfg):
    team_id = require_id(data, "id", "teamId", label="team id")
    user_id = require_id(data, "userId", "user_id", label="user id")
    res = db.execute(delete(TeamMember).where(TeamMember.team_id == team_id).where(TeamMember.user_id == user_id))
    append_audit(db, entityType="TEAM", entityId=team_id, action="TEAM_MEMBER_REMOVE", actor=auth, meta={"userId": user_id})
    return {"removed": bool(res.rowcount), "teamId": team_id, "userId": user_id}
