from __future__ import annotations

import pytest

from passwords import validate_password_policy
from utils import ApiError

from conftest import PASSWORD


def test_password_policy():
    assert validate_password_policy(PASSWORD) == PASSWORD
    for weak in ["", "short1!", "alllowercase1!", "NoDigitsHere!", "NoSpecial123"]:
        with pytest.raises(ApiError):
            validate_password_policy(weak)


def test_login_and_me(api, seed_user):
    uid = seed_user("Rita@Example.com", name="Rita")

    res = api("LOGIN", {"email": "rita@example.com", "password": PASSWORD})
    assert res.status_code == 200
    body = res.get_json()["data"]
    assert body["me"] == {"userId": uid, "email": "Rita@Example.com", "name": "Rita", "role": "recruiter"}

    me = api("GET_ME", {}, body["sessionToken"]).get_json()["data"]["me"]
    assert me["id"] == uid
    assert me["last_login_at"]
    assert "password_hash" not in me


def test_login_failures(api, seed_user):
    seed_user("rita@example.com")
    seed_user("gone@example.com", status=False)

    res = api("LOGIN", {"email": "rita@example.com"})
    assert res.status_code == 400

    res = api("LOGIN", {"email": "rita@example.com", "password": "Wrong!Passw0rd"})
    assert res.status_code == 401
    assert res.get_json()["error"]["message"] == "Invalid email or password"

    res = api("LOGIN", {"email": "nobody@example.com", "password": PASSWORD})
    assert res.get_json()["error"]["message"] == "Invalid email or password"

    res = api("LOGIN", {"email": "gone@example.com", "password": PASSWORD})
    assert res.status_code == 403
    assert res.get_json()["error"]["message"] == "Your account has been deactivated"


def test_logout_revokes_token(api, recruiter):
    _uid, token = recruiter
    res = api("LOGOUT", {}, token)
    assert res.get_json()["data"]["revoked"] is True
    assert api("GET_ME", {}, token).status_code == 401


def test_user_create_is_admin_only_and_rejects_duplicates(api, recruiter, admin):
    _uid, token = recruiter
    _aid, admin_token = admin
    payload = {"name": "Newbie", "email": "new@example.com", "password": PASSWORD, "role": "developer"}

    assert api("USER_CREATE", payload, token).status_code == 403

    res = api("USER_CREATE", payload, admin_token)
    assert res.status_code == 200
    user = res.get_json()["data"]["user"]
    assert user["role"] == "developer"
    assert "password_hash" not in user

    res = api("USER_CREATE", {**payload, "email": "NEW@example.com"}, admin_token)
    assert res.status_code == 409
    assert res.get_json()["error"]["message"] == "User with this email already exists"

    assert api("USER_CREATE", {**payload, "email": "weak@example.com", "password": "weak"}, admin_token).status_code == 400
    assert api("USER_CREATE", {**payload, "email": "role@example.com", "role": "wizard"}, admin_token).status_code == 400


def test_password_change_revokes_all_sessions(api, recruiter, login):
    _uid, token = recruiter
    second = login("rita@example.com")

    res = api("USER_UPDATE_PASSWORD", {"currentPassword": "Nope!Passw0rd", "newPassword": "N3w!Password"}, token)
    assert res.status_code == 401
    assert res.get_json()["error"]["message"] == "Current password is incorrect"

    res = api("USER_UPDATE_PASSWORD", {"currentPassword": PASSWORD, "newPassword": "N3w!Password"}, token)
    assert res.status_code == 200
    assert res.get_json()["data"]["revokedSessions"] == 2

    assert api("GET_ME", {}, second).status_code == 401
    assert login("rita@example.com", "N3w!Password")


def test_profile_update_rejects_taken_email(api, recruiter, seed_user):
    _uid, token = recruiter
    seed_user("taken@example.com")

    res = api("USER_UPDATE_PROFILE", {"email": "taken@example.com"}, token)
    assert res.status_code == 409

    res = api("USER_UPDATE_PROFILE", {"name": "Rita R.", "phone": "555-0100"}, token)
    user = res.get_json()["data"]["user"]
    assert user["name"] == "Rita R."
    assert user["phone"] == "555-0100"


def test_user_delete_deactivates_and_revokes(api, recruiter, admin):
    uid, token = recruiter
    aid, admin_token = admin

    assert api("USER_DELETE", {"id": aid}, admin_token).status_code == 400

    res = api("USER_DELETE", {"id": uid}, admin_token)
    assert res.status_code == 200
    assert api("GET_ME", {}, token).status_code == 401
    res = api("LOGIN", {"email": "rita@example.com", "password": PASSWORD})
    assert res.status_code == 403
    assert api("USER_DELETE", {"id": uid}, admin_token).status_code == 404

    stats = api("USER_STATS", {}, admin_token).get_json()["data"]["stats"]
    assert stats["total_users"] == 2
    assert stats["active_users"] == 1
    assert stats["inactive_users"] == 1
    assert stats["by_role"] == {"admin": 1}


def test_user_search(api, recruiter, seed_user):
    _uid, token = recruiter
    seed_user("sam@example.com", name="Samira Khan")
    seed_user("max@example.com", name="Max Power")

    users = api("USER_SEARCH", {"q": "KHAN"}, token).get_json()["data"]["users"]
    assert [u["email"] for u in users] == ["sam@example.com"]

    users = api("USER_SEARCH", {"q": "example.com", "limit": 2}, token).get_json()["data"]["users"]
    assert len(users) == 2


def test_offices_teams_and_members(api, recruiter, admin):
    uid, token = recruiter
    _aid, admin_token = admin

    office = api("OFFICE_CREATE", {"buildingName": "HQ"}, admin_token).get_json()["data"]["office"]
    assert [o["name"] for o in api("OFFICE_LIST", {}, token).get_json()["data"]["offices"]] == ["HQ"]

    assert api("TEAM_CREATE", {"name": "Sales"}, token).status_code == 403
    assert api("TEAM_CREATE", {"name": ""}, admin_token).status_code == 400
    assert api("TEAM_CREATE", {"name": "Ghost", "officeId": 999}, admin_token).status_code == 400

    team = api("TEAM_CREATE", {"name": "Sales", "officeId": office["id"]}, admin_token).get_json()["data"]["team"]
    teams = api("TEAM_LIST", {}, token).get_json()["data"]["teams"]
    assert teams[0]["office_name"] == "HQ"

    assert api("TEAM_MEMBER_ADD", {"id": team["id"], "userId": 999}, admin_token).status_code == 404
    api("TEAM_MEMBER_ADD", {"id": team["id"], "userId": uid}, admin_token)
    res = api("TEAM_MEMBER_ADD", {"id": team["id"], "userId": uid, "role": "lead"}, admin_token)
    assert res.get_json()["data"]["member"]["role"] == "lead"

    detail = api("TEAM_GET", {"id": team["id"]}, token).get_json()["data"]
    assert [(m["user_email"], m["role"]) for m in detail["members"]] == [("rita@example.com", "lead")]

    res = api("TEAM_UPDATE", {"id": team["id"], "description": "Outbound"}, admin_token)
    assert res.get_json()["data"]["team"]["description"] == "Outbound"
    assert res.get_json()["data"]["team"]["name"] == "Sales"

    res = api("TEAM_MEMBER_REMOVE", {"id": team["id"], "userId": uid}, admin_token)
    assert res.get_json()["data"] == {"removed": True, "teamId": team["id"], "userId": uid}

    assert api("TEAM_DELETE", {"id": team["id"]}, admin_token).status_code == 200
    assert api("TEAM_GET", {"id": team["id"]}, token).status_code == 404
    assert api("TEAM_LIST", {}, token).get_json()["data"]["teams"] == []


def test_unknown_action_and_missing_session(api, recruiter):
    _uid, token = recruiter
    res = api("NOT_A_THING", {}, token)
    assert res.status_code == 400
    assert res.get_json()["error"]["message"] == "Unknown action: NOT_A_THING"

    assert api("USER_LIST", {}, None).status_code == 401
    assert api("USER_LIST", {}, "ST-bogus").status_code == 401


def test_user_get_hides_password_hash(api, recruiter):
    uid, token = recruiter

    user = api("USER_GET", {"id": uid}, token).get_json()["data"]["user"]
    assert user["email"] == "rita@example.com"
    assert user["team_name"] == ""
    assert "password_hash" not in user

    res = api("USER_GET", {"id": 9999}, token)
    assert res.status_code == 404
    assert res.get_json()["error"]["message"] == "User not found"
