from __future__ import annotations

import json
from unittest.mock import patch

from sqlalchemy import select

from db import SessionLocal
from models import Document, HiringManager, HiringManagerNote, HiringManagerTransfer, Job, ScheduledTask, Task
from utils import iso_utc_now


def _create_org(api, token, name="Acme Corp") -> int:
    res = api("ORG_CREATE", {"name": name}, token)
    assert res.status_code == 200, res.get_json()
    return res.get_json()["data"]["organization"]["id"]


def _create_hm(api, token, first, last, org_id) -> int:
    res = api("HM_CREATE", {"firstName": first, "lastName": last, "organizationId": org_id}, token)
    assert res.status_code == 200, res.get_json()
    return res.get_json()["data"]["hiringManager"]["id"]


def _seed_linked_records(api, token, org_id, source_id) -> dict:
    res = api("TASK_CREATE", {"title": "Call back", "hiringManagerId": source_id}, token)
    task_id = res.get_json()["data"]["task"]["id"]
    res = api("HM_NOTE_ADD", {"id": source_id, "text": "Prefers email"}, token)
    note_id = res.get_json()["data"]["note"]["id"]
    res = api("DOCUMENT_CREATE", {"entityType": "hiring_manager", "entityId": source_id, "documentName": "NDA.pdf"}, token)
    doc_id = res.get_json()["data"]["document"]["id"]

    now = iso_utc_now()
    with SessionLocal() as db:
        job = Job(job_title="Engineer", organization_id=org_id, hiring_manager=" Smith, Jane ", created_at=now, updated_at=now)
        other = Job(job_title="Analyst", organization_id=org_id, hiring_manager="Doe, John", created_at=now, updated_at=now)
        db.add_all([job, other])
        db.commit()
        job_ids = (int(job.id), int(other.id))
    return {"task": task_id, "note": note_id, "document": doc_id, "job": job_ids[0], "other_job": job_ids[1]}


def test_transfer_create_validates_ids(api, recruiter):
    _uid, token = recruiter

    res = api("HM_TRANSFER_CREATE", {"source_hiring_manager_id": 1}, token)
    assert res.status_code == 400
    assert res.get_json()["error"]["message"] == "Source and target hiring manager IDs are required"

    res = api("HM_TRANSFER_CREATE", {"source_hiring_manager_id": 3, "target_hiring_manager_id": 3}, token)
    assert res.status_code == 400
    assert res.get_json()["error"]["message"] == "Cannot transfer to the same hiring manager"


def test_transfer_create_requires_login(api):
    res = api("HM_TRANSFER_CREATE", {"source_hiring_manager_id": 1, "target_hiring_manager_id": 2}, None)
    assert res.status_code == 401


def test_transfer_create_sends_request_email_to_payroll(api, recruiter):
    _uid, token = recruiter
    org_id = _create_org(api, token)
    source = _create_hm(api, token, "Jane", "Smith", org_id)
    target = _create_hm(api, token, "Bob", "Jones", org_id)

    with patch("actions.hm_transfer.send_mail") as send:
        res = api("HM_TRANSFER_CREATE", {"source_hiring_manager_id": source, "target_hiring_manager_id": target}, token)

    assert res.status_code == 200, res.get_json()
    transfer = res.get_json()["data"]["transfer"]
    assert transfer["status"] == "pending"
    assert transfer["source_record_number"] == f"HM-{source}"
    assert transfer["requested_by_name"] == "Rita Recruiter"
    assert transfer["requested_by_email"] == "rita@example.com"

    send.assert_called_once()
    kwargs = send.call_args.kwargs
    assert kwargs["to"] == "payroll@example.com"
    assert f"/dashboard/hiring-managers/transfer/{transfer['id']}/approve" in kwargs["html"]
    assert f"/dashboard/hiring-managers/transfer/{transfer['id']}/deny" in kwargs["html"]


def test_transfer_request_email_failure_does_not_fail_request(api, recruiter):
    _uid, token = recruiter
    org_id = _create_org(api, token)
    source = _create_hm(api, token, "Jane", "Smith", org_id)
    target = _create_hm(api, token, "Bob", "Jones", org_id)

    with patch("actions.hm_transfer.send_mail", side_effect=RuntimeError("smtp down")):
        res = api("HM_TRANSFER_CREATE", {"source_hiring_manager_id": source, "target_hiring_manager_id": target}, token)

    assert res.status_code == 200
    with SessionLocal() as db:
        assert db.execute(select(HiringManagerTransfer)).scalars().one().status == "pending"


def test_approve_migrates_records_and_archives_source(api, recruiter, admin):
    _uid, token = recruiter
    _aid, admin_token = admin
    org_id = _create_org(api, token)
    target_org = _create_org(api, token, "Globex")
    source = _create_hm(api, token, "Jane", "Smith", org_id)
    target = _create_hm(api, token, "Bob", "Jones", target_org)
    ids = _seed_linked_records(api, token, org_id, source)

    res = api("HM_TRANSFER_CREATE", {"source_hiring_manager_id": source, "target_hiring_manager_id": target}, token)
    transfer_id = res.get_json()["data"]["transfer"]["id"]

    res = api("HM_TRANSFER_APPROVE", {"id": transfer_id}, admin_token)
    assert res.status_code == 200, res.get_json()
    assert res.get_json()["data"]["transfer"]["status"] == "approved"

    with SessionLocal() as db:
        assert db.get(Task, ids["task"]).hiring_manager_id == target
        assert db.get(HiringManagerNote, ids["note"]).hiring_manager_id == target
        assert db.get(Document, ids["document"]).entity_id == target

        job = db.get(Job, ids["job"])
        assert job.organization_id == target_org
        assert job.hiring_manager == "Jones, Bob"
        assert db.get(Job, ids["other_job"]).hiring_manager == "Doe, John"

        src = db.get(HiringManager, source)
        assert src.status == "Archived"
        assert src.archive_reason == "Transfer"
        assert src.archived_at

        sched = db.execute(select(ScheduledTask)).scalars().all()
        assert len(sched) == 1
        assert sched[0].task_type == "archive_cleanup"
        assert json.loads(sched[0].task_data) == {"hiring_manager_id": source}
        assert sched[0].status == "pending"

        texts = [n.text for n in db.execute(select(HiringManagerNote).where(HiringManagerNote.hiring_manager_id == source)).scalars()]
        assert any(t.startswith("Transfer approved: All data moved to") for t in texts)


def test_second_approval_fails_as_already_processed(api, recruiter, admin):
    _uid, token = recruiter
    _aid, admin_token = admin
    org_id = _create_org(api, token)
    source = _create_hm(api, token, "Jane", "Smith", org_id)
    target = _create_hm(api, token, "Bob", "Jones", org_id)
    res = api("HM_TRANSFER_CREATE", {"source_hiring_manager_id": source, "target_hiring_manager_id": target}, token)
    transfer_id = res.get_json()["data"]["transfer"]["id"]

    assert api("HM_TRANSFER_APPROVE", {"id": transfer_id}, admin_token).status_code == 200

    res = api("HM_TRANSFER_APPROVE", {"id": transfer_id}, admin_token)
    assert res.status_code == 409
    assert "already processed" in res.get_json()["error"]["message"]

    res = api("HM_TRANSFER_DENY", {"id": transfer_id, "denial_reason": "too late"}, admin_token)
    assert res.status_code == 409
    assert "already processed" in res.get_json()["error"]["message"]

    with SessionLocal() as db:
        assert len(db.execute(select(ScheduledTask)).scalars().all()) == 1


def test_failed_migration_keeps_approval_and_undoes_moves(api, recruiter, admin):
    _uid, token = recruiter
    _aid, admin_token = admin
    org_id = _create_org(api, token)
    source = _create_hm(api, token, "Jane", "Smith", org_id)
    target = _create_hm(api, token, "Bob", "Jones", org_id)
    ids = _seed_linked_records(api, token, org_id, source)
    res = api("HM_TRANSFER_CREATE", {"source_hiring_manager_id": source, "target_hiring_manager_id": target}, token)
    transfer_id = res.get_json()["data"]["transfer"]["id"]

    with patch("actions.hm_transfer.add_hm_note", side_effect=RuntimeError("boom")):
        res = api("HM_TRANSFER_APPROVE", {"id": transfer_id}, admin_token)
    assert res.status_code == 500

    with SessionLocal() as db:
        transfer = db.get(HiringManagerTransfer, transfer_id)
        assert transfer.status == "approved"
        assert transfer.approved_at
        assert db.get(Task, ids["task"]).hiring_manager_id == source
        assert db.get(HiringManagerNote, ids["note"]).hiring_manager_id == source
        assert db.get(Job, ids["job"]).organization_id == org_id
        assert db.get(HiringManager, source).status == "Active"
        assert db.execute(select(ScheduledTask)).scalars().all() == []

    res = api("HM_TRANSFER_APPROVE", {"id": transfer_id}, admin_token)
    assert res.status_code == 409


def test_deny_requires_reason_and_adds_notes(api, recruiter, admin):
    _uid, token = recruiter
    _aid, admin_token = admin
    org_id = _create_org(api, token)
    source = _create_hm(api, token, "Jane", "Smith", org_id)
    target = _create_hm(api, token, "Bob", "Jones", org_id)
    res = api("HM_TRANSFER_CREATE", {"source_hiring_manager_id": source, "target_hiring_manager_id": target}, token)
    transfer_id = res.get_json()["data"]["transfer"]["id"]

    res = api("HM_TRANSFER_DENY", {"id": transfer_id, "denial_reason": "   "}, admin_token)
    assert res.status_code == 400
    assert res.get_json()["error"]["message"] == "Denial reason is required"

    with patch("actions.hm_transfer.send_mail") as send:
        res = api("HM_TRANSFER_DENY", {"id": transfer_id, "denial_reason": "Wrong target"}, admin_token)
    assert res.status_code == 200, res.get_json()
    transfer = res.get_json()["data"]["transfer"]
    assert transfer["status"] == "denied"
    assert transfer["denial_reason"] == "Wrong target"
    send.assert_called_once()
    assert send.call_args.kwargs["to"] == "rita@example.com"

    with SessionLocal() as db:
        for hm_id in (source, target):
            texts = [n.text for n in db.execute(select(HiringManagerNote).where(HiringManagerNote.hiring_manager_id == hm_id)).scalars()]
            assert "Transfer denied: Wrong target" in texts
        assert db.get(HiringManager, source).status == "Active"


def test_transfer_get_and_missing(api, recruiter):
    _uid, token = recruiter
    org_id = _create_org(api, token)
    source = _create_hm(api, token, "Jane", "Smith", org_id)
    target = _create_hm(api, token, "Bob", "Jones", org_id)
    res = api("HM_TRANSFER_CREATE", {"source_hiring_manager_id": source, "target_hiring_manager_id": target}, token)
    transfer_id = res.get_json()["data"]["transfer"]["id"]

    res = api("HM_TRANSFER_GET", {"id": transfer_id}, token)
    transfer = res.get_json()["data"]["transfer"]
    assert transfer["source_hm_name"] == "Smith, Jane"
    assert transfer["target_hm_name"] == "Jones, Bob"
    assert transfer["source_organization_id"] == org_id

    assert api("HM_TRANSFER_GET", {"id": 9999}, token).status_code == 404
    assert api("HM_TRANSFER_APPROVE", {"id": 9999}, token).status_code == 404


def test_rest_transfer_routes(app_client, recruiter, admin, api):
    _app, client = app_client
    _uid, token = recruiter
    _aid, admin_token = admin
    org_id = _create_org(api, token)
    source = _create_hm(api, token, "Jane", "Smith", org_id)
    target = _create_hm(api, token, "Bob", "Jones", org_id)

    res = client.post(
        "/api/hiring-managers/transfer",
        json={"sourceHiringManagerId": source, "targetHiringManagerId": target},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert res.status_code == 201
    transfer_id = res.get_json()["data"]["transfer"]["id"]

    res = client.get(f"/api/hiring-managers/transfer/{transfer_id}", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 200

    res = client.post(f"/api/hiring-managers/transfer/{transfer_id}/approve", headers={"Authorization": f"Bearer {admin_token}"})
    assert res.status_code == 200
    assert res.headers.get("X-Request-ID")
