from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from db import SessionLocal
from models import Document, HiringManager, HiringManagerNote, Job, Organization, OrganizationNote, ScheduledTask, Task
from services.archive_cleanup import run_archive_cleanup, schedule_archive_cleanup
from utils import iso_utc_now, to_iso_utc


NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _archived(days_ago: int) -> str:
    return to_iso_utc(NOW - timedelta(days=days_ago))


def _seed(db):
    now = iso_utc_now()
    old_org = Organization(name="Old Co", status="Archived", archived_at=_archived(10), created_at=now, updated_at=now)
    fresh_org = Organization(name="Fresh Co", status="Archived", archived_at=_archived(2), created_at=now, updated_at=now)
    live_org = Organization(name="Live Co", status="Active", created_at=now, updated_at=now)
    db.add_all([old_org, fresh_org, live_org])
    db.flush()

    org_hm = HiringManager(first_name="Ann", last_name="Old", organization_id=old_org.id, created_at=now, updated_at=now)
    old_hm = HiringManager(first_name="Jane", last_name="Smith", status="Archived", archived_at=_archived(8), organization_id=live_org.id, created_at=now, updated_at=now)
    db.add_all([org_hm, old_hm])
    db.flush()

    job = Job(job_title="Engineer", organization_id=old_org.id, created_at=now, updated_at=now)
    db.add(job)
    db.flush()

    task = Task(title="Follow up", hiring_manager_id=old_hm.id, job_id=job.id, created_at=now, updated_at=now)
    db.add_all(
        [
            task,
            OrganizationNote(organization_id=old_org.id, text="old", created_at=now),
            HiringManagerNote(hiring_manager_id=old_hm.id, text="old", created_at=now),
            Document(entity_type="organization", entity_id=old_org.id, document_name="a.pdf", created_at=now, updated_at=now),
            Document(entity_type="hiring_manager", entity_id=old_hm.id, document_name="b.pdf", created_at=now, updated_at=now),
        ]
    )
    schedule_archive_cleanup(db, payload={"organization_id": int(old_org.id)}, days=7, now=NOW - timedelta(days=10))
    schedule_archive_cleanup(db, payload={"hiring_manager_id": int(old_hm.id)}, days=7, now=NOW - timedelta(days=8))
    db.commit()
    return {
        "old_org": int(old_org.id),
        "fresh_org": int(fresh_org.id),
        "live_org": int(live_org.id),
        "org_hm": int(org_hm.id),
        "old_hm": int(old_hm.id),
        "job": int(job.id),
        "task": int(task.id),
    }


def test_cleanup_purges_only_records_past_retention(app_client):
    with SessionLocal() as db:
        ids = _seed(db)

    with SessionLocal() as db:
        out = run_archive_cleanup(db, now=NOW, retention_days=7)
        db.commit()

    assert out == {"organizations": 1, "hiringManagers": 1}

    with SessionLocal() as db:
        assert db.get(Organization, ids["old_org"]) is None
        assert db.get(Organization, ids["fresh_org"]) is not None
        assert db.get(Organization, ids["live_org"]) is not None
        assert db.get(HiringManager, ids["org_hm"]) is None
        assert db.get(HiringManager, ids["old_hm"]) is None
        assert db.get(Job, ids["job"]) is None

        task = db.get(Task, ids["task"])
        assert task is not None
        assert task.hiring_manager_id is None
        assert task.job_id is None

        assert db.execute(select(Document)).scalars().all() == []
        assert db.execute(select(OrganizationNote)).scalars().all() == []
        assert db.execute(select(HiringManagerNote)).scalars().all() == []

        statuses = {r.status for r in db.execute(select(ScheduledTask)).scalars()}
        assert statuses == {"completed"}


def test_cleanup_is_a_no_op_when_nothing_is_due(app_client):
    with SessionLocal() as db:
        _seed(db)
    with SessionLocal() as db:
        out = run_archive_cleanup(db, now=NOW, retention_days=30)
        db.commit()
    assert out == {"organizations": 0, "hiringManagers": 0}


def test_cleanup_action_requires_admin_or_internal_token(api, app_client, recruiter, admin):
    _app, client = app_client
    _uid, token = recruiter
    _aid, admin_token = admin

    assert api("ARCHIVE_CLEANUP_RUN", {}, token).status_code == 403

    res = api("ARCHIVE_CLEANUP_RUN", {"retentionDays": 3}, admin_token)
    assert res.status_code == 200
    assert res.get_json()["data"] == {"success": True, "organizations": 0, "hiringManagers": 0}

    res = client.post("/api/maintenance/archive-cleanup", headers={"X-Internal-Token": "test-internal-token"})
    assert res.status_code == 200
