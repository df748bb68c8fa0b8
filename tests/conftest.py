from __future__ import annotations

import json

import pytest

from cache_layer import cache_clear
from db import SessionLocal
from models import User
from passwords import hash_password
from services.email_service import clear_token_cache
from utils import iso_utc_now


PASSWORD = "Str0ng!Passw0rd"
CRON_SECRET = "test-cron-secret"


@pytest.fixture()
def app_client(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'crm.db'}")
    monkeypatch.setenv("MAIL_ENABLED", "0")
    monkeypatch.setenv("FRONTEND_URL", "https://crm.example.com")
    monkeypatch.setenv("PAYROLL_EMAIL", "payroll@example.com")
    monkeypatch.setenv("CRON_SECRET", CRON_SECRET)
    monkeypatch.setenv("INTERNAL_CRON_TOKEN", "test-internal-token")
    monkeypatch.setenv("ENABLE_SCHEDULER", "0")
    monkeypatch.delenv("REDIS_URL", raising=False)

    cache_clear()
    clear_token_cache()

    from webapp import create_app

    app = create_app()
    app.config["TESTING"] = True
    yield app, app.test_client()
    cache_clear()


@pytest.fixture()
def api(app_client):
    """POST /api with the action envelope; returns the raw response."""
    _app, client = app_client

    def _call(action: str, data: dict | None = None, token: str | None = None):
        payload = {"action": action, "token": token, "data": data or {}}
        return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8")

    return _call


@pytest.fixture()
def seed_user(app_client):
    def _seed(email: str, *, role: str = "recruiter", name: str = "", status: bool = True) -> int:
        now = iso_utc_now()
        with SessionLocal() as db:
            user = User(
                name=name or email.split("@")[0].title(),
                email=email,
                password_hash=hash_password(PASSWORD),
                role=role,
                status=status,
                created_at=now,
                updated_at=now,
            )
            db.add(user)
            db.commit()
            return int(user.id)

    return _seed


@pytest.fixture()
def login(api):
    def _login(email: str, password: str = PASSWORD) -> str:
        res = api("LOGIN", {"email": email, "password": password})
        assert res.status_code == 200, res.get_json()
        return res.get_json()["data"]["sessionToken"]

    return _login


@pytest.fixture()
def recruiter(seed_user, login):
    """(user_id, token) of a logged-in recruiter."""
    user_id = seed_user("rita@example.com", role="recruiter", name="Rita Recruiter")
    return user_id, login("rita@example.com")


@pytest.fixture()
def admin(seed_user, login):
    user_id = seed_user("ada@example.com", role="admin", name="Ada Admin")
    return user_id, login("ada@example.com")
