"""
Tests for the health, readiness and fallback endpoints.
"""
from __future__ import annotations

import json
from unittest.mock import patch

import pytest


def test_health_reports_version_and_cache(app_client):
    _app, client = app_client
    res = client.get("/health")
    assert res.status_code == 200
    body = res.get_json()
    assert body["status"] == "ok"
    assert body["version"] == "0.1.0"
    assert "cache" in body


def test_ready_ok(app_client):
    _app, client = app_client

    with patch("app.routes.core._ping_redis", return_value=True):
        res = client.get("/ready")
    assert res.status_code == 200
    body = res.get_json()
    assert body["status"] == "ok"
    assert body["checks"] == {"db": "ok", "redis": "ok"}


def test_ready_degraded_when_redis_down(app_client):
    _app, client = app_client

    with patch("app.routes.core._ping_redis", return_value=False):
        res = client.get("/ready")
    assert res.status_code == 503
    body = res.get_json()
    assert body["status"] == "degraded"
    assert body["checks"]["redis"] == "error"


def test_version_reports_environment(app_client):
    _app, client = app_client
    assert client.get("/version").get_json()["env"] == "test"


def test_unknown_endpoint_uses_error_envelope(app_client):
    _app, client = app_client
    res = client.get("/nope")
    assert res.status_code == 404
    body = res.get_json()
    assert body["ok"] is False
    assert body["error"]["code"] == "NOT_FOUND"
    assert res.headers["X-Content-Type-Options"] == "nosniff"
    assert res.headers["X-Request-ID"]


def test_api_rejects_malformed_body(app_client):
    _app, client = app_client
    res = client.post("/api", data="{not json", content_type="text/plain")
    assert res.status_code == 400
    assert res.get_json()["ok"] is False

    res = client.post("/api", data=json.dumps({"data": {}}), content_type="text/plain")
    assert res.status_code == 400
    assert res.get_json()["error"]["message"] == "Missing action"


def test_production_config_requires_cron_secret(monkeypatch):
    from config import Config

    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.delenv("CRON_SECRET", raising=False)
    with pytest.raises(RuntimeError, match="CRON_SECRET"):
        Config().validate()

    monkeypatch.setenv("CRON_SECRET", "s3cret")
    Config().validate()
