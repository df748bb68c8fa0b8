from __future__ import annotations

import logging

import redis
from flask import Blueprint, current_app, jsonify

from cache_layer import cache_stats
from db import get_pool_stats, ping_db
from utils import iso_utc_now

core_bp = Blueprint("core", __name__)

_log = logging.getLogger("api")


def _ping_redis() -> bool:
    """True when the Celery broker answers, or when no broker is configured."""
    url = current_app.config["CFG"].REDIS_URL
    if not url:
        return True
    try:
        redis.from_url(url, socket_connect_timeout=2).ping()
        return True
    except (redis.RedisError, ValueError):
        _log.warning("redis ping failed")
        return False


@core_bp.get("/health")
def health():
    """Process liveness plus the knobs that decide background behaviour."""
    cfg = current_app.config["CFG"]
    return jsonify(
        {
            "status": "ok",
            "time": iso_utc_now(),
            "version": cfg.APP_VERSION,
            "scheduler": {
                "inProcess": cfg.ENABLE_SCHEDULER,
                "reminderIntervalMinutes": cfg.REMINDER_INTERVAL_MINUTES,
                "archiveRetentionDays": cfg.ARCHIVE_RETENTION_DAYS,
            },
            "mailEnabled": cfg.MAIL_ENABLED,
            "db_pool": get_pool_stats(),
            "cache": cache_stats(),
        }
    )


@core_bp.get("/ready")
def ready():
    # Load balancers stop routing here on 503.
    cfg = current_app.config["CFG"]
    checks = {
        "db": "ok" if ping_db() else "error",
        "redis": "ok" if _ping_redis() else "error",
    }
    healthy = all(v == "ok" for v in checks.values())
    body = {
        "status": "ok" if healthy else "degraded",
        "time": iso_utc_now(),
        "version": cfg.APP_VERSION,
        "checks": checks,
    }
    return jsonify(body), 200 if healthy else 503


@core_bp.get("/version")
def version():
    cfg = current_app.config["CFG"]
    return jsonify({"version": cfg.APP_VERSION, "env": cfg.APP_ENV, "time": iso_utc_now()})
