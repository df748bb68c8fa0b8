from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except Exception:
        return default


class Config:
    def __init__(self) -> None:
        self.APP_ENV = os.getenv("APP_ENV", "development").strip().lower()
        self.IS_PRODUCTION = self.APP_ENV in {"prod", "production"}
        self.APP_VERSION = os.getenv("APP_VERSION", "0.1.0")
        self.HOST = os.getenv("HOST", "0.0.0.0")
        self.PORT = _env_int("PORT", 5002)

        database_url = (os.getenv("DATABASE_URL", "sqlite:///./crm.db") or "").strip()
        # Heroku-style URLs still use the legacy scheme.
        if database_url.startswith("postgres://"):
            database_url = "postgresql://" + database_url[len("postgres://") :]
        self.DATABASE_URL = database_url

        self.SESSION_TTL_MINUTES = _env_int("SESSION_TTL_MINUTES", 720)
        self.APP_TIMEZONE = os.getenv("APP_TIMEZONE", "UTC")

        self.ALLOWED_ORIGINS = [
            s.strip() for s in (os.getenv("ALLOWED_ORIGINS", "*") or "*").split(",") if s.strip()
        ]

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

        self.FRONTEND_URL = (os.getenv("FRONTEND_URL", "http://localhost:3000") or "").strip().rstrip("/")
        self.PAYROLL_EMAIL = (os.getenv("PAYROLL_EMAIL", "") or "").strip()

        # Shared secret for external cron callers (Authorization: Bearer <CRON_SECRET>).
        self.CRON_SECRET = (os.getenv("CRON_SECRET", "") or "").strip()
        self.INTERNAL_CRON_TOKEN = (os.getenv("INTERNAL_CRON_TOKEN", "") or "").strip()

        # Microsoft Graph mail delivery.
        self.MAIL_ENABLED = _env_bool("MAIL_ENABLED", True)
        self.MAIL_FROM = (os.getenv("MAIL_FROM", "") or "").strip()
        self.MS_TENANT_ID = (os.getenv("MS_TENANT_ID", "") or "").strip()
        self.MS_CLIENT_ID = (os.getenv("MS_CLIENT_ID", "") or "").strip()
        self.MS_CLIENT_SECRET = (os.getenv("MS_CLIENT_SECRET", "") or "").strip()
        self.MAIL_TIMEOUT_SECONDS = max(1, _env_int("MAIL_TIMEOUT_SECONDS", 20))

        self.ENABLE_SCHEDULER = _env_bool("ENABLE_SCHEDULER", False)
        self.REMINDER_INTERVAL_MINUTES = max(1, _env_int("REMINDER_INTERVAL_MINUTES", 5))
        self.ARCHIVE_RETENTION_DAYS = max(1, _env_int("ARCHIVE_RETENTION_DAYS", 7))

        self.REDIS_URL = (os.getenv("REDIS_URL", "") or "").strip()

    def validate(self) -> None:
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required")
        if self.IS_PRODUCTION and not self.CRON_SECRET:
            raise RuntimeError("CRON_SECRET is required in production")
