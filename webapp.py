from __future__ import annotations

import hmac
import json
import logging
import os
import re
import threading
import time
from typing import Any

from dotenv import load_dotenv
from flask import Blueprint, Flask, current_app, g, request
from flask_cors import CORS
from sqlalchemy.exc import DBAPIError

import db as db_module
from actions import dispatch
from auth import assert_permission, is_public_action, role_or_public, system_auth, validate_session_token
from config import Config
from db import Base, SessionLocal, init_engine
from models import AuditLog
from services.archive_cleanup import run_archive_cleanup
from services.task_reminders import run_task_reminders
from utils import ApiError, err, iso_utc_now, now_monotonic, ok, parse_json_body, redact_for_audit, to_bool


rest_api = Blueprint("rest_api", __name__)


def _bearer_token() -> str:
    authz = str(request.headers.get("Authorization") or "").strip()
    if authz.lower().startswith("bearer "):
        return authz.split(" ", 1)[1].strip()
    return ""


def _rest_token() -> str:
    return (
        _bearer_token()
        or str(request.headers.get("X-Session-Token") or "").strip()
        or str(request.args.get("token") or "").strip()
    )


def _audit_row(action: str, auth_ctx, *, stage_tag: str, remark: str = "", meta: dict | None = None) -> AuditLog:
    return AuditLog(
        logId=f"LOG-{os.urandom(16).hex()}",
        entityType="API",
        entityId=str(auth_ctx.userId or auth_ctx.email or "") if auth_ctx else "PUBLIC",
        action=str(action or "").upper() or "UNKNOWN",
        stageTag=stage_tag,
        remark=remark,
        actorUserId=str(auth_ctx.userId if auth_ctx.userId is not None else "SYSTEM") if auth_ctx else "PUBLIC",
        actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
        actorEmail=str(getattr(auth_ctx, "email", "") or "") if auth_ctx else "",
        at=iso_utc_now(),
        correlationId=str(getattr(g, "request_id", "") or ""),
        metaJson=json.dumps(meta or {}),
    )


def _write_error_audit(action: str, auth_ctx, data: Any, err_obj: ApiError):
    db2 = SessionLocal()
    try:
        db2.add(
            _audit_row(
                action,
                auth_ctx,
                stage_tag="API_ERROR",
                remark=f"{err_obj.code}: {err_obj.message}",
                meta={
                    "data": redact_for_audit(data or {}),
                    "error": {"code": err_obj.code, "message": err_obj.message},
                },
            )
        )
        db2.commit()
    except Exception:
        db2.rollback()
        logging.getLogger("api").exception("failed to write error audit for action=%s", action)
    finally:
        db2.close()


def _short(value: Any) -> str:
    s = re.sub(r"\s+", " ", str(value or "")).strip()
    return s[:300] + "..." if len(s) > 300 else s


def _error_for(cfg: Config, e: Exception) -> ApiError:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    suffix = f" (requestId: {request_id})" if request_id else ""

    if isinstance(e, DBAPIError):
        orig_msg = _short(getattr(e, "orig", None) or "")
        if cfg.IS_PRODUCTION or not orig_msg:
            return ApiError("INTERNAL", f"Database error{suffix}", http_status=500)
        return ApiError("INTERNAL", f"Database error: {orig_msg}{suffix}", http_status=500)

    if cfg.IS_PRODUCTION:
        return ApiError("INTERNAL", f"Unexpected error{suffix}", http_status=500)
    detail = type(e).__name__
    if to_bool(os.getenv("DEBUG_ERROR_DETAILS", "")) and str(e).strip():
        detail = f"{detail}: {_short(e)}"
    return ApiError("INTERNAL", f"Unexpected error: {detail}{suffix}", http_status=500)


def run_action(action: str, data: Any, token: Any, *, stage_tag: str = "API_CALL", success_status: int = 200, allow_internal: bool = False):
    """
    Authenticate, authorize, dispatch and commit one action; every failure
    rolls back and becomes an error envelope.
    """

    cfg: Config = current_app.config["CFG"]
    action_u = str(action or "").upper().strip()
    data = data if isinstance(data, dict) else {}
    db = None
    auth_ctx = None

    try:
        if not action_u:
            raise ApiError("BAD_REQUEST", "Missing action")

        db = SessionLocal()

        internal = str(request.headers.get("X-Internal-Token") or "").strip()
        if allow_internal and cfg.INTERNAL_CRON_TOKEN and internal and hmac.compare_digest(internal, cfg.INTERNAL_CRON_TOKEN):
            auth_ctx = system_auth()
        elif not is_public_action(action_u):
            auth_ctx = validate_session_token(db, token)
            if not auth_ctx.valid:
                raise ApiError("AUTH_INVALID", "Invalid or expired session")
        elif token:
            try:
                maybe = validate_session_token(db, token)
                auth_ctx = maybe if maybe.valid else None
            except ApiError:
                auth_ctx = None

        assert_permission(role_or_public(auth_ctx), action_u)

        if action_u == "LOGOUT":
            data = {**data, "sessionToken": token}
        out = dispatch(action_u, data, auth_ctx, db, cfg)

        db.add(_audit_row(action_u, auth_ctx, stage_tag=stage_tag, meta={"data": redact_for_audit(data)}))
        db.commit()

        latency_ms = int((now_monotonic() - g.start_ts) * 1000)
        logging.getLogger("api").info(
            "request_id=%s action=%s user=%s role=%s latency_ms=%s",
            g.request_id,
            action_u,
            (auth_ctx.userId if auth_ctx else "PUBLIC"),
            (auth_ctx.role if auth_ctx else "PUBLIC"),
            latency_ms,
        )
        return ok(out, http_status=success_status)
    except ApiError as e:
        if db is not None:
            db.rollback()
        _write_error_audit(action_u, auth_ctx, data, e)
        return err(e.code, e.message, http_status=e.http_status)
    except Exception as e:
        if db is not None:
            db.rollback()
        api_err = _error_for(cfg, e)
        _write_error_audit(action_u, auth_ctx, data, api_err)
        logging.getLogger("api").exception("request_id=%s action=%s", getattr(g, "request_id", ""), action_u)
        return err(api_err.code, api_err.message, http_status=api_err.http_status)
    finally:
        if db is not None:
            db.close()


def _rest_handle(action: str, data: dict | None = None, *, success_status: int = 200, allow_internal: bool = False):
    return run_action(
        action,
        data or {},
        _rest_token(),
        stage_tag="API_CALL_REST",
        success_status=success_status,
        allow_internal=allow_internal,
    )


def _body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _query() -> dict:
    return {k: v for k, v in request.args.items() if k != "token"}


# Users


@rest_api.post("/api/users/login")
def rest_login():
    return _rest_handle("LOGIN", _body())


@rest_api.post("/api/users/logout")
def rest_logout():
    return _rest_handle("LOGOUT")


@rest_api.get("/api/users/me")
def rest_me():
    return _rest_handle("GET_ME")


@rest_api.get("/api/users")
def rest_users_list():
    return _rest_handle("USER_LIST")


@rest_api.post("/api/users")
def rest_users_create():
    return _rest_handle("USER_CREATE", _body(), success_status=201)


@rest_api.get("/api/users/search")
def rest_users_search():
    return _rest_handle("USER_SEARCH", _query())


@rest_api.get("/api/users/stats")
def rest_users_stats():
    return _rest_handle("USER_STATS")


@rest_api.put("/api/users/profile")
def rest_users_update_profile():
    return _rest_handle("USER_UPDATE_PROFILE", _body())


@rest_api.put("/api/users/password")
def rest_users_update_password():
    return _rest_handle("USER_UPDATE_PASSWORD", _body())


@rest_api.get("/api/users/<int:user_id>")
def rest_users_get(user_id: int):
    return _rest_handle("USER_GET", {"id": user_id})


@rest_api.delete("/api/users/<int:user_id>")
def rest_users_delete(user_id: int):
    return _rest_handle("USER_DELETE", {"id": user_id})


# Offices and teams


@rest_api.get("/api/offices")
def rest_offices_list():
    return _rest_handle("OFFICE_LIST")


@rest_api.post("/api/offices")
def rest_offices_create():
    return _rest_handle("OFFICE_CREATE", _body(), success_status=201)


@rest_api.get("/api/teams")
def rest_teams_list():
    return _rest_handle("TEAM_LIST")


@rest_api.post("/api/teams")
def rest_teams_create():
    return _rest_handle("TEAM_CREATE", _body(), success_status=201)


@rest_api.get("/api/teams/<int:team_id>")
def rest_teams_get(team_id: int):
    return _rest_handle("TEAM_GET", {"id": team_id})


@rest_api.put("/api/teams/<int:team_id>")
def rest_teams_update(team_id: int):
    return _rest_handle("TEAM_UPDATE", {**_body(), "id": team_id})


@rest_api.delete("/api/teams/<int:team_id>")
def rest_teams_delete(team_id: int):
    return _rest_handle("TEAM_DELETE", {"id": team_id})


@rest_api.post("/api/teams/<int:team_id>/members")
def rest_team_member_add(team_id: int):
    return _rest_handle("TEAM_MEMBER_ADD", {**_body(), "id": team_id}, success_status=201)


@rest_api.delete("/api/teams/<int:team_id>/members/<int:user_id>")
def rest_team_member_remove(team_id: int, user_id: int):
    return _rest_handle("TEAM_MEMBER_REMOVE", {"id": team_id, "userId": user_id})


# Organizations


@rest_api.get("/api/organizations")
def rest_orgs_list():
    return _rest_handle("ORG_LIST")


@rest_api.post("/api/organizations")
def rest_orgs_create():
    return _rest_handle("ORG_CREATE", _body(), success_status=201)


@rest_api.get("/api/organizations/<int:org_id>")
def rest_orgs_get(org_id: int):
    return _rest_handle("ORG_GET", {"id": org_id})


@rest_api.put("/api/organizations/<int:org_id>")
def rest_orgs_update(org_id: int):
    return _rest_handle("ORG_UPDATE", {**_body(), "id": org_id})


@rest_api.delete("/api/organizations/<int:org_id>")
def rest_orgs_delete(org_id: int):
    return _rest_handle("ORG_DELETE", {"id": org_id})


@rest_api.get("/api/organizations/<int:org_id>/notes")
def rest_orgs_notes(org_id: int):
    return _rest_handle("ORG_NOTES_LIST", {"id": org_id})


@rest_api.post("/api/organizations/<int:org_id>/notes")
def rest_orgs_note_add(org_id: int):
    return _rest_handle("ORG_NOTE_ADD", {**_body(), "id": org_id}, success_status=201)


@rest_api.get("/api/organizations/<int:org_id>/history")
def rest_orgs_history(org_id: int):
    return _rest_handle("ORG_HISTORY_LIST", {"id": org_id})


@rest_api.get("/api/organizations/<int:org_id>/documents")
def rest_orgs_documents(org_id: int):
    return _rest_handle("ORG_DOCUMENTS_LIST", {"id": org_id})


# Hiring managers and transfers


@rest_api.get("/api/hiring-managers")
def rest_hms_list():
    return _rest_handle("HM_LIST", _query())


@rest_api.post("/api/hiring-managers")
def rest_hms_create():
    return _rest_handle("HM_CREATE", _body(), success_status=201)


@rest_api.get("/api/hiring-managers/<int:hm_id>")
def rest_hms_get(hm_id: int):
    return _rest_handle("HM_GET", {"id": hm_id})


@rest_api.put("/api/hiring-managers/<int:hm_id>")
def rest_hms_update(hm_id: int):
    return _rest_handle("HM_UPDATE", {**_body(), "id": hm_id})


@rest_api.get("/api/hiring-managers/<int:hm_id>/notes")
def rest_hms_notes(hm_id: int):
    return _rest_handle("HM_NOTES_LIST", {"id": hm_id})


@rest_api.post("/api/hiring-managers/<int:hm_id>/notes")
def rest_hms_note_add(hm_id: int):
    return _rest_handle("HM_NOTE_ADD", {**_body(), "id": hm_id}, success_status=201)


@rest_api.get("/api/hiring-managers/<int:hm_id>/history")
def rest_hms_history(hm_id: int):
    return _rest_handle("HM_HISTORY_LIST", {"id": hm_id})


@rest_api.post("/api/hiring-managers/transfer")
def rest_hm_transfer_create():
    return _rest_handle("HM_TRANSFER_CREATE", _body(), success_status=201)


@rest_api.get("/api/hiring-managers/transfer/<int:transfer_id>")
def rest_hm_transfer_get(transfer_id: int):
    return _rest_handle("HM_TRANSFER_GET", {"id": transfer_id})


@rest_api.post("/api/hiring-managers/transfer/<int:transfer_id>/approve")
def rest_hm_transfer_approve(transfer_id: int):
    return _rest_handle("HM_TRANSFER_APPROVE", {"id": transfer_id})


@rest_api.post("/api/hiring-managers/transfer/<int:transfer_id>/deny")
def rest_hm_transfer_deny(transfer_id: int):
    return _rest_handle("HM_TRANSFER_DENY", {**_body(), "id": transfer_id})


# Tasks


@rest_api.get("/api/tasks")
def rest_tasks_list():
    return _rest_handle("TASK_LIST", _query())


@rest_api.post("/api/tasks")
def rest_tasks_create():
    return _rest_handle("TASK_CREATE", _body(), success_status=201)


@rest_api.get("/api/tasks/stats")
def rest_tasks_stats():
    return _rest_handle("TASK_STATS")


@rest_api.post("/api/tasks/bulk-update")
def rest_tasks_bulk_update():
    return _rest_handle("TASK_BULK_UPDATE", _body())


@rest_api.get("/api/tasks/reminders/diagnose")
def rest_tasks_reminders_diagnose():
    return _rest_handle("TASK_REMINDERS_DIAGNOSE", _query())


@rest_api.post("/api/tasks/reminders/run")
def rest_tasks_reminders_run():
    return _rest_handle("TASK_REMINDERS_RUN", allow_internal=True)


@rest_api.post("/api/maintenance/archive-cleanup")
def rest_archive_cleanup_run():
    return _rest_handle("ARCHIVE_CLEANUP_RUN", _body(), allow_internal=True)


@rest_api.get("/api/tasks/<int:task_id>")
def rest_tasks_get(task_id: int):
    return _rest_handle("TASK_GET", {"id": task_id})


@rest_api.put("/api/tasks/<int:task_id>")
def rest_tasks_update(task_id: int):
    return _rest_handle("TASK_UPDATE", {**_body(), "id": task_id})


@rest_api.delete("/api/tasks/<int:task_id>")
def rest_tasks_delete(task_id: int):
    return _rest_handle("TASK_DELETE", {"id": task_id})


@rest_api.post("/api/tasks/<int:task_id>/complete")
def rest_tasks_complete(task_id: int):
    return _rest_handle("TASK_COMPLETE", {"id": task_id})


@rest_api.post("/api/tasks/<int:task_id>/incomplete")
def rest_tasks_incomplete(task_id: int):
    return _rest_handle("TASK_INCOMPLETE", {"id": task_id})


@rest_api.get("/api/tasks/<int:task_id>/notes")
def rest_tasks_notes(task_id: int):
    return _rest_handle("TASK_NOTES_LIST", {"id": task_id})


@rest_api.post("/api/tasks/<int:task_id>/notes")
def rest_tasks_note_add(task_id: int):
    return _rest_handle("TASK_NOTE_ADD", {**_body(), "id": task_id}, success_status=201)


@rest_api.get("/api/tasks/<int:task_id>/history")
def rest_tasks_history(task_id: int):
    return _rest_handle("TASK_HISTORY_LIST", {"id": task_id})


# Documents and email templates


@rest_api.get("/api/documents")
def rest_documents_list():
    return _rest_handle("DOCUMENT_LIST", _query())


@rest_api.post("/api/documents")
def rest_documents_create():
    return _rest_handle("DOCUMENT_CREATE", _body(), success_status=201)


@rest_api.get("/api/documents/<int:doc_id>")
def rest_documents_get(doc_id: int):
    return _rest_handle("DOCUMENT_GET", {"id": doc_id})


@rest_api.put("/api/documents/<int:doc_id>")
def rest_documents_update(doc_id: int):
    return _rest_handle("DOCUMENT_UPDATE", {**_body(), "id": doc_id})


@rest_api.delete("/api/documents/<int:doc_id>")
def rest_documents_delete(doc_id: int):
    return _rest_handle("DOCUMENT_DELETE", {"id": doc_id})


@rest_api.get("/api/email-templates")
def rest_email_templates_list():
    return _rest_handle("EMAIL_TEMPLATE_LIST")


@rest_api.post("/api/email-templates")
def rest_email_templates_upsert():
    return _rest_handle("EMAIL_TEMPLATE_UPSERT", _body())


@rest_api.get("/api/email-templates/<int:template_id>")
def rest_email_templates_get(template_id: int):
    return _rest_handle("EMAIL_TEMPLATE_GET", {"id": template_id})


@rest_api.delete("/api/email-templates/<int:template_id>")
def rest_email_templates_delete(template_id: int):
    return _rest_handle("EMAIL_TEMPLATE_DELETE", {"id": template_id})


def _maybe_start_internal_scheduler(cfg: Config):
    """
    In-process scheduler for single-instance deployments (ENABLE_SCHEDULER=1).

    Runs the task reminder scan every REMINDER_INTERVAL_MINUTES and the
    archive cleanup once a day. Multi-instance deployments should leave this
    off and call the /api/cron/* endpoints or run Celery beat instead.
    """

    if not cfg.ENABLE_SCHEDULER:
        return

    interval_s = max(60, int(cfg.REMINDER_INTERVAL_MINUTES) * 60)
    log = logging.getLogger("scheduler")

    def _run(name: str, job):
        db = SessionLocal()
        try:
            out = job(db)
            db.commit()
            log.info("%s ok result=%s", name, out)
        except Exception:
            db.rollback()
            log.exception("%s failed", name)
        finally:
            db.close()

    def _loop():
        last_cleanup = 0.0
        while True:
            time.sleep(interval_s)
            _run("task reminders", lambda db: run_task_reminders(db, cfg))
            if time.monotonic() - last_cleanup >= 86400:
                _run("archive cleanup", lambda db: run_archive_cleanup(db, retention_days=cfg.ARCHIVE_RETENTION_DAYS))
                last_cleanup = time.monotonic()

    t = threading.Thread(target=_loop, name="scheduler", daemon=True)
    t.start()
    log.info("internal scheduler started interval_s=%s", interval_s)


def _configure_logging(level: str):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def create_app() -> Flask:
    load_dotenv()
    cfg = Config()
    cfg.validate()
    _configure_logging(cfg.LOG_LEVEL)

    engine = init_engine(cfg.DATABASE_URL)
    Base.metadata.create_all(bind=engine)

    # Lightweight schema evolution for databases created by older releases.
    from schema import ensure_schema

    ensure_schema(engine)

    app = Flask(__name__)
    app.config["CFG"] = cfg
    app.json.sort_keys = False

    CORS(
        app,
        origins=cfg.ALLOWED_ORIGINS,
        supports_credentials=False,
        allow_headers=["Content-Type", "Authorization", "X-Session-Token", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )
    app.register_blueprint(rest_api)

    from app.routes.core import core_bp
    from app.routes.jobs import jobs_bp

    app.register_blueprint(core_bp)
    app.register_blueprint(jobs_bp)

    @app.before_request
    def _before():
        g.request_id = os.urandom(8).hex()
        g.start_ts = now_monotonic()

    @app.after_request
    def _after(resp):
        resp.headers["X-Request-ID"] = str(getattr(g, "request_id", "") or "")
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("Cache-Control", "no-store")
        return resp

    @app.get("/")
    def index():
        return ok({"service": "staffing-crm", "version": cfg.APP_VERSION, "time": iso_utc_now()})

    @app.errorhandler(404)
    def not_found(_e):
        return err("NOT_FOUND", f"Unknown endpoint: {request.path}. Use POST /api for actions.", http_status=404)

    @app.errorhandler(405)
    def method_not_allowed(_e):
        return err("BAD_REQUEST", "Method not allowed. Use POST /api for actions.", http_status=405)

    @app.post("/api")
    def api_route():
        body: dict = {}
        try:
            body = parse_json_body(request.get_data(as_text=True))
        except ApiError as e:
            return err(e.code, e.message, http_status=e.http_status)

        token = body.get("token") or _bearer_token() or str(request.headers.get("X-Session-Token") or "").strip()
        return run_action(body.get("action"), body.get("data") or {}, token)

    _maybe_start_internal_scheduler(cfg)
    logging.getLogger("api").info("app ready env=%s db=%s", cfg.APP_ENV, db_module.engine.url.render_as_string(hide_password=True))
    return app


if __name__ == "__main__":
    app = create_app()
    cfg = app.config["CFG"]
    app.run(host=cfg.HOST, port=cfg.PORT)
