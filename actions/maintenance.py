from __future__ import annotations

from actions.helpers import append_audit
from services.archive_cleanup import run_archive_cleanup
from utils import AuthContext, to_int_or_none, pick


def archive_cleanup_run(data, auth: AuthContext | None, db, cfg):
    days = to_int_or_none(pick(data, "retentionDays", "retention_days"))
    if days is None or days < 0:
        days = cfg.ARCHIVE_RETENTION_DAYS
    out = run_archive_cleanup(db, retention_days=days)
    append_audit(db, entityType="MAINTENANCE", entityId="archive_cleanup", action="ARCHIVE_CLEANUP_RUN", actor=auth, meta=out)
    return {"success": True, **out}
