from __future__ import annotations

import logging

from sqlalchemy import inspect, text


_log = logging.getLogger("schema")


def _quoted(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'


def _ensure_column(engine, *, table: str, column: str, ddl_type: str, default_sql: str | None = None) -> bool:
    insp = inspect(engine)
    if table not in set(insp.get_table_names()):
        return False
    cols = {c.get("name") for c in insp.get_columns(table)}
    if column in cols:
        return False
    ddl = f"ALTER TABLE {_quoted(table)} ADD COLUMN {_quoted(column)} {ddl_type}"
    if default_sql is not None:
        ddl += f" DEFAULT {default_sql}"
    with engine.begin() as conn:
        conn.execute(text(ddl))
    _log.info("added column %s.%s", table, column)
    return True


def _ensure_index(engine, *, name: str, table: str, columns: list[str]) -> None:
    cols = ", ".join(_quoted(c) for c in columns)
    ddl = f"CREATE INDEX IF NOT EXISTS {_quoted(name)} ON {_quoted(table)}({cols})"
    with engine.begin() as conn:
        conn.execute(text(ddl))


def ensure_schema(engine) -> None:
    """
    Lightweight, idempotent schema evolution (no Alembic).

    `Base.metadata.create_all` creates missing tables; this adds columns that
    were introduced after a table first shipped, plus composite indexes used by
    the reminder scan and archive cleanup.
    """

    # Tasks: reminder scheduling columns.
    _ensure_column(engine, table="tasks", column="reminder_minutes_before_due", ddl_type="INTEGER")
    _ensure_column(engine, table="tasks", column="reminder_sent_at", ddl_type="TEXT")
    _ensure_column(engine, table="tasks", column="custom_fields", ddl_type="TEXT", default_sql="'{}'")

    # Task notes: note action + "about" references.
    _ensure_column(engine, table="task_notes", column="action", ddl_type="VARCHAR(255)")
    _ensure_column(engine, table="task_notes", column="about_references", ddl_type="TEXT")

    # Archive bookkeeping (Deletion | Transfer).
    for table in ("organizations", "hiring_managers"):
        _ensure_column(engine, table=table, column="archived_at", ddl_type="TEXT")
        _ensure_column(engine, table=table, column="archive_reason", ddl_type="VARCHAR(50)")

    _ensure_column(engine, table="hiring_manager_notes", column="action", ddl_type="VARCHAR(255)")
    _ensure_column(engine, table="hiring_manager_notes", column="about_references", ddl_type="TEXT")

    _ensure_column(engine, table="hiring_manager_transfers", column="source_record_number", ddl_type="VARCHAR(50)", default_sql="''")
    _ensure_column(engine, table="hiring_manager_transfers", column="target_record_number", ddl_type="VARCHAR(50)", default_sql="''")

    _ensure_index(engine, name="ix_tasks_reminder_scan", table="tasks", columns=["is_completed", "reminder_sent_at", "due_date"])
    _ensure_index(engine, name="ix_tasks_owner_scope", table="tasks", columns=["created_by", "assigned_to"])
    _ensure_index(engine, name="ix_documents_entity", table="documents", columns=["entity_type", "entity_id"])
    _ensure_index(engine, name="ix_scheduled_tasks_due", table="scheduled_tasks", columns=["task_type", "status", "scheduled_for"])
    _ensure_index(engine, name="ix_hiring_managers_archived", table="hiring_managers", columns=["status", "archived_at"])
    _ensure_index(engine, name="ix_organizations_archived", table="organizations", columns=["status", "archived_at"])
