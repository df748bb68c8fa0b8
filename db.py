from __future__ import annotations

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

engine = None
SessionLocal = sessionmaker(autocommit=False, autoflush=False, future=True)


def _on_sqlite_connect(dbapi_conn, _record):
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works with pysqlite.
    dbapi_conn.isolation_level = None


def _on_sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


def init_engine(database_url: str):
    global engine

    connect_args = {}
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        connect_args = {"check_same_thread": False}

    engine = create_engine(
        database_url,
        future=True,
        pool_pre_ping=True,
        connect_args=connect_args,
    )
    if is_sqlite:
        # SQLite ignores REFERENCES clauses unless enabled per connection.
        event.listen(engine, "connect", _on_sqlite_connect)
        event.listen(engine, "begin", _on_sqlite_begin)

    SessionLocal.configure(bind=engine)
    return engine


def ping_db() -> bool:
    if engine is None:
        return False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


def get_pool_stats() -> dict:
    if engine is None:
        return {"initialized": False}
    pool = engine.pool
    out = {"initialized": True, "class": type(pool).__name__}
    for name in ("size", "checkedin", "checkedout", "overflow"):
        fn = getattr(pool, name, None)
        if callable(fn):
            try:
                out[name] = fn()
            except Exception:
                pass
    return out
