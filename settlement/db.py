"""Engine, session factory and transaction helpers.

Services never commit on their own; the executor wraps each state change in
:func:`atomic` so the ledger, dispute and audit writes land together.
"""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from settlement.config import get_settings
from settlement.models.base import Base

# Seconds a SQLite writer waits on a locked database before failing.
SQLITE_BUSY_TIMEOUT = 15

engine: Engine | None = None
SessionLocal: sessionmaker[Session] | None = None


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def init_engine() -> Engine:
    """Create the engine and session factory once per process."""

    global engine, SessionLocal
    if engine is not None:
        return engine

    url = get_settings().database_url
    options: dict[str, object] = {"future": True}
    if _is_sqlite(url):
        options["connect_args"] = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}
    else:
        options["pool_pre_ping"] = True
    engine = create_engine(url, **options)
    # Objects stay readable after commit; the executor refreshes what it returns.
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return engine


def get_engine() -> Engine:
    return engine if engine is not None else init_engine()


def get_sessionmaker() -> sessionmaker[Session]:
    if SessionLocal is None:
        init_engine()
    assert SessionLocal is not None
    return SessionLocal


def new_session() -> Session:
    """Standalone session for background jobs and health probes."""

    return get_sessionmaker()()


def close_engine() -> None:
    global engine, SessionLocal
    if engine is not None:
        engine.dispose()
    engine = None
    SessionLocal = None


@event.listens_for(Engine, "connect")
def _sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # pragma: no cover - driver specific
    if not type(dbapi_connection).__module__.startswith(("sqlite3", "pysqlite")):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Commit the work done inside the block, or roll all of it back."""

    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def create_all() -> None:
    """Create tables straight from the models (dev only; prefer Alembic)."""

    Base.metadata.create_all(bind=get_engine())


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a request-scoped session."""

    session = new_session()
    try:
        yield session
    finally:
        session.close()


__all__ = [
    "atomic",
    "close_engine",
    "create_all",
    "get_db",
    "get_engine",
    "get_sessionmaker",
    "init_engine",
    "new_session",
]
