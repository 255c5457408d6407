"""Engine and session management for the sync state tables.

Every worker process and the API share one relational store: the queue is
claimed through it, so all of them must point DATABASE_URL at the same
database. SQLite is fine for a single host (WAL lets the API read while a
worker writes); anything larger should use a server database.

Usage:
    from opms_sync.db.connection import get_db_context, init_db

    init_db()
    with get_db_context() as db:
        TableSyncQueue(db).get_queue_status()
"""

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from opms_sync.db.models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./opms_sync.db"
# Milliseconds a SQLite writer waits for the lock before raising
SQLITE_BUSY_TIMEOUT_MS = 5000


def get_database_url() -> str:
    """Resolve the database URL.

    Precedence:
    1. DATABASE_URL
    2. OPMS_SYNC_DB_PATH, a SQLite file path
    3. ./opms_sync.db
    """
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if database_url:
        return database_url

    db_path = os.environ.get("OPMS_SYNC_DB_PATH", "").strip()
    if db_path:
        return db_path if db_path.startswith("sqlite:") else f"sqlite:///{db_path}"

    return DEFAULT_DATABASE_URL


def _configure_sqlite(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


def build_engine(url: str) -> Engine:
    """Create an engine for ``url``.

    SQLite connections get foreign keys, WAL and a busy timeout so the
    claim UPDATE of one worker waits on another instead of failing.
    Server databases get pre-ping so a worker survives dropped
    connections between polls.
    """
    is_sqlite = url.startswith("sqlite")
    built = create_engine(
        url,
        connect_args={"check_same_thread": False} if is_sqlite else {},
        echo=os.environ.get("SQL_ECHO", "").lower() == "true",
        pool_pre_ping=not is_sqlite,
    )
    if is_sqlite:
        event.listen(built, "connect", _configure_sqlite)
    return built


DATABASE_URL = get_database_url()
engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session for FastAPI ``Depends``.

    Services commit their own work; the session is only closed here.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Session for the CLI and the worker loop.

    Commits on a clean exit and rolls back if the block raises.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """Create missing tables. Existing tables are left untouched."""
    Base.metadata.create_all(bind=engine)


def check_database() -> bool:
    """Return True if the database answers a trivial query."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        return False
