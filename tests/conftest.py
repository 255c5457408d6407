"""Root-level pytest fixtures for all tests.

Provides shared fixtures:
- In-memory SQLite session with every table created
- A seeded slice of the OPMS catalog
- An in-memory queue
"""

import os
from collections.abc import Generator

# Keep the module-level engine in opms_sync.db.connection off the disk.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from opms_sync.db.models import Base
from opms_sync.services.sync_queue import InMemorySyncQueue
from tests.helpers.catalog import seed_catalog


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """Create an in-memory SQLite database for testing.

    Creates all tables, yields a session, and cleans up after test.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def catalog(db_session: Session) -> Session:
    """The db_session with the OPMS catalog seeded."""
    seed_catalog(db_session)
    return db_session


@pytest.fixture
def memory_queue() -> InMemorySyncQueue:
    return InMemorySyncQueue(worker_id="test-worker")
