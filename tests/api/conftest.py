"""Pytest fixtures for API tests.

Provides a TestClient bound to the seeded in-memory catalog, plus clean
auth, rate-limit and webhook-counter state for every test.
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from opms_sync.api.main import app
from opms_sync.api.middleware.auth import reset_rate_limiter
from opms_sync.db.connection import get_db
from opms_sync.services.webhook_ingester import reset_webhook_stats

WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture(autouse=True)
def _isolate_api_state(monkeypatch) -> Generator[None, None, None]:
    """Known secrets and empty in-process counters."""
    monkeypatch.setenv("OPMS_SYNC_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.delenv("OPMS_SYNC_API_KEY", raising=False)
    reset_rate_limiter()
    reset_webhook_stats()
    yield
    reset_rate_limiter()
    reset_webhook_stats()


@pytest.fixture
def client(catalog: Session) -> Generator[TestClient, None, None]:
    """Create a TestClient with overridden database dependency.

    Args:
        catalog: Seeded test database session.

    Yields:
        TestClient configured for testing.
    """

    def override_get_db():
        try:
            yield catalog
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def webhook_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {WEBHOOK_SECRET}"}
