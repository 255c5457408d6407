"""Tests for API-key auth and the health endpoint."""

import pytest
from fastapi.testclient import TestClient

from opms_sync.api.middleware.auth import AuthFailureLimiter


@pytest.fixture
def api_key(monkeypatch) -> str:
    monkeypatch.setenv("OPMS_SYNC_API_KEY", "operator-key")
    return "operator-key"


def test_api_open_when_no_key_configured(client: TestClient) -> None:
    assert client.get("/api/v1/jobs").status_code == 200


def test_missing_key_is_rejected(client: TestClient, api_key: str) -> None:
    response = client.get("/api/v1/jobs")

    assert response.status_code == 401
    assert response.json() == {"detail": "Invalid or missing API key"}


def test_valid_key_is_accepted(client: TestClient, api_key: str) -> None:
    response = client.get("/api/v1/jobs", headers={"X-API-Key": api_key})
    assert response.status_code == 200


def test_health_is_public(client: TestClient, api_key: str) -> None:
    response = client.get("/health")

    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "healthy"
    assert body["database"] == "ok"
    assert body["webhook_secret_configured"] is True
    assert body["uptime_seconds"] >= 0


def test_webhook_uses_its_own_secret(client: TestClient, api_key: str) -> None:
    response = client.post(
        "/sync/webhook",
        json={"eventType": "item.pricing.updated", "itemData": {"itemid": "opmsAPI01"}},
        headers={"X-API-Key": api_key},
    )
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized webhook"}


def test_failed_keys_are_rate_limited(client: TestClient, api_key: str) -> None:
    for _ in range(10):
        client.get("/api/v1/jobs", headers={"X-API-Key": "wrong"})

    response = client.get("/api/v1/jobs", headers={"X-API-Key": api_key})

    assert response.status_code == 429


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_limiter_window_expires() -> None:
    clock = FakeClock()
    limiter = AuthFailureLimiter(max_failures=2, window_seconds=60, clock=clock)
    limiter.record("10.0.0.1")
    limiter.record("10.0.0.1")

    assert limiter.is_blocked("10.0.0.1") is True
    clock.now += 61
    assert limiter.is_blocked("10.0.0.1") is False


def test_limiter_drops_clients_that_never_return() -> None:
    clock = FakeClock()
    limiter = AuthFailureLimiter(window_seconds=60, clock=clock)
    for i in range(50):
        limiter.record(f"10.0.0.{i}")
    assert len(limiter) == 50

    clock.now += 61
    limiter.record("192.168.1.1")

    assert len(limiter) == 1
