"""Tests for the dry-run capture endpoints."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from opms_sync.services.dry_run_recorder import DryRunRecorder

PAYLOAD = {
    "itemId": "1234-5678",
    "upcCode": "012345678905",
    "taxScheduleId": "1",
    "custitem_opms_prod_id": 10,
    "custitem_opms_item_id": 102,
    "displayname": "Belmont Velvet: Navy",
}


@pytest.fixture
def records(catalog: Session) -> list:
    recorder = DryRunRecorder(catalog)
    return [
        recorder.record(PAYLOAD, 102, "1234-5678", 10),
        recorder.record({**PAYLOAD, "itemId": "1234-5679", "custitem_opms_item_id": 103}, 103, "1234-5679", 10),
    ]


def test_list_recent(client: TestClient, records) -> None:
    body = client.get("/api/v1/dry-run").json()

    assert len(body) == 2
    assert body[0]["opms_item_code"] == "1234-5679"
    assert body[0]["actual_json_payload"]["itemId"] == "1234-5679"
    assert body[0]["simulated_restlet_response"]["success"] is True


def test_lookup_by_item_and_code(client: TestClient, records) -> None:
    assert len(client.get("/api/v1/dry-run/item/102").json()) == 1
    assert len(client.get("/api/v1/dry-run/code/1234-5679").json()) == 1


def test_stats(client: TestClient, records) -> None:
    stats = client.get("/api/v1/dry-run/stats").json()
    assert stats["total_payloads"] == 2
    assert stats["would_succeed"] == 2


def test_delete_one(client: TestClient, records) -> None:
    assert client.delete(f"/api/v1/dry-run/{records[0].id}").status_code == 204
    assert client.delete(f"/api/v1/dry-run/{records[0].id}").status_code == 404


def test_delete_by_item_and_type(client: TestClient, records) -> None:
    assert client.delete("/api/v1/dry-run/item/102").json() == {"deleted": 1}
    assert client.delete("/api/v1/dry-run/sync-type/item_sync").json() == {"deleted": 1}


def test_delete_all_requires_confirm(client: TestClient, records) -> None:
    assert client.delete("/api/v1/dry-run").status_code == 400
    assert client.delete("/api/v1/dry-run", params={"confirm": "true"}).json() == {"deleted": 2}


def test_cleanup(client: TestClient, records) -> None:
    assert client.post("/api/v1/dry-run/cleanup", params={"days": 30}).json() == {"deleted": 0}
