"""Tests for the change log endpoints."""

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from opms_sync.db.models import Item, utc_iso_offset
from tests.helpers import PHYSICAL_ITEM_ID
from tests.helpers.catalog import SEED_MODIFIED


def test_recent_changes_and_stats(client: TestClient) -> None:
    client.post("/api/v1/queue/entries", json={"item_id": PHYSICAL_ITEM_ID})
    client.post(f"/api/v1/queue/trigger/item/{PHYSICAL_ITEM_ID}", json={})

    changes = client.get("/api/v1/changes", params={"hours": 1}).json()
    manual = client.get("/api/v1/changes", params={"change_type": "MANUAL_SYNC"}).json()
    stats = client.get("/api/v1/changes/stats").json()

    assert len(changes) == 2
    assert manual[0]["change_data"]["item_code"] == "1234-5678"
    assert stats["total"] == 2
    assert stats["unique_items"] == 1


def test_detect_missed_changes(client: TestClient, catalog: Session) -> None:
    catalog.get(Item, PHYSICAL_ITEM_ID).date_modified = utc_iso_offset(-60)
    catalog.commit()

    response = client.post("/api/v1/changes/detect", json={"since": SEED_MODIFIED})

    assert response.status_code == 200
    assert [e["item_id"] for e in response.json()] == [PHYSICAL_ITEM_ID]


def test_detect_requires_since(client: TestClient) -> None:
    assert client.post("/api/v1/changes/detect", json={}).status_code == 422
