"""Tests for the production ItemSyncProcessor."""

import pytest
from sqlalchemy.orm import Session

from opms_sync.db.models import DryRunRecord, ItemHealthStatus
from opms_sync.errors import NotFoundError, SyncError, TransientError
from opms_sync.services.catalog_store import CatalogItem
from opms_sync.services.erp_client import ErpPushResult
from opms_sync.services.item_sync_processor import (
    SYNC_DISABLED_REASON,
    ItemOutcome,
    ItemSyncProcessor,
    build_item_fields,
    is_digital_item,
)
from opms_sync.services.item_sync_status import ItemSyncStatusService
from opms_sync.services.sync_queue import InMemorySyncQueue
from tests.helpers import (
    DIGITAL_ITEM_ID,
    NO_CODE_ITEM_ID,
    PHYSICAL_ITEM_ID,
    PRICING_ITEM_ID,
    PRODUCT_ID,
    FakeErpClient,
)

MANUAL = {"trigger_source": "MANUAL_API", "reason": "operator request"}


def _entry(queue: InMemorySyncQueue, item_id: int, **event):
    return queue.create_sync_job(item_id=item_id, product_id=PRODUCT_ID, event_data=event or None)


def _health(db: Session, item_id: int):
    return ItemSyncStatusService(db).get(item_id)


class TestLivePush:
    """Live sync through the ErpClient."""

    def test_pushes_mapped_payload(self, catalog: Session, memory_queue: InMemorySyncQueue) -> None:
        erp = FakeErpClient()
        processor = ItemSyncProcessor(catalog, erp_client=erp, tax_schedule_id="1")

        result = processor.process(_entry(memory_queue, PHYSICAL_ITEM_ID))

        assert result.outcome == ItemOutcome.success
        assert result.external_id == "4242"
        assert result.item_code == "1234-5678"
        assert erp.pushed == [
            {
                "itemId": "1234-5678",
                "displayname": "Belmont Velvet: Navy",
                "custitem_opms_item_id": PHYSICAL_ITEM_ID,
                "custitem_opms_prod_id": PRODUCT_ID,
                "taxScheduleId": "1",
                "upcCode": "012345678905",
            }
        ]

        health = _health(catalog, PHYSICAL_ITEM_ID)
        assert health.sync_status == ItemHealthStatus.SUCCESS.value
        assert health.sync_attempts == 1
        assert health.netsuite_item_id == "1234-5678"

    def test_rejected_push_is_permanent_failure(self, catalog: Session, memory_queue: InMemorySyncQueue) -> None:
        erp = FakeErpClient(result=ErpPushResult(success=False, error="Invalid taxScheduleId"))
        processor = ItemSyncProcessor(catalog, erp_client=erp)

        result = processor.process(_entry(memory_queue, PHYSICAL_ITEM_ID))

        assert result.outcome == ItemOutcome.failed
        assert result.error.code == "E-3002"
        assert result.error.is_retryable is False
        health = _health(catalog, PHYSICAL_ITEM_ID)
        assert health.sync_status == ItemHealthStatus.FAILED.value
        assert "Invalid taxScheduleId" in health.sync_error

    def test_transient_erp_error_propagates(self, catalog: Session, memory_queue: InMemorySyncQueue) -> None:
        erp = FakeErpClient(error=TransientError("NetSuite request timed out"))
        processor = ItemSyncProcessor(catalog, erp_client=erp)

        with pytest.raises(TransientError):
            processor.process(_entry(memory_queue, PHYSICAL_ITEM_ID))

        assert _health(catalog, PHYSICAL_ITEM_ID).sync_status == ItemHealthStatus.FAILED.value

    def test_live_sync_without_client_raises(self, catalog: Session, memory_queue: InMemorySyncQueue) -> None:
        processor = ItemSyncProcessor(catalog, erp_client=None)

        with pytest.raises(SyncError) as exc_info:
            processor.process(_entry(memory_queue, PHYSICAL_ITEM_ID))

        assert exc_info.value.code == "E-4001"


class TestSkipRules:
    """Business rules that skip an item without pushing."""

    def test_global_switch_skips_non_manual(self, catalog: Session, memory_queue: InMemorySyncQueue) -> None:
        erp = FakeErpClient()
        processor = ItemSyncProcessor(catalog, erp_client=erp, sync_enabled=False)

        result = processor.process(_entry(memory_queue, PHYSICAL_ITEM_ID))

        assert result.outcome == ItemOutcome.skipped
        assert result.reason == SYNC_DISABLED_REASON
        assert erp.pushed == []

    def test_manual_trigger_bypasses_global_switch(self, catalog: Session, memory_queue: InMemorySyncQueue) -> None:
        erp = FakeErpClient()
        processor = ItemSyncProcessor(catalog, erp_client=erp, sync_enabled=False)

        result = processor.process(_entry(memory_queue, PHYSICAL_ITEM_ID, **MANUAL))

        assert result.outcome == ItemOutcome.success
        assert len(erp.pushed) == 1

    def test_digital_product_type_skipped(self, catalog: Session, memory_queue: InMemorySyncQueue) -> None:
        erp = FakeErpClient()
        processor = ItemSyncProcessor(catalog, erp_client=erp)

        result = processor.process(_entry(memory_queue, DIGITAL_ITEM_ID, **MANUAL))

        assert result.outcome == ItemOutcome.skipped
        assert result.reason == "Item '5555-0001' is a digital item and is not synced."
        assert erp.pushed == []
        assert _health(catalog, DIGITAL_ITEM_ID).sync_status == ItemHealthStatus.SKIPPED.value

    def test_code_outside_pattern_skipped_unless_manual(self, catalog: Session) -> None:
        erp = FakeErpClient()
        processor = ItemSyncProcessor(catalog, erp_client=erp)

        queued = processor.process(_entry(InMemorySyncQueue(), PRICING_ITEM_ID))
        manual = processor.process(_entry(InMemorySyncQueue(), PRICING_ITEM_ID, **MANUAL))

        assert queued.outcome == ItemOutcome.skipped
        assert manual.outcome == ItemOutcome.success
        assert erp.pushed[0]["itemId"] == "opmsAPI01"

    def test_item_without_code_skipped(self, catalog: Session, memory_queue: InMemorySyncQueue) -> None:
        processor = ItemSyncProcessor(catalog, erp_client=FakeErpClient())

        result = processor.process(_entry(memory_queue, NO_CODE_ITEM_ID))

        assert result.outcome == ItemOutcome.skipped

    def test_missing_item_raises_not_found(self, catalog: Session, memory_queue: InMemorySyncQueue) -> None:
        processor = ItemSyncProcessor(catalog, erp_client=FakeErpClient())

        with pytest.raises(NotFoundError):
            processor.process(_entry(memory_queue, 9999))


class TestDryRun:
    """Dry-run captures instead of pushing."""

    def test_dry_run_captures_payload(self, catalog: Session, memory_queue: InMemorySyncQueue) -> None:
        erp = FakeErpClient()
        processor = ItemSyncProcessor(catalog, erp_client=erp, dry_run=True, tax_schedule_id="1")

        result = processor.process(_entry(memory_queue, PHYSICAL_ITEM_ID))

        assert result.outcome == ItemOutcome.success
        assert result.reason == "Dry run: payload captured"
        assert erp.pushed == []
        record = catalog.get(DryRunRecord, result.dry_run_record_id)
        assert record.opms_item_code == "1234-5678"
        assert record.validation_status == "passed"
        assert record.would_succeed is True

    def test_live_sync_false_event_captures(self, catalog: Session, memory_queue: InMemorySyncQueue) -> None:
        erp = FakeErpClient()
        processor = ItemSyncProcessor(catalog, erp_client=erp)

        result = processor.process(_entry(memory_queue, PHYSICAL_ITEM_ID, live_sync=False))

        assert result.dry_run_record_id is not None
        assert erp.pushed == []

    def test_capture_without_tax_schedule_would_fail(self, catalog: Session, memory_queue: InMemorySyncQueue) -> None:
        processor = ItemSyncProcessor(catalog, dry_run=True)

        result = processor.process(_entry(memory_queue, PHYSICAL_ITEM_ID))

        record = catalog.get(DryRunRecord, result.dry_run_record_id)
        assert record.would_succeed is False
        assert "taxScheduleId" in record.simulated_errors


class TestMapping:
    """Pure mapping helpers."""

    def _item(self, **overrides) -> CatalogItem:
        values = dict(
            item_id=1,
            product_id=2,
            code="1234-0001",
            product_type="R",
            product_name="Belmont Velvet",
            color="Navy",
            archived=False,
            date_modified="2026-01-01T00:00:00+00:00",
        )
        values.update(overrides)
        return CatalogItem(**values)

    def test_displayname_without_color(self) -> None:
        fields = build_item_fields(self._item(color=None))
        assert fields.displayname == "Belmont Velvet"

    def test_payload_drops_unset_fields(self) -> None:
        payload = build_item_fields(self._item()).to_payload()
        assert "taxScheduleId" not in payload
        assert "upcCode" not in payload

    @pytest.mark.parametrize(
        "overrides,manual,expected",
        [
            ({}, False, False),
            ({"product_type": "D"}, True, True),
            ({"code": "DIGITAL-0001"}, True, True),
            ({"code": "ABC"}, False, True),
            ({"code": "ABC"}, True, False),
        ],
    )
    def test_is_digital_item(self, overrides, manual, expected) -> None:
        assert is_digital_item(self._item(**overrides), manual=manual) is expected
