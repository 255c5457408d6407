"""One OPMS -> NetSuite item sync attempt.

The dispatcher hands every claimed queue entry to an ItemProcessor. The
ItemSyncProcessor is the production processor: it applies the business
skip rules, builds the NetSuite item payload from the catalog, and either
pushes it through the ErpClient or, in dry-run mode, captures it with the
DryRunRecorder.

Outcomes:
    - success / skipped are returned as an ItemSyncResult.
    - Permanent rejections (payload validation, NetSuite 4xx) are returned
      as a failed ItemSyncResult carrying a SyncError.
    - Missing items raise NotFoundError and transient ERP failures raise
      TransientError; the dispatcher classifies them.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from sqlalchemy.orm import Session

from opms_sync.db.models import ItemHealthStatus
from opms_sync.errors import DomainError, NotFoundError, SyncError
from opms_sync.services.catalog_store import CatalogItem, CatalogStore, SqlCatalogStore
from opms_sync.services.dry_run_recorder import DryRunRecorder, validate_payload
from opms_sync.services.erp_client import ErpClient
from opms_sync.services.item_sync_status import ItemSyncStatusService
from opms_sync.services.payloads import ItemPushFields, QueueEventData

logger = logging.getLogger(__name__)

DIGITAL_PRODUCT_TYPE = "D"
# Physical OPMS item codes look like 1234-5678
ITEM_CODE_PATTERN = re.compile(r"^\d{4}-\d{4}$")

SYNC_DISABLED_REASON = "Sync disabled globally (sync.enabled=false)"


class ItemOutcome(str, Enum):
    """Result of one processor attempt."""

    success = "success"
    skipped = "skipped"
    failed = "failed"


@dataclass
class ItemSyncResult:
    """What a processor reports back to the dispatcher."""

    outcome: ItemOutcome
    reason: str | None = None
    error: SyncError | None = None
    sync_fields: ItemPushFields | None = None
    external_id: str | None = None
    opms_item_id: int | None = None
    opms_product_id: int | None = None
    item_code: str | None = None
    dry_run_record_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "reason": self.reason,
            "error_code": self.error.code if self.error else None,
            "external_id": self.external_id,
            "item_code": self.item_code,
            "dry_run_record_id": self.dry_run_record_id,
        }


class ItemProcessor(Protocol):
    """Executes one attempt for a claimed queue entry."""

    def process(self, entry: Any) -> ItemSyncResult: ...


def is_digital_item(item: CatalogItem, manual: bool = False) -> bool:
    """Digital items and codes outside the physical pattern are never pushed.

    Manual triggers may push codes outside the pattern, but never items
    explicitly marked digital.
    """
    if (item.product_type or "").upper() == DIGITAL_PRODUCT_TYPE:
        return True
    code = item.code or ""
    if "digital" in code.lower():
        return True
    return not manual and not ITEM_CODE_PATTERN.match(code)


def build_item_fields(item: CatalogItem, tax_schedule_id: str | None = None) -> ItemPushFields:
    """Map a catalog item onto the NetSuite item payload."""
    displayname = item.product_name
    if item.color:
        displayname = f"{item.product_name}: {item.color}"
    return ItemPushFields(
        itemId=item.code or "",
        displayname=displayname,
        custitem_opms_item_id=item.item_id,
        custitem_opms_prod_id=item.product_id,
        taxScheduleId=tax_schedule_id,
        upcCode=item.upc_code,
    )


class ItemSyncProcessor:
    """Production ItemProcessor.

    Attributes:
        catalog: Catalog store items are read from.
        erp_client: NetSuite client for live pushes. May be None when the
            processor only ever runs in dry-run mode.
        recorder: Dry-run capture store.
        status_service: Per-item sync health writer.
        sync_enabled: Global sync switch. Manual triggers bypass it.
        dry_run: Capture payloads instead of pushing them.
        tax_schedule_id: NetSuite tax schedule stamped on every payload.
    """

    def __init__(
        self,
        db: Session,
        erp_client: ErpClient | None = None,
        sync_enabled: bool = True,
        dry_run: bool = False,
        tax_schedule_id: str | None = None,
        catalog: CatalogStore | None = None,
    ) -> None:
        self.catalog = catalog or SqlCatalogStore(db)
        self.erp_client = erp_client
        self.recorder = DryRunRecorder(db)
        self.status_service = ItemSyncStatusService(db)
        self.sync_enabled = sync_enabled
        self.dry_run = dry_run
        self.tax_schedule_id = tax_schedule_id

    def process(self, entry: Any) -> ItemSyncResult:
        """Run one sync attempt for a queue entry.

        Args:
            entry: Claimed QueueEntry (or MemoryQueueEntry).

        Returns:
            ItemSyncResult with outcome success, skipped or failed.

        Raises:
            NotFoundError: If the item does not exist in the catalog.
            TransientError: If NetSuite could not be reached.
        """
        event: QueueEventData = entry.event

        if not self.sync_enabled and not event.is_manual:
            logger.info("Skipping item %s: %s", entry.item_id, SYNC_DISABLED_REASON)
            return ItemSyncResult(
                outcome=ItemOutcome.skipped,
                reason=SYNC_DISABLED_REASON,
                opms_item_id=entry.item_id,
                opms_product_id=entry.product_id,
            )

        item = self.catalog.get_item(entry.item_id)
        if item is None:
            raise NotFoundError("Item", entry.item_id)

        if is_digital_item(item, manual=event.is_manual):
            reason = SyncError.from_code("E-1002", item_code=item.code).message
            self.status_service.mark(item.item_id, ItemHealthStatus.SKIPPED)
            logger.info("Skipping item %s: %s", item.item_id, reason)
            return self._result(item, ItemOutcome.skipped, reason=reason)

        self.status_service.mark(item.item_id, ItemHealthStatus.IN_PROGRESS)
        try:
            if self.dry_run or not event.live_sync:
                result = self._capture(item, event)
            else:
                result = self._push(item)
        except (DomainError, SyncError) as e:
            self.status_service.mark(item.item_id, ItemHealthStatus.FAILED, error=str(e))
            raise

        if result.outcome == ItemOutcome.success:
            self.status_service.mark(
                item.item_id, ItemHealthStatus.SUCCESS, netsuite_item_id=item.code
            )
        else:
            self.status_service.mark(
                item.item_id,
                ItemHealthStatus.FAILED,
                error=result.error.message if result.error else result.reason,
            )
        return result

    def _result(self, item: CatalogItem, outcome: ItemOutcome, **kwargs: Any) -> ItemSyncResult:
        return ItemSyncResult(
            outcome=outcome,
            opms_item_id=item.item_id,
            opms_product_id=item.product_id,
            item_code=item.code,
            **kwargs,
        )

    def _capture(self, item: CatalogItem, event: QueueEventData) -> ItemSyncResult:
        fields = build_item_fields(item, self.tax_schedule_id)
        record = self.recorder.record(
            payload=fields.to_payload(),
            opms_item_id=item.item_id,
            opms_item_code=item.code,
            opms_product_id=item.product_id,
            sync_type="item_sync",
            sync_trigger=event.trigger_source or "queue",
        )
        logger.info(
            "Dry-run captured item %s (record %s, would_succeed=%s)",
            item.code, record.id, record.would_succeed,
        )
        return self._result(
            item,
            ItemOutcome.success,
            reason="Dry run: payload captured",
            sync_fields=fields,
            dry_run_record_id=record.id,
        )

    def _push(self, item: CatalogItem) -> ItemSyncResult:
        fields = build_item_fields(item, self.tax_schedule_id)
        validation = validate_payload(fields.to_payload())
        if validation.status == "failed":
            error = SyncError.from_code(
                "E-2004", item_code=item.code, errors=validation.error_text
            )
            return self._result(item, ItemOutcome.failed, error=error, sync_fields=fields)

        if self.erp_client is None:
            raise SyncError.from_code(
                "E-4001", message="No NetSuite client configured for live sync"
            )

        push = self.erp_client.push_item(fields)
        if not push.success:
            error = SyncError.from_code("E-3002", message=push.error or "unknown error")
            return self._result(item, ItemOutcome.failed, error=error, sync_fields=fields)

        logger.info("Pushed item %s to NetSuite (id=%s)", item.code, push.external_id)
        return self._result(
            item, ItemOutcome.success, sync_fields=fields, external_id=push.external_id
        )
