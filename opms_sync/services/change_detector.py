"""Catalog-side change ingestion.

Catalog changes reach the sync engine three ways: database triggers and
API calls report them as they happen, operators trigger items or whole
products manually, and a polling pass catches anything the first two
missed. Every detected change is appended to opms_change_log and, where a
sync is warranted, enqueued on the SyncQueue (idempotently, so a burst of
changes to one item yields one outstanding entry).
"""

import logging
from typing import Any

from sqlalchemy import delete, func
from sqlalchemy.orm import Session

from opms_sync.db.models import (
    ChangeLogEntry,
    ChangeSource,
    ChangeType,
    QueuePriority,
    utc_iso_offset,
)
from opms_sync.errors import NotFoundError
from opms_sync.services.catalog_store import CatalogStore, SqlCatalogStore
from opms_sync.services.payloads import QueueEventData, dump_json
from opms_sync.services.sync_queue import DEFAULT_MAX_RETRIES, SyncQueue, TableSyncQueue

logger = logging.getLogger(__name__)

DEFAULT_CHANGE_LOG_RETENTION_DAYS = 30
# Upper bound on items enqueued by a single polling pass
POLLING_BATCH_LIMIT = 100


class ChangeDetector:
    """Records catalog changes and turns them into queue entries.

    Attributes:
        db: SQLAlchemy session for the change log.
        queue: Queue that sync work is enqueued on.
        catalog: Catalog store used to validate and expand triggers.
    """

    def __init__(
        self,
        db: Session,
        queue: SyncQueue | None = None,
        catalog: CatalogStore | None = None,
    ) -> None:
        self.db = db
        self.queue = queue or TableSyncQueue(db)
        self.catalog = catalog or SqlCatalogStore(db)

    def record_change(
        self,
        item_id: int,
        product_id: int | None,
        change_type: ChangeType | str,
        change_source: ChangeSource | str,
        change_data: dict[str, Any] | None = None,
        user_id: int | None = None,
    ) -> ChangeLogEntry:
        """Append one change to the change log."""
        entry = ChangeLogEntry(
            item_id=item_id,
            product_id=product_id,
            change_type=ChangeType(change_type).value,
            change_source=ChangeSource(change_source).value,
            change_data=dump_json(change_data),
            user_id=user_id,
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def queue_item_sync(
        self,
        item_id: int,
        product_id: int | None = None,
        event_type: str = "UPDATE",
        event_data: QueueEventData | dict | None = None,
        priority: QueuePriority | str = QueuePriority.NORMAL,
        change_source: ChangeSource = ChangeSource.API_CALL,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> Any:
        """Log a change and enqueue a sync for the item.

        Args:
            item_id: OPMS item id.
            product_id: OPMS product id.
            event_type: INSERT, UPDATE or DELETE.
            event_data: Queue event data.
            priority: Queue priority.
            change_source: Where the change was reported from.
            max_retries: Retry ceiling for a newly created entry.

        Returns:
            The new or already-outstanding queue entry.

        Raises:
            ValidationError: If priority or event data is invalid.
        """
        entry = self.queue.create_sync_job(
            item_id=item_id,
            product_id=product_id,
            event_type=event_type,
            event_data=event_data,
            priority=priority,
            max_retries=max_retries,
        )
        change_type = (
            ChangeType.ITEM_CREATE if event_type.upper() == "INSERT" else ChangeType.ITEM_UPDATE
        )
        self.record_change(
            item_id,
            product_id,
            change_type,
            change_source,
            change_data={
                "event_type": event_type.upper(),
                "queue_entry_id": entry.id,
                "changed_fields": entry.event.changed_fields,
            },
        )
        return entry

    def manual_trigger_item(
        self,
        item_id: int,
        reason: str = "Manual trigger",
        priority: QueuePriority | str = QueuePriority.HIGH,
        triggered_by: str | None = None,
    ) -> Any:
        """Enqueue one item on operator request.

        Manual triggers bypass the global sync switch and the item code
        pattern check at processing time.

        Raises:
            NotFoundError: If the item does not exist.
        """
        item = self.catalog.get_item(item_id)
        if item is None:
            raise NotFoundError("Item", item_id)

        event = QueueEventData(
            trigger_source="MANUAL_API",
            triggered_by=triggered_by,
            reason=reason,
        )
        entry = self.queue.create_sync_job(
            item_id=item.item_id,
            product_id=item.product_id,
            event_type="UPDATE",
            event_data=event,
            priority=priority,
        )
        self.record_change(
            item.item_id,
            item.product_id,
            ChangeType.MANUAL_SYNC,
            ChangeSource.MANUAL_TRIGGER,
            change_data={
                "reason": reason,
                "triggered_by": triggered_by,
                "item_code": item.code,
                "queue_entry_id": entry.id,
            },
        )
        logger.info(
            "Manual sync queued for item %s (%s) by %s",
            item.item_id, item.code, triggered_by or "unknown",
        )
        return entry

    def manual_trigger_product(
        self,
        product_id: int,
        reason: str = "Manual product trigger",
        priority: QueuePriority | str = QueuePriority.NORMAL,
        triggered_by: str | None = None,
    ) -> list[Any]:
        """Enqueue every active item of a product.

        Raises:
            NotFoundError: If the product has no active items.
        """
        items = self.catalog.list_product_items(product_id)
        if not items:
            raise NotFoundError("Product", product_id)

        entries = []
        for item in items:
            event = QueueEventData(
                trigger_source="MANUAL_PRODUCT_API",
                triggered_by=triggered_by,
                reason=reason,
            )
            entries.append(
                self.queue.create_sync_job(
                    item_id=item.item_id,
                    product_id=product_id,
                    event_type="UPDATE",
                    event_data=event,
                    priority=priority,
                )
            )
        self.record_change(
            items[0].item_id,
            product_id,
            ChangeType.PRODUCT_UPDATE,
            ChangeSource.MANUAL_TRIGGER,
            change_data={
                "reason": reason,
                "triggered_by": triggered_by,
                "item_ids": [item.item_id for item in items],
            },
        )
        logger.info(
            "Manual sync queued for %d items of product %s", len(entries), product_id
        )
        return entries

    def detect_missed_changes(self, since: str) -> list[Any]:
        """Polling backup for changes that were never reported.

        Items modified after ``since`` with no PENDING/PROCESSING queue
        entry are logged as POLLING_SERVICE changes and enqueued.

        Args:
            since: ISO8601 timestamp of the previous poll.

        Returns:
            Queue entries created by this pass.
        """
        candidates = self.catalog.items_modified_since(since)
        queued = []
        for item in candidates:
            if len(queued) >= POLLING_BATCH_LIMIT:
                break
            if not item.code:
                continue
            if self._has_active_entry(item.item_id):
                continue
            entry = self.queue.create_sync_job(
                item_id=item.item_id,
                product_id=item.product_id,
                event_type="UPDATE",
                event_data=QueueEventData(
                    trigger_source="POLLING_BACKUP",
                    reason="Missed by triggers or system downtime",
                ),
            )
            self.record_change(
                item.item_id,
                item.product_id,
                ChangeType.ITEM_UPDATE,
                ChangeSource.POLLING_SERVICE,
                change_data={
                    "detection_method": "polling_backup",
                    "item_code": item.code,
                    "last_poll_time": since,
                    "item_date_modified": item.date_modified,
                },
            )
            queued.append(entry)

        if queued:
            logger.info("Polling detected %d missed changes since %s", len(queued), since)
        return queued

    def _has_active_entry(self, item_id: int) -> bool:
        get_active = getattr(self.queue, "get_active_entry", None)
        if get_active is not None:
            return get_active(item_id) is not None
        return False

    # Queries

    def get_recent_changes(
        self,
        hours: int = 24,
        change_type: ChangeType | str | None = None,
        change_source: ChangeSource | str | None = None,
        limit: int = 100,
    ) -> list[ChangeLogEntry]:
        query = self.db.query(ChangeLogEntry).filter(
            ChangeLogEntry.detected_at >= utc_iso_offset(-hours * 3600)
        )
        if change_type is not None:
            query = query.filter(ChangeLogEntry.change_type == ChangeType(change_type).value)
        if change_source is not None:
            query = query.filter(
                ChangeLogEntry.change_source == ChangeSource(change_source).value
            )
        return (
            query.order_by(ChangeLogEntry.detected_at.desc(), ChangeLogEntry.id.desc())
            .limit(limit)
            .all()
        )

    def get_change_stats(self, hours: int = 24) -> dict[str, Any]:
        """Count changes by type and by source within the window."""
        cutoff = utc_iso_offset(-hours * 3600)
        base = self.db.query(ChangeLogEntry).filter(ChangeLogEntry.detected_at >= cutoff)

        def grouped(column) -> dict[str, int]:
            rows = (
                base.with_entities(column, func.count(ChangeLogEntry.id))
                .group_by(column)
                .all()
            )
            return {key: count for key, count in rows}

        by_type = {t.value: 0 for t in ChangeType}
        by_type.update(grouped(ChangeLogEntry.change_type))
        by_source = {s.value: 0 for s in ChangeSource}
        by_source.update(grouped(ChangeLogEntry.change_source))
        unique_items = base.with_entities(
            func.count(func.distinct(ChangeLogEntry.item_id))
        ).scalar()
        return {
            "hours": hours,
            "total": sum(by_type.values()),
            "unique_items": unique_items or 0,
            "by_type": by_type,
            "by_source": by_source,
        }

    def cleanup_old_entries(self, days_to_keep: int = DEFAULT_CHANGE_LOG_RETENTION_DAYS) -> int:
        """Delete change log entries older than the retention window."""
        result = self.db.execute(
            delete(ChangeLogEntry).where(
                ChangeLogEntry.detected_at < utc_iso_offset(-days_to_keep * 86400)
            )
        )
        self.db.commit()
        if result.rowcount:
            logger.info("Cleaned up %d change log entries", result.rowcount)
        return result.rowcount
