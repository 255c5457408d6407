"""Per-item sync health (opms_item_sync_status).

One row per catalog item, upserted on every sync attempt. This is the
single answer to "is this item in sync with NetSuite right now", as
opposed to the job-scoped SyncItem history.
"""

from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from opms_sync.db.models import (
    ItemHealthStatus,
    ItemSyncStatus,
    utc_iso_offset,
    utc_now_iso,
)
from opms_sync.services.payloads import dump_json
from opms_sync.utils.redaction import sanitize_error_message

# Items that failed this many attempts stop being offered for resync
MAX_SYNC_ATTEMPTS = 5


class ItemSyncStatusService:
    """Upserts and queries item sync health."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, item_id: int) -> ItemSyncStatus | None:
        return self.db.get(ItemSyncStatus, item_id)

    def mark(
        self,
        item_id: int,
        status: ItemHealthStatus,
        netsuite_item_id: str | None = None,
        error: str | None = None,
        field_validation_results: dict | None = None,
    ) -> ItemSyncStatus:
        """Upsert the health row for an item.

        IN_PROGRESS starts an attempt and increments sync_attempts.
        SUCCESS clears the last error and stamps last_success_at.

        Args:
            item_id: OPMS item id.
            status: New health status.
            netsuite_item_id: NetSuite id, once known.
            error: Error text for FAILED.
            field_validation_results: Validation detail to keep.

        Returns:
            The upserted row.
        """
        row = self.get(item_id)
        if row is None:
            row = ItemSyncStatus(
                item_id=item_id,
                sync_status=ItemHealthStatus.NEVER_SYNCED.value,
                sync_attempts=0,
            )
            self.db.add(row)

        now = utc_now_iso()
        row.sync_status = status.value
        row.last_sync_at = now
        if status == ItemHealthStatus.IN_PROGRESS:
            row.sync_attempts = (row.sync_attempts or 0) + 1
        if status == ItemHealthStatus.SUCCESS:
            row.last_success_at = now
            row.sync_error = None
        elif error is not None:
            row.sync_error = sanitize_error_message(error)
        if netsuite_item_id is not None:
            row.netsuite_item_id = netsuite_item_id
        if field_validation_results is not None:
            row.field_validation_results = dump_json(field_validation_results)

        self.db.commit()
        self.db.refresh(row)
        return row

    def get_items_needing_sync(
        self, limit: int = 100, max_attempts: int = MAX_SYNC_ATTEMPTS
    ) -> list[ItemSyncStatus]:
        """Items that never synced or failed, under the attempt cap."""
        return (
            self.db.query(ItemSyncStatus)
            .filter(
                ItemSyncStatus.sync_status.in_(
                    [ItemHealthStatus.FAILED.value, ItemHealthStatus.NEVER_SYNCED.value]
                ),
                ItemSyncStatus.sync_attempts < max_attempts,
            )
            .order_by(ItemSyncStatus.sync_attempts, ItemSyncStatus.updated_at)
            .limit(limit)
            .all()
        )

    def get_sync_stats(self, hours: int = 24) -> dict[str, Any]:
        """Count items per status among those attempted in the window."""
        cutoff = utc_iso_offset(-hours * 3600)
        rows = (
            self.db.query(ItemSyncStatus.sync_status, func.count(ItemSyncStatus.item_id))
            .filter(ItemSyncStatus.last_sync_at >= cutoff)
            .group_by(ItemSyncStatus.sync_status)
            .all()
        )
        by_status = {s.value: 0 for s in ItemHealthStatus}
        by_status.update({status: count for status, count in rows})
        attempted = sum(by_status.values())
        success = by_status[ItemHealthStatus.SUCCESS.value]
        failed = by_status[ItemHealthStatus.FAILED.value]
        return {
            "hours": hours,
            "attempted": attempted,
            "by_status": by_status,
            "success_rate": round(success / (success + failed) * 100, 2)
            if success + failed
            else 0.0,
        }
