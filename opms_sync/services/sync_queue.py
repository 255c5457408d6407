"""Durable OPMS -> NetSuite work queue.

The opms_sync_queue table is the queue. Workers in separate processes poll
it with a locking read that skips rows another transaction already holds
(``SELECT ... FOR UPDATE SKIP LOCKED``), then claim the selected rows with
a compare-and-set UPDATE stamped with a per-call claim token. The claim
commits immediately so row locks are held only for the duration of the
selection. Only rows carrying the caller's token are returned, so no row is
ever handed to two workers, even on stores that ignore FOR UPDATE.

Two implementations share the SyncQueue protocol: TableSyncQueue (the
production, table-backed queue) and InMemorySyncQueue (an in-process
stand-in with the same claim/ack semantics, used by tests and single
process tooling).
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.orm import Session

from opms_sync.db.models import (
    PRIORITY_RANK,
    QueueEntry,
    QueuePriority,
    QueueStatus,
    generate_uuid,
    utc_iso_offset,
    utc_now_iso,
)
from opms_sync.errors import NotFoundError, SyncError, ValidationError
from opms_sync.services.payloads import QueueEventData, dump_json
from opms_sync.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
DEFAULT_MAX_RETRIES = 3
DEFAULT_STALE_AFTER_SECONDS = 900

ACTIVE_STATUSES = (QueueStatus.PENDING.value, QueueStatus.PROCESSING.value)
TERMINAL_STATUSES = (QueueStatus.COMPLETED.value, QueueStatus.FAILED.value)


def _normalize_priority(priority: str | QueuePriority) -> str:
    value = priority.value if isinstance(priority, QueuePriority) else str(priority).upper()
    if value not in PRIORITY_RANK:
        raise ValidationError(
            f"Invalid priority '{priority}'. Expected HIGH, NORMAL or LOW.",
            field="priority",
        )
    return value


def _normalize_status(status: str | QueueStatus) -> str:
    try:
        return QueueStatus(status).value
    except ValueError:
        raise ValidationError(f"Invalid queue status '{status}'", field="status") from None


def _coerce_event(event_data: QueueEventData | dict | None) -> QueueEventData:
    try:
        return QueueEventData.coerce(event_data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid event data: {e}", field="event_data") from e


def _success_rate(completed: int, failed: int) -> float:
    finished = completed + failed
    if finished == 0:
        return 0.0
    return round(completed / finished * 100, 2)


class SyncQueue(Protocol):
    """Claim/ack interface shared by the queue implementations."""

    def create_sync_job(
        self,
        item_id: int,
        product_id: int | None = None,
        event_type: str = "UPDATE",
        event_data: QueueEventData | dict | None = None,
        priority: str = "NORMAL",
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> Any: ...

    def get_next_batch(self, batch_size: int = DEFAULT_BATCH_SIZE) -> list[Any]: ...

    def update_status(
        self,
        entry_id: int,
        status: str,
        retry_count: int | None = None,
        error_message: str | None = None,
        processing_results: dict | None = None,
    ) -> Any: ...

    def schedule_retry(
        self,
        entry_id: int,
        delay_ms: int,
        retry_count: int,
        last_error: str | None = None,
    ) -> Any: ...

    def cancel_pending_job(self, entry_id: int) -> bool: ...

    def cleanup_old_jobs(self, days_to_keep: int = 7) -> int: ...

    def reclaim_stale(
        self, stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS
    ) -> dict[str, int]: ...

    def get_entry(self, entry_id: int) -> Any | None: ...

    def get_queue_status(self) -> dict[str, Any]: ...


# =============================================================================
# Table-backed queue
# =============================================================================


class TableSyncQueue:
    """Queue backed by the opms_sync_queue table.

    Attributes:
        db: SQLAlchemy session. Every mutating call commits.
        worker_id: Identifier stamped into locked_by on claim.
    """

    def __init__(self, db: Session, worker_id: str | None = None) -> None:
        """Initialize the queue.

        Args:
            db: SQLAlchemy session for database operations.
            worker_id: Identifier for claims made through this instance.
                Defaults to a random id.
        """
        self.db = db
        self.worker_id = worker_id or f"worker-{generate_uuid()[:8]}"

    @staticmethod
    def _priority_rank():
        return case(
            (QueueEntry.priority == QueuePriority.HIGH.value, 1),
            (QueueEntry.priority == QueuePriority.NORMAL.value, 2),
            else_=3,
        )

    def _require(self, entry_id: int) -> QueueEntry:
        entry = self.get_entry(entry_id)
        if entry is None:
            raise NotFoundError("Queue entry", entry_id)
        return entry

    # =========================================================================
    # Enqueue
    # =========================================================================

    def get_active_entry(self, item_id: int) -> QueueEntry | None:
        """Return the newest PENDING/PROCESSING entry for an item, if any."""
        return (
            self.db.query(QueueEntry)
            .filter(
                QueueEntry.item_id == item_id,
                QueueEntry.status.in_(ACTIVE_STATUSES),
            )
            .order_by(QueueEntry.created_at.desc(), QueueEntry.id.desc())
            .first()
        )

    def create_sync_job(
        self,
        item_id: int,
        product_id: int | None = None,
        event_type: str = "UPDATE",
        event_data: QueueEventData | dict | None = None,
        priority: str = "NORMAL",
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> QueueEntry:
        """Enqueue a sync for an item, or return its outstanding entry.

        Enqueue is idempotent per item: when a PENDING or PROCESSING entry
        already exists for ``item_id`` it is returned and nothing is
        inserted.

        Args:
            item_id: OPMS item id.
            product_id: OPMS product id.
            event_type: INSERT, UPDATE or DELETE.
            event_data: Typed event data or a dict validated against it.
            priority: HIGH, NORMAL or LOW.
            max_retries: Retry ceiling for this entry.

        Returns:
            The new or existing QueueEntry.

        Raises:
            ValidationError: If priority, max_retries or event_data is invalid.
        """
        priority_value = _normalize_priority(priority)
        event = _coerce_event(event_data)
        if max_retries < 0:
            raise ValidationError("max_retries must be >= 0", field="max_retries")

        existing = self.get_active_entry(item_id)
        if existing is not None:
            logger.info(
                "Sync already queued for item %s (entry=%s status=%s)",
                item_id, existing.id, existing.status,
            )
            return existing

        entry = QueueEntry(
            item_id=item_id,
            product_id=product_id,
            event_type=event_type.upper(),
            event_data=event.to_json(),
            priority=priority_value,
            status=QueueStatus.PENDING.value,
            retry_count=0,
            max_retries=max_retries,
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        logger.info(
            "Queued sync entry %s for item %s (priority=%s)",
            entry.id, item_id, priority_value,
        )
        return entry

    # =========================================================================
    # Claim
    # =========================================================================

    def _select_candidates(self, batch_size: int, now: str) -> list[int]:
        """Locking read of the next eligible ids, skipping locked rows."""
        rank = self._priority_rank()
        stmt = (
            select(QueueEntry.id)
            .where(
                QueueEntry.status == QueueStatus.PENDING.value,
                or_(QueueEntry.retry_at.is_(None), QueueEntry.retry_at <= now),
            )
            .order_by(rank, QueueEntry.created_at, QueueEntry.id)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        return list(self.db.execute(stmt).scalars().all())

    def _claim(self, candidate_ids: list[int], now: str) -> list[QueueEntry]:
        """Compare-and-set the candidates to PROCESSING under a fresh token.

        Rows that changed status since they were selected are left alone,
        so only rows this call actually moved are returned.
        """
        if not candidate_ids:
            self.db.commit()
            return []

        token = generate_uuid()
        self.db.execute(
            update(QueueEntry)
            .where(
                QueueEntry.id.in_(candidate_ids),
                QueueEntry.status == QueueStatus.PENDING.value,
            )
            .values(
                status=QueueStatus.PROCESSING.value,
                locked_by=self.worker_id,
                locked_at=now,
                claim_token=token,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        return (
            self.db.query(QueueEntry)
            .filter(QueueEntry.claim_token == token)
            .order_by(self._priority_rank(), QueueEntry.created_at, QueueEntry.id)
            .all()
        )

    def get_next_batch(self, batch_size: int = DEFAULT_BATCH_SIZE) -> list[QueueEntry]:
        """Claim up to ``batch_size`` eligible entries for this worker.

        Eligible entries are PENDING with no retry_at or a retry_at in the
        past, ordered HIGH > NORMAL > LOW and then by creation time.

        Args:
            batch_size: Maximum number of entries to claim.

        Returns:
            Claimed entries, now PROCESSING and locked by this worker.
        """
        if batch_size <= 0:
            return []
        now = utc_now_iso()
        candidates = self._select_candidates(batch_size, now)
        claimed = self._claim(candidates, now)
        if claimed:
            logger.debug(
                "Worker %s claimed %d/%d queue entries",
                self.worker_id, len(claimed), len(candidates),
            )
        return claimed

    # =========================================================================
    # Ack / retry / cancel
    # =========================================================================

    def update_status(
        self,
        entry_id: int,
        status: str,
        retry_count: int | None = None,
        error_message: str | None = None,
        processing_results: dict | None = None,
    ) -> QueueEntry:
        """Set an entry's status. COMPLETED and FAILED stamp processed_at.

        Raises:
            NotFoundError: If the entry does not exist.
            ValidationError: If status is not a queue status.
        """
        status_value = _normalize_status(status)
        entry = self._require(entry_id)
        entry.status = status_value
        if status_value in TERMINAL_STATUSES:
            entry.processed_at = utc_now_iso()
            entry.locked_by = None
            entry.locked_at = None
            entry.claim_token = None
        if retry_count is not None:
            entry.retry_count = retry_count
        if error_message is not None:
            entry.error_message = sanitize_error_message(error_message)
        if processing_results is not None:
            entry.processing_results = dump_json(processing_results)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def schedule_retry(
        self,
        entry_id: int,
        delay_ms: int,
        retry_count: int,
        last_error: str | None = None,
    ) -> QueueEntry:
        """Return an entry to PENDING, eligible again after ``delay_ms``.

        Raises:
            NotFoundError: If the entry does not exist.
            ValidationError: If retry_count exceeds the entry's max_retries.
        """
        entry = self._require(entry_id)
        if retry_count > entry.max_retries:
            raise ValidationError(
                f"retry_count {retry_count} exceeds max_retries {entry.max_retries}",
                field="retry_count",
            )
        entry.status = QueueStatus.PENDING.value
        entry.retry_count = retry_count
        entry.retry_at = utc_iso_offset(max(delay_ms, 0) / 1000)
        entry.error_message = sanitize_error_message(last_error)
        entry.locked_by = None
        entry.locked_at = None
        entry.claim_token = None
        self.db.commit()
        self.db.refresh(entry)
        logger.info(
            "Scheduled retry %d/%d for queue entry %s in %dms",
            retry_count, entry.max_retries, entry_id, delay_ms,
        )
        return entry

    def cancel_pending_job(self, entry_id: int) -> bool:
        """Delete an entry only while it is still PENDING.

        Returns:
            True if the entry was deleted, False if missing or already claimed.
        """
        result = self.db.execute(
            delete(QueueEntry).where(
                QueueEntry.id == entry_id,
                QueueEntry.status == QueueStatus.PENDING.value,
            )
        )
        self.db.commit()
        return result.rowcount > 0

    def cleanup_old_jobs(self, days_to_keep: int = 7) -> int:
        """Delete COMPLETED/FAILED entries finished before the window.

        Returns:
            Number of rows deleted.
        """
        cutoff = utc_iso_offset(-days_to_keep * 86400)
        result = self.db.execute(
            delete(QueueEntry).where(
                QueueEntry.status.in_(TERMINAL_STATUSES),
                QueueEntry.processed_at < cutoff,
            )
        )
        self.db.commit()
        if result.rowcount:
            logger.info("Cleaned up %d finished queue entries", result.rowcount)
        return result.rowcount

    def reclaim_stale(
        self, stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS
    ) -> dict[str, int]:
        """Return PROCESSING entries whose claim went stale to the queue.

        A stale claim counts as one attempt. Entries still under their
        retry ceiling go back to PENDING; the rest are failed.

        Args:
            stale_after_seconds: Age of locked_at after which a claim is stale.

        Returns:
            Dict with reclaimed and failed counts.
        """
        cutoff = utc_iso_offset(-stale_after_seconds)
        stale = (
            self.db.query(QueueEntry)
            .filter(
                QueueEntry.status == QueueStatus.PROCESSING.value,
                func.coalesce(QueueEntry.locked_at, QueueEntry.updated_at) < cutoff,
            )
            .with_for_update(skip_locked=True)
            .all()
        )

        reclaimed = 0
        failed = 0
        now = utc_now_iso()
        for entry in stale:
            reason = SyncError.from_code(
                "E-4004", worker=entry.locked_by or "unknown", seconds=stale_after_seconds
            ).message
            attempts = entry.retry_count + 1
            if attempts > entry.max_retries:
                entry.status = QueueStatus.FAILED.value
                entry.processed_at = now
                entry.error_message = f"Max retries exceeded: {reason}"
                failed += 1
            else:
                entry.status = QueueStatus.PENDING.value
                entry.retry_count = attempts
                entry.retry_at = None
                entry.error_message = reason
                reclaimed += 1
            entry.locked_by = None
            entry.locked_at = None
            entry.claim_token = None
        self.db.commit()

        if stale:
            logger.warning(
                "Reclaimed %d stale queue entries (%d failed at retry ceiling)",
                reclaimed, failed,
            )
        return {"reclaimed": reclaimed, "failed": failed}

    # =========================================================================
    # Queries
    # =========================================================================

    def get_entry(self, entry_id: int) -> QueueEntry | None:
        return self.db.query(QueueEntry).filter(QueueEntry.id == entry_id).first()

    def list_entries(
        self,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[QueueEntry]:
        """List entries, newest first, optionally filtered by status."""
        query = self.db.query(QueueEntry)
        if status is not None:
            query = query.filter(QueueEntry.status == _normalize_status(status))
        return (
            query.order_by(QueueEntry.created_at.desc(), QueueEntry.id.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )

    def get_queue_status(self) -> dict[str, Any]:
        """Count entries per status plus the active (pending + processing) total."""
        rows = (
            self.db.query(QueueEntry.status, func.count(QueueEntry.id))
            .group_by(QueueEntry.status)
            .all()
        )
        by_status = {s.value: 0 for s in QueueStatus}
        by_status.update({status: count for status, count in rows})
        oldest_pending = (
            self.db.query(func.min(QueueEntry.created_at))
            .filter(QueueEntry.status == QueueStatus.PENDING.value)
            .scalar()
        )
        return {
            "by_status": by_status,
            "active": by_status["PENDING"] + by_status["PROCESSING"],
            "total": sum(by_status.values()),
            "oldest_pending_at": oldest_pending,
        }

    def get_job_stats(self, hours: int = 24) -> dict[str, Any]:
        """Summarize entries created in the last ``hours`` hours."""
        cutoff = utc_iso_offset(-hours * 3600)
        base = self.db.query(QueueEntry).filter(QueueEntry.created_at >= cutoff)

        by_status = {s.value: 0 for s in QueueStatus}
        for status, count in (
            base.with_entities(QueueEntry.status, func.count(QueueEntry.id))
            .group_by(QueueEntry.status)
            .all()
        ):
            by_status[status] = count

        by_priority = {p.value: 0 for p in QueuePriority}
        for priority, count in (
            base.with_entities(QueueEntry.priority, func.count(QueueEntry.id))
            .group_by(QueueEntry.priority)
            .all()
        ):
            by_priority[priority] = count

        avg_retries = base.with_entities(func.avg(QueueEntry.retry_count)).scalar()
        return {
            "hours": hours,
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_priority": by_priority,
            "avg_retry_count": round(float(avg_retries or 0), 2),
            "success_rate": _success_rate(by_status["COMPLETED"], by_status["FAILED"]),
        }


# =============================================================================
# In-memory queue
# =============================================================================


@dataclass
class MemoryQueueEntry:
    """In-memory counterpart of a QueueEntry row."""

    id: int
    item_id: int
    product_id: int | None
    event_type: str
    event: QueueEventData
    priority: str
    max_retries: int
    status: str = QueueStatus.PENDING.value
    retry_count: int = 0
    retry_at: datetime | None = None
    error_message: str | None = None
    processing_results: dict | None = None
    locked_by: str | None = None
    locked_at: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    processed_at: datetime | None = None


class InMemorySyncQueue:
    """Process-local queue with the same claim/ack semantics as the table.

    A single lock guards all state, so concurrent threads draining it each
    receive disjoint entries.
    """

    def __init__(self, worker_id: str = "memory") -> None:
        self.worker_id = worker_id
        self._entries: dict[int, MemoryQueueEntry] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def _require(self, entry_id: int) -> MemoryQueueEntry:
        entry = self._entries.get(entry_id)
        if entry is None:
            raise NotFoundError("Queue entry", entry_id)
        return entry

    def _sort_key(self, entry: MemoryQueueEntry) -> tuple:
        return (PRIORITY_RANK[entry.priority], entry.created_at, entry.id)

    def create_sync_job(
        self,
        item_id: int,
        product_id: int | None = None,
        event_type: str = "UPDATE",
        event_data: QueueEventData | dict | None = None,
        priority: str = "NORMAL",
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> MemoryQueueEntry:
        priority_value = _normalize_priority(priority)
        event = _coerce_event(event_data)
        if max_retries < 0:
            raise ValidationError("max_retries must be >= 0", field="max_retries")
        with self._lock:
            active = [
                e for e in self._entries.values()
                if e.item_id == item_id and e.status in ACTIVE_STATUSES
            ]
            if active:
                return max(active, key=lambda e: (e.created_at, e.id))
            entry = MemoryQueueEntry(
                id=self._next_id,
                item_id=item_id,
                product_id=product_id,
                event_type=event_type.upper(),
                event=event,
                priority=priority_value,
                max_retries=max_retries,
            )
            self._entries[entry.id] = entry
            self._next_id += 1
            return entry

    def get_next_batch(self, batch_size: int = DEFAULT_BATCH_SIZE) -> list[MemoryQueueEntry]:
        if batch_size <= 0:
            return []
        now = datetime.now(UTC)
        with self._lock:
            eligible = sorted(
                (
                    e for e in self._entries.values()
                    if e.status == QueueStatus.PENDING.value
                    and (e.retry_at is None or e.retry_at <= now)
                ),
                key=self._sort_key,
            )[:batch_size]
            for entry in eligible:
                entry.status = QueueStatus.PROCESSING.value
                entry.locked_by = self.worker_id
                entry.locked_at = now
            return eligible

    def update_status(
        self,
        entry_id: int,
        status: str,
        retry_count: int | None = None,
        error_message: str | None = None,
        processing_results: dict | None = None,
    ) -> MemoryQueueEntry:
        status_value = _normalize_status(status)
        with self._lock:
            entry = self._require(entry_id)
            entry.status = status_value
            if status_value in TERMINAL_STATUSES:
                entry.processed_at = datetime.now(UTC)
                entry.locked_by = None
                entry.locked_at = None
            if retry_count is not None:
                entry.retry_count = retry_count
            if error_message is not None:
                entry.error_message = sanitize_error_message(error_message)
            if processing_results is not None:
                entry.processing_results = processing_results
            return entry

    def schedule_retry(
        self,
        entry_id: int,
        delay_ms: int,
        retry_count: int,
        last_error: str | None = None,
    ) -> MemoryQueueEntry:
        with self._lock:
            entry = self._require(entry_id)
            if retry_count > entry.max_retries:
                raise ValidationError(
                    f"retry_count {retry_count} exceeds max_retries {entry.max_retries}",
                    field="retry_count",
                )
            entry.status = QueueStatus.PENDING.value
            entry.retry_count = retry_count
            entry.retry_at = datetime.now(UTC) + timedelta(milliseconds=max(delay_ms, 0))
            entry.error_message = sanitize_error_message(last_error)
            entry.locked_by = None
            entry.locked_at = None
            return entry

    def cancel_pending_job(self, entry_id: int) -> bool:
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None or entry.status != QueueStatus.PENDING.value:
                return False
            del self._entries[entry_id]
            return True

    def cleanup_old_jobs(self, days_to_keep: int = 7) -> int:
        cutoff = datetime.now(UTC) - timedelta(days=days_to_keep)
        with self._lock:
            doomed = [
                e.id for e in self._entries.values()
                if e.status in TERMINAL_STATUSES
                and e.processed_at is not None
                and e.processed_at < cutoff
            ]
            for entry_id in doomed:
                del self._entries[entry_id]
            return len(doomed)

    def reclaim_stale(
        self, stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS
    ) -> dict[str, int]:
        cutoff = datetime.now(UTC) - timedelta(seconds=stale_after_seconds)
        reclaimed = 0
        failed = 0
        with self._lock:
            for entry in self._entries.values():
                if entry.status != QueueStatus.PROCESSING.value:
                    continue
                if entry.locked_at is None or entry.locked_at >= cutoff:
                    continue
                reason = SyncError.from_code(
                    "E-4004", worker=entry.locked_by or "unknown", seconds=stale_after_seconds
                ).message
                if entry.retry_count + 1 > entry.max_retries:
                    entry.status = QueueStatus.FAILED.value
                    entry.processed_at = datetime.now(UTC)
                    entry.error_message = f"Max retries exceeded: {reason}"
                    failed += 1
                else:
                    entry.status = QueueStatus.PENDING.value
                    entry.retry_count += 1
                    entry.retry_at = None
                    entry.error_message = reason
                    reclaimed += 1
                entry.locked_by = None
                entry.locked_at = None
        return {"reclaimed": reclaimed, "failed": failed}

    def get_entry(self, entry_id: int) -> MemoryQueueEntry | None:
        return self._entries.get(entry_id)

    def get_queue_status(self) -> dict[str, Any]:
        with self._lock:
            by_status = {s.value: 0 for s in QueueStatus}
            for entry in self._entries.values():
                by_status[entry.status] += 1
            pending = [
                e.created_at for e in self._entries.values()
                if e.status == QueueStatus.PENDING.value
            ]
        return {
            "by_status": by_status,
            "active": by_status["PENDING"] + by_status["PROCESSING"],
            "total": sum(by_status.values()),
            "oldest_pending_at": min(pending).isoformat() if pending else None,
        }
