"""Sync job and item lifecycle with state machine validation.

Jobs move pending -> running -> completed/failed/cancelled. Items move
pending -> processing -> success/failed/skipped, and success and skipped
are final. Item outcomes and the owning job's counters are written in the
same commit, so progress is observable while a batch is still running.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from opms_sync.db.models import (
    SyncItem,
    SyncItemStatus,
    SyncJob,
    SyncJobStatus,
    SyncJobType,
    utc_now_iso,
)
from opms_sync.errors import InvalidStateTransition, NotFoundError
from opms_sync.services.payloads import dump_json
from opms_sync.services.pricing_sync_engine import PricingOutcome, PricingSyncResult
from opms_sync.utils.redaction import sanitize_error_message

# Valid state transitions for job lifecycle
VALID_TRANSITIONS: dict[SyncJobStatus, list[SyncJobStatus]] = {
    SyncJobStatus.pending: [
        SyncJobStatus.running,
        SyncJobStatus.cancelled,
        SyncJobStatus.failed,
    ],
    SyncJobStatus.running: [
        SyncJobStatus.completed,
        SyncJobStatus.failed,
        SyncJobStatus.cancelled,
    ],
    SyncJobStatus.completed: [],  # terminal
    SyncJobStatus.failed: [],  # terminal
    SyncJobStatus.cancelled: [],  # terminal
}

ITEM_TRANSITIONS: dict[SyncItemStatus, list[SyncItemStatus]] = {
    SyncItemStatus.pending: [
        SyncItemStatus.processing,
        SyncItemStatus.skipped,
        SyncItemStatus.failed,
    ],
    SyncItemStatus.processing: [
        SyncItemStatus.success,
        SyncItemStatus.failed,
        SyncItemStatus.skipped,
    ],
    SyncItemStatus.success: [],  # final
    SyncItemStatus.failed: [],
    SyncItemStatus.skipped: [],  # final
}

_OUTCOME_COUNTERS = {
    SyncItemStatus.success: "successful_items",
    SyncItemStatus.failed: "failed_items",
    SyncItemStatus.skipped: "skipped_items",
}


def _duration_since(started_at: str | None) -> float | None:
    if not started_at:
        return None
    started = datetime.fromisoformat(started_at)
    return round((datetime.now(UTC) - started).total_seconds(), 3)


def _json_or_none(value: BaseModel | dict | None) -> str | None:
    return dump_json(value) if value is not None else None


class SyncJobService:
    """Service for sync job and item lifecycle.

    Attributes:
        db: SQLAlchemy session for database operations.
    """

    def __init__(self, db: Session) -> None:
        """Initialize the job service with a database session.

        Args:
            db: SQLAlchemy session for database operations.
        """
        self.db = db

    # =========================================================================
    # Job CRUD Operations
    # =========================================================================

    def create_job(
        self,
        job_type: SyncJobType | str,
        total_items: int = 0,
        triggered_by: str | None = None,
        source: str | None = None,
    ) -> SyncJob:
        """Create a pending sync job.

        Args:
            job_type: Kind of job.
            total_items: Number of items the job will process.
            triggered_by: Who or what created the job.
            source: Provenance (queue, webhook, api, cli).

        Returns:
            The created SyncJob.
        """
        job = SyncJob(
            job_type=SyncJobType(job_type).value,
            status=SyncJobStatus.pending.value,
            total_items=total_items,
            triggered_by=triggered_by,
            source=source,
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        return job

    def get_job(self, job_id: str) -> SyncJob | None:
        return self.db.query(SyncJob).filter(SyncJob.id == job_id).first()

    def require_job(self, job_id: str) -> SyncJob:
        """Get a job or raise NotFoundError."""
        job = self.get_job(job_id)
        if job is None:
            raise NotFoundError("Sync job", job_id)
        return job

    def list_jobs(
        self,
        status: SyncJobStatus | None = None,
        job_type: SyncJobType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[SyncJob]:
        """List jobs, newest first, with optional filters and pagination."""
        query = self.db.query(SyncJob)
        if status is not None:
            query = query.filter(SyncJob.status == status.value)
        if job_type is not None:
            query = query.filter(SyncJob.job_type == job_type.value)
        return (
            query.order_by(SyncJob.created_at.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )

    def last_completed_at(self, job_types: list[SyncJobType]) -> str | None:
        """completed_at of the newest completed job of the given types."""
        job = (
            self.db.query(SyncJob)
            .filter(
                SyncJob.job_type.in_([t.value for t in job_types]),
                SyncJob.status == SyncJobStatus.completed.value,
            )
            .order_by(SyncJob.completed_at.desc())
            .first()
        )
        return job.completed_at if job else None

    def count_jobs(self, status: SyncJobStatus | None = None) -> int:
        query = self.db.query(func.count(SyncJob.id))
        if status is not None:
            query = query.filter(SyncJob.status == status.value)
        return query.scalar() or 0

    # =========================================================================
    # State Machine Operations
    # =========================================================================

    def can_transition(self, current: SyncJobStatus, target: SyncJobStatus) -> bool:
        return target in VALID_TRANSITIONS.get(current, [])

    def update_status(
        self,
        job_id: str,
        new_status: SyncJobStatus,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> SyncJob:
        """Update a job's status with state machine validation.

        Terminal states stamp completed_at and duration_seconds.

        Raises:
            NotFoundError: If the job does not exist.
            InvalidStateTransition: If the transition is not allowed.
        """
        job = self.require_job(job_id)
        current = SyncJobStatus(job.status)
        if not self.can_transition(current, new_status):
            raise InvalidStateTransition(
                current_state=current.value,
                attempted_state=new_status.value,
                allowed_transitions=[s.value for s in VALID_TRANSITIONS[current]],
            )

        now = utc_now_iso()
        job.status = new_status.value
        if new_status == SyncJobStatus.running and job.started_at is None:
            job.started_at = now
        if new_status in (
            SyncJobStatus.completed,
            SyncJobStatus.failed,
            SyncJobStatus.cancelled,
        ):
            job.completed_at = now
            job.duration_seconds = _duration_since(job.started_at)
        if error_code is not None:
            job.error_code = error_code
        if error_message is not None:
            job.error_message = sanitize_error_message(error_message)

        self.db.commit()
        self.db.refresh(job)
        return job

    def start_job(self, job_id: str) -> SyncJob:
        return self.update_status(job_id, SyncJobStatus.running)

    def complete_job(self, job_id: str) -> SyncJob:
        return self.update_status(job_id, SyncJobStatus.completed)

    def fail_job(
        self, job_id: str, error_message: str, error_code: str | None = None
    ) -> SyncJob:
        return self.update_status(
            job_id,
            SyncJobStatus.failed,
            error_code=error_code,
            error_message=error_message,
        )

    def cancel_job(self, job_id: str) -> SyncJob:
        return self.update_status(job_id, SyncJobStatus.cancelled)

    def set_total_items(self, job_id: str, total_items: int) -> SyncJob:
        """Record how many items a job will process once that is known."""
        job = self.require_job(job_id)
        job.total_items = total_items
        self.db.commit()
        self.db.refresh(job)
        return job

    # =========================================================================
    # Item Operations
    # =========================================================================

    def create_item(
        self,
        job_id: str,
        item_code: str | None = None,
        netsuite_item_id: str | None = None,
        netsuite_internal_id: str | None = None,
        opms_item_id: int | None = None,
        opms_product_id: int | None = None,
        pricing_data: dict | None = None,
        queue_entry_id: int | None = None,
        retry_count: int = 0,
        max_retries: int = 3,
        status: SyncItemStatus = SyncItemStatus.pending,
    ) -> SyncItem:
        """Create an item under a job.

        Raises:
            NotFoundError: If the job does not exist.
        """
        self.require_job(job_id)
        item = SyncItem(
            sync_job_id=job_id,
            item_code=item_code,
            netsuite_item_id=netsuite_item_id,
            netsuite_internal_id=netsuite_internal_id,
            opms_item_id=opms_item_id,
            opms_product_id=opms_product_id,
            pricing_data=_json_or_none(pricing_data),
            queue_entry_id=queue_entry_id,
            retry_count=min(retry_count, max_retries),
            max_retries=max_retries,
            status=status.value,
        )
        self.db.add(item)
        self.db.commit()
        self.db.refresh(item)
        return item

    def get_item(self, item_id: str) -> SyncItem | None:
        return self.db.query(SyncItem).filter(SyncItem.id == item_id).first()

    def get_items(
        self, job_id: str, status: SyncItemStatus | None = None
    ) -> list[SyncItem]:
        query = self.db.query(SyncItem).filter(SyncItem.sync_job_id == job_id)
        if status is not None:
            query = query.filter(SyncItem.status == status.value)
        return query.order_by(SyncItem.created_at, SyncItem.id).all()

    def _check_item_transition(self, item: SyncItem, target: SyncItemStatus) -> None:
        current = SyncItemStatus(item.status)
        if target not in ITEM_TRANSITIONS[current]:
            raise InvalidStateTransition(
                current_state=current.value,
                attempted_state=target.value,
                allowed_transitions=[s.value for s in ITEM_TRANSITIONS[current]],
            )

    def start_item(self, item_id: str) -> SyncItem:
        """Mark an item as processing."""
        item = self.get_item(item_id)
        if item is None:
            raise NotFoundError("Sync item", item_id)
        self._check_item_transition(item, SyncItemStatus.processing)
        item.status = SyncItemStatus.processing.value
        self.db.commit()
        self.db.refresh(item)
        return item

    def record_item_outcome(
        self,
        item_id: str,
        status: SyncItemStatus,
        error_code: str | None = None,
        error_message: str | None = None,
        skip_reason: str | None = None,
        sync_fields: BaseModel | dict | None = None,
        pricing_before: BaseModel | dict | None = None,
        pricing_after: BaseModel | dict | None = None,
        opms_item_id: int | None = None,
        opms_product_id: int | None = None,
        netsuite_internal_id: str | None = None,
        retry_count: int | None = None,
    ) -> SyncItem:
        """Finalize an item and bump the owning job's counters.

        Item fields and job counters are written in one commit.

        Args:
            item_id: The item to finalize.
            status: success, failed or skipped.

        Returns:
            The updated SyncItem.

        Raises:
            NotFoundError: If the item does not exist.
            InvalidStateTransition: If the item is already final.
        """
        if status not in _OUTCOME_COUNTERS:
            raise ValueError(f"Not an outcome status: {status.value}")
        item = self.get_item(item_id)
        if item is None:
            raise NotFoundError("Sync item", item_id)
        self._check_item_transition(item, status)

        item.status = status.value
        item.processed_at = utc_now_iso()
        item.error_code = error_code
        item.error_message = sanitize_error_message(error_message)
        item.skip_reason = skip_reason
        if sync_fields is not None:
            item.sync_fields = _json_or_none(sync_fields)
        if pricing_before is not None:
            item.pricing_before = _json_or_none(pricing_before)
        if pricing_after is not None:
            item.pricing_after = _json_or_none(pricing_after)
        if opms_item_id is not None:
            item.opms_item_id = opms_item_id
        if opms_product_id is not None:
            item.opms_product_id = opms_product_id
        if netsuite_internal_id is not None:
            item.netsuite_internal_id = netsuite_internal_id
        if retry_count is not None:
            item.retry_count = min(retry_count, item.max_retries)

        job = item.job
        job.processed_items += 1
        counter = _OUTCOME_COUNTERS[status]
        setattr(job, counter, getattr(job, counter) + 1)

        self.db.commit()
        self.db.refresh(item)
        return item

    def record_pricing_outcome(self, item_id: str, outcome: PricingSyncResult) -> SyncItem:
        """Finalize a pricing item from a PricingSyncEngine result."""
        if outcome.result == PricingOutcome.skipped:
            return self.record_item_outcome(
                item_id, SyncItemStatus.skipped, skip_reason=outcome.reason
            )
        if outcome.result == PricingOutcome.updated:
            return self.record_item_outcome(
                item_id,
                SyncItemStatus.success,
                sync_fields=outcome.sync_fields,
                pricing_before=outcome.pricing_before,
                pricing_after=outcome.pricing_after,
                opms_item_id=outcome.opms_item_id,
                opms_product_id=outcome.opms_product_id,
            )
        return self.record_item_outcome(
            item_id,
            SyncItemStatus.failed,
            error_code=outcome.error_code,
            error_message=outcome.reason,
            pricing_before=outcome.pricing_before,
            opms_item_id=outcome.opms_item_id,
            opms_product_id=outcome.opms_product_id,
        )

    # =========================================================================
    # Progress
    # =========================================================================

    def get_progress(self, job_id: str) -> dict[str, Any]:
        """Return counters plus completion, success and failure percentages."""
        job = self.require_job(job_id)
        processed = job.processed_items
        total = job.total_items

        def pct(part: int, whole: int) -> float:
            return round(part / whole * 100, 2) if whole else 0.0

        return {
            "job_id": job.id,
            "status": job.status,
            "total_items": total,
            "processed_items": processed,
            "successful_items": job.successful_items,
            "failed_items": job.failed_items,
            "skipped_items": job.skipped_items,
            "percent_complete": pct(processed, total),
            "success_rate": pct(job.successful_items, processed),
            "failure_rate": pct(job.failed_items, processed),
            "duration_seconds": job.duration_seconds,
        }
