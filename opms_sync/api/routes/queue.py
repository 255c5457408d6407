"""FastAPI routes for the OPMS -> NetSuite work queue.

Provides REST API endpoints to inspect queue depth and entries, enqueue
item syncs (directly or as manual item/product triggers), cancel pending
entries, purge finished ones and reclaim stale claims.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from opms_sync.api.schemas import (
    EnqueueRequest,
    ManualTriggerRequest,
    QueueCleanupRequest,
    QueueEntryResponse,
    QueueReclaimRequest,
)
from opms_sync.db.connection import get_db
from opms_sync.db.models import ChangeSource, QueueEntry, QueuePriority, QueueStatus
from opms_sync.services.change_detector import ChangeDetector
from opms_sync.services.payloads import QueueEventData
from opms_sync.services.sync_queue import TableSyncQueue

router = APIRouter(prefix="/queue", tags=["queue"])


def get_queue(db: Session = Depends(get_db)) -> TableSyncQueue:
    """Dependency to get a TableSyncQueue instance."""
    return TableSyncQueue(db, worker_id="api")


def get_change_detector(
    db: Session = Depends(get_db),
    queue: TableSyncQueue = Depends(get_queue),
) -> ChangeDetector:
    """Dependency to get a ChangeDetector bound to the request queue."""
    return ChangeDetector(db, queue=queue)


@router.get("/status")
def get_queue_status(queue: TableSyncQueue = Depends(get_queue)) -> dict:
    """Count entries per status plus the active total."""
    return queue.get_queue_status()


@router.get("/stats")
def get_queue_stats(
    hours: int = Query(24, ge=1, le=24 * 30),
    queue: TableSyncQueue = Depends(get_queue),
) -> dict:
    """Summarize entries created in the last ``hours`` hours."""
    return queue.get_job_stats(hours=hours)


@router.get("/entries", response_model=list[QueueEntryResponse])
def list_entries(
    status: QueueStatus | None = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    queue: TableSyncQueue = Depends(get_queue),
) -> list:
    """List queue entries, newest first."""
    return queue.list_entries(
        status=status.value if status else None, limit=limit, offset=offset
    )


@router.get("/entries/{entry_id}", response_model=QueueEntryResponse)
def get_entry(
    entry_id: int,
    queue: TableSyncQueue = Depends(get_queue),
) -> QueueEntry:
    """Get one queue entry.

    Raises:
        HTTPException: If the entry does not exist (404).
    """
    entry = queue.get_entry(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Queue entry not found")
    return entry


@router.post("/entries", response_model=QueueEntryResponse, status_code=201)
def enqueue(
    request: EnqueueRequest,
    detector: ChangeDetector = Depends(get_change_detector),
) -> QueueEntry:
    """Enqueue an item sync.

    Idempotent per item: an outstanding PENDING/PROCESSING entry is
    returned instead of creating a second one.
    """
    return detector.queue_item_sync(
        item_id=request.item_id,
        product_id=request.product_id,
        event_type=request.event_type.value,
        event_data=QueueEventData(
            trigger_source="API_CALL",
            changed_fields=request.changed_fields,
            live_sync=request.live_sync,
        ),
        priority=request.priority.value,
        change_source=ChangeSource.API_CALL,
    )


@router.post("/trigger/item/{item_id}", response_model=QueueEntryResponse, status_code=201)
def trigger_item(
    item_id: int,
    request: ManualTriggerRequest,
    detector: ChangeDetector = Depends(get_change_detector),
) -> QueueEntry:
    """Manually queue one item, bypassing the global sync switch.

    Raises:
        NotFoundError: If the item does not exist (404).
    """
    priority = request.priority.value if request.priority else QueuePriority.HIGH.value
    return detector.manual_trigger_item(
        item_id,
        reason=request.reason,
        priority=priority,
        triggered_by=request.triggered_by,
    )


@router.post(
    "/trigger/product/{product_id}",
    response_model=list[QueueEntryResponse],
    status_code=201,
)
def trigger_product(
    product_id: int,
    request: ManualTriggerRequest,
    detector: ChangeDetector = Depends(get_change_detector),
) -> list:
    """Manually queue every active item of a product.

    Raises:
        NotFoundError: If the product has no active items (404).
    """
    priority = request.priority.value if request.priority else QueuePriority.NORMAL.value
    return detector.manual_trigger_product(
        product_id,
        reason=request.reason,
        priority=priority,
        triggered_by=request.triggered_by,
    )


@router.delete("/entries/{entry_id}", status_code=204)
def cancel_entry(
    entry_id: int,
    queue: TableSyncQueue = Depends(get_queue),
) -> None:
    """Cancel an entry that has not been claimed yet.

    Raises:
        HTTPException: If the entry is missing (404) or already claimed (409).
    """
    if queue.cancel_pending_job(entry_id):
        return None
    if queue.get_entry(entry_id) is None:
        raise HTTPException(status_code=404, detail="Queue entry not found")
    raise HTTPException(
        status_code=409, detail="Only PENDING queue entries can be cancelled"
    )


@router.post("/cleanup")
def cleanup(
    request: QueueCleanupRequest,
    queue: TableSyncQueue = Depends(get_queue),
) -> dict:
    """Delete COMPLETED/FAILED entries finished before the window."""
    return {"deleted": queue.cleanup_old_jobs(days_to_keep=request.days_to_keep)}


@router.post("/reclaim")
def reclaim(
    request: QueueReclaimRequest,
    queue: TableSyncQueue = Depends(get_queue),
) -> dict:
    """Return stale PROCESSING claims to the queue."""
    return queue.reclaim_stale(stale_after_seconds=request.stale_after_seconds)
