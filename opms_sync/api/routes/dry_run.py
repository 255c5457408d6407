"""FastAPI routes for dry-run payload captures.

Provides REST API endpoints to browse the payloads captured while the
item sync runs in dry-run mode, aggregate statistics over them, and purge
them.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from opms_sync.api.schemas import DeleteResponse, DryRunRecordResponse
from opms_sync.db.connection import get_db
from opms_sync.services.dry_run_recorder import DryRunRecorder

router = APIRouter(prefix="/dry-run", tags=["dry-run"])


def get_recorder(db: Session = Depends(get_db)) -> DryRunRecorder:
    """Dependency to get a DryRunRecorder instance."""
    return DryRunRecorder(db)


@router.get("", response_model=list[DryRunRecordResponse])
def list_recent(
    limit: int = Query(50, ge=1, le=500),
    sync_type: str | None = Query(None, description="Filter by sync type"),
    recorder: DryRunRecorder = Depends(get_recorder),
) -> list:
    """List the most recent captures."""
    return recorder.get_recent(limit=limit, sync_type=sync_type)


@router.get("/stats")
def get_statistics(recorder: DryRunRecorder = Depends(get_recorder)) -> dict:
    """Aggregate captures overall and per sync type and validation status."""
    return recorder.get_statistics()


@router.get("/item/{opms_item_id}", response_model=list[DryRunRecordResponse])
def get_by_item(
    opms_item_id: int,
    limit: int = Query(10, ge=1, le=200),
    recorder: DryRunRecorder = Depends(get_recorder),
) -> list:
    """Captures for one OPMS item id, newest first."""
    return recorder.get_by_item_id(opms_item_id, limit=limit)


@router.get("/code/{item_code}", response_model=list[DryRunRecordResponse])
def get_by_code(
    item_code: str,
    limit: int = Query(10, ge=1, le=200),
    recorder: DryRunRecorder = Depends(get_recorder),
) -> list:
    """Captures for one OPMS item code, newest first."""
    return recorder.get_by_item_code(item_code, limit=limit)


@router.delete("/{record_id}", status_code=204)
def delete_record(
    record_id: int,
    recorder: DryRunRecorder = Depends(get_recorder),
) -> None:
    """Delete one capture.

    Raises:
        HTTPException: If the capture does not exist (404).
    """
    if not recorder.delete_by_id(record_id):
        raise HTTPException(status_code=404, detail="Dry-run record not found")
    return None


@router.delete("/item/{opms_item_id}", response_model=DeleteResponse)
def delete_by_item(
    opms_item_id: int,
    recorder: DryRunRecorder = Depends(get_recorder),
) -> DeleteResponse:
    """Delete every capture for an item."""
    return DeleteResponse(deleted=recorder.delete_by_item(opms_item_id))


@router.delete("/sync-type/{sync_type}", response_model=DeleteResponse)
def delete_by_sync_type(
    sync_type: str,
    recorder: DryRunRecorder = Depends(get_recorder),
) -> DeleteResponse:
    """Delete every capture of a sync type."""
    return DeleteResponse(deleted=recorder.delete_by_sync_type(sync_type))


@router.post("/cleanup", response_model=DeleteResponse)
def cleanup(
    days: int = Query(30, ge=0),
    recorder: DryRunRecorder = Depends(get_recorder),
) -> DeleteResponse:
    """Delete captures older than ``days`` days."""
    return DeleteResponse(deleted=recorder.cleanup_older_than(days))


@router.delete("", response_model=DeleteResponse)
def delete_all(
    confirm: bool = Query(False, description="Must be true to delete everything"),
    recorder: DryRunRecorder = Depends(get_recorder),
) -> DeleteResponse:
    """Delete every capture. Requires ``confirm=true``."""
    if not confirm:
        raise HTTPException(status_code=400, detail="Pass confirm=true to delete all records")
    return DeleteResponse(deleted=recorder.delete_all())
