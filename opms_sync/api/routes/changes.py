"""FastAPI routes for the catalog change log.

Provides REST API endpoints to browse recent catalog changes, summarize
them, and run the polling pass that enqueues changes the triggers missed.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from opms_sync.api.schemas import ChangeLogResponse, DetectChangesRequest, QueueEntryResponse
from opms_sync.db.connection import get_db
from opms_sync.db.models import ChangeSource, ChangeType
from opms_sync.services.change_detector import ChangeDetector

router = APIRouter(prefix="/changes", tags=["changes"])


def get_change_detector(db: Session = Depends(get_db)) -> ChangeDetector:
    """Dependency to get a ChangeDetector instance."""
    return ChangeDetector(db)


@router.get("", response_model=list[ChangeLogResponse])
def get_recent_changes(
    hours: int = Query(24, ge=1, le=24 * 90),
    change_type: ChangeType | None = Query(None),
    change_source: ChangeSource | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    detector: ChangeDetector = Depends(get_change_detector),
) -> list:
    """List recent changes, newest first."""
    return detector.get_recent_changes(
        hours=hours, change_type=change_type, change_source=change_source, limit=limit
    )


@router.get("/stats")
def get_change_stats(
    hours: int = Query(24, ge=1, le=24 * 90),
    detector: ChangeDetector = Depends(get_change_detector),
) -> dict:
    """Count changes by type and source within the window."""
    return detector.get_change_stats(hours=hours)


@router.post("/detect", response_model=list[QueueEntryResponse])
def detect_missed_changes(
    request: DetectChangesRequest,
    detector: ChangeDetector = Depends(get_change_detector),
) -> list:
    """Enqueue items modified since ``since`` that have no outstanding entry."""
    return detector.detect_missed_changes(request.since)
