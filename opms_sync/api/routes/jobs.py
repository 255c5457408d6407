"""FastAPI routes for sync job inspection.

Provides REST API endpoints to list sync jobs, inspect a job's items,
log and progress, export its log as text, and cancel it.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from opms_sync.api.schemas import (
    SyncItemResponse,
    SyncJobListResponse,
    SyncJobResponse,
    SyncLogResponse,
)
from opms_sync.db.connection import get_db
from opms_sync.db.models import (
    LogLevel,
    SyncItemStatus,
    SyncJob,
    SyncJobStatus,
    SyncJobType,
)
from opms_sync.errors import InvalidStateTransition
from opms_sync.services.job_log import JobLog
from opms_sync.services.job_service import SyncJobService

router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_service(db: Session = Depends(get_db)) -> SyncJobService:
    """Dependency to get SyncJobService instance."""
    return SyncJobService(db)


def _require_job(job_svc: SyncJobService, job_id: str) -> SyncJob:
    job = job_svc.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Sync job not found")
    return job


@router.get("", response_model=SyncJobListResponse)
def list_jobs(
    status: SyncJobStatus | None = Query(None, description="Filter by status"),
    job_type: SyncJobType | None = Query(None, description="Filter by job type"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    job_svc: SyncJobService = Depends(get_job_service),
) -> SyncJobListResponse:
    """List sync jobs, newest first.

    Args:
        status: Filter by job status (optional).
        job_type: Filter by job type (optional).
        limit: Maximum number of jobs to return.
        offset: Number of jobs to skip.
        job_svc: Job service dependency.

    Returns:
        Paginated list of jobs.
    """
    jobs = job_svc.list_jobs(status=status, job_type=job_type, limit=limit, offset=offset)
    return SyncJobListResponse(
        jobs=[SyncJobResponse.model_validate(j) for j in jobs],
        total=job_svc.count_jobs(status=status),
        limit=limit,
        offset=offset,
    )


@router.get("/{job_id}", response_model=SyncJobResponse)
def get_job(
    job_id: str,
    job_svc: SyncJobService = Depends(get_job_service),
) -> SyncJob:
    """Get a sync job by ID.

    Raises:
        HTTPException: If job not found (404).
    """
    return _require_job(job_svc, job_id)


@router.get("/{job_id}/items", response_model=list[SyncItemResponse])
def get_job_items(
    job_id: str,
    status: SyncItemStatus | None = Query(None, description="Filter by item status"),
    job_svc: SyncJobService = Depends(get_job_service),
) -> list:
    """Get the items of a job, optionally filtered by status."""
    _require_job(job_svc, job_id)
    return job_svc.get_items(job_id, status=status)


@router.get("/{job_id}/progress")
def get_job_progress(
    job_id: str,
    job_svc: SyncJobService = Depends(get_job_service),
) -> dict:
    """Get counters plus completion, success and failure percentages."""
    _require_job(job_svc, job_id)
    return job_svc.get_progress(job_id)


@router.get("/{job_id}/logs", response_model=list[SyncLogResponse])
def get_job_logs(
    job_id: str,
    level: LogLevel | None = Query(None, description="Filter by level"),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    job_svc: SyncJobService = Depends(get_job_service),
) -> list:
    """Get a job's log entries in chronological order."""
    _require_job(job_svc, job_id)
    return JobLog(db).get_logs(job_id=job_id, level=level, limit=limit)


@router.get("/{job_id}/logs/export", response_class=PlainTextResponse)
def export_job_logs(
    job_id: str,
    db: Session = Depends(get_db),
    job_svc: SyncJobService = Depends(get_job_service),
) -> str:
    """Export a job's log as plain text."""
    _require_job(job_svc, job_id)
    return JobLog(db).export_text(job_id)


@router.post("/{job_id}/cancel", response_model=SyncJobResponse)
def cancel_job(
    job_id: str,
    job_svc: SyncJobService = Depends(get_job_service),
) -> SyncJob:
    """Cancel a pending or running job.

    Raises:
        HTTPException: If job not found (404) or already finished (409).
    """
    job = _require_job(job_svc, job_id)
    old_status = job.status
    try:
        return job_svc.cancel_job(job_id)
    except InvalidStateTransition:
        raise HTTPException(
            status_code=409,
            detail=f"Invalid state transition: {old_status} -> cancelled",
        )
