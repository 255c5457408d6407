"""FastAPI routes for the NetSuite -> OPMS pricing pull.

Each endpoint runs one pull job to completion and returns its counters.
The job and its items are then browsable under /jobs.
"""

from collections.abc import Iterator

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from opms_sync.api.schemas import (
    PullFullRequest,
    PullItemsRequest,
    PullSummaryResponse,
    PullUpdatedRequest,
)
from opms_sync.cli.config import ErpConfig, load_config
from opms_sync.db.connection import get_db
from opms_sync.services.erp_client import ErpItemSource, HttpErpClient
from opms_sync.services.job_service import SyncJobService
from opms_sync.services.pricing_pull import PULL_JOB_TYPES, PricingPullService

router = APIRouter(prefix="/pricing-pull", tags=["pricing-pull"])


def get_erp_config() -> ErpConfig:
    return load_config().erp


def get_item_source(erp: ErpConfig = Depends(get_erp_config)) -> Iterator[ErpItemSource]:
    """Dependency yielding a NetSuite client built from the erp config.

    Raises:
        HTTPException: 503 when no RESTlet URL is configured.
    """
    if not erp.base_url:
        raise HTTPException(
            status_code=503, detail="NetSuite RESTlet is not configured (erp.base_url)"
        )
    with HttpErpClient(
        base_url=erp.base_url,
        token=erp.token or None,
        timeout_seconds=erp.timeout_seconds,
    ) as client:
        yield client


def get_pull_service(
    db: Session = Depends(get_db),
    source: ErpItemSource = Depends(get_item_source),
    erp: ErpConfig = Depends(get_erp_config),
) -> PricingPullService:
    """Dependency to get a PricingPullService instance."""
    return PricingPullService(
        db,
        source,
        rate_limit_delay_ms=erp.pull_delay_ms,
        triggered_by="api",
        job_source="api",
    )


@router.get("/last-sync")
def get_last_sync(db: Session = Depends(get_db)) -> dict:
    """Completion time of the last completed pull, if any."""
    return {"last_sync_time": SyncJobService(db).last_completed_at(PULL_JOB_TYPES)}


@router.post("/updated", response_model=PullSummaryResponse)
def pull_updated(
    request: PullUpdatedRequest,
    service: PricingPullService = Depends(get_pull_service),
) -> dict:
    """Pull items modified since ``since`` (default: the last pull)."""
    return service.sync_updated(since=request.since, limit=request.limit).to_dict()


@router.post("/initial", response_model=PullSummaryResponse)
def pull_initial(
    request: PullFullRequest,
    service: PricingPullService = Depends(get_pull_service),
) -> dict:
    """Pull every active item up to ``limit``."""
    return service.initial_sync(limit=request.limit).to_dict()


@router.post("/force-full", response_model=PullSummaryResponse)
def pull_force_full(
    request: PullFullRequest,
    service: PricingPullService = Depends(get_pull_service),
) -> dict:
    """Cancel open pull jobs, then pull every active item."""
    return service.force_full_sync(limit=request.limit).to_dict()


@router.post("/items", response_model=PullSummaryResponse)
def pull_items(
    request: PullItemsRequest,
    service: PricingPullService = Depends(get_pull_service),
) -> dict:
    """Pull specific items by NetSuite itemid."""
    return service.sync_items(request.item_codes).to_dict()


@router.post("/items/{item_code}", response_model=PullSummaryResponse)
def pull_item(
    item_code: str,
    service: PricingPullService = Depends(get_pull_service),
) -> dict:
    """Pull one item by NetSuite itemid."""
    return service.sync_item(item_code).to_dict()
