"""Pydantic schemas for API request/response validation.

This module defines the data contracts for the operator REST API: sync
jobs and their items and logs, the work queue, dry-run captures and the
catalog change log.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from opms_sync.services.payloads import load_json


# Enums for API validation


class PriorityEnum(str, Enum):
    """Queue priority values accepted by the API."""

    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"


class EventTypeEnum(str, Enum):
    """Catalog event types accepted on enqueue."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# Job schemas


class SyncJobResponse(BaseModel):
    """Response schema for a sync job."""

    id: str
    job_type: str
    status: str

    total_items: int
    processed_items: int
    successful_items: int
    failed_items: int
    skipped_items: int

    triggered_by: str | None
    source: str | None

    error_code: str | None
    error_message: str | None

    created_at: str
    started_at: str | None
    completed_at: str | None
    duration_seconds: float | None

    model_config = ConfigDict(from_attributes=True)


class SyncJobListResponse(BaseModel):
    """Response schema for paginated job list."""

    jobs: list[SyncJobResponse]
    total: int
    limit: int
    offset: int


class SyncItemResponse(BaseModel):
    """Response schema for an item within a sync job."""

    id: str
    sync_job_id: str
    queue_entry_id: int | None
    item_code: str | None
    netsuite_item_id: str | None
    netsuite_internal_id: str | None
    opms_item_id: int | None
    opms_product_id: int | None
    status: str
    sync_fields: dict | None = None
    pricing_before: dict | None = None
    pricing_after: dict | None = None
    skip_reason: str | None
    error_code: str | None
    error_message: str | None
    retry_count: int
    max_retries: int
    created_at: str
    processed_at: str | None

    @field_validator("sync_fields", "pricing_before", "pricing_after", mode="before")
    @classmethod
    def _parse_snapshot(cls, v: Any) -> Any:
        parsed = load_json(v)
        return parsed if isinstance(parsed, dict) or parsed is None else None

    model_config = ConfigDict(from_attributes=True)


class SyncLogResponse(BaseModel):
    """Response schema for a job log entry."""

    id: str
    sync_job_id: str | None
    sync_item_id: str | None
    level: str
    message: str
    details: Any = None
    created_at: str

    @field_validator("details", mode="before")
    @classmethod
    def _parse_details(cls, v: Any) -> Any:
        return load_json(v)

    model_config = ConfigDict(from_attributes=True)


# Queue schemas


class QueueEntryResponse(BaseModel):
    """Response schema for a queue entry."""

    id: int
    item_id: int
    product_id: int | None
    event_type: str
    event_data: dict | None = None
    priority: str
    status: str
    retry_count: int
    max_retries: int
    retry_at: str | None
    error_message: str | None
    processing_results: Any = None
    locked_by: str | None
    locked_at: str | None
    created_at: str
    processed_at: str | None

    @field_validator("event_data", "processing_results", mode="before")
    @classmethod
    def _parse_json(cls, v: Any) -> Any:
        return load_json(v)

    model_config = ConfigDict(from_attributes=True)


class EnqueueRequest(BaseModel):
    """Request schema for enqueueing an item sync."""

    item_id: int = Field(..., ge=1)
    product_id: int | None = Field(None, ge=1)
    event_type: EventTypeEnum = EventTypeEnum.UPDATE
    priority: PriorityEnum = PriorityEnum.NORMAL
    changed_fields: list[str] = Field(default_factory=list)
    live_sync: bool = True


class ManualTriggerRequest(BaseModel):
    """Request schema for manual item/product triggers."""

    reason: str = Field("Manual trigger", max_length=500)
    priority: PriorityEnum | None = None
    triggered_by: str | None = Field(None, max_length=100)


class QueueCleanupRequest(BaseModel):
    """Request schema for purging finished queue entries."""

    days_to_keep: int = Field(7, ge=0)


class QueueReclaimRequest(BaseModel):
    """Request schema for reclaiming stale claims."""

    stale_after_seconds: int = Field(900, ge=0)


# Dry-run schemas


class DryRunRecordResponse(BaseModel):
    """Response schema for a dry-run capture."""

    id: int
    opms_item_id: int | None
    opms_item_code: str | None
    opms_product_id: int | None
    sync_type: str
    sync_trigger: str | None
    actual_json_payload: dict | None = None
    payload_size_bytes: int
    field_count: int
    validation_status: str
    validation_errors: str | None
    simulated_restlet_response: dict | None = None
    would_succeed: bool
    simulated_errors: str | None
    created_at: str

    @field_validator("actual_json_payload", "simulated_restlet_response", mode="before")
    @classmethod
    def _parse_json(cls, v: Any) -> Any:
        parsed = load_json(v)
        return parsed if isinstance(parsed, dict) or parsed is None else None

    model_config = ConfigDict(from_attributes=True)


class DeleteResponse(BaseModel):
    """Response schema for bulk deletes."""

    deleted: int


# Change log schemas


class ChangeLogResponse(BaseModel):
    """Response schema for a change log entry."""

    id: int
    item_id: int
    product_id: int | None
    change_type: str
    change_source: str
    change_data: Any = None
    user_id: int | None
    detected_at: str

    @field_validator("change_data", mode="before")
    @classmethod
    def _parse_change_data(cls, v: Any) -> Any:
        return load_json(v)

    model_config = ConfigDict(from_attributes=True)


class DetectChangesRequest(BaseModel):
    """Request schema for a polling pass."""

    since: str = Field(..., min_length=1, description="ISO8601 lower bound")


# Pricing pull schemas


class PullUpdatedRequest(BaseModel):
    """Request schema for an incremental NetSuite pricing pull."""

    since: str | None = Field(None, description="ISO8601 lower bound; defaults to the last pull")
    limit: int = Field(100, ge=1, le=1000)


class PullFullRequest(BaseModel):
    """Request schema for initial and forced full pulls."""

    limit: int = Field(1000, ge=1, le=10000)


class PullItemsRequest(BaseModel):
    """Request schema for pulling specific NetSuite items."""

    item_codes: list[str] = Field(..., min_length=1, max_length=500)


class PullSummaryResponse(BaseModel):
    """Response schema for a finished pricing pull."""

    job_id: str
    job_type: str
    status: str
    total: int
    successful: int
    failed: int
    skipped: int
    since: str | None = None
    cancelled_jobs: list[str] = Field(default_factory=list)
