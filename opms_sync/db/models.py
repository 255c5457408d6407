"""SQLAlchemy ORM models for the OPMS sync state database.

This module defines the job engine tables (jobs, items, queue, logs,
change log, item sync health, dry-run captures) and the minimal slice of
the legacy OPMS catalog schema the engine reads and writes. Uses
SQLAlchemy 2.0 style with Mapped and mapped_column.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


def utc_iso_offset(seconds: float) -> str:
    """Return the UTC timestamp ``seconds`` from now in ISO8601 format.

    Negative values yield timestamps in the past (retention cutoffs).
    """
    return (datetime.now(UTC) + timedelta(seconds=seconds)).isoformat()


# Enums matching the database schema constraints


class SyncJobStatus(str, Enum):
    """Status values for sync jobs.

    Lifecycle: pending -> running -> completed/failed/cancelled
    """

    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class SyncJobType(str, Enum):
    """Kinds of sync jobs."""

    initial = "initial"
    item = "item"
    scheduled = "scheduled"
    manual = "manual"
    force_full = "force_full"
    pricing_sync = "pricing_sync"
    ns_to_opms_pricing = "ns_to_opms_pricing"


class SyncItemStatus(str, Enum):
    """Status values for individual items within a sync job.

    Lifecycle: pending -> processing -> success/failed/skipped
    success and skipped are final.
    """

    pending = "pending"
    processing = "processing"
    success = "success"
    failed = "failed"
    skipped = "skipped"


class QueueStatus(str, Enum):
    """Status values for OPMS -> NetSuite queue entries."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class QueuePriority(str, Enum):
    """Queue priorities, claimed HIGH first."""

    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"


PRIORITY_RANK: dict[str, int] = {
    QueuePriority.HIGH.value: 1,
    QueuePriority.NORMAL.value: 2,
    QueuePriority.LOW.value: 3,
}


class ItemHealthStatus(str, Enum):
    """Current sync health of a catalog item."""

    NEVER_SYNCED = "NEVER_SYNCED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    IN_PROGRESS = "IN_PROGRESS"
    SKIPPED = "SKIPPED"


class ChangeSource(str, Enum):
    """Where a catalog change notification came from."""

    DATABASE_TRIGGER = "DATABASE_TRIGGER"
    API_CALL = "API_CALL"
    MANUAL_TRIGGER = "MANUAL_TRIGGER"
    POLLING_SERVICE = "POLLING_SERVICE"


class ChangeType(str, Enum):
    """Kinds of catalog changes."""

    ITEM_CREATE = "ITEM_CREATE"
    ITEM_UPDATE = "ITEM_UPDATE"
    PRODUCT_UPDATE = "PRODUCT_UPDATE"
    MANUAL_SYNC = "MANUAL_SYNC"


class LogLevel(str, Enum):
    """Severity levels for sync log entries."""

    debug = "debug"
    info = "info"
    warn = "warn"
    error = "error"


# SQLAlchemy Base


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Job engine models


class SyncJob(Base):
    """Sync job record.

    One unit-of-work batch, either a dispatcher batch drained from the
    queue or a single webhook delivery. Counters are updated after every
    item so progress is observable mid-run.

    Attributes:
        id: UUID primary key
        job_type: Kind of job (see SyncJobType)
        status: Current status (pending, running, completed, failed, cancelled)
        total_items: Number of items the job will process
        processed_items: Items finished so far (success + failed + skipped)
        successful_items: Items synced successfully
        failed_items: Items that failed
        skipped_items: Items skipped by a business rule
        triggered_by: Who or what created the job
        source: Provenance (queue, webhook, api, cli)
        started_at: ISO8601 timestamp when the job started running
        completed_at: ISO8601 timestamp when the job finished
        duration_seconds: Wall-clock runtime, set on completion
        error_code: Error code if the job failed (E-XXXX format)
        error_message: Human-readable error message if failed
    """

    __tablename__ = "netsuite_opms_sync_jobs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    job_type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SyncJobStatus.pending.value
    )

    # Item counts
    total_items: Mapped[int] = mapped_column(default=0, nullable=False)
    processed_items: Mapped[int] = mapped_column(default=0, nullable=False)
    successful_items: Mapped[int] = mapped_column(default=0, nullable=False)
    failed_items: Mapped[int] = mapped_column(default=0, nullable=False)
    skipped_items: Mapped[int] = mapped_column(default=0, nullable=False)

    # Provenance
    triggered_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Timestamps (ISO8601 strings for SQLite compatibility)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    started_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    completed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    duration_seconds: Mapped[float | None] = mapped_column(nullable=True)
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    # Error info (if failed)
    error_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    items: Mapped[list["SyncItem"]] = relationship(
        "SyncItem", back_populates="job", cascade="all, delete-orphan"
    )
    logs: Mapped[list["SyncLog"]] = relationship(
        "SyncLog", back_populates="job", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_sync_jobs_status", "status"),
        Index("idx_sync_jobs_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<SyncJob(id={self.id!r}, type={self.job_type!r}, "
            f"status={self.status!r})>"
        )


class SyncItem(Base):
    """Individual item within a sync job.

    Keeps the applied field set and before/after pricing snapshots for
    audit. Records in success or skipped status are final.

    Attributes:
        id: UUID primary key
        sync_job_id: Foreign key to the owning job
        queue_entry_id: Queue entry this attempt came from, if any
        netsuite_item_id: NetSuite item id (item code on the ERP side)
        netsuite_internal_id: NetSuite internal record id
        opms_item_id: OPMS T_ITEM.id
        opms_product_id: OPMS T_PRODUCT.id
        item_code: OPMS item code
        status: pending, processing, success, failed or skipped
        sync_fields: JSON map of the fields actually applied
        pricing_data: JSON of the incoming pricing record
        pricing_before: JSON snapshot before apply
        pricing_after: JSON snapshot after apply
        skip_reason: Reason string when skipped
        retry_count: Attempts retried so far
        max_retries: Retry ceiling
        processed_at: ISO8601 timestamp when the item reached a final state
    """

    __tablename__ = "netsuite_opms_sync_items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    sync_job_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("netsuite_opms_sync_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    queue_entry_id: Mapped[int | None] = mapped_column(nullable=True)

    netsuite_item_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    netsuite_internal_id: Mapped[str | None] = mapped_column(
        String(50), nullable=True
    )
    opms_item_id: Mapped[int | None] = mapped_column(nullable=True)
    opms_product_id: Mapped[int | None] = mapped_column(nullable=True)
    item_code: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SyncItemStatus.pending.value
    )

    # JSON snapshots
    sync_fields: Mapped[str | None] = mapped_column(Text, nullable=True)
    pricing_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    pricing_before: Mapped[str | None] = mapped_column(Text, nullable=True)
    pricing_after: Mapped[str | None] = mapped_column(Text, nullable=True)

    error_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    skip_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    processed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    job: Mapped["SyncJob"] = relationship("SyncJob", back_populates="items")

    __table_args__ = (
        Index("idx_sync_items_job_id", "sync_job_id"),
        Index("idx_sync_items_status", "status"),
        Index("idx_sync_items_item_code", "item_code"),
    )

    def __repr__(self) -> str:
        return (
            f"<SyncItem(id={self.id!r}, job_id={self.sync_job_id!r}, "
            f"code={self.item_code!r}, status={self.status!r})>"
        )


class QueueEntry(Base):
    """OPMS -> NetSuite work queue row.

    The table is the queue: workers claim PENDING rows with a skip-locked
    read and stamp them PROCESSING under a per-claim token. At most one
    PENDING/PROCESSING entry should exist per item_id; this is enforced by
    a lookup before insert, not by a constraint.
    """

    __tablename__ = "opms_sync_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    event_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="UPDATE"
    )
    event_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default=QueuePriority.NORMAL.value
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=QueueStatus.PENDING.value
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    retry_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_results: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Claim bookkeeping
    locked_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    locked_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    claim_token: Mapped[str | None] = mapped_column(String(36), nullable=True)

    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )
    processed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_sync_queue_status_priority", "status", "priority", "created_at"),
        Index("idx_sync_queue_item_id", "item_id"),
        Index("idx_sync_queue_claim_token", "claim_token"),
    )

    @property
    def event(self):
        """Typed view of event_data."""
        from opms_sync.services.payloads import QueueEventData

        return QueueEventData.from_json(self.event_data)

    def __repr__(self) -> str:
        return (
            f"<QueueEntry(id={self.id!r}, item_id={self.item_id!r}, "
            f"priority={self.priority!r}, status={self.status!r})>"
        )


class SyncLog(Base):
    """Append-only structured log entry keyed to a job or item."""

    __tablename__ = "netsuite_opms_sync_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    sync_job_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("netsuite_opms_sync_jobs.id", ondelete="CASCADE"),
        nullable=True,
    )
    sync_item_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    job: Mapped["SyncJob | None"] = relationship("SyncJob", back_populates="logs")

    __table_args__ = (
        Index("idx_sync_logs_job_id", "sync_job_id"),
        Index("idx_sync_logs_item_id", "sync_item_id"),
        Index("idx_sync_logs_level", "level"),
    )

    def __repr__(self) -> str:
        return f"<SyncLog(id={self.id!r}, level={self.level!r})>"


class ChangeLogEntry(Base):
    """Append-only record of a detected catalog change."""

    __tablename__ = "opms_change_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    change_type: Mapped[str] = mapped_column(String(30), nullable=False)
    change_source: Mapped[str] = mapped_column(String(30), nullable=False)
    change_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    detected_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    __table_args__ = (
        Index("idx_change_log_item_id", "item_id"),
        Index("idx_change_log_detected_at", "detected_at"),
    )


class ItemSyncStatus(Base):
    """Current sync health of one catalog item.

    Upserted on every attempt. Distinct from SyncItem, which is the
    job-scoped history.
    """

    __tablename__ = "opms_item_sync_status"

    item_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sync_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ItemHealthStatus.NEVER_SYNCED.value
    )
    sync_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_sync_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_success_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    netsuite_item_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    field_validation_results: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (Index("idx_item_sync_status_status", "sync_status"),)


class DryRunRecord(Base):
    """Write-once capture of a computed payload and its simulated outcome."""

    __tablename__ = "netsuite_dry_run_sync_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    opms_item_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    opms_item_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    opms_product_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sync_type: Mapped[str] = mapped_column(String(30), nullable=False)
    sync_trigger: Mapped[str | None] = mapped_column(String(50), nullable=True)
    actual_json_payload: Mapped[str] = mapped_column(Text, nullable=False)
    payload_size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    field_count: Mapped[int] = mapped_column(Integer, nullable=False)
    validation_status: Mapped[str] = mapped_column(String(10), nullable=False)
    validation_errors: Mapped[str | None] = mapped_column(Text, nullable=True)
    simulated_restlet_response: Mapped[str | None] = mapped_column(
        Text, nullable=True
    )
    would_succeed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    simulated_errors: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    __table_args__ = (
        Index("idx_dry_run_item_id", "opms_item_id"),
        Index("idx_dry_run_item_code", "opms_item_code"),
        Index("idx_dry_run_sync_type", "sync_type"),
        Index("idx_dry_run_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<DryRunRecord(id={self.id!r}, code={self.opms_item_code!r}, "
            f"status={self.validation_status!r})>"
        )


# Legacy OPMS catalog tables (only the columns the engine touches)


class Product(Base):
    """OPMS product (T_PRODUCT)."""

    __tablename__ = "T_PRODUCT"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class Item(Base):
    """OPMS item (T_ITEM), one colorway of a product."""

    __tablename__ = "T_ITEM"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("T_PRODUCT.id"), nullable=False
    )
    code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    product_type: Mapped[str] = mapped_column(String(2), nullable=False, default="R")
    color: Mapped[str | None] = mapped_column(String(255), nullable=True)
    upc_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    date_modified: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    product: Mapped["Product"] = relationship("Product")

    __table_args__ = (Index("idx_t_item_code", "code"),)


class ProductPrice(Base):
    """Customer price record (T_PRODUCT_PRICE)."""

    __tablename__ = "T_PRODUCT_PRICE"

    product_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_type: Mapped[str] = mapped_column(String(2), primary_key=True)
    p_res_cut: Mapped[float | None] = mapped_column(
        Numeric(10, 2, asdecimal=False), nullable=True
    )
    p_hosp_roll: Mapped[float | None] = mapped_column(
        Numeric(10, 2, asdecimal=False), nullable=True
    )
    date: Mapped[str | None] = mapped_column(String(50), nullable=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)


class ProductPriceCost(Base):
    """Vendor cost record (T_PRODUCT_PRICE_COST)."""

    __tablename__ = "T_PRODUCT_PRICE_COST"

    product_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cost_cut: Mapped[float | None] = mapped_column(
        Numeric(10, 2, asdecimal=False), nullable=True
    )
    cost_roll: Mapped[float | None] = mapped_column(
        Numeric(10, 2, asdecimal=False), nullable=True
    )
    fob: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    date: Mapped[str | None] = mapped_column(String(50), nullable=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
