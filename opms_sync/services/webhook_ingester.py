"""NetSuite -> OPMS pricing webhook ingestion.

NetSuite posts an ``item.pricing.updated`` envelope whenever an item's
pricing changes. Each delivery is processed synchronously: it becomes a
one-item pricing_sync job, runs through the PricingSyncEngine, and the job
and item records are finalized before the HTTP response is sent.

Envelope:
    {
        "eventType": "item.pricing.updated",
        "itemData": {"itemid": "...", "price_1_": ..., ...},
        "timestamp": "...",
        "source": "netsuite_webhook"
    }

Delivery counters are kept in process memory for the health and stats
endpoints; they reset on restart.
"""

import hmac
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from opms_sync.db.models import SyncItemStatus, SyncJobStatus, SyncJobType, utc_now_iso
from opms_sync.errors import SyncError, ValidationError, classify_exception
from opms_sync.services.catalog_store import SqlCatalogStore
from opms_sync.services.job_log import JobLog
from opms_sync.services.job_service import SyncJobService
from opms_sync.services.pricing_sync_engine import (
    SKIP_FLAG_FIELD,
    PricingOutcome,
    PricingRecord,
    PricingSyncEngine,
    PricingSyncResult,
)

logger = logging.getLogger(__name__)

SUPPORTED_EVENT_TYPE = "item.pricing.updated"
WEBHOOK_SECRET_ENV = "OPMS_SYNC_WEBHOOK_SECRET"
WEBHOOK_TRIGGERED_BY = "netsuite_webhook"


def get_webhook_secret() -> str | None:
    """Read the shared webhook secret at request time."""
    return os.environ.get(WEBHOOK_SECRET_ENV) or None


def verify_webhook_secret(authorization: str | None, secret: str | None = None) -> bool:
    """Check an ``Authorization: Bearer <secret>`` header.

    Uses constant-time comparison. With no secret configured every
    request is rejected.

    Args:
        authorization: Raw Authorization header value.
        secret: Expected secret; read from the environment when None.

    Returns:
        True if the header carries the configured secret.
    """
    secret = secret if secret is not None else get_webhook_secret()
    if not secret or not authorization:
        return False
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return hmac.compare_digest(token.strip().encode(), secret.encode())


# =============================================================================
# Delivery stats
# =============================================================================


@dataclass
class WebhookStats:
    """In-process delivery counters."""

    received: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    last_processed: str | None = None

    def to_dict(self) -> dict[str, Any]:
        rate = (
            round(self.processed / self.received * 100, 2) if self.received else 0.0
        )
        return {
            "received": self.received,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "last_processed": self.last_processed,
            "success_rate": rate,
        }


_stats = WebhookStats()
_stats_lock = threading.Lock()


def _bump(counter: str) -> None:
    with _stats_lock:
        setattr(_stats, counter, getattr(_stats, counter) + 1)
        if counter != "received":
            _stats.last_processed = utc_now_iso()


def get_webhook_stats() -> dict[str, Any]:
    with _stats_lock:
        return _stats.to_dict()


def reset_webhook_stats() -> None:
    """Zero the delivery counters (used by the reset endpoint and tests)."""
    global _stats
    with _stats_lock:
        _stats = WebhookStats()


# =============================================================================
# Ingestion
# =============================================================================


@dataclass
class WebhookResult:
    """Outcome of one webhook delivery."""

    item_id: str
    result: PricingOutcome
    job_id: str
    processing_time_ms: int
    reason: str | None = None
    error_code: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        """Render the 200 response body NetSuite receives."""
        body: dict[str, Any] = {
            "success": self.result != PricingOutcome.error,
            "message": (
                "Webhook processed with errors"
                if self.result == PricingOutcome.error
                else "Webhook processed successfully"
            ),
            "itemId": self.item_id,
            "result": self.result.value,
            "processingTimeMs": self.processing_time_ms,
            "jobId": self.job_id,
            "warnings": self.warnings,
        }
        if self.reason is not None:
            body["reason"] = self.reason
        if self.error_code is not None:
            body["errorCode"] = self.error_code
        return body


def parse_envelope(payload: Any) -> PricingRecord:
    """Validate a webhook envelope and extract its pricing record.

    Raises:
        ValidationError: For an unsupported eventType or missing itemid.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")
    event_type = payload.get("eventType")
    if event_type != SUPPORTED_EVENT_TYPE:
        raise ValidationError(
            SyncError.from_code("E-2003", event_type=event_type).message,
            field="eventType",
        )
    item_data = payload.get("itemData")
    if not isinstance(item_data, dict) or not item_data.get("itemid"):
        raise ValidationError(SyncError.from_code("E-2002").message, field="itemid")
    return PricingRecord.from_item_data(item_data)


class WebhookIngester:
    """Runs one webhook delivery through the pricing engine as a job.

    Attributes:
        db: SQLAlchemy session shared by the job records and the catalog.
        engine: Pricing engine applied to each delivery.
    """

    def __init__(self, db: Session, engine: PricingSyncEngine | None = None) -> None:
        self.db = db
        self.engine = engine or PricingSyncEngine(SqlCatalogStore(db))
        self.jobs = SyncJobService(db)
        self.job_log = JobLog(db)

    def ingest(self, payload: Any) -> WebhookResult:
        """Process one webhook envelope.

        Args:
            payload: Parsed JSON body.

        Returns:
            WebhookResult with result updated, skipped or error.

        Raises:
            ValidationError: If the envelope is malformed (HTTP 400).
                No job is created.
            Exception: Anything unexpected after the job was created. The
                job and its item are failed before the exception propagates.
        """
        started = time.monotonic()
        record = parse_envelope(payload)
        _bump("received")
        logger.info(
            "Received pricing webhook for %s (internalid=%s, %s=%s)",
            record.item_code,
            record.netsuite_internal_id,
            SKIP_FLAG_FIELD,
            record.skip_flag,
        )

        job = self.jobs.create_job(
            SyncJobType.pricing_sync,
            total_items=1,
            triggered_by=WEBHOOK_TRIGGERED_BY,
            source="webhook",
        )
        item_id = None
        try:
            self.jobs.start_job(job.id)
            item = self.jobs.create_item(
                job.id,
                item_code=record.item_code,
                netsuite_item_id=record.item_code,
                netsuite_internal_id=record.netsuite_internal_id,
                pricing_data=record.values,
                status=SyncItemStatus.processing,
            )
            item_id = item.id
            outcome = self.engine.apply(record)
            self._record_outcome(job.id, item_id, record, outcome)
        except Exception as e:
            self.db.rollback()
            logger.exception("Webhook for %s failed unexpectedly", record.item_code)
            self._record_crash(job.id, item_id, classify_exception(e))
            raise

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Webhook for %s processed: %s in %dms",
            record.item_code, outcome.result.value, elapsed_ms,
        )
        return WebhookResult(
            item_id=record.item_code,
            result=outcome.result,
            job_id=job.id,
            processing_time_ms=elapsed_ms,
            reason=outcome.reason,
            error_code=outcome.error_code,
            warnings=outcome.warnings,
        )

    def _record_outcome(
        self, job_id: str, item_id: str, record: PricingRecord, outcome: PricingSyncResult
    ) -> None:
        if outcome.result == PricingOutcome.error:
            # Discard whatever the failed apply left pending in the session
            self.db.rollback()
        self.jobs.record_pricing_outcome(item_id, outcome)

        if outcome.result == PricingOutcome.skipped:
            self.jobs.complete_job(job_id)
            self.job_log.info(
                f"Pricing sync skipped for {record.item_code}",
                job_id=job_id,
                item_id=item_id,
                details={"reason": outcome.reason},
            )
            _bump("skipped")
        elif outcome.result == PricingOutcome.updated:
            self.jobs.complete_job(job_id)
            self.job_log.info(
                f"Pricing updated for {record.item_code}",
                job_id=job_id,
                item_id=item_id,
                details=outcome.to_dict(),
            )
            for warning in outcome.warnings:
                self.job_log.warn(warning, job_id=job_id, item_id=item_id)
            _bump("processed")
        else:
            self.jobs.fail_job(job_id, outcome.reason or "Pricing sync failed", outcome.error_code)
            self.job_log.error(
                f"Pricing sync failed for {record.item_code}: {outcome.reason}",
                job_id=job_id,
                item_id=item_id,
                details={"error_code": outcome.error_code},
            )
            _bump("failed")

    def _record_crash(self, job_id: str, item_id: str | None, error: SyncError) -> None:
        """Close out the job and item of a delivery that raised.

        Only records that are not final yet are touched.
        """
        try:
            if item_id is not None:
                item = self.jobs.get_item(item_id)
                if item is not None and item.status == SyncItemStatus.processing.value:
                    self.jobs.record_item_outcome(
                        item_id,
                        SyncItemStatus.failed,
                        error_code=error.code,
                        error_message=error.message,
                    )
            job = self.jobs.require_job(job_id)
            if job.status in (SyncJobStatus.pending.value, SyncJobStatus.running.value):
                self.jobs.fail_job(job_id, error.message, error.code)
            _bump("failed")
        except Exception:
            self.db.rollback()
            logger.exception("Could not record webhook failure on job %s", job_id)
