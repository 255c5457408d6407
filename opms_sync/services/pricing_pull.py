"""NetSuite -> OPMS pricing pull.

The webhook pushes one item at a time. The pull goes the other way: it
reads item records from NetSuite through an ErpItemSource and runs each
one through the PricingSyncEngine, under a single job.

Job types:
    ns_to_opms_pricing  items modified since the last completed pull
    initial             every active item, up to a limit
    force_full          cancels open pull jobs, then runs a full pull
    manual              an explicit list of item codes
    item                one item code

Items are isolated from each other: a record that fails to fetch, parse or
apply fails its own SyncItem and the pull moves on. The job completes when
no item failed and fails otherwise. Requests are spaced by a fixed delay.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from opms_sync.db.models import SyncItemStatus, SyncJob, SyncJobStatus, SyncJobType
from opms_sync.errors import NotFoundError, ValidationError, classify_exception
from opms_sync.services.catalog_store import SqlCatalogStore
from opms_sync.services.erp_client import DEFAULT_FETCH_LIMIT, ErpItemSource
from opms_sync.services.job_log import JobLog
from opms_sync.services.job_service import SyncJobService
from opms_sync.services.pricing_sync_engine import (
    PricingOutcome,
    PricingRecord,
    PricingSyncEngine,
    PricingSyncResult,
)

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT_DELAY_MS = 100
DEFAULT_FULL_SYNC_LIMIT = 1000
MAX_MANUAL_ITEMS = 500

PULL_JOB_TYPES = [
    SyncJobType.ns_to_opms_pricing,
    SyncJobType.initial,
    SyncJobType.force_full,
    SyncJobType.manual,
    SyncJobType.item,
]

_OPEN_STATUSES = (SyncJobStatus.pending, SyncJobStatus.running)


@dataclass
class PullSummary:
    """Counters for one pull job."""

    job_id: str
    job_type: str
    status: str = SyncJobStatus.running.value
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    since: str | None = None
    cancelled_jobs: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "job_type": self.job_type,
            "status": self.status,
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "since": self.since,
            "cancelled_jobs": self.cancelled_jobs,
        }


class PricingPullService:
    """Pulls NetSuite item pricing into OPMS as sync jobs.

    Attributes:
        db: SQLAlchemy session shared by the job records and the catalog.
        source: Where NetSuite item records are read from.
        engine: Pricing engine applied to each record.
    """

    def __init__(
        self,
        db: Session,
        source: ErpItemSource,
        engine: PricingSyncEngine | None = None,
        rate_limit_delay_ms: int = DEFAULT_RATE_LIMIT_DELAY_MS,
        sleep: Callable[[float], None] = time.sleep,
        triggered_by: str | None = None,
        job_source: str = "api",
    ) -> None:
        self.db = db
        self.source = source
        self.engine = engine or PricingSyncEngine(SqlCatalogStore(db))
        self.rate_limit_delay_ms = rate_limit_delay_ms
        self.triggered_by = triggered_by
        self.job_source = job_source
        self.jobs = SyncJobService(db)
        self.job_log = JobLog(db)
        self._sleep = sleep

    # =========================================================================
    # Operations
    # =========================================================================

    def last_sync_time(self) -> str | None:
        return self.jobs.last_completed_at(PULL_JOB_TYPES)

    def sync_updated(
        self, since: str | None = None, limit: int = DEFAULT_FETCH_LIMIT
    ) -> PullSummary:
        """Pull items modified since ``since``.

        Args:
            since: ISO timestamp. Defaults to the completion time of the
                last completed pull; with no previous pull every item is read.
            limit: Maximum records to request.

        Raises:
            SyncError: If the item search itself fails. The job is failed.
        """
        since = since or self.last_sync_time()
        return self._pull_batch(SyncJobType.ns_to_opms_pricing, since, limit)

    def initial_sync(self, limit: int = DEFAULT_FULL_SYNC_LIMIT) -> PullSummary:
        return self._pull_batch(SyncJobType.initial, None, limit)

    def force_full_sync(self, limit: int = DEFAULT_FULL_SYNC_LIMIT) -> PullSummary:
        """Cancel every open pull job, then pull every item."""
        cancelled = self.cancel_open_pulls()
        summary = self._pull_batch(SyncJobType.force_full, None, limit)
        summary.cancelled_jobs = cancelled
        return summary

    def sync_items(
        self, item_codes: list[str], job_type: SyncJobType = SyncJobType.manual
    ) -> PullSummary:
        """Pull specific items by NetSuite itemid.

        Codes NetSuite does not know fail their item with E-1001.

        Raises:
            ValidationError: If no codes are given or there are too many.
        """
        codes = list(dict.fromkeys(c.strip() for c in item_codes if c and c.strip()))
        if not codes:
            raise ValidationError("At least one item code is required", field="item_codes")
        if len(codes) > MAX_MANUAL_ITEMS:
            raise ValidationError(
                f"At most {MAX_MANUAL_ITEMS} item codes per pull (got {len(codes)})",
                field="item_codes",
            )

        job = self._open_job(job_type, total_items=len(codes))
        summary = PullSummary(job_id=job.id, job_type=job_type.value, total=len(codes))
        self._run(summary, [(code, self._fetcher(code)) for code in codes])
        return summary

    def sync_item(self, item_code: str) -> PullSummary:
        return self.sync_items([item_code], job_type=SyncJobType.item)

    def cancel_open_pulls(self) -> list[str]:
        """Cancel pending and running pull jobs. Returns their ids."""
        cancelled = []
        for job_type in PULL_JOB_TYPES:
            for status in _OPEN_STATUSES:
                for job in self.jobs.list_jobs(status=status, job_type=job_type, limit=1000):
                    self.jobs.cancel_job(job.id)
                    logger.warning("Cancelled %s pull job %s", job_type.value, job.id)
                    cancelled.append(job.id)
        return cancelled

    # =========================================================================
    # Internals
    # =========================================================================

    def _open_job(self, job_type: SyncJobType, total_items: int = 0) -> SyncJob:
        job = self.jobs.create_job(
            job_type,
            total_items=total_items,
            triggered_by=self.triggered_by,
            source=self.job_source,
        )
        self.jobs.start_job(job.id)
        return job

    def _fetcher(self, item_code: str) -> Callable[[], dict[str, Any]]:
        def fetch() -> dict[str, Any]:
            item_data = self.source.get_item(item_code)
            if item_data is None:
                raise NotFoundError("NetSuite item", item_code)
            return item_data

        return fetch

    def _pull_batch(
        self, job_type: SyncJobType, since: str | None, limit: int
    ) -> PullSummary:
        job = self._open_job(job_type)
        summary = PullSummary(job_id=job.id, job_type=job_type.value, since=since)
        logger.info("Starting %s pull (since=%s, limit=%d)", job_type.value, since, limit)

        try:
            records = self.source.fetch_updated_items(modified_since=since, limit=limit)
        except Exception as e:
            error = classify_exception(e)
            logger.error("NetSuite item search failed for job %s: %s", job.id, error)
            self.jobs.fail_job(job.id, error.message, error.code)
            self.job_log.error(
                f"NetSuite item search failed: {error.message}",
                job_id=job.id,
                details={"error_code": error.code},
            )
            if error is e:
                raise
            raise error from e

        self.jobs.set_total_items(job.id, len(records))
        summary.total = len(records)
        entries = [
            (record.get("itemid"), (lambda record=record: record)) for record in records
        ]
        self._run(summary, entries)
        return summary

    def _run(
        self,
        summary: PullSummary,
        entries: list[tuple[str | None, Callable[[], dict[str, Any]]]],
    ) -> None:
        failure: PricingSyncResult | None = None
        finished = False
        try:
            for index, (item_code, fetch) in enumerate(entries):
                if self._was_cancelled(summary.job_id):
                    logger.warning("Pull job %s was cancelled; stopping", summary.job_id)
                    break
                if index and self.rate_limit_delay_ms:
                    self._sleep(self.rate_limit_delay_ms / 1000)

                outcome = self._sync_one(summary.job_id, item_code, fetch)
                if outcome.result == PricingOutcome.updated:
                    summary.successful += 1
                elif outcome.result == PricingOutcome.skipped:
                    summary.skipped += 1
                else:
                    summary.failed += 1
                    failure = failure or outcome
            finished = True
        finally:
            self._finish_job(summary, failure, finished)

    def _sync_one(
        self,
        job_id: str,
        item_code: str | None,
        fetch: Callable[[], dict[str, Any]],
    ) -> PricingSyncResult:
        item = self.jobs.create_item(
            job_id,
            item_code=item_code,
            netsuite_item_id=item_code,
            status=SyncItemStatus.processing,
        )
        try:
            record = PricingRecord.from_item_data(fetch())
            outcome = self.engine.apply(record)
        except Exception as e:
            error = classify_exception(e)
            expected = isinstance(e, (NotFoundError, ValidationError))
            log = logger.warning if expected else logger.exception
            log("Pull of %s failed: %s", item_code, error)
            outcome = PricingSyncResult(
                result=PricingOutcome.error,
                item_code=item_code or "",
                reason=error.message,
                error_code=error.code,
                is_retryable=error.is_retryable,
            )

        if outcome.result == PricingOutcome.error:
            # Discard whatever the failed apply left pending in the session
            self.db.rollback()
        self.jobs.record_pricing_outcome(item.id, outcome)
        self._log_outcome(job_id, item.id, outcome)
        return outcome

    def _log_outcome(self, job_id: str, item_id: str, outcome: PricingSyncResult) -> None:
        code = outcome.item_code or "<no itemid>"
        if outcome.result == PricingOutcome.updated:
            self.job_log.info(
                f"Pricing updated for {code}",
                job_id=job_id,
                item_id=item_id,
                details=outcome.to_dict(),
            )
            for warning in outcome.warnings:
                self.job_log.warn(warning, job_id=job_id, item_id=item_id)
        elif outcome.result == PricingOutcome.skipped:
            self.job_log.info(
                f"Pricing sync skipped for {code}",
                job_id=job_id,
                item_id=item_id,
                details={"reason": outcome.reason},
            )
        else:
            self.job_log.error(
                f"Pricing sync failed for {code}: {outcome.reason}",
                job_id=job_id,
                item_id=item_id,
                details={"error_code": outcome.error_code},
            )

    def _was_cancelled(self, job_id: str) -> bool:
        job = self.jobs.require_job(job_id)
        self.db.refresh(job)
        return job.status == SyncJobStatus.cancelled.value

    def _finish_job(
        self, summary: PullSummary, failure: PricingSyncResult | None, finished: bool
    ) -> None:
        job_id = summary.job_id
        attempted = summary.successful + summary.skipped + summary.failed
        if not finished:
            self.db.rollback()
            for item in self.jobs.get_items(job_id, status=SyncItemStatus.processing):
                self.jobs.record_item_outcome(
                    item.id,
                    SyncItemStatus.failed,
                    error_code="E-4001",
                    error_message="Pull aborted while this item was in progress",
                )
        job = self.jobs.require_job(job_id)
        if job.status not in (SyncJobStatus.pending.value, SyncJobStatus.running.value):
            summary.status = job.status
            return

        if not finished:
            job = self.jobs.fail_job(
                job_id, f"Pull aborted after {attempted} of {summary.total} items", "E-4001"
            )
        elif failure is not None:
            job = self.jobs.fail_job(
                job_id,
                f"{summary.failed} of {summary.total} items failed; first: {failure.reason}",
                failure.error_code,
            )
        else:
            job = self.jobs.complete_job(job_id)
        summary.status = job.status
        logger.info(
            "Pull job %s %s: %d updated, %d skipped, %d failed of %d",
            job_id, job.status, summary.successful, summary.skipped,
            summary.failed, summary.total,
        )
