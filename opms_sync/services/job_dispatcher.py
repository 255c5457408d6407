"""Queue-draining dispatcher for OPMS -> NetSuite item syncs.

Each poll reclaims stale claims, claims one batch from the queue, wraps it
in a SyncJob and runs every entry through an ItemProcessor. Entries are
isolated from each other: an unexpected exception, in the processor or in
the queue and job bookkeeping around it, fails that entry and the batch
moves on. The batch's SyncJob always reaches a terminal status.

Retry semantics:
    - Retryable failures under the entry's max_retries are rescheduled with
      exponential backoff and full jitter.
    - Retryable failures at the ceiling become permanent (E-4003).
    - Permanent failures fail the entry immediately.

Workers are independent processes; all coordination happens in the queue
table's claim.
"""

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy.orm import Session

from opms_sync.db.models import QueueStatus, SyncItemStatus, SyncJobType
from opms_sync.errors import DomainError, SyncError, classify_exception
from opms_sync.services.item_sync_processor import ItemOutcome, ItemProcessor
from opms_sync.services.job_log import JobLog
from opms_sync.services.job_service import SyncJobService
from opms_sync.services.sync_queue import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_STALE_AFTER_SECONDS,
    SyncQueue,
    TableSyncQueue,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_RATE_LIMIT_PER_SECOND = 10.0


@dataclass
class RetryPolicy:
    """Backoff parameters for retryable failures."""

    base_delay_ms: int = 2000
    max_delay_ms: int = 30000
    jitter: bool = True


def compute_retry_delay(
    retry_count: int,
    policy: RetryPolicy | None = None,
    rng: Callable[[], float] = random.random,
) -> int:
    """Delay before attempt number ``retry_count`` (1-based), in ms.

    ``min(base * 2**(retry_count-1), max)``, scaled by a uniform draw in
    [0, 1) when jitter is enabled.
    """
    policy = policy or RetryPolicy()
    exponent = max(retry_count - 1, 0)
    delay = min(policy.base_delay_ms * (2**exponent), policy.max_delay_ms)
    if policy.jitter:
        delay = delay * rng()
    return int(delay)


@dataclass
class DispatchSummary:
    """Counts for one dispatcher poll."""

    job_id: str | None = None
    reclaimed: int = 0
    claimed: int = 0
    succeeded: int = 0
    skipped: int = 0
    retried: int = 0
    failed: int = 0

    @property
    def idle(self) -> bool:
        return self.claimed == 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class JobDispatcher:
    """Claims queue batches and executes them.

    Attributes:
        db: Session shared by the queue, job service and job log.
        processor: Executes one attempt per entry.
        queue: Queue entries are claimed from.
        batch_size: Maximum entries claimed per poll.
        retry_policy: Backoff parameters.
        stale_after_seconds: Claim age after which PROCESSING rows are reclaimed.
        poll_interval_seconds: Idle sleep between polls.
        rate_limit_per_second: Maximum item attempts per second (0 = unlimited).
    """

    def __init__(
        self,
        db: Session,
        processor: ItemProcessor,
        queue: SyncQueue | None = None,
        worker_id: str | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retry_policy: RetryPolicy | None = None,
        stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        rate_limit_per_second: float = DEFAULT_RATE_LIMIT_PER_SECOND,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.db = db
        self.processor = processor
        self.queue = queue or TableSyncQueue(db, worker_id=worker_id)
        self.worker_id = worker_id or getattr(self.queue, "worker_id", "dispatcher")
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy()
        self.stale_after_seconds = stale_after_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.rate_limit_per_second = rate_limit_per_second
        self.jobs = SyncJobService(db)
        self.job_log = JobLog(db)
        self._sleep = sleep
        self._last_attempt_at: float | None = None

    # =========================================================================
    # Poll
    # =========================================================================

    def run_once(self) -> DispatchSummary:
        """Run a single poll: reclaim, claim one batch, execute it.

        Returns:
            DispatchSummary for the poll. ``idle`` is True when nothing
            was claimed.
        """
        summary = DispatchSummary()
        reclaim = self.queue.reclaim_stale(self.stale_after_seconds)
        summary.reclaimed = reclaim["reclaimed"]

        batch = self.queue.get_next_batch(self.batch_size)
        summary.claimed = len(batch)
        if not batch:
            return summary

        job = self.jobs.create_job(
            SyncJobType.scheduled,
            total_items=len(batch),
            triggered_by=self.worker_id,
            source="queue",
        )
        summary.job_id = job.id
        self.jobs.start_job(job.id)
        self.job_log.info(
            f"Claimed {len(batch)} queue entries",
            job_id=job.id,
            details={"worker_id": self.worker_id, "entry_ids": [e.id for e in batch]},
        )

        finished = False
        try:
            for entry in batch:
                self._throttle()
                try:
                    self._dispatch_entry(job.id, entry, summary)
                except Exception as e:
                    self.db.rollback()
                    logger.exception(
                        "Bookkeeping failed for queue entry %s (item %s)",
                        entry.id, entry.item_id,
                    )
                    self._abandon_entry(job.id, entry, classify_exception(e))
                    summary.failed += 1
            finished = True
        finally:
            self._finish_job(job.id, summary, finished)
        logger.info(
            "Batch %s done: %d succeeded, %d skipped, %d retried, %d failed",
            job.id, summary.succeeded, summary.skipped, summary.retried, summary.failed,
        )
        return summary

    def run(self, stop_event: threading.Event | None = None) -> None:
        """Poll until ``stop_event`` is set.

        Sleeps ``poll_interval_seconds`` after an idle or failed poll and
        polls again immediately after a productive one.
        """
        stop_event = stop_event or threading.Event()
        logger.info(
            "Dispatcher %s started (batch_size=%d, poll_interval=%ss)",
            self.worker_id, self.batch_size, self.poll_interval_seconds,
        )
        while not stop_event.is_set():
            try:
                summary = self.run_once()
                idle = summary.idle
            except Exception:
                logger.exception("Dispatcher %s poll failed", self.worker_id)
                self.db.rollback()
                idle = True
            if idle:
                stop_event.wait(self.poll_interval_seconds)
        logger.info("Dispatcher %s stopped", self.worker_id)

    # =========================================================================
    # Per-entry execution
    # =========================================================================

    def _throttle(self) -> None:
        if self.rate_limit_per_second <= 0:
            return
        min_interval = 1.0 / self.rate_limit_per_second
        now = time.monotonic()
        if self._last_attempt_at is not None:
            remaining = min_interval - (now - self._last_attempt_at)
            if remaining > 0:
                self._sleep(remaining)
                now = time.monotonic()
        self._last_attempt_at = now

    def _dispatch_entry(self, job_id: str, entry: Any, summary: DispatchSummary) -> None:
        item = self.jobs.create_item(
            job_id,
            opms_item_id=entry.item_id,
            opms_product_id=entry.product_id,
            queue_entry_id=entry.id,
            retry_count=entry.retry_count,
            max_retries=entry.max_retries,
            status=SyncItemStatus.processing,
        )

        try:
            result = self.processor.process(entry)
        except Exception as e:
            self.db.rollback()
            error = classify_exception(e)
            if isinstance(e, (DomainError, SyncError)):
                logger.warning("Queue entry %s (item %s) failed: %s", entry.id, entry.item_id, error)
            else:
                logger.exception(
                    "Unexpected error processing queue entry %s (item %s)",
                    entry.id, entry.item_id,
                )
            self._handle_failure(job_id, item.id, entry, error, summary)
            return

        if result.outcome == ItemOutcome.failed:
            error = result.error or SyncError.from_code(
                "E-4001", message=result.reason or "processor reported failure"
            )
            self._handle_failure(job_id, item.id, entry, error, summary)
            return

        self.queue.update_status(
            entry.id, QueueStatus.COMPLETED.value, processing_results=result.to_dict()
        )
        if result.outcome == ItemOutcome.skipped:
            self.jobs.record_item_outcome(
                item.id,
                SyncItemStatus.skipped,
                skip_reason=result.reason,
                opms_item_id=result.opms_item_id,
                opms_product_id=result.opms_product_id,
            )
            self.job_log.info(
                f"Item {entry.item_id} skipped: {result.reason}", job_id=job_id, item_id=item.id
            )
            summary.skipped += 1
        else:
            self.jobs.record_item_outcome(
                item.id,
                SyncItemStatus.success,
                sync_fields=result.sync_fields,
                opms_item_id=result.opms_item_id,
                opms_product_id=result.opms_product_id,
                netsuite_internal_id=result.external_id,
            )
            self.job_log.info(
                f"Item {entry.item_id} synced",
                job_id=job_id,
                item_id=item.id,
                details=result.to_dict(),
            )
            summary.succeeded += 1

    def _handle_failure(
        self,
        job_id: str,
        sync_item_id: str,
        entry: Any,
        error: SyncError,
        summary: DispatchSummary,
    ) -> None:
        if error.is_retryable and entry.retry_count < entry.max_retries:
            next_retry = entry.retry_count + 1
            delay_ms = compute_retry_delay(next_retry, self.retry_policy)
            self.queue.schedule_retry(entry.id, delay_ms, next_retry, last_error=error.message)
            self.jobs.record_item_outcome(
                sync_item_id,
                SyncItemStatus.failed,
                error_code=error.code,
                error_message=error.message,
                retry_count=next_retry,
            )
            self.job_log.warn(
                f"Item {entry.item_id} will retry ({next_retry}/{entry.max_retries})",
                job_id=job_id,
                item_id=sync_item_id,
                details={"error_code": error.code, "delay_ms": delay_ms},
            )
            summary.retried += 1
            return

        final = error
        if error.is_retryable:
            final = SyncError.from_code("E-4003", message=error.message)
        self.queue.update_status(
            entry.id,
            QueueStatus.FAILED.value,
            error_message=final.message,
            processing_results={"error_code": final.code},
        )
        self.jobs.record_item_outcome(
            sync_item_id,
            SyncItemStatus.failed,
            error_code=final.code,
            error_message=final.message,
        )
        self.job_log.error(
            f"Item {entry.item_id} failed: {final.message}",
            job_id=job_id,
            item_id=sync_item_id,
            details={"error_code": final.code},
        )
        summary.failed += 1

    def _abandon_entry(self, job_id: str, entry: Any, error: SyncError) -> None:
        """Settle an entry whose bookkeeping raised after it was claimed.

        The queue row is rescheduled or failed only if it is still
        PROCESSING, and the SyncItem is failed only if it is not final yet.
        Anything that raises here is left to the stale claim sweep.
        """
        try:
            current = self.queue.get_entry(entry.id)
            if current is not None and current.status == QueueStatus.PROCESSING.value:
                if error.is_retryable and entry.retry_count < entry.max_retries:
                    next_retry = entry.retry_count + 1
                    self.queue.schedule_retry(
                        entry.id,
                        compute_retry_delay(next_retry, self.retry_policy),
                        next_retry,
                        last_error=error.message,
                    )
                else:
                    self.queue.update_status(
                        entry.id,
                        QueueStatus.FAILED.value,
                        error_message=error.message,
                        processing_results={"error_code": error.code},
                    )
            for item in self.jobs.get_items(job_id, SyncItemStatus.processing):
                if item.queue_entry_id == entry.id:
                    self.jobs.record_item_outcome(
                        item.id,
                        SyncItemStatus.failed,
                        error_code=error.code,
                        error_message=error.message,
                    )
        except Exception:
            self.db.rollback()
            logger.exception("Could not settle queue entry %s; leaving it to reclaim", entry.id)

    def _finish_job(self, job_id: str, summary: DispatchSummary, finished: bool) -> None:
        if not finished:
            self.db.rollback()
            attempted = summary.succeeded + summary.skipped + summary.retried + summary.failed
            self.jobs.fail_job(
                job_id, f"Batch aborted after {attempted} of {summary.claimed} items", "E-4001"
            )
        elif summary.failed:
            self.jobs.fail_job(
                job_id,
                f"{summary.failed} of {summary.claimed} items failed permanently",
            )
        else:
            self.jobs.complete_job(job_id)
