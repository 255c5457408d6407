"""Service layer for the OPMS sync engine.

Provides the work queue and dispatcher, the pricing and item sync units of
work, webhook ingestion, the NetSuite pricing pull, change detection,
dry-run capture, and the job, item health and log records they write.
"""

from opms_sync.services.change_detector import ChangeDetector
from opms_sync.services.dry_run_recorder import DryRunRecorder, validate_payload
from opms_sync.services.item_sync_processor import ItemSyncProcessor
from opms_sync.services.job_dispatcher import (
    DispatchSummary,
    JobDispatcher,
    RetryPolicy,
    compute_retry_delay,
)
from opms_sync.services.job_log import JobLog
from opms_sync.services.job_service import SyncJobService
from opms_sync.services.pricing_pull import PricingPullService, PullSummary
from opms_sync.services.pricing_sync_engine import PricingRecord, PricingSyncEngine
from opms_sync.services.restlet_simulator import RestletValidationSimulator
from opms_sync.services.sync_queue import InMemorySyncQueue, TableSyncQueue
from opms_sync.services.webhook_ingester import WebhookIngester

__all__ = [
    "TableSyncQueue",
    "InMemorySyncQueue",
    "JobDispatcher",
    "DispatchSummary",
    "RetryPolicy",
    "compute_retry_delay",
    "ItemSyncProcessor",
    "PricingSyncEngine",
    "PricingRecord",
    "PricingPullService",
    "PullSummary",
    "WebhookIngester",
    "DryRunRecorder",
    "validate_payload",
    "RestletValidationSimulator",
    "ChangeDetector",
    "JobLog",
    "SyncJobService",
]
