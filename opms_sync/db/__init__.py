"""Database module for sync state and the legacy catalog slice."""

from opms_sync.db.connection import (
    SessionLocal,
    engine,
    get_db,
    get_db_context,
    init_db,
)
from opms_sync.db.models import (
    ChangeLogEntry,
    DryRunRecord,
    ItemHealthStatus,
    ItemSyncStatus,
    LogLevel,
    QueueEntry,
    QueuePriority,
    QueueStatus,
    SyncItem,
    SyncItemStatus,
    SyncJob,
    SyncJobStatus,
    SyncJobType,
    SyncLog,
)

__all__ = [
    # Models
    "SyncJob",
    "SyncItem",
    "QueueEntry",
    "SyncLog",
    "ChangeLogEntry",
    "ItemSyncStatus",
    "DryRunRecord",
    # Enums
    "SyncJobStatus",
    "SyncJobType",
    "SyncItemStatus",
    "QueueStatus",
    "QueuePriority",
    "ItemHealthStatus",
    "LogLevel",
    # Connection
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "init_db",
]
