"""Append-only structured log for sync jobs and items.

Every entry is keyed to a job, an item, or both, and carries an optional
details object that is redacted (tokens, secrets, authorization headers)
and JSON-encoded before storage. Entries are never updated.

Usage:
    from opms_sync.services.job_log import JobLog

    job_log = JobLog(db)
    job_log.info("Pricing updated", job_id=job.id, item_id=item.id,
                 details={"pricing_after": after})
    print(job_log.export_text(job.id))
"""

import json
from typing import Any

from sqlalchemy.orm import Session

from opms_sync.db.models import LogLevel, SyncLog, utc_now_iso
from opms_sync.utils.redaction import redact_sensitive

EXPORT_PAGE_SIZE = 1000


class JobLog:
    """Writer and reader for netsuite_opms_sync_logs.

    Attributes:
        db: SQLAlchemy session for database operations.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def log(
        self,
        level: LogLevel | str,
        message: str,
        job_id: str | None = None,
        item_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> SyncLog:
        """Append a log entry.

        Core method that the level helpers delegate to. Details are
        redacted before they are serialized.

        Args:
            level: debug, info, warn or error.
            message: Human-readable event description.
            job_id: Owning sync job, if any.
            item_id: Owning sync item, if any.
            details: Optional structured context.

        Returns:
            The created SyncLog entry.
        """
        level_value = LogLevel(level).value
        details_json: str | None = None
        if details is not None:
            details_json = json.dumps(redact_sensitive(details), default=str)

        entry = SyncLog(
            sync_job_id=job_id,
            sync_item_id=item_id,
            level=level_value,
            message=message,
            details=details_json,
            created_at=utc_now_iso(),
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def debug(self, message: str, **kwargs: Any) -> SyncLog:
        return self.log(LogLevel.debug, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> SyncLog:
        return self.log(LogLevel.info, message, **kwargs)

    def warn(self, message: str, **kwargs: Any) -> SyncLog:
        return self.log(LogLevel.warn, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> SyncLog:
        return self.log(LogLevel.error, message, **kwargs)

    def get_logs(
        self,
        job_id: str | None = None,
        item_id: str | None = None,
        level: LogLevel | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[SyncLog]:
        """Query log entries in chronological order.

        Args:
            job_id: Filter by job.
            item_id: Filter by item.
            level: Filter by level.
            limit: Maximum number of entries.
            offset: Entries to skip, for paging.

        Returns:
            Matching entries, oldest first.
        """
        query = self.db.query(SyncLog)
        if job_id is not None:
            query = query.filter(SyncLog.sync_job_id == job_id)
        if item_id is not None:
            query = query.filter(SyncLog.sync_item_id == item_id)
        if level is not None:
            query = query.filter(SyncLog.level == LogLevel(level).value)
        return (
            query.order_by(SyncLog.created_at, SyncLog.id)
            .limit(limit)
            .offset(offset)
            .all()
        )

    def export_text(self, job_id: str, page_size: int = EXPORT_PAGE_SIZE) -> str:
        """Render a job's whole log as plain text, one line per entry.

        Entries are read ``page_size`` at a time.
        """
        lines = []
        offset = 0
        while True:
            page = self.get_logs(job_id=job_id, limit=page_size, offset=offset)
            for entry in page:
                line = f"[{entry.created_at}] {entry.level.upper():5} {entry.message}"
                if entry.sync_item_id:
                    line += f" (item={entry.sync_item_id})"
                if entry.details:
                    line += f" {entry.details}"
                lines.append(line)
            if len(page) < page_size:
                break
            offset += page_size
        return "\n".join(lines)
