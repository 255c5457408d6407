"""Tests for the append-only job log."""

import json

import pytest
from sqlalchemy.orm import Session

from opms_sync.db.models import SyncJobType
from opms_sync.services.job_log import JobLog
from opms_sync.services.job_service import SyncJobService


@pytest.fixture
def job_id(db_session: Session) -> str:
    return SyncJobService(db_session).create_job(SyncJobType.manual).id


def test_level_helpers(db_session: Session, job_id: str) -> None:
    log = JobLog(db_session)
    log.debug("d", job_id=job_id)
    log.info("i", job_id=job_id)
    log.warn("w", job_id=job_id)
    log.error("e", job_id=job_id)

    entries = log.get_logs(job_id=job_id)

    assert [e.level for e in entries] == ["debug", "info", "warn", "error"]
    assert [e.message for e in log.get_logs(job_id=job_id, level="warn")] == ["w"]


def test_details_are_redacted(db_session: Session, job_id: str) -> None:
    entry = JobLog(db_session).info(
        "Webhook received",
        job_id=job_id,
        details={
            "headers": {"Authorization": "Bearer abc"},
            "api_token": "xyz",
            "item": {"itemid": "opmsAPI01"},
        },
    )

    details = json.loads(entry.details)
    assert details["headers"] == "***REDACTED***"
    assert details["api_token"] == "***REDACTED***"
    assert details["item"] == {"itemid": "opmsAPI01"}


def test_invalid_level_rejected(db_session: Session) -> None:
    with pytest.raises(ValueError):
        JobLog(db_session).log("fatal", "nope")


def test_filter_by_item_and_limit(db_session: Session, job_id: str) -> None:
    log = JobLog(db_session)
    for i in range(5):
        log.info(f"entry {i}", job_id=job_id, item_id="item-1" if i % 2 else None)

    assert len(log.get_logs(item_id="item-1")) == 2
    assert len(log.get_logs(job_id=job_id, limit=3)) == 3


def test_export_text(db_session: Session, job_id: str) -> None:
    log = JobLog(db_session)
    log.info("Claimed 1 queue entries", job_id=job_id, details={"worker_id": "w1"})
    log.error("Item 7 failed", job_id=job_id, item_id="item-7")

    lines = log.export_text(job_id).splitlines()

    assert len(lines) == 2
    assert "INFO  Claimed 1 queue entries" in lines[0]
    assert '"worker_id": "w1"' in lines[0]
    assert lines[1].endswith("Item 7 failed (item=item-7)")


def test_export_text_reads_every_page(db_session: Session, job_id: str) -> None:
    log = JobLog(db_session)
    for i in range(7):
        log.info(f"entry {i}", job_id=job_id)

    lines = log.export_text(job_id, page_size=3).splitlines()

    assert len(lines) == 7
    assert sorted(line.rsplit(" ", 1)[1] for line in lines) == [str(i) for i in range(7)]


def test_get_logs_offset(db_session: Session, job_id: str) -> None:
    log = JobLog(db_session)
    for i in range(4):
        log.info(f"entry {i}", job_id=job_id)

    first = log.get_logs(job_id=job_id, limit=2)
    rest = log.get_logs(job_id=job_id, limit=2, offset=2)

    assert {e.id for e in first}.isdisjoint({e.id for e in rest})
    assert len(rest) == 2
