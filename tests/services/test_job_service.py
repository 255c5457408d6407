"""Tests for SyncJobService: job state machine, items and progress."""

import pytest
from sqlalchemy.orm import Session

from opms_sync.db.models import SyncItemStatus, SyncJobStatus, SyncJobType
from opms_sync.errors import InvalidStateTransition, NotFoundError
from opms_sync.services.job_service import SyncJobService


@pytest.fixture
def service(db_session: Session) -> SyncJobService:
    return SyncJobService(db_session)


@pytest.fixture
def running_job(service: SyncJobService):
    job = service.create_job(SyncJobType.scheduled, total_items=4, triggered_by="worker-1", source="queue")
    return service.start_job(job.id)


class TestJobLifecycle:
    """Verify job state transitions."""

    def test_create_job_is_pending(self, service: SyncJobService) -> None:
        job = service.create_job("manual", total_items=2)

        assert job.status == SyncJobStatus.pending.value
        assert job.job_type == "manual"
        assert job.started_at is None

    def test_start_stamps_started_at(self, running_job) -> None:
        assert running_job.status == SyncJobStatus.running.value
        assert running_job.started_at is not None

    def test_complete_stamps_duration(self, service: SyncJobService, running_job) -> None:
        job = service.complete_job(running_job.id)

        assert job.status == SyncJobStatus.completed.value
        assert job.completed_at is not None
        assert job.duration_seconds is not None
        assert job.duration_seconds >= 0

    def test_fail_records_error(self, service: SyncJobService, running_job) -> None:
        job = service.fail_job(running_job.id, "2 of 4 items failed", "E-4003")

        assert job.status == SyncJobStatus.failed.value
        assert job.error_code == "E-4003"
        assert job.error_message == "2 of 4 items failed"

    def test_terminal_states_reject_transitions(self, service: SyncJobService, running_job) -> None:
        service.complete_job(running_job.id)

        with pytest.raises(InvalidStateTransition) as exc_info:
            service.start_job(running_job.id)
        assert exc_info.value.current_state == "completed"
        assert exc_info.value.allowed_transitions == []

    def test_pending_job_cannot_complete(self, service: SyncJobService) -> None:
        job = service.create_job(SyncJobType.manual)
        with pytest.raises(InvalidStateTransition):
            service.complete_job(job.id)

    def test_cancel_pending_job(self, service: SyncJobService) -> None:
        job = service.create_job(SyncJobType.manual)
        assert service.cancel_job(job.id).status == SyncJobStatus.cancelled.value

    def test_unknown_job(self, service: SyncJobService) -> None:
        with pytest.raises(NotFoundError):
            service.start_job("missing")

    def test_list_and_count(self, service: SyncJobService, running_job) -> None:
        service.create_job(SyncJobType.pricing_sync)

        assert service.count_jobs() == 2
        assert service.count_jobs(SyncJobStatus.running) == 1
        assert [j.id for j in service.list_jobs(status=SyncJobStatus.running)] == [running_job.id]
        assert len(service.list_jobs(job_type=SyncJobType.pricing_sync)) == 1


class TestItems:
    """Verify item outcomes and counters."""

    def test_outcome_bumps_job_counters(self, service: SyncJobService, running_job) -> None:
        statuses = [
            SyncItemStatus.success,
            SyncItemStatus.success,
            SyncItemStatus.failed,
            SyncItemStatus.skipped,
        ]
        for status in statuses:
            item = service.create_item(running_job.id, status=SyncItemStatus.processing)
            service.record_item_outcome(item.id, status)

        progress = service.get_progress(running_job.id)
        assert progress["processed_items"] == 4
        assert progress["successful_items"] == 2
        assert progress["failed_items"] == 1
        assert progress["skipped_items"] == 1
        assert progress["percent_complete"] == 100.0
        assert progress["success_rate"] == 50.0

    def test_success_is_final(self, service: SyncJobService, running_job) -> None:
        item = service.create_item(running_job.id, status=SyncItemStatus.processing)
        service.record_item_outcome(item.id, SyncItemStatus.success)

        with pytest.raises(InvalidStateTransition):
            service.record_item_outcome(item.id, SyncItemStatus.failed)

    def test_outcome_requires_outcome_status(self, service: SyncJobService, running_job) -> None:
        item = service.create_item(running_job.id)
        with pytest.raises(ValueError):
            service.record_item_outcome(item.id, SyncItemStatus.processing)

    def test_start_item(self, service: SyncJobService, running_job) -> None:
        item = service.create_item(running_job.id, item_code="1234-5678")
        assert service.start_item(item.id).status == SyncItemStatus.processing.value

    def test_retry_count_capped_at_max(self, service: SyncJobService, running_job) -> None:
        item = service.create_item(running_job.id, retry_count=9, max_retries=3)
        assert item.retry_count == 3

    def test_snapshots_and_error_are_stored(self, service: SyncJobService, running_job) -> None:
        item = service.create_item(
            running_job.id, pricing_data={"price_1_": 10}, status=SyncItemStatus.processing
        )
        updated = service.record_item_outcome(
            item.id,
            SyncItemStatus.failed,
            error_code="E-3002",
            error_message="rejected token=abc123",
            pricing_before={"p_res_cut": 5.0},
        )

        assert updated.error_code == "E-3002"
        assert "abc123" not in updated.error_message
        assert '"p_res_cut": 5.0' in updated.pricing_before
        assert service.get_items(running_job.id, status=SyncItemStatus.failed) == [updated]

    def test_create_item_for_unknown_job(self, service: SyncJobService) -> None:
        with pytest.raises(NotFoundError):
            service.create_item("missing")
