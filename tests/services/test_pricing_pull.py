"""Tests for the NetSuite -> OPMS pricing pull."""

import pytest
from sqlalchemy.orm import Session

from opms_sync.db.models import SyncItemStatus, SyncJobStatus, SyncJobType
from opms_sync.errors import SyncError, TransientError, ValidationError
from opms_sync.services.job_log import JobLog
from opms_sync.services.job_service import SyncJobService
from opms_sync.services.pricing_pull import PricingPullService
from tests.helpers import FakeItemSource, stored_pricing


def _record(code: str, **fields) -> dict:
    data = {
        "itemid": code,
        "internalid": "9001",
        "price_1_": 100,
        "itemPriceLine2_itemPrice": 150,
        "cost": 40,
        "custitem_f3_rollprice": 50,
        "custitemf3_lisa_item": "F",
    }
    data.update(fields)
    return data


def _service(db: Session, source: FakeItemSource, **kwargs) -> PricingPullService:
    kwargs.setdefault("sleep", lambda seconds: None)
    return PricingPullService(db, source, triggered_by="tests", **kwargs)


class TestSyncUpdated:
    def test_updates_every_record(self, catalog: Session) -> None:
        source = FakeItemSource([_record("opmsAPI01"), _record("1234-5679", price_1_=120)])
        pauses: list[float] = []
        service = _service(catalog, source, rate_limit_delay_ms=250, sleep=pauses.append)

        summary = service.sync_updated()

        assert (summary.total, summary.successful, summary.failed) == (2, 2, 0)
        assert summary.status == SyncJobStatus.completed.value
        assert source.searches == [(None, 100)]
        assert pauses == [0.25]
        assert stored_pricing(catalog) == (120, 150, 40, 50)

        job = service.jobs.require_job(summary.job_id)
        assert job.job_type == SyncJobType.ns_to_opms_pricing.value
        assert job.total_items == 2
        assert job.successful_items == 2
        assert job.triggered_by == "tests"

    def test_defaults_since_to_last_completed_pull(self, catalog: Session) -> None:
        source = FakeItemSource([_record("opmsAPI01")])
        service = _service(catalog, source)
        first = service.sync_updated()

        second = service.sync_updated(limit=10)

        finished_at = service.jobs.require_job(first.job_id).completed_at
        assert source.searches[1] == (finished_at, 10)
        assert second.since == finished_at

    def test_explicit_since_is_passed_through(self, catalog: Session) -> None:
        source = FakeItemSource()
        summary = _service(catalog, source).sync_updated(since="2026-10-01T00:00:00Z")

        assert source.searches == [("2026-10-01T00:00:00Z", 100)]
        assert summary.total == 0
        assert summary.status == SyncJobStatus.completed.value

    def test_failures_are_isolated(self, catalog: Session) -> None:
        source = FakeItemSource(
            [
                _record("opmsAPI99"),
                _record("1234-5679", custitemf3_lisa_item="T"),
                {"price_1_": 10},
                _record("opmsAPI01"),
            ]
        )
        service = _service(catalog, source)

        summary = service.sync_updated()

        assert (summary.successful, summary.skipped, summary.failed) == (1, 1, 2)
        job = service.jobs.require_job(summary.job_id)
        assert job.status == SyncJobStatus.failed.value
        assert job.error_code == "E-1001"
        assert "2 of 4 items failed" in job.error_message
        assert job.processed_items == 4

        items = service.jobs.get_items(job.id)
        assert [i.status for i in items] == ["failed", "skipped", "failed", "success"]
        assert items[2].item_code is None
        assert items[2].error_code == "E-2001"
        assert stored_pricing(catalog) == (100, 150, 40, 50)

        errors = JobLog(catalog).get_logs(job_id=job.id, level="error")
        assert len(errors) == 2

    def test_search_failure_fails_the_job(self, catalog: Session) -> None:
        source = FakeItemSource(search_error=TransientError("connection reset"))
        service = _service(catalog, source)

        with pytest.raises(SyncError) as exc_info:
            service.sync_updated()

        assert exc_info.value.code == "E-3001"
        assert exc_info.value.is_retryable is True
        (job,) = service.jobs.list_jobs()
        assert job.status == SyncJobStatus.failed.value
        assert job.error_code == "E-3001"
        assert service.jobs.get_items(job.id) == []

    def test_unexpected_engine_error_fails_only_that_item(self, catalog: Session) -> None:
        class ExplodingEngine:
            def apply(self, record):
                raise RuntimeError("engine blew up")

        source = FakeItemSource([_record("opmsAPI01")])
        service = _service(catalog, source, engine=ExplodingEngine())

        summary = service.sync_updated()

        (item,) = service.jobs.get_items(summary.job_id)
        assert item.status == SyncItemStatus.failed.value
        assert item.error_code == "E-4001"
        assert "RuntimeError: engine blew up" in item.error_message
        assert summary.status == SyncJobStatus.failed.value

    def test_interrupted_pull_still_closes_the_job(self, catalog: Session) -> None:
        class InterruptingEngine:
            def apply(self, record):
                raise KeyboardInterrupt

        source = FakeItemSource([_record("opmsAPI01"), _record("1234-5679")])
        service = _service(catalog, source, engine=InterruptingEngine())

        with pytest.raises(KeyboardInterrupt):
            service.sync_updated()

        (job,) = service.jobs.list_jobs()
        assert job.status == SyncJobStatus.failed.value
        assert job.error_code == "E-4001"
        assert job.error_message == "Pull aborted after 0 of 2 items"
        (item,) = service.jobs.get_items(job.id)
        assert item.status == SyncItemStatus.failed.value


class TestFullSyncs:
    def test_initial_sync_ignores_previous_pulls(self, catalog: Session) -> None:
        source = FakeItemSource([_record("opmsAPI01")])
        service = _service(catalog, source)
        service.sync_updated()

        summary = service.initial_sync(limit=50)

        assert source.searches[-1] == (None, 50)
        assert summary.job_type == SyncJobType.initial.value
        assert summary.status == SyncJobStatus.completed.value

    def test_force_full_cancels_open_pulls_only(self, catalog: Session) -> None:
        jobs = SyncJobService(catalog)
        running = jobs.create_job(SyncJobType.initial)
        jobs.start_job(running.id)
        pending = jobs.create_job(SyncJobType.manual)
        webhook = jobs.create_job(SyncJobType.pricing_sync)
        jobs.start_job(webhook.id)

        summary = _service(catalog, FakeItemSource([_record("opmsAPI01")])).force_full_sync()

        assert sorted(summary.cancelled_jobs) == sorted([running.id, pending.id])
        assert summary.job_type == SyncJobType.force_full.value
        assert summary.status == SyncJobStatus.completed.value
        assert jobs.require_job(running.id).status == SyncJobStatus.cancelled.value
        assert jobs.require_job(pending.id).status == SyncJobStatus.cancelled.value
        assert jobs.require_job(webhook.id).status == SyncJobStatus.running.value

    def test_cancelled_pull_stops_between_items(self, catalog: Session) -> None:
        source = FakeItemSource([_record("opmsAPI01"), _record("1234-5678"), _record("1234-5679")])
        jobs = SyncJobService(catalog)

        def cancel_once(seconds: float) -> None:
            for job in jobs.list_jobs(status=SyncJobStatus.running):
                jobs.cancel_job(job.id)

        summary = _service(catalog, source, sleep=cancel_once).sync_updated()

        assert summary.status == SyncJobStatus.cancelled.value
        assert summary.successful == 2
        assert len(jobs.get_items(summary.job_id)) == 2


class TestSyncItems:
    def test_manual_pull(self, catalog: Session) -> None:
        source = FakeItemSource(
            [_record("opmsAPI01")],
            item_errors={"1234-5678": TransientError("read timed out")},
        )
        service = _service(catalog, source)

        summary = service.sync_items(["opmsAPI01", " opmsAPI01 ", "1234-5678", "opmsAPI99"])

        assert source.lookups == ["opmsAPI01", "1234-5678", "opmsAPI99"]
        assert (summary.total, summary.successful, summary.failed) == (3, 1, 2)
        job = service.jobs.require_job(summary.job_id)
        assert job.job_type == SyncJobType.manual.value
        assert job.status == SyncJobStatus.failed.value
        codes = {i.item_code: i.error_code for i in service.jobs.get_items(job.id)}
        assert codes == {"opmsAPI01": None, "1234-5678": "E-3001", "opmsAPI99": "E-1001"}

    def test_single_item(self, catalog: Session) -> None:
        service = _service(catalog, FakeItemSource([_record("opmsAPI01", price_1_=75)]))

        summary = service.sync_item("opmsAPI01")

        assert summary.job_type == SyncJobType.item.value
        assert summary.status == SyncJobStatus.completed.value
        assert stored_pricing(catalog)[0] == 75

    def test_single_item_unknown_to_netsuite(self, catalog: Session) -> None:
        service = _service(catalog, FakeItemSource())

        summary = service.sync_item("opmsAPI01")

        job = service.jobs.require_job(summary.job_id)
        assert job.status == SyncJobStatus.failed.value
        assert job.error_code == "E-1001"
        assert "NetSuite item 'opmsAPI01' not found" in job.error_message

    @pytest.mark.parametrize("codes", [[], ["", "  "]])
    def test_requires_item_codes(self, catalog: Session, codes) -> None:
        service = _service(catalog, FakeItemSource())

        with pytest.raises(ValidationError):
            service.sync_items(codes)

        assert service.jobs.list_jobs() == []
