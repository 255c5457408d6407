"""Tests for the NetSuite pricing webhook ingester."""

import pytest
from sqlalchemy.orm import Session

from opms_sync.db.models import SyncItemStatus, SyncJobStatus, SyncJobType
from opms_sync.errors import ValidationError
from opms_sync.services.job_log import JobLog
from opms_sync.services.pricing_sync_engine import PricingOutcome
from opms_sync.services.webhook_ingester import (
    WebhookIngester,
    get_webhook_stats,
    parse_envelope,
    reset_webhook_stats,
    verify_webhook_secret,
)
from tests.helpers import PRICING_ITEM_ID, stored_pricing


def _envelope(**item_data) -> dict:
    data = {
        "itemid": "opmsAPI01",
        "internalid": "9001",
        "price_1_": 100,
        "itemPriceLine2_itemPrice": 150,
        "cost": 40,
        "custitem_f3_rollprice": 50,
        "custitemf3_lisa_item": "F",
    }
    data.update(item_data)
    return {
        "eventType": "item.pricing.updated",
        "itemData": data,
        "timestamp": "2026-10-19T12:00:00Z",
        "source": "netsuite_webhook",
    }


@pytest.fixture(autouse=True)
def _fresh_stats():
    reset_webhook_stats()
    yield
    reset_webhook_stats()


@pytest.fixture
def ingester(catalog: Session) -> WebhookIngester:
    return WebhookIngester(catalog)


class TestVerifySecret:
    def test_matching_bearer_token(self) -> None:
        assert verify_webhook_secret("Bearer shh", secret="shh") is True

    def test_scheme_is_case_insensitive(self) -> None:
        assert verify_webhook_secret("bearer shh", secret="shh") is True

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer nope", "Basic shh", "shh"])
    def test_rejected_headers(self, header) -> None:
        assert verify_webhook_secret(header, secret="shh") is False

    def test_no_secret_configured_rejects_everything(self, monkeypatch) -> None:
        monkeypatch.delenv("OPMS_SYNC_WEBHOOK_SECRET", raising=False)
        assert verify_webhook_secret("Bearer anything") is False

    def test_secret_read_from_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("OPMS_SYNC_WEBHOOK_SECRET", "from-env")
        assert verify_webhook_secret("Bearer from-env") is True


class TestParseEnvelope:
    def test_extracts_pricing_record(self) -> None:
        record = parse_envelope(_envelope())
        assert record.item_code == "opmsAPI01"
        assert record.netsuite_internal_id == "9001"
        assert record.skip_flag is False
        assert record.values["price_1_"] == 100

    def test_unsupported_event_type(self) -> None:
        with pytest.raises(ValidationError, match="item.created"):
            parse_envelope({**_envelope(), "eventType": "item.created"})

    def test_missing_itemid(self) -> None:
        body = _envelope()
        del body["itemData"]["itemid"]
        with pytest.raises(ValidationError) as exc_info:
            parse_envelope(body)
        assert exc_info.value.field == "itemid"

    def test_non_object_body(self) -> None:
        with pytest.raises(ValidationError):
            parse_envelope(["not", "an", "object"])


class TestIngest:
    def test_update_creates_completed_job(self, ingester: WebhookIngester, catalog: Session) -> None:
        result = ingester.ingest(_envelope())

        assert result.result == PricingOutcome.updated
        assert stored_pricing(catalog) == (100, 150, 40, 50)

        job = ingester.jobs.get_job(result.job_id)
        assert job.job_type == SyncJobType.pricing_sync.value
        assert job.status == SyncJobStatus.completed.value
        assert job.triggered_by == "netsuite_webhook"
        assert job.successful_items == 1

        (item,) = ingester.jobs.get_items(job.id)
        assert item.status == SyncItemStatus.success.value
        assert item.item_code == "opmsAPI01"
        assert item.opms_item_id == PRICING_ITEM_ID
        assert '"p_res_cut":100.0' in item.pricing_after.replace(" ", "")

    def test_skip_flag(self, ingester: WebhookIngester, catalog: Session) -> None:
        result = ingester.ingest(_envelope(custitemf3_lisa_item=True, price_1_=999))

        assert result.result == PricingOutcome.skipped
        assert "custitemf3_lisa_item" in result.reason
        assert stored_pricing(catalog) == (None, None, None, None)
        (item,) = ingester.jobs.get_items(result.job_id)
        assert item.status == SyncItemStatus.skipped.value
        assert ingester.jobs.get_job(result.job_id).status == SyncJobStatus.completed.value

    def test_unknown_item_fails_job(self, ingester: WebhookIngester) -> None:
        result = ingester.ingest(_envelope(itemid="opmsAPI99"))

        assert result.result == PricingOutcome.error
        assert result.error_code == "E-1001"
        job = ingester.jobs.get_job(result.job_id)
        assert job.status == SyncJobStatus.failed.value
        assert job.error_code == "E-1001"
        assert job.failed_items == 1

    def test_invalid_price_writes_nothing(self, ingester: WebhookIngester, catalog: Session) -> None:
        result = ingester.ingest(_envelope(price_1_=-50))

        assert result.result == PricingOutcome.error
        assert stored_pricing(catalog) == (None, None, None, None)
        errors = JobLog(catalog).get_logs(job_id=result.job_id, level="error")
        assert len(errors) == 1

    def test_oversized_price_fails_job_with_validation_error(self, ingester: WebhookIngester, catalog: Session) -> None:
        result = ingester.ingest(_envelope(price_1_=10**400))

        assert result.result == PricingOutcome.error
        assert result.error_code == "E-2001"
        job = ingester.jobs.get_job(result.job_id)
        assert job.status == SyncJobStatus.failed.value
        assert stored_pricing(catalog) == (None, None, None, None)

    def test_unexpected_engine_error_closes_job_and_item(self, catalog: Session) -> None:
        class ExplodingEngine:
            def apply(self, record):
                raise RuntimeError("engine blew up")

        ingester = WebhookIngester(catalog, engine=ExplodingEngine())

        with pytest.raises(RuntimeError, match="engine blew up"):
            ingester.ingest(_envelope())

        (job,) = ingester.jobs.list_jobs()
        assert job.status == SyncJobStatus.failed.value
        assert job.error_code == "E-4001"
        (item,) = ingester.jobs.get_items(job.id)
        assert item.status == SyncItemStatus.failed.value
        assert item.error_code == "E-4001"
        assert "RuntimeError: engine blew up" in item.error_message
        assert get_webhook_stats()["failed"] == 1

    def test_malformed_envelope_creates_no_job(self, ingester: WebhookIngester) -> None:
        with pytest.raises(ValidationError):
            ingester.ingest({"eventType": "item.pricing.updated"})

        assert ingester.jobs.count_jobs() == 0
        assert get_webhook_stats()["received"] == 0

    def test_warnings_are_logged_on_the_job(self, ingester: WebhookIngester, catalog: Session) -> None:
        result = ingester.ingest(_envelope(price_1_=30, cost=40))

        assert len(result.warnings) == 1
        warns = JobLog(catalog).get_logs(job_id=result.job_id, level="warn")
        assert len(warns) == 1

    def test_response_body(self, ingester: WebhookIngester) -> None:
        body = ingester.ingest(_envelope()).to_response()

        assert body["success"] is True
        assert body["itemId"] == "opmsAPI01"
        assert body["result"] == "updated"
        assert body["message"] == "Webhook processed successfully"
        assert "errorCode" not in body

    def test_error_response_body(self, ingester: WebhookIngester) -> None:
        body = ingester.ingest(_envelope(itemid="opmsAPI99")).to_response()

        assert body["success"] is False
        assert body["errorCode"] == "E-1001"
        assert body["message"] == "Webhook processed with errors"

    def test_stats_track_outcomes(self, ingester: WebhookIngester) -> None:
        ingester.ingest(_envelope())
        ingester.ingest(_envelope(custitemf3_lisa_item="T"))
        ingester.ingest(_envelope(itemid="opmsAPI99"))

        stats = get_webhook_stats()
        assert stats["received"] == 3
        assert stats["processed"] == 1
        assert stats["skipped"] == 1
        assert stats["failed"] == 1
        assert stats["success_rate"] == pytest.approx(33.33)
        assert stats["last_processed"] is not None
