"""Tests for the opms-sync CLI commands."""

import json

import pytest
from sqlalchemy.orm import Session
from typer.testing import CliRunner

from opms_sync.cli.main import app
from opms_sync.db.models import DryRunRecord, QueueEntry, SyncJobType
from opms_sync.errors import TransientError
from opms_sync.services.job_service import SyncJobService
from tests.helpers import PHYSICAL_ITEM_ID, PRODUCT_ID, FakeItemSource

runner = CliRunner()


class TestConfigCommands:
    def test_validate(self, config_file) -> None:
        config_file("sync:\n  dry_run: true\n")

        result = runner.invoke(app, ["config", "validate"])

        assert result.exit_code == 0
        assert "Config is valid" in result.output
        assert "dry run" in result.output

    def test_show_masks_token(self, config_file) -> None:
        config_file("erp:\n  base_url: https://ns.example.com\n  token: abcdef123456\n")

        result = runner.invoke(app, ["config", "show"])

        assert result.exit_code == 0
        assert "***3456" in result.output
        assert "abcdef123456" not in result.output

    def test_missing_config_file(self, tmp_path) -> None:
        result = runner.invoke(
            app, ["--config", str(tmp_path / "missing.yaml"), "config", "validate"]
        )

        assert result.exit_code == 1
        assert "Config file not found" in result.output


class TestQueueCommands:
    def test_enqueue_and_status(self, cli_db: Session) -> None:
        result = runner.invoke(app, ["queue", "enqueue", str(PHYSICAL_ITEM_ID), "-p", "HIGH"])
        status = runner.invoke(app, ["queue", "status", "--json"])

        assert result.exit_code == 0
        assert "PENDING, HIGH" in result.output
        assert json.loads(status.output)["by_status"]["PENDING"] == 1

    def test_enqueue_invalid_priority(self, cli_db: Session) -> None:
        result = runner.invoke(app, ["queue", "enqueue", str(PHYSICAL_ITEM_ID), "-p", "URGENT"])

        assert result.exit_code == 1
        assert cli_db.query(QueueEntry).count() == 0

    def test_trigger_product(self, cli_db: Session) -> None:
        result = runner.invoke(app, ["queue", "trigger", "--product", str(PRODUCT_ID)])

        assert result.exit_code == 0
        assert "Queued 3 entries" in result.output

    def test_trigger_requires_one_target(self, cli_db: Session) -> None:
        result = runner.invoke(app, ["queue", "trigger"])
        assert result.exit_code == 1

    def test_trigger_unknown_item(self, cli_db: Session) -> None:
        result = runner.invoke(app, ["queue", "trigger", "--item", "9999"])

        assert result.exit_code == 1
        assert "Not found" in result.output

    def test_list_json(self, cli_db: Session) -> None:
        runner.invoke(app, ["queue", "enqueue", str(PHYSICAL_ITEM_ID)])

        result = runner.invoke(app, ["queue", "list", "--json"])

        assert [e["item_id"] for e in json.loads(result.output)] == [PHYSICAL_ITEM_ID]

    def test_reclaim_with_nothing_stale(self, cli_db: Session) -> None:
        result = runner.invoke(app, ["queue", "reclaim"])

        assert result.exit_code == 0
        assert "Reclaimed 0 entries" in result.output


class TestWorkerCommands:
    def test_run_once_idle(self, cli_db: Session) -> None:
        result = runner.invoke(app, ["worker", "run", "--once"])

        assert result.exit_code == 0
        assert "Queue idle" in result.output

    def test_run_once_in_dry_run_mode(self, cli_db: Session, config_file) -> None:
        config_file("sync:\n  dry_run: true\n  tax_schedule_id: '1'\n")
        runner.invoke(app, ["queue", "enqueue", str(PHYSICAL_ITEM_ID)])

        result = runner.invoke(app, ["worker", "run", "--once"])

        assert result.exit_code == 0
        assert "claimed 1" in result.output
        assert cli_db.query(DryRunRecord).count() == 1
        assert cli_db.query(QueueEntry).one().status == "COMPLETED"


class TestInspectionCommands:
    def test_job_list_filtered(self, cli_db: Session) -> None:
        SyncJobService(cli_db).create_job(SyncJobType.manual)

        pending = runner.invoke(app, ["job", "list", "--status", "pending", "--json"])
        running = runner.invoke(app, ["job", "list", "--status", "running", "--json"])

        assert len(json.loads(pending.output)) == 1
        assert json.loads(running.output) == []

    def test_dry_run_list_empty(self, cli_db: Session) -> None:
        result = runner.invoke(app, ["dry-run", "list"])
        assert "No dry-run records found." in result.output

    def test_dry_run_stats(self, cli_db: Session) -> None:
        result = runner.invoke(app, ["dry-run", "stats"])

        assert result.exit_code == 0
        assert "Payloads:" in result.output

    def test_changes_detect(self, cli_db: Session) -> None:
        result = runner.invoke(app, ["changes", "detect", "--hours", "1"])

        assert result.exit_code == 0
        assert "Queued 0 missed changes." in result.output


class TestPullCommands:
    RECORD = {"itemid": "opmsAPI01", "price_1_": 100, "cost": 40}

    @pytest.fixture
    def source(self, cli_db: Session, monkeypatch) -> FakeItemSource:
        fake = FakeItemSource([self.RECORD])
        monkeypatch.setenv("OPMS_SYNC_ERP_PULL_DELAY_MS", "0")
        monkeypatch.setattr("opms_sync.cli.main.build_item_source", lambda cfg: fake)
        return fake

    def test_pull_updated_json(self, source: FakeItemSource) -> None:
        result = runner.invoke(app, ["pull", "updated", "--since", "2026-10-01", "--json"])

        assert result.exit_code == 0
        body = json.loads(result.output)
        assert body["job_type"] == "ns_to_opms_pricing"
        assert body["successful"] == 1
        assert source.searches == [("2026-10-01", 100)]
        assert source.closed is True

    def test_pull_items_with_failure_exits_nonzero(self, source: FakeItemSource) -> None:
        result = runner.invoke(app, ["pull", "items", "opmsAPI01", "opmsAPI99"])

        assert result.exit_code == 1
        assert "1 updated" in result.output
        assert "1 failed" in result.output

    def test_pull_item(self, source: FakeItemSource, cli_db: Session) -> None:
        result = runner.invoke(app, ["pull", "item", "opmsAPI01"])

        assert result.exit_code == 0
        (job,) = SyncJobService(cli_db).list_jobs(job_type=SyncJobType.item)
        assert job.source == "cli"

    def test_force_full_requires_confirmation(self, source: FakeItemSource) -> None:
        result = runner.invoke(app, ["pull", "force-full"], input="n\n")

        assert result.exit_code == 1
        assert source.searches == []

    def test_force_full_with_yes(self, source: FakeItemSource, cli_db: Session) -> None:
        stale = SyncJobService(cli_db).create_job(SyncJobType.initial).id

        result = runner.invoke(app, ["pull", "force-full", "--yes", "--limit", "5"])

        assert result.exit_code == 0
        assert f"Cancelled jobs: {stale}" in result.output
        assert source.searches == [(None, 5)]

    def test_search_failure_exits_nonzero(self, source: FakeItemSource) -> None:
        source.search_error = TransientError("connection reset")

        result = runner.invoke(app, ["pull", "initial"])

        assert result.exit_code == 1
        assert "E-3001" in result.output

    def test_unconfigured_restlet(self, cli_db: Session) -> None:
        result = runner.invoke(app, ["pull", "updated"])

        assert result.exit_code == 1
        assert "not configured" in result.output
