"""OPMS sync CLI.

Unified entry point for the sync worker, queue maintenance, dry-run
inspection and the HTTP API.

Usage:
    opms-sync worker run            Poll the queue until interrupted
    opms-sync queue status          Show queue counts
    opms-sync queue enqueue 42      Queue a sync for item 42
    opms-sync dry-run list          Show recent dry-run captures
    opms-sync pull updated          Pull NetSuite pricing changed since the last pull
    opms-sync serve                 Start the webhook/operator API
"""

import logging
import signal
import threading
from collections.abc import Callable
from typing import Optional

import typer
from pydantic import ValidationError as ConfigValidationError
from rich.console import Console

from opms_sync.cli.config import OpmsSyncConfig, load_config
from opms_sync.cli.output import (
    format_dispatch_summary,
    format_dry_run_table,
    format_job_table,
    format_pull_summary,
    format_queue_entries,
    format_queue_status,
)
from opms_sync.db.connection import get_db_context, init_db
from opms_sync.db.models import ChangeSource, SyncJobStatus, utc_iso_offset
from opms_sync.errors import DomainError, NotFoundError, SyncError
from opms_sync.services.change_detector import ChangeDetector
from opms_sync.services.dry_run_recorder import DryRunRecorder
from opms_sync.services.erp_client import HttpErpClient
from opms_sync.services.item_sync_processor import ItemSyncProcessor
from opms_sync.services.job_dispatcher import JobDispatcher, RetryPolicy
from opms_sync.services.job_service import SyncJobService
from opms_sync.services.payloads import QueueEventData
from opms_sync.services.pricing_pull import (
    DEFAULT_FULL_SYNC_LIMIT,
    PricingPullService,
    PullSummary,
)
from opms_sync.services.sync_queue import TableSyncQueue

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="opms-sync",
    help="OPMS <-> NetSuite sync job engine",
    no_args_is_help=True,
)
worker_app = typer.Typer(help="Run the queue dispatcher")
queue_app = typer.Typer(help="Inspect and maintain the sync queue")
job_app = typer.Typer(help="Inspect sync jobs")
dry_run_app = typer.Typer(help="Inspect dry-run payload captures")
changes_app = typer.Typer(help="Catalog change detection")
pull_app = typer.Typer(help="Pull NetSuite pricing into OPMS")
config_app = typer.Typer(help="Configuration management")

app.add_typer(worker_app, name="worker")
app.add_typer(queue_app, name="queue")
app.add_typer(job_app, name="job")
app.add_typer(dry_run_app, name="dry-run")
app.add_typer(changes_app, name="changes")
app.add_typer(pull_app, name="pull")
app.add_typer(config_app, name="config")

console = Console()

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to opms-sync.yaml config file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """OPMS <-> NetSuite sync job engine."""
    global _config_path
    _config_path = config
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s:%(name)s:%(message)s",
    )


def _load() -> OpmsSyncConfig:
    try:
        return load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)
    except ConfigValidationError as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Invalid config file:[/red] {e}")
        raise typer.Exit(1)


def build_dispatcher(db, cfg: OpmsSyncConfig) -> JobDispatcher:
    """Wire a JobDispatcher from configuration.

    A live NetSuite client is only built when ``erp.base_url`` is set;
    without one the processor can still run in dry-run mode.
    """
    erp_client = None
    if cfg.erp.base_url:
        erp_client = HttpErpClient(
            base_url=cfg.erp.base_url,
            token=cfg.erp.token or None,
            timeout_seconds=cfg.erp.timeout_seconds,
        )
    processor = ItemSyncProcessor(
        db,
        erp_client=erp_client,
        sync_enabled=cfg.sync.enabled,
        dry_run=cfg.sync.dry_run,
        tax_schedule_id=cfg.sync.tax_schedule_id or None,
    )
    return JobDispatcher(
        db,
        processor,
        queue=TableSyncQueue(db, worker_id=cfg.worker.worker_id),
        batch_size=cfg.worker.batch_size,
        retry_policy=RetryPolicy(
            base_delay_ms=cfg.retry.base_delay_ms,
            max_delay_ms=cfg.retry.max_delay_ms,
            jitter=cfg.retry.jitter,
        ),
        stale_after_seconds=cfg.worker.stale_after_seconds,
        poll_interval_seconds=cfg.worker.poll_interval_seconds,
        rate_limit_per_second=cfg.worker.rate_limit_per_second,
    )


def build_item_source(cfg: OpmsSyncConfig) -> HttpErpClient:
    """NetSuite client for the pricing pull. Exits when erp.base_url is unset."""
    if not cfg.erp.base_url:
        console.print("[red]NetSuite RESTlet is not configured[/red] (erp.base_url)")
        raise typer.Exit(1)
    return HttpErpClient(
        base_url=cfg.erp.base_url,
        token=cfg.erp.token or None,
        timeout_seconds=cfg.erp.timeout_seconds,
    )


# --- Server ---


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Start the webhook receiver and operator API."""
    import uvicorn

    cfg = _load()
    uvicorn.run(
        "opms_sync.api.main:app",
        host=host or cfg.server.host,
        port=port or cfg.server.port,
        log_level=cfg.server.log_level,
    )


@app.command("init-db")
def init_db_command():
    """Create the sync state tables."""
    init_db()
    console.print("[green]Database initialized.[/green]")


# --- Worker ---


@worker_app.command("run")
def worker_run(
    once: bool = typer.Option(False, "--once", help="Run a single poll and exit"),
):
    """Claim and execute queue batches."""
    cfg = _load()
    if not cfg.sync.dry_run and not cfg.erp.base_url:
        console.print(
            "[yellow]erp.base_url is not set; live syncs will fail until it is "
            "configured or sync.dry_run is enabled.[/yellow]"
        )

    with get_db_context() as db:
        dispatcher = build_dispatcher(db, cfg)
        erp_client = dispatcher.processor.erp_client
        try:
            if once:
                summary = dispatcher.run_once()
                console.print(format_dispatch_summary(summary.to_dict()))
                return

            stop_event = threading.Event()

            def _stop(signum, frame):
                _log.info("Received signal %s, stopping after current batch", signum)
                stop_event.set()

            signal.signal(signal.SIGINT, _stop)
            signal.signal(signal.SIGTERM, _stop)
            console.print(f"[bold]Worker {dispatcher.worker_id} polling.[/bold] Ctrl-C to stop.")
            dispatcher.run(stop_event)
        finally:
            if erp_client is not None:
                erp_client.close()


# --- Queue ---


@queue_app.command("status")
def queue_status(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show queue counts per status."""
    with get_db_context() as db:
        status = TableSyncQueue(db, worker_id="cli").get_queue_status()
        console.print(format_queue_status(status, as_json=json_output))


@queue_app.command("list")
def queue_list(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum entries"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List queue entries, newest first."""
    with get_db_context() as db:
        try:
            entries = TableSyncQueue(db, worker_id="cli").list_entries(status=status, limit=limit)
        except DomainError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)
        console.print(format_queue_entries(entries, as_json=json_output))


@queue_app.command("enqueue")
def queue_enqueue(
    item_id: int = typer.Argument(help="OPMS item id"),
    product_id: Optional[int] = typer.Option(None, "--product-id", help="OPMS product id"),
    priority: str = typer.Option("NORMAL", "--priority", "-p", help="HIGH, NORMAL or LOW"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Capture instead of pushing"),
):
    """Queue a sync for one item."""
    cfg = _load()
    with get_db_context() as db:
        detector = ChangeDetector(db)
        try:
            entry = detector.queue_item_sync(
                item_id,
                product_id=product_id,
                event_data=QueueEventData(trigger_source="CLI", live_sync=not dry_run),
                priority=priority,
                change_source=ChangeSource.MANUAL_TRIGGER,
                max_retries=cfg.retry.max_retries,
            )
        except DomainError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)
        console.print(
            f"[green]Queue entry {entry.id}[/green] for item {item_id} "
            f"({entry.status}, {entry.priority})"
        )


@queue_app.command("trigger")
def queue_trigger(
    item_id: Optional[int] = typer.Option(None, "--item", help="Item id to sync"),
    product_id: Optional[int] = typer.Option(None, "--product", help="Sync every item of a product"),
    reason: str = typer.Option("Manual trigger", "--reason", help="Recorded in the change log"),
):
    """Manually trigger a sync, bypassing the global sync switch."""
    if (item_id is None) == (product_id is None):
        console.print("[red]Pass exactly one of --item or --product.[/red]")
        raise typer.Exit(1)
    with get_db_context() as db:
        detector = ChangeDetector(db)
        try:
            if item_id is not None:
                entries = [detector.manual_trigger_item(item_id, reason=reason, triggered_by="cli")]
            else:
                entries = detector.manual_trigger_product(
                    product_id, reason=reason, triggered_by="cli"
                )
        except NotFoundError as e:
            console.print(f"[red]Not found:[/red] {e}")
            raise typer.Exit(1)
        console.print(f"[green]Queued {len(entries)} entries.[/green]")


@queue_app.command("cleanup")
def queue_cleanup(
    days: Optional[int] = typer.Option(None, "--days", help="Keep entries newer than this"),
):
    """Delete finished queue entries and old change log rows."""
    cfg = _load()
    with get_db_context() as db:
        removed = TableSyncQueue(db, worker_id="cli").cleanup_old_jobs(
            days if days is not None else cfg.sync.queue_retention_days
        )
        changes = ChangeDetector(db).cleanup_old_entries(cfg.sync.change_log_retention_days)
        console.print(f"Removed {removed} queue entries and {changes} change log entries.")


@queue_app.command("reclaim")
def queue_reclaim(
    stale_after: Optional[int] = typer.Option(
        None, "--stale-after", help="Seconds after which a claim is stale"
    ),
):
    """Return stale PROCESSING claims to the queue."""
    cfg = _load()
    with get_db_context() as db:
        result = TableSyncQueue(db, worker_id="cli").reclaim_stale(
            stale_after if stale_after is not None else cfg.worker.stale_after_seconds
        )
        console.print(
            f"Reclaimed {result['reclaimed']} entries, "
            f"failed {result['failed']} at the retry ceiling."
        )


# --- Jobs ---


@job_app.command("list")
def job_list(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum jobs"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List recent sync jobs."""
    with get_db_context() as db:
        job_status = SyncJobStatus(status) if status else None
        jobs = SyncJobService(db).list_jobs(status=job_status, limit=limit)
        console.print(format_job_table(jobs, as_json=json_output))


# --- Dry run ---


@dry_run_app.command("list")
def dry_run_list(
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum records"),
    sync_type: Optional[str] = typer.Option(None, "--type", help="Filter by sync type"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show recent dry-run captures."""
    with get_db_context() as db:
        records = DryRunRecorder(db).get_recent(limit=limit, sync_type=sync_type)
        console.print(format_dry_run_table(records, as_json=json_output))


@dry_run_app.command("stats")
def dry_run_stats():
    """Summarize dry-run captures."""
    with get_db_context() as db:
        stats = DryRunRecorder(db).get_statistics()
    console.print(f"[bold]Payloads:[/bold]      {stats['total_payloads']}")
    console.print(f"[bold]Unique items:[/bold]  {stats['unique_items']}")
    console.print(f"[bold]Would succeed:[/bold] [green]{stats['would_succeed']}[/green]")
    for row in stats["breakdown"]:
        console.print(f"  {row['sync_type']} / {row['validation_status']}: {row['count']}")


@dry_run_app.command("purge")
def dry_run_purge(
    days: int = typer.Option(30, "--days", help="Delete captures older than this"),
):
    """Delete old dry-run captures."""
    with get_db_context() as db:
        removed = DryRunRecorder(db).cleanup_older_than(days)
    console.print(f"Removed {removed} dry-run records.")


# --- Change detection ---


@changes_app.command("detect")
def changes_detect(
    hours: int = typer.Option(1, "--hours", help="Look back this many hours"),
):
    """Run a polling pass for catalog changes missed by triggers."""
    with get_db_context() as db:
        queued = ChangeDetector(db).detect_missed_changes(utc_iso_offset(-hours * 3600))
    console.print(f"Queued {len(queued)} missed changes.")


# --- Pricing pull ---


def _run_pull(action: Callable[[PricingPullService], PullSummary], json_output: bool) -> None:
    """Run one pull against the configured RESTlet; exit 1 unless it completed."""
    cfg = _load()
    source = build_item_source(cfg)
    try:
        with get_db_context() as db:
            service = PricingPullService(
                db,
                source,
                rate_limit_delay_ms=cfg.erp.pull_delay_ms,
                triggered_by="cli",
                job_source="cli",
            )
            try:
                summary = action(service)
            except (SyncError, DomainError) as e:
                console.print(f"[red]Error:[/red] {e}")
                raise typer.Exit(1)
    finally:
        source.close()
    console.print(format_pull_summary(summary.to_dict(), as_json=json_output))
    if summary.status != SyncJobStatus.completed.value:
        raise typer.Exit(1)


@pull_app.command("updated")
def pull_updated(
    since: Optional[str] = typer.Option(
        None, "--since", help="ISO8601 lower bound (default: last completed pull)"
    ),
    limit: int = typer.Option(100, "--limit", "-n", min=1, help="Maximum items"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Pull pricing for items modified in NetSuite since the last pull."""
    _run_pull(lambda s: s.sync_updated(since=since, limit=limit), json_output)


@pull_app.command("initial")
def pull_initial(
    limit: int = typer.Option(DEFAULT_FULL_SYNC_LIMIT, "--limit", "-n", min=1, help="Maximum items"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Pull pricing for every active NetSuite item."""
    _run_pull(lambda s: s.initial_sync(limit=limit), json_output)


@pull_app.command("force-full")
def pull_force_full(
    limit: int = typer.Option(DEFAULT_FULL_SYNC_LIMIT, "--limit", "-n", min=1, help="Maximum items"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Cancel open pull jobs, then pull every active NetSuite item."""
    if not yes:
        typer.confirm("Cancel open pull jobs and pull every item?", abort=True)
    _run_pull(lambda s: s.force_full_sync(limit=limit), json_output)


@pull_app.command("item")
def pull_item(
    item_code: str = typer.Argument(help="NetSuite itemid"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Pull pricing for one NetSuite item."""
    _run_pull(lambda s: s.sync_item(item_code), json_output)


@pull_app.command("items")
def pull_items(
    item_codes: list[str] = typer.Argument(help="NetSuite itemids"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Pull pricing for specific NetSuite items."""
    _run_pull(lambda s: s.sync_items(item_codes), json_output)


# --- Config ---


@config_app.command("show")
def config_show():
    """Display resolved configuration (secrets masked)."""
    cfg = _load()

    console.print("[bold]Server:[/bold]")
    console.print(f"  host: {cfg.server.host}")
    console.print(f"  port: {cfg.server.port}")

    console.print("\n[bold]Worker:[/bold]")
    console.print(f"  worker_id: {cfg.worker.worker_id or '(random)'}")
    console.print(f"  batch_size: {cfg.worker.batch_size}")
    console.print(f"  poll_interval: {cfg.worker.poll_interval_seconds}s")
    console.print(f"  stale_after: {cfg.worker.stale_after_seconds}s")

    console.print("\n[bold]Retry:[/bold]")
    console.print(f"  max_retries: {cfg.retry.max_retries}")
    console.print(f"  backoff: {cfg.retry.base_delay_ms}ms .. {cfg.retry.max_delay_ms}ms")

    console.print("\n[bold]Sync:[/bold]")
    console.print(f"  enabled: {cfg.sync.enabled}")
    console.print(f"  dry_run: {cfg.sync.dry_run}")

    console.print("\n[bold]NetSuite:[/bold]")
    console.print(f"  base_url: {cfg.erp.base_url or '(not set)'}")
    console.print(f"  pull_delay: {cfg.erp.pull_delay_ms}ms")
    token = cfg.erp.token
    console.print(f"  token: {'***' + token[-4:] if len(token) > 4 else '***' if token else '(not set)'}")


@config_app.command("validate")
def config_validate():
    """Validate configuration without starting anything."""
    cfg = _load()
    console.print("[green]Config is valid.[/green]")
    console.print(f"  Sync: {'enabled' if cfg.sync.enabled else 'disabled'}")
    console.print(f"  Mode: {'dry run' if cfg.sync.dry_run else 'live'}")


if __name__ == "__main__":
    app()
