"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich table output (default) and machine-parseable
JSON output (--json flag). All formatting goes through these functions
so the CLI commands stay clean.
"""

import json
from typing import Any

from rich.console import Console
from rich.table import Table

from opms_sync.db.models import DryRunRecord, QueueEntry, SyncJob

console = Console()

STATUS_COLORS = {
    "pending": "yellow",
    "running": "blue",
    "completed": "green",
    "failed": "red",
    "cancelled": "dim",
    "PENDING": "yellow",
    "PROCESSING": "blue",
    "COMPLETED": "green",
    "FAILED": "red",
    "passed": "green",
    "partial": "yellow",
}


def _colored(status: str) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def _render(table: Table) -> str:
    with console.capture() as capture:
        console.print(table)
    return capture.get()


def format_queue_status(status: dict[str, Any], as_json: bool = False) -> str:
    """Format queue counts per status.

    Args:
        status: Result of SyncQueue.get_queue_status().
        as_json: If True, return JSON string instead of Rich table.

    Returns:
        Formatted string output.
    """
    if as_json:
        return json.dumps(status, indent=2)

    table = Table(title="Sync Queue")
    table.add_column("Status")
    table.add_column("Entries", justify="right")
    for name, count in status["by_status"].items():
        table.add_row(_colored(name), str(count))
    table.add_row("[bold]active[/bold]", str(status["active"]))
    table.add_row("[bold]total[/bold]", str(status["total"]))
    output = _render(table)
    if status.get("oldest_pending_at"):
        output += f"Oldest pending: {status['oldest_pending_at'][:19]}\n"
    return output


def format_queue_entries(entries: list[QueueEntry], as_json: bool = False) -> str:
    """Format queue entries as a Rich table or JSON."""
    if as_json:
        return json.dumps(
            [
                {
                    "id": e.id,
                    "item_id": e.item_id,
                    "product_id": e.product_id,
                    "priority": e.priority,
                    "status": e.status,
                    "retry_count": e.retry_count,
                    "error_message": e.error_message,
                    "created_at": e.created_at,
                }
                for e in entries
            ],
            indent=2,
        )

    if not entries:
        return "No queue entries found."

    table = Table(title="Queue Entries")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Item", justify="right")
    table.add_column("Product", justify="right")
    table.add_column("Priority")
    table.add_column("Status")
    table.add_column("Retries", justify="right")
    table.add_column("Created")
    for e in entries:
        table.add_row(
            str(e.id),
            str(e.item_id),
            str(e.product_id) if e.product_id is not None else "—",
            e.priority,
            _colored(e.status),
            f"{e.retry_count}/{e.max_retries}",
            e.created_at[:19],
        )
    return _render(table)


def format_job_table(jobs: list[SyncJob], as_json: bool = False) -> str:
    """Format sync jobs as a Rich table or JSON."""
    if as_json:
        return json.dumps(
            [
                {
                    "id": j.id,
                    "job_type": j.job_type,
                    "status": j.status,
                    "total_items": j.total_items,
                    "successful_items": j.successful_items,
                    "failed_items": j.failed_items,
                    "skipped_items": j.skipped_items,
                    "created_at": j.created_at,
                }
                for j in jobs
            ],
            indent=2,
        )

    if not jobs:
        return "No jobs found."

    table = Table(title="Sync Jobs", show_lines=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Items", justify="right")
    table.add_column("OK", justify="right", style="green")
    table.add_column("Skip", justify="right", style="yellow")
    table.add_column("Fail", justify="right", style="red")
    table.add_column("Created")
    for job in jobs:
        table.add_row(
            job.id[:12],
            job.job_type,
            _colored(job.status),
            str(job.total_items),
            str(job.successful_items),
            str(job.skipped_items),
            str(job.failed_items),
            job.created_at[:19],
        )
    return _render(table)


def format_dry_run_table(records: list[DryRunRecord], as_json: bool = False) -> str:
    """Format dry-run captures as a Rich table or JSON."""
    if as_json:
        return json.dumps(
            [
                {
                    "id": r.id,
                    "opms_item_id": r.opms_item_id,
                    "opms_item_code": r.opms_item_code,
                    "sync_type": r.sync_type,
                    "validation_status": r.validation_status,
                    "would_succeed": r.would_succeed,
                    "created_at": r.created_at,
                }
                for r in records
            ],
            indent=2,
        )

    if not records:
        return "No dry-run records found."

    table = Table(title="Dry-Run Captures")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Item Code")
    table.add_column("Type")
    table.add_column("Validation")
    table.add_column("Would Succeed")
    table.add_column("Bytes", justify="right")
    table.add_column("Created")
    for r in records:
        table.add_row(
            str(r.id),
            r.opms_item_code or "—",
            r.sync_type,
            _colored(r.validation_status),
            "[green]yes[/green]" if r.would_succeed else "[red]no[/red]",
            str(r.payload_size_bytes),
            r.created_at[:19],
        )
    return _render(table)


def format_dispatch_summary(summary: dict[str, Any]) -> str:
    """Format one dispatcher poll for display."""
    if not summary["claimed"]:
        return f"Queue idle ({summary['reclaimed']} stale claims reclaimed)."
    return (
        f"Job {summary['job_id']}: claimed {summary['claimed']}, "
        f"[green]{summary['succeeded']} succeeded[/green], "
        f"[yellow]{summary['skipped']} skipped[/yellow], "
        f"{summary['retried']} retried, "
        f"[red]{summary['failed']} failed[/red]"
    )


def format_pull_summary(summary: dict[str, Any], as_json: bool = False) -> str:
    """Format one pricing pull for display."""
    if as_json:
        return json.dumps(summary, indent=2)
    lines = [
        f"{summary['job_type']} job {summary['job_id']}: {_colored(summary['status'])}",
        f"{summary['total']} items: "
        f"[green]{summary['successful']} updated[/green], "
        f"[yellow]{summary['skipped']} skipped[/yellow], "
        f"[red]{summary['failed']} failed[/red]"
    ]
    if summary.get("cancelled_jobs"):
        lines.append(f"Cancelled jobs: {', '.join(summary['cancelled_jobs'])}")
    return "\n".join(lines)
