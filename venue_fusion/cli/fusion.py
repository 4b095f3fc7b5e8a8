"""
Fusion CLI Commands
===================

CLI commands for batch runs, the update scheduler, quality audits,
connectors and background jobs.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from venue_fusion.core.enums import UpdateType
from venue_fusion.ingestion.connectors import get_connector_info, list_connectors
from venue_fusion.ingestion.jobs import (
    JobStatus,
    enqueue_fusion_batch,
    get_job_status,
    run_fusion_batch_sync,
)
from venue_fusion.ingestion.registry import get_default_registry

console = Console()
batch_app = typer.Typer(help="Batch update commands")
scheduler_app = typer.Typer(help="Automatic update scheduler commands")
quality_app = typer.Typer(help="Data quality commands")
connectors_app = typer.Typer(help="Connector management commands")
jobs_app = typer.Typer(help="Background job commands")


def _parse_update_type(value: str) -> UpdateType:
    try:
        return UpdateType(value)
    except ValueError:
        choices = ", ".join(t.value for t in UpdateType)
        rprint(f"[red]Error:[/red] Unknown update type '{value}' (choose from {choices})")
        raise typer.Exit(1)


def _batch_overrides(
    batch_size: Optional[int],
    concurrency: Optional[int],
    delay: Optional[float],
) -> dict[str, Any]:
    overrides = {
        "batch_size": batch_size,
        "concurrency": concurrency,
        "delay_between_batches": delay,
    }
    return {k: v for k, v in overrides.items() if v is not None}


# Batch subcommands


@batch_app.command("run")
def run_batch(
    update_type: str = typer.Option("full", "--type", "-t", help="full, structured or scraped"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-b", help="Entities per batch"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-c", help="Parallel entities"),
    delay: Optional[float] = typer.Option(None, "--delay", help="Seconds between batches"),
    sync: bool = typer.Option(False, "--sync", help="Run synchronously (blocking)"),
) -> None:
    """
    Run a fusion batch over every stored venue.

    Examples:
        venue-fusion batch run --sync
        venue-fusion batch run --type structured --batch-size 20
    """
    kind = _parse_update_type(update_type)
    overrides = _batch_overrides(batch_size, concurrency, delay)

    rprint(f"\n[bold]Starting {kind.value} update[/bold]")
    for key, value in overrides.items():
        rprint(f"  {key}: {value}")

    if sync:
        rprint("\n[dim]Running synchronously...[/dim]\n")
        try:
            result = asyncio.run(run_fusion_batch_sync(kind.value, batch_overrides=overrides))
        except ValueError as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        _display_job_result(result.to_dict())
        if result.status == JobStatus.FAILED:
            raise typer.Exit(1)
    else:
        rprint("\n[dim]Enqueueing job for async processing...[/dim]")
        _enqueue(kind, overrides)


@batch_app.command("worker")
def start_worker(
    burst: bool = typer.Option(False, "--burst", help="Run in burst mode (exit when queue empty)"),
) -> None:
    """
    Start the background worker that processes queued batches.

    Examples:
        venue-fusion batch worker
        venue-fusion batch worker --burst
    """
    from arq import run_worker

    from venue_fusion.ingestion.jobs import WorkerSettings

    rprint("[bold]Starting fusion worker...[/bold]")
    rprint("Press Ctrl+C to stop\n")
    try:
        run_worker(WorkerSettings, burst=burst)
    except OSError as e:
        rprint(f"[red]Error:[/red] Worker failed: {e}")
        rprint("\nMake sure Redis is running")
        raise typer.Exit(1)


# Scheduler subcommands


@scheduler_app.command("start")
def start_scheduler(
    hour: Optional[int] = typer.Option(None, "--hour", help="Hour of day (0-23)"),
    minute: Optional[int] = typer.Option(None, "--minute", help="Minute (0-59)"),
    interval_days: Optional[int] = typer.Option(None, "--interval", help="Days between runs"),
    update_type: Optional[str] = typer.Option(None, "--type", "-t", help="full, structured or scraped"),
) -> None:
    """
    Run the update scheduler in the foreground.

    Examples:
        venue-fusion scheduler start
        venue-fusion scheduler start --hour 3 --interval 1
    """
    from venue_fusion.ingestion.scheduler import build_scheduler

    registry = get_default_registry()
    try:
        config = registry.scheduler.with_overrides(
            hour=hour,
            minute=minute,
            interval_days=interval_days,
            update_type=_parse_update_type(update_type) if update_type else None,
        )
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not config.enabled:
        rprint("[yellow]Scheduler is disabled (AUTO_UPDATE_ENABLED=false)[/yellow]")
        raise typer.Exit(0)

    scheduler = build_scheduler(registry, config=config)
    next_run = scheduler.calculate_next_run()
    rprint(f"[bold]Scheduler started[/bold] ({config.update_type.value} update)")
    rprint(f"  Schedule: {config.schedule} every {config.interval_days} day(s)")
    rprint(f"  Next run: {next_run.isoformat()}")
    rprint("Press Ctrl+C to stop\n")

    try:
        asyncio.run(scheduler.serve_forever())
    except KeyboardInterrupt:
        rprint("\n[yellow]Scheduler stopped[/yellow]")


@scheduler_app.command("status")
def scheduler_status() -> None:
    """
    Show scheduler configuration and data freshness.

    Examples:
        venue-fusion scheduler status
    """
    from venue_fusion.ingestion.scheduler import build_scheduler

    scheduler = build_scheduler()
    scheduler.next_run = scheduler.calculate_next_run() if scheduler.config.enabled else None
    status = scheduler.get_status()
    freshness = scheduler.check_freshness()

    table = Table(title="Scheduler Status")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    for key in ("enabled", "update_type", "schedule", "interval_days", "next_run"):
        table.add_row(key, str(status[key]))
    console.print(table)

    color = "green" if freshness.is_fresh else "yellow"
    rprint(f"\n[bold]Freshness:[/bold] [{color}]{'fresh' if freshness.is_fresh else 'stale'}[/{color}]")
    rprint(f"  Venues: {freshness.total}")
    rprint(f"  Recently updated: {freshness.fresh}")
    rprint(f"  Overdue: {freshness.overdue}")
    rprint(f"  Reason: {freshness.reason}")


@scheduler_app.command("update")
def manual_update(
    update_type: str = typer.Option("full", "--type", "-t", help="full, structured or scraped"),
) -> None:
    """
    Run an update immediately, skipping the freshness check.

    Examples:
        venue-fusion scheduler update
        venue-fusion scheduler update --type scraped
    """
    from venue_fusion.ingestion.errors import FatalRunError
    from venue_fusion.ingestion.scheduler import build_scheduler

    kind = _parse_update_type(update_type)
    scheduler = build_scheduler()

    with console.status(f"[bold blue]Running {kind.value} update...[/bold blue]"):
        try:
            result = asyncio.run(scheduler.run_manual_update(kind))
        except FatalRunError as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

    if result is None:
        rprint("[yellow]Update skipped (another update is running)[/yellow]")
        return
    _display_summary(result.to_summary())


# Quality subcommands


@quality_app.command("audit")
def quality_audit(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of common issues to show"),
) -> None:
    """
    Score every stored venue and report quality statistics.

    Examples:
        venue-fusion quality audit
    """
    from venue_fusion.core.scoring import QualityScorer
    from venue_fusion.db.repositories import VenueStore

    registry = get_default_registry()
    records = VenueStore().list_all()
    if not records:
        rprint("[yellow]No venues stored[/yellow]")
        return

    scorer = QualityScorer(registry.quality)
    stats = scorer.quality_stats(records)

    rprint(f"\n[bold]Venues:[/bold] {stats.total_records}")
    rprint(f"[bold]Average score:[/bold] {stats.average_score:.3f}")

    table = Table(title="Score Distribution")
    table.add_column("Band", style="bold")
    table.add_column("Count", justify="right")
    for band, count in stats.distribution.items():
        table.add_row(band, str(count))
    console.print(table)

    if stats.common_issues:
        issues = Table(title="Common Issues")
        issues.add_column("Issue")
        issues.add_column("Count", justify="right")
        issues.add_column("%", justify="right")
        for issue in stats.common_issues[:limit]:
            issues.add_row(issue["issue"], str(issue["count"]), f"{issue['percentage']:.1f}")
        console.print(issues)

    suggestions = scorer.improvement_suggestions(stats)
    if suggestions:
        rprint("\n[bold]Suggestions:[/bold]")
        for s in suggestions:
            rprint(f"  • \\[{s['priority']}] {s['category']}: {s['description']} (effort: {s['effort']})")


# Connectors subcommands


@connectors_app.command("list")
def list_configured_connectors(
    all_connectors: bool = typer.Option(
        False, "--all", "-a", help="Show all connectors including disabled"
    ),
) -> None:
    """
    List configured connectors.

    Examples:
        venue-fusion connectors list
        venue-fusion connectors list --all
    """
    registry = get_default_registry()
    connectors = (
        registry.list_connectors() if all_connectors else registry.list_enabled_connectors()
    )

    if not connectors:
        rprint("[yellow]No connectors configured[/yellow]")
        rprint("\nAdd connectors to config/connectors.yaml")
        return

    table = Table(title="Connectors")
    table.add_column("Name", style="bold")
    table.add_column("Type")
    table.add_column("Kind")
    table.add_column("Trust", justify="right")
    table.add_column("Status")
    table.add_column("Rate Limit")

    for c in connectors:
        status = "[green]enabled[/green]" if c.enabled else "[yellow]disabled[/yellow]"
        rate = f"{c.rate_limit.requests_per_minute}/min"
        if c.rate_limit.requests_per_day:
            rate += f", {c.rate_limit.requests_per_day}/day"
        table.add_row(c.name, c.type, c.kind.value, f"{c.trust_weight:.2f}", status, rate)

    console.print(table)


@connectors_app.command("types")
def list_connector_types() -> None:
    """
    List available connector implementations.

    Examples:
        venue-fusion connectors types
    """
    table = Table(title="Connector Types")
    table.add_column("Type", style="bold")
    table.add_column("Version")
    table.add_column("Class")

    for name in list_connectors():
        info = get_connector_info(name)
        if info:
            table.add_row(info["type"], info["version"], info["class"])

    console.print(table)


# Jobs subcommands


@jobs_app.command("enqueue")
def enqueue_job(
    update_type: str = typer.Option("full", "--type", "-t", help="full, structured or scraped"),
) -> None:
    """
    Enqueue a fusion batch for the background worker.

    Examples:
        venue-fusion jobs enqueue --type structured
    """
    _enqueue(_parse_update_type(update_type), {})


@jobs_app.command("status")
def job_status(
    job_id: str = typer.Argument(..., help="Job ID to check"),
) -> None:
    """
    Check the status of a fusion job.

    Examples:
        venue-fusion jobs status abc123
    """
    try:
        result = asyncio.run(get_job_status(job_id))
    except OSError as e:
        rprint(f"[red]Error:[/red] Failed to get job status: {e}")
        rprint("\nMake sure Redis is running")
        raise typer.Exit(1)

    if result is None:
        rprint(f"[yellow]Job '{job_id}' not found[/yellow]")
        raise typer.Exit(1)

    rprint(f"\n[bold]Job: {job_id}[/bold]")
    rprint(f"  Status: {result.get('status', 'unknown')}")
    if result.get("result"):
        _display_job_result(result["result"])


def _enqueue(kind: UpdateType, overrides: dict[str, Any]) -> None:
    try:
        job_id = asyncio.run(enqueue_fusion_batch(kind.value, batch_overrides=overrides or None))
    except OSError as e:
        rprint(f"\n[red]Error:[/red] Failed to enqueue job: {e}")
        rprint("\nMake sure Redis is running")
        raise typer.Exit(1)

    rprint("\n[green]Job enqueued successfully![/green]")
    rprint(f"Job ID: [bold]{job_id}[/bold]")
    rprint("\nCheck status with:")
    rprint(f"  venue-fusion jobs status {job_id}")


def _display_job_result(result: dict[str, Any]) -> None:
    """Display job result in a formatted table."""
    status = result.get("status", "unknown")
    status_color = {
        "completed": "green",
        "running": "blue",
        "pending": "yellow",
        "cancelled": "yellow",
        "failed": "red",
    }.get(status, "white")

    rprint("\n[bold]Results:[/bold]")
    rprint(f"  Status: [{status_color}]{status}[/{status_color}]")
    rprint(f"  Update type: {result.get('update_type', 'N/A')}")
    if result.get("duration_seconds"):
        rprint(f"  Duration: {result['duration_seconds']:.1f}s")

    if result.get("summary"):
        _display_summary(result["summary"])

    errors = result.get("errors", [])
    if errors:
        rprint(f"\n[bold red]Errors ({len(errors)}):[/bold red]")
        for error in errors:
            rprint(f"  • {error}")


def _display_summary(summary: dict[str, Any]) -> None:
    rprint("\n[bold]Statistics:[/bold]")
    rprint(f"  State: {summary.get('state')}")
    rprint(f"  Total: {summary.get('total', 0)}")
    rprint(f"  Success: {summary.get('success', 0)}")
    rprint(f"  Failed: {summary.get('failed', 0)}")

    errors = summary.get("errors", [])
    if errors:
        rprint(f"\n[bold red]Entity errors ({summary.get('error_count', len(errors))}):[/bold red]")
        for error in errors:
            rprint(f"  • {error['entity']}: [{error['type']}] {error['error']}")
