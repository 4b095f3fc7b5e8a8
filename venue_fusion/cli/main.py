"""Venue Fusion CLI using Typer."""

import logging
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.logging import RichHandler

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

from venue_fusion.cli.fusion import (  # noqa: E402
    batch_app,
    connectors_app,
    jobs_app,
    quality_app,
    scheduler_app,
)

app = typer.Typer(
    name="venue-fusion",
    help="Venue Fusion - Multi-source fitness venue data collection and fusion",
    add_completion=False,
)
app.add_typer(batch_app, name="batch")
app.add_typer(scheduler_app, name="scheduler")
app.add_typer(quality_app, name="quality")
app.add_typer(connectors_app, name="connectors")
app.add_typer(jobs_app, name="jobs")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure logging for all commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
    )


@app.command()
def init() -> None:
    """Initialize the database (create tables)."""
    from venue_fusion.db.engine import init_db

    typer.echo("Initializing database...")
    init_db()
    typer.echo("Database initialized successfully!")


@app.command()
def version() -> None:
    """Show the Venue Fusion version."""
    typer.echo("Venue Fusion v0.1.0")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    from venue_fusion.db.engine import get_database_url
    from venue_fusion.ingestion.registry import get_default_registry

    typer.echo("Venue Fusion Configuration")
    typer.echo("=" * 40)

    env_found = False
    for env_path in _env_paths:
        if env_path.exists():
            typer.echo(f"  .env file: {env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    registry = get_default_registry()
    typer.echo(f"  Database: {get_database_url()}")
    typer.echo(f"  Data dir: {registry.global_config.data_dir}")
    typer.echo(f"  Connectors: {len(registry.list_enabled_connectors())} enabled")
    typer.echo(f"  Schedule: {registry.scheduler.schedule} every {registry.scheduler.interval_days} days")


if __name__ == "__main__":
    app()
