"""Command-line interface for running and operating content ingestion."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
import typer
from rich.console import Console
from rich.markup import escape

from contentfeed.config import AppConfig, get_config
from contentfeed.logging import configure_logging
from contentfeed.services.budget import BudgetGate, SqlAlchemyUsageStore
from contentfeed.services.database import build_engine, create_session_factory, init_database
from contentfeed.services.ingestion import IngestionRunner
from contentfeed.services.repository import SqlAlchemyContentRepository
from contentfeed.tools.adapters import AVAILABLE_ADAPTERS

app = typer.Typer(add_completion=False, help="Fetch, deduplicate and store content from upstream sources.")
console = Console()

STATUS_STYLES = {"ok": "green", "skipped": "yellow", "error": "red"}


@dataclass
class _Services:
    config: AppConfig
    repository: SqlAlchemyContentRepository
    budget_gate: BudgetGate


def _services(create_tables: bool = False) -> _Services:
    config = get_config()
    configure_logging(config.log_level)
    engine = build_engine(config.database_url)
    if create_tables:
        init_database(engine)
    session_factory = create_session_factory(engine)
    return _Services(
        config=config,
        repository=SqlAlchemyContentRepository(session_factory),
        budget_gate=BudgetGate.from_config(SqlAlchemyUsageStore(session_factory), config),
    )


def _parse_sources(value: str | None) -> list[str]:
    if not value:
        return []
    return [entry.strip().lower() for entry in value.split(",") if entry.strip()]


def _parse_assignment(raw: str) -> tuple[str, object]:
    key, sep, value = raw.partition("=")
    if not sep or not key.strip():
        raise typer.BadParameter(f"Expected key=value, got {raw!r}")
    try:
        parsed: object = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    return key.strip(), parsed


@app.command("run")
def run(
    sources: str | None = typer.Option(
        None,
        "--sources",
        help="Comma-separated source keys to run (defaults to every active source)",
    ),
    force: bool = typer.Option(False, "--force", help="Ignore the freshness window"),
) -> None:
    """Run ingestion for the selected sources and print one line per source."""

    services = _services()
    log = structlog.get_logger("cli.ingest")

    requested = _parse_sources(sources) or None
    runner = IngestionRunner(services.repository, services.budget_gate, services.config)
    summary = runner.run_batch(requested, force=force)

    for entry in summary.results:
        result = entry.result
        style = STATUS_STYLES.get(entry.status, "white")
        line = (
            f"{entry.source_key}: [{style}]{entry.status}[/{style}] "
            f"fetched={result.items_fetched} created={result.items_created} "
            f"skipped={result.items_skipped} updated={result.items_updated}"
        )
        if result.skipped_reason:
            line += f" reason={result.skipped_reason}"
        if result.error:
            line += f" error={escape(result.error)}"
        console.print(line, soft_wrap=True)

    log.info("cli.run_completed", failed=summary.failed, succeeded=summary.succeeded, skipped=summary.skipped)
    if summary.failed:
        raise typer.Exit(code=1)


@app.command("sources")
def list_sources(
    active_only: bool = typer.Option(False, "--active-only", help="Hide disabled sources"),
) -> None:
    """List configured sources with their state."""

    services = _services()
    for source in services.repository.list_content_sources(active_only=active_only):
        state = "[green]active[/green]" if source.is_active else "[yellow]disabled[/yellow]"
        console.print(f"- {source.source_key} ({state}) {escape(source.name)}", soft_wrap=True)


@app.command("runs")
def list_runs(
    source_key: str = typer.Argument(..., help="Source key to inspect"),
    limit: int = typer.Option(10, "--limit", min=1, help="Number of recent runs to show"),
) -> None:
    """Show the most recent runs of a source, newest first."""

    services = _services()
    source = services.repository.get_content_source(source_key)
    if source is None:
        typer.echo(f"Unknown source: {source_key}", err=True)
        raise typer.Exit(code=1)
    for run in services.repository.list_runs(source.id, limit=limit):
        started = run.started_at.isoformat() if run.started_at else "-"
        line = (
            f"{started} {run.status.value} fetched={run.items_fetched} created={run.items_created} "
            f"skipped={run.items_skipped} updated={run.items_updated}"
        )
        if run.skipped_reason:
            line += f" reason={run.skipped_reason}"
        if run.error_message:
            line += f" error={escape(run.error_message)}"
        console.print(line, soft_wrap=True, highlight=False)


@app.command("adapters")
def list_adapters() -> None:
    """List registered adapters."""

    for name in AVAILABLE_ADAPTERS:
        typer.echo(f"- {name}")


@app.command("toggle")
def toggle(
    source_key: str = typer.Argument(..., help="Source key to enable or disable"),
    active: bool = typer.Option(..., "--active/--inactive", help="New state of the source"),
) -> None:
    """Enable or disable a source."""

    services = _services()
    source = services.repository.set_source_active(source_key, active)
    if source is None:
        typer.echo(f"Unknown source: {source_key}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"{source.source_key}: {'active' if source.is_active else 'disabled'}")


@app.command("configure")
def configure(
    source_key: str = typer.Argument(..., help="Source key to configure"),
    assignments: list[str] = typer.Argument(..., help="key=value pairs; values are parsed as JSON when possible"),
) -> None:
    """Merge options into a source's config; keys not mentioned are kept."""

    patch = dict(_parse_assignment(raw) for raw in assignments)
    services = _services()
    source = services.repository.merge_source_config(source_key, patch)
    if source is None:
        typer.echo(f"Unknown source: {source_key}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(source.config, sort_keys=True, default=str))


@app.command("reap-stale")
def reap_stale(
    hours: float | None = typer.Option(None, "--hours", min=0.0, help="Age threshold (defaults to config value)"),
) -> None:
    """Mark runs stuck in ``running`` as failed."""

    services = _services()
    threshold = hours if hours is not None else services.config.stale_run_hours
    count = services.repository.fail_stale_runs(datetime.now(tz=UTC) - timedelta(hours=threshold))
    typer.echo(f"Marked {count} stale run(s) as failed")


@app.command("budget")
def budget(budget_key: str = typer.Argument(..., help="Quota key, e.g. rapidapi")) -> None:
    """Show today's usage for a quota key."""

    services = _services()
    status = services.budget_gate.check_limit(budget_key)
    typer.echo(
        f"{budget_key}: used={status.used} remaining={status.remaining} "
        f"limit={services.budget_gate.daily_limit(budget_key)} "
        f"allowed={'yes' if status.allowed else 'no'} reset_at={status.reset_at.isoformat()}"
    )


@app.command("budget-prune")
def budget_prune(
    days: int = typer.Option(30, "--days", min=0, help="Keep counters for this many past days"),
) -> None:
    """Delete old daily usage counters."""

    services = _services()
    cutoff = datetime.now(tz=UTC) - timedelta(days=days)
    removed = services.budget_gate.prune(cutoff)
    typer.echo(f"Removed {removed} usage counter(s)")


@app.command("init-db")
def init_db(
    seed: bool = typer.Option(True, "--seed/--no-seed", help="Register every adapter as a source"),
) -> None:
    """Create tables and optionally register one source per adapter."""

    services = _services(create_tables=True)
    if seed:
        for key in AVAILABLE_ADAPTERS:
            services.repository.upsert_content_source(key, key)
    typer.echo("Database ready")


if __name__ == "__main__":
    app()
