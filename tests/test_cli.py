"""Tests for the ``contentfeed`` command-line interface."""

from __future__ import annotations

from functools import partial

import pytest
from rich.console import Console
from typer.testing import CliRunner

from contentfeed.cli import ingest as ingest_cli
from contentfeed.config import get_config
from contentfeed.errors import FetchError
from contentfeed.services.ingestion import IngestionRunner
from contentfeed.tools.adapters import AVAILABLE_ADAPTERS

from conftest import ScriptedAdapter, make_item, registry_for

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setattr(ingest_cli, "configure_logging", lambda level="INFO": None)
    monkeypatch.setattr(ingest_cli, "console", Console(color_system=None))
    get_config.cache_clear()
    result = runner.invoke(ingest_cli.app, ["init-db"])
    assert result.exit_code == 0, result.output
    yield
    get_config.cache_clear()


def _use_adapters(monkeypatch, *adapters: ScriptedAdapter) -> None:
    monkeypatch.setattr(ingest_cli, "IngestionRunner", partial(IngestionRunner, adapters=registry_for(*adapters)))


def test_adapters_lists_the_registry() -> None:
    result = runner.invoke(ingest_cli.app, ["adapters"])

    assert result.exit_code == 0
    for key in AVAILABLE_ADAPTERS:
        assert f"- {key}" in result.output


def test_init_db_seeds_one_source_per_adapter() -> None:
    result = runner.invoke(ingest_cli.app, ["sources"])

    assert result.exit_code == 0
    assert "- newsx (active)" in result.output
    assert "- tmdb (active)" in result.output


def test_toggle_disables_a_source() -> None:
    result = runner.invoke(ingest_cli.app, ["toggle", "newsx", "--inactive"])

    assert result.exit_code == 0
    assert "newsx: disabled" in result.output
    listing = runner.invoke(ingest_cli.app, ["sources", "--active-only"])
    assert "newsx" not in listing.output


def test_toggle_unknown_source_exits_non_zero() -> None:
    result = runner.invoke(ingest_cli.app, ["toggle", "nope", "--active"])

    assert result.exit_code == 1


def test_configure_merges_json_values() -> None:
    runner.invoke(ingest_cli.app, ["configure", "newsx", "limit=10", "skip=5"])

    result = runner.invoke(ingest_cli.app, ["configure", "newsx", "limit=25", "query=markets"])

    assert result.exit_code == 0
    assert '"limit": 25' in result.output
    assert '"skip": 5' in result.output
    assert '"query": "markets"' in result.output


def test_configure_rejects_malformed_pairs() -> None:
    result = runner.invoke(ingest_cli.app, ["configure", "newsx", "limit"])

    assert result.exit_code != 0


def test_run_reports_each_source(monkeypatch) -> None:
    _use_adapters(
        monkeypatch,
        ScriptedAdapter("newsx", [make_item("Stocks rally"), make_item("Rates hold")]),
        ScriptedAdapter("tmdb", [make_item("Dune")]),
    )
    runner.invoke(ingest_cli.app, ["toggle", "tmdb", "--inactive"])

    result = runner.invoke(ingest_cli.app, ["run", "--sources", "newsx,tmdb"])

    assert result.exit_code == 0, result.output
    assert "newsx: ok fetched=2 created=2 skipped=0 updated=0" in result.output
    assert "tmdb: skipped" in result.output
    assert "reason=disabled" in result.output


def test_run_exits_non_zero_when_a_source_fails(monkeypatch) -> None:
    _use_adapters(monkeypatch, ScriptedAdapter("newsx", error=FetchError("newsx fetch failed", status_code=500)))

    result = runner.invoke(ingest_cli.app, ["run", "--sources", "newsx"])

    assert result.exit_code == 1
    assert "newsx: error" in result.output


def test_budget_and_prune_commands() -> None:
    budget = runner.invoke(ingest_cli.app, ["budget", "rapidapi"])
    prune = runner.invoke(ingest_cli.app, ["budget-prune", "--days", "1"])

    assert budget.exit_code == 0
    assert "rapidapi: used=0 remaining=1000 limit=1000 allowed=yes" in budget.output
    assert prune.exit_code == 0
    assert "Removed 0 usage counter(s)" in prune.output


def test_reap_stale_reports_count() -> None:
    result = runner.invoke(ingest_cli.app, ["reap-stale", "--hours", "1"])

    assert result.exit_code == 0
    assert "Marked 0 stale run(s) as failed" in result.output


def test_runs_lists_recent_runs(monkeypatch) -> None:
    _use_adapters(monkeypatch, ScriptedAdapter("tmdb", [make_item("Dune")]))
    runner.invoke(ingest_cli.app, ["toggle", "tmdb", "--inactive"])
    runner.invoke(ingest_cli.app, ["run", "--sources", "tmdb"])

    result = runner.invoke(ingest_cli.app, ["runs", "tmdb", "--limit", "5"])

    assert result.exit_code == 0, result.output
    assert "skipped fetched=0 created=0 skipped=0 updated=0 reason=disabled" in result.output


def test_runs_unknown_source_exits_non_zero() -> None:
    result = runner.invoke(ingest_cli.app, ["runs", "nope"])

    assert result.exit_code == 1
