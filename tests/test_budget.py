"""Tests for :mod:`contentfeed.services.budget`."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

from sqlalchemy import select

from contentfeed.models.db import ApiUsageBudget
from contentfeed.services.budget import BudgetGate, SqlAlchemyUsageStore, utc_day_bounds
from contentfeed.services.database import session_scope

NOW = datetime(2024, 5, 1, 15, 45, tzinfo=UTC)


def test_utc_day_bounds() -> None:
    start, end = utc_day_bounds(datetime(2024, 5, 1, 23, 30, tzinfo=UTC))

    assert start == datetime(2024, 5, 1, tzinfo=UTC)
    assert end == datetime(2024, 5, 2, tzinfo=UTC)


def test_fresh_key_is_allowed_with_full_budget(usage_store) -> None:
    gate = BudgetGate(usage_store, limits={"rapidapi": 3}, clock=lambda: NOW)

    status = gate.check_limit("rapidapi")

    assert status.allowed is True
    assert status.remaining == 3
    assert status.used == 0
    assert status.reset_at == datetime(2024, 5, 2, tzinfo=UTC)


def test_gate_denies_once_the_limit_is_reached(usage_store) -> None:
    gate = BudgetGate(usage_store, limits={"rapidapi": 3}, clock=lambda: NOW)

    gate.record_call("rapidapi", count=2)
    assert gate.check_limit("rapidapi").allowed is True

    assert gate.record_call("rapidapi") == 3
    status = gate.check_limit("rapidapi")
    assert status.allowed is False
    assert status.remaining == 0


def test_unlisted_keys_use_the_default_limit(usage_store) -> None:
    gate = BudgetGate(usage_store, limits={"rapidapi": 3}, default_limit=50, clock=lambda: NOW)

    assert gate.daily_limit("tmdb") == 50
    assert gate.check_limit("tmdb").remaining == 50


def test_counters_reset_with_the_utc_day(usage_store) -> None:
    moment = {"now": NOW}
    gate = BudgetGate(usage_store, limits={"rapidapi": 1}, clock=lambda: moment["now"])

    gate.record_call("rapidapi")
    assert gate.check_limit("rapidapi").allowed is False

    moment["now"] = NOW + timedelta(days=1)
    assert gate.check_limit("rapidapi").allowed is True


def test_read_failures_fail_open(usage_store) -> None:
    usage_store.fail_reads = True
    gate = BudgetGate(usage_store, limits={"rapidapi": 3}, clock=lambda: NOW)

    status = gate.check_limit("rapidapi")

    assert status.allowed is True
    assert status.remaining == 3


def test_from_config_reads_limits(config, usage_store) -> None:
    gate = BudgetGate.from_config(usage_store, config)

    assert gate.daily_limit("rapidapi") == 10
    assert gate.daily_limit("mediastack") == config.default_daily_budget


def test_sqlalchemy_store_upserts_one_row_per_day(session_factory) -> None:
    store = SqlAlchemyUsageStore(session_factory)
    gate = BudgetGate(store, limits={"rapidapi": 5}, clock=lambda: NOW)

    assert gate.record_call("rapidapi", count=2) == 2
    assert gate.record_call("rapidapi", count=3) == 5
    assert gate.check_limit("rapidapi").allowed is False

    with session_scope(session_factory) as session:
        rows = session.scalars(select(ApiUsageBudget)).all()
        assert len(rows) == 1
        assert rows[0].usage_count == 5
        assert rows[0].budget_limit == 5


def test_sqlalchemy_store_loses_no_concurrent_increments(session_factory) -> None:
    store = SqlAlchemyUsageStore(session_factory)
    gate = BudgetGate(store, limits={"rapidapi": 1000}, clock=lambda: NOW)

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(lambda _: gate.record_call("rapidapi"), range(40)))

    assert gate.check_limit("rapidapi").used == 40


def test_prune_drops_only_finished_periods(session_factory) -> None:
    store = SqlAlchemyUsageStore(session_factory)
    yesterday = BudgetGate(store, clock=lambda: NOW - timedelta(days=1))
    today = BudgetGate(store, clock=lambda: NOW)
    yesterday.record_call("rapidapi")
    today.record_call("rapidapi")

    removed = today.prune(datetime(2024, 5, 1, tzinfo=UTC))

    assert removed == 1
    assert today.check_limit("rapidapi").used == 1
    assert yesterday.check_limit("rapidapi").used == 0
