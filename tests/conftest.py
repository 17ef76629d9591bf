"""Shared fixtures: an in-memory repository, usage store and scripted adapters."""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from contentfeed.config import AppConfig
from contentfeed.errors import DuplicateContentError
from contentfeed.models.ingestion import (
    CategoryRef,
    ContentRunRecord,
    ContentSourceRecord,
    ItemUpdate,
    NewContentItem,
    NormalizedItem,
    RunOutcome,
    RunStatus,
)
from contentfeed.services.database import build_engine, create_session_factory, init_database

FIXED_NOW = datetime(2024, 5, 1, 12, 30, tzinfo=UTC)


class FakeRepository:
    """Dict-backed stand-in for ``SqlAlchemyContentRepository``."""

    def __init__(self) -> None:
        self.sources: dict[str, ContentSourceRecord] = {}
        self.runs: dict[str, ContentRunRecord] = {}
        self.items: dict[str, dict[str, Any]] = {}
        self.categories: dict[str, str] = {}
        self.item_categories: dict[str, list[str]] = {}
        self.health: dict[str, dict[str, Any]] = {}
        self.config_values: dict[str, Any] = {}
        self.existing_hash_calls: list[list[str]] = []
        self.fail_health = False
        self.now = FIXED_NOW
        self._lock = threading.Lock()

    # sources

    def add_source(self, source_key: str, *, is_active: bool = True, config: dict[str, Any] | None = None) -> ContentSourceRecord:
        record = ContentSourceRecord(
            id=str(uuid.uuid4()),
            source_key=source_key,
            name=source_key.title(),
            is_active=is_active,
            config=config or {},
        )
        self.sources[source_key] = record
        return record

    def get_content_source(self, source_key: str) -> ContentSourceRecord | None:
        return self.sources.get(source_key)

    def list_content_sources(self, active_only: bool = False) -> list[ContentSourceRecord]:
        return [
            source
            for key, source in sorted(self.sources.items())
            if source.is_active or not active_only
        ]

    # runs

    def runs_for(self, source_key: str) -> list[ContentRunRecord]:
        source_id = self.sources[source_key].id
        return [run for run in self.runs.values() if run.source_id == source_id]

    def get_last_successful_run(self, source_id: str) -> ContentRunRecord | None:
        completed = [
            run
            for run in self.runs.values()
            if run.source_id == source_id and run.status == RunStatus.COMPLETED
        ]
        return max(completed, key=lambda run: run.completed_at, default=None)

    def create_run(self, source_id: str) -> str:
        with self._lock:
            run_id = str(uuid.uuid4())
            self.runs[run_id] = ContentRunRecord(
                id=run_id, source_id=source_id, status=RunStatus.RUNNING, started_at=self.now
            )
            return run_id

    def create_skipped_run(self, source_id: str, skipped_reason: str) -> str:
        with self._lock:
            run_id = str(uuid.uuid4())
            self.runs[run_id] = ContentRunRecord(
                id=run_id,
                source_id=source_id,
                status=RunStatus.SKIPPED,
                skipped_reason=skipped_reason,
                started_at=self.now,
                completed_at=self.now,
            )
            return run_id

    def finalize_run(self, run_id: str, outcome: RunOutcome) -> bool:
        with self._lock:
            run = self.runs[run_id]
            if run.status != RunStatus.RUNNING:
                return False
            self.runs[run_id] = run.model_copy(
                update={**outcome.model_dump(), "completed_at": self.now}
            )
            return True

    # items

    def existing_hashes(self, hashes: Sequence[str]) -> set[str]:
        self.existing_hash_calls.append(list(hashes))
        return {content_hash for content_hash in hashes if content_hash in self.items}

    def insert_item(self, item: NewContentItem) -> str:
        with self._lock:
            if item.content_hash in self.items:
                raise DuplicateContentError(item.content_hash)
            item_id = str(uuid.uuid4())
            self.items[item.content_hash] = {"id": item_id, **item.model_dump()}
            return item_id

    def update_item_by_source_and_external_id(self, source_id: str, external_id: str, changes: ItemUpdate) -> bool:
        updated = False
        for row in self.items.values():
            if row["source_id"] == source_id and row["external_id"] == external_id:
                row.update(changes.changes())
                updated = True
        return updated

    def resolve_category_ids(self, names: Sequence[str]) -> list[CategoryRef]:
        return [CategoryRef(id=self.categories[name], name=name) for name in names if name in self.categories]

    def attach_categories(self, item_id: str, category_ids: Sequence[str]) -> None:
        self.item_categories.setdefault(item_id, []).extend(category_ids)

    def record_source_health(
        self,
        source_id: str,
        run_id: str,
        *,
        success: bool,
        items_created: int,
        error: str | None = None,
    ) -> None:
        if self.fail_health:
            raise RuntimeError("health table unavailable")
        self.health[source_id] = {
            "run_id": run_id,
            "success": success,
            "items_created": items_created,
            "error": error,
        }

    def get_config_value(self, config_key: str) -> Any | None:
        return self.config_values.get(config_key)


class MemoryUsageStore:
    """Thread-safe ``UsageStore`` kept in a dict."""

    def __init__(self) -> None:
        self.counters: dict[tuple[str, datetime], int] = {}
        self.fail_reads = False
        self._lock = threading.Lock()

    def get_usage(self, budget_key: str, period_start: datetime) -> int:
        if self.fail_reads:
            raise RuntimeError("usage table unavailable")
        return self.counters.get((budget_key, period_start), 0)

    def increment(
        self,
        budget_key: str,
        period_start: datetime,
        period_end: datetime,
        budget_limit: int,
        count: int,
    ) -> int:
        with self._lock:
            key = (budget_key, period_start)
            self.counters[key] = self.counters.get(key, 0) + count
            return self.counters[key]

    def prune_before(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [key for key in self.counters if key[1] + timedelta(days=1) <= cutoff]
            for key in stale:
                del self.counters[key]
            return len(stale)


class ScriptedAdapter:
    """Adapter returning canned items, or raising from ``fetch``."""

    def __init__(
        self,
        source_key: str,
        items: Sequence[NormalizedItem] = (),
        *,
        error: Exception | None = None,
        budget_key: str | None = None,
        calls: int = 1,
        before_fetch: Callable[[], None] | None = None,
    ) -> None:
        self.source_key = source_key
        self.budget_key = budget_key
        self.items = list(items)
        self.error = error
        self.calls = calls
        self.before_fetch = before_fetch
        self.fetch_count = 0

    @property
    def calls_per_fetch(self) -> int:
        return self.calls

    def fetch(self) -> Any:
        self.fetch_count += 1
        if self.before_fetch is not None:
            self.before_fetch()
        if self.error is not None:
            raise self.error
        return {"items": self.items}

    def parse(self, raw: Any) -> list[NormalizedItem]:
        return list(raw["items"])


def registry_for(*adapters: ScriptedAdapter) -> dict[str, Callable[..., ScriptedAdapter]]:
    return {adapter.source_key: (lambda config, options, max_items, a=adapter: a) for adapter in adapters}


def make_item(title: str, **fields: Any) -> NormalizedItem:
    fields.setdefault("published_at", "2024-05-01T10:15:00Z")
    fields.setdefault("source_url", f"https://example.com/{title.lower().replace(' ', '-')}")
    return NormalizedItem(title=title, **fields)


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        database_url="sqlite://",
        refresh_hours=3.0,
        max_items_per_run=100,
        run_timeout_seconds=5.0,
        max_concurrent_sources=4,
        default_daily_budget=1000,
        daily_budgets={"rapidapi": 10},
        _env_file=None,
    )


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def usage_store() -> MemoryUsageStore:
    return MemoryUsageStore()


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'contentfeed.db'}")
    init_database(engine)
    yield create_session_factory(engine)
    engine.dispose()
