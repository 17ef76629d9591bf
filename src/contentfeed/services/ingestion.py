"""Ingestion orchestration: one run per source, plus a bounded concurrent batch."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from contentfeed.config import AppConfig
from contentfeed.errors import DuplicateContentError
from contentfeed.models.ingestion import (
    BatchSummary,
    ContentSourceRecord,
    IngestionResult,
    ItemUpdate,
    NewContentItem,
    NormalizedItem,
    RunOutcome,
    RunStatus,
    SkipReason,
    SourceRunSummary,
)
from contentfeed.services.budget import BudgetGate
from contentfeed.services.repository import ContentRepository
from contentfeed.tools.adapters import AVAILABLE_ADAPTERS, AdapterFactory, ContentAdapter, build_adapter
from contentfeed.utils.text import generate_content_hash, parse_datetime

logger = structlog.get_logger(__name__)

REFRESH_HOURS_KEY = "ingestion.refresh_hours"
MAX_ITEMS_KEY = "ingestion.max_items_per_run"


@dataclass
class _RunCounts:
    fetched: int = 0
    created: int = 0
    skipped: int = 0
    updated: int = 0


class IngestionRunner:
    """Drive sources through ``running`` to a terminal run state.

    ``run_ingestion`` never raises: every failure ends up in the returned
    :class:`IngestionResult` and, once a run record exists, in that record.
    Items persisted before a failure stay persisted.
    """

    def __init__(
        self,
        repository: ContentRepository,
        budget_gate: BudgetGate | None,
        config: AppConfig,
        adapters: Mapping[str, AdapterFactory] = AVAILABLE_ADAPTERS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._budget_gate = budget_gate
        self._config = config
        self._adapters = adapters
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._active_runs: dict[str, tuple[str, ContentSourceRecord]] = {}
        self._active_lock = threading.Lock()

    # -- single source -----------------------------------------------------

    def run_ingestion(
        self,
        source_key: str,
        force: bool = False,
        fetched_at: datetime | None = None,
    ) -> IngestionResult:
        log = logger.bind(source_key=source_key)

        try:
            source = self._repository.get_content_source(source_key)
        except Exception as exc:  # noqa: BLE001
            log.exception("ingestion.source_lookup_failed", error=str(exc))
            return IngestionResult(success=False, error=f"Failed to load source {source_key}: {exc}")
        if source is None:
            log.warning("ingestion.source_missing")
            return IngestionResult(success=False, error=f"Source not found: {source_key}")

        if not source.is_active:
            return self._skip(source, SkipReason.DISABLED, log)

        if not force:
            try:
                fresh = self._within_refresh_window(source, log)
            except Exception as exc:  # noqa: BLE001
                log.exception("ingestion.freshness_check_failed", error=str(exc))
                return IngestionResult(success=False, error=f"Failed to check recent runs for {source_key}: {exc}")
            if fresh:
                return self._skip(source, SkipReason.CADENCE, log)

        max_items = self._max_items(source, log)
        adapter: ContentAdapter | None = None
        construction_error: Exception | None = None
        try:
            adapter = build_adapter(source_key, self._config, source.config, max_items, registry=self._adapters)
        except Exception as exc:  # noqa: BLE001
            construction_error = exc

        if adapter is not None and adapter.budget_key and self._budget_gate is not None:
            status = self._budget_gate.check_limit(adapter.budget_key)
            if not status.allowed:
                log.warning(
                    "ingestion.budget_exceeded",
                    budget_key=adapter.budget_key,
                    reset_at=status.reset_at.isoformat(),
                )
                return self._skip(source, SkipReason.BUDGET_EXCEEDED, log)

        try:
            run_id = self._repository.create_run(source.id)
        except Exception as exc:  # noqa: BLE001
            log.exception("ingestion.run_create_failed", error=str(exc))
            return IngestionResult(success=False, error=f"Failed to create run: {exc}")

        log = log.bind(run_id=run_id)
        log.info("ingestion.started", force=force, max_items=max_items)
        self._track(source, run_id)
        counts = _RunCounts()
        try:
            if construction_error is not None:
                raise construction_error
            assert adapter is not None
            self._execute(adapter, source, max_items, counts, fetched_at or self._clock(), log)
        except Exception as exc:  # noqa: BLE001
            error = str(exc) or type(exc).__name__
            log.error("ingestion.failed", error=error, error_type=type(exc).__name__)
            outcome = self._outcome(RunStatus.FAILED, counts, error_message=error)
            if self._finalize(run_id, outcome, log):
                self._record_health(source, run_id, success=False, items_created=counts.created, error=error, log=log)
            return self._result(run_id, counts, success=False, error=error)
        finally:
            self._untrack(source_key, run_id)

        if not self._finalize(run_id, self._outcome(RunStatus.COMPLETED, counts), log):
            return self._result(run_id, counts, success=False, error="run was finalized elsewhere before it completed")
        self._record_health(source, run_id, success=True, items_created=counts.created, log=log)
        log.info(
            "ingestion.completed",
            fetched=counts.fetched,
            created=counts.created,
            skipped=counts.skipped,
            updated=counts.updated,
        )
        return self._result(run_id, counts, success=True)

    def _execute(
        self,
        adapter: ContentAdapter,
        source: ContentSourceRecord,
        max_items: int,
        counts: _RunCounts,
        fetched_at: datetime,
        log: Any,
    ) -> None:
        if adapter.budget_key and self._budget_gate is not None:
            try:
                self._budget_gate.record_call(adapter.budget_key, adapter.calls_per_fetch)
            except Exception as exc:  # noqa: BLE001
                log.warning("ingestion.budget_record_failed", budget_key=adapter.budget_key, error=str(exc))

        raw = adapter.fetch()
        items = adapter.parse(raw)[:max_items]
        counts.fetched = len(items)
        log.info("adapter.completed", count=counts.fetched)
        if not items:
            return

        hashed = [
            (generate_content_hash(item.title, source.source_key, item.published_at, fetched_at), item)
            for item in items
        ]
        existing = self._repository.existing_hashes([content_hash for content_hash, _ in hashed])

        processed: set[str] = set()
        for content_hash, item in hashed:
            if content_hash in processed:
                counts.skipped += 1
                continue
            processed.add(content_hash)

            if content_hash in existing:
                if item.external_id and self._repository.update_item_by_source_and_external_id(
                    source.id,
                    item.external_id,
                    ItemUpdate(excerpt=item.excerpt, image_url=item.image_url, raw_data=item.raw_data),
                ):
                    counts.updated += 1
                else:
                    counts.skipped += 1
                continue

            try:
                item_id = self._repository.insert_item(_new_item(source.id, content_hash, item))
            except DuplicateContentError:
                log.debug("ingestion.duplicate_race", content_hash=content_hash)
                counts.skipped += 1
                continue
            counts.created += 1
            self._attach_categories(item_id, item.categories)

    def _attach_categories(self, item_id: str, names: list[str] | None) -> None:
        if not names:
            return
        refs = self._repository.resolve_category_ids(names)
        if refs:
            self._repository.attach_categories(item_id, [ref.id for ref in refs])

    # -- skip / freshness / config ----------------------------------------

    def _skip(self, source: ContentSourceRecord, reason: SkipReason, log: Any) -> IngestionResult:
        run_id = ""
        try:
            run_id = self._repository.create_skipped_run(source.id, reason.value)
        except Exception as exc:  # noqa: BLE001
            log.warning("ingestion.skip_record_failed", reason=reason.value, error=str(exc))
        log.info("ingestion.skipped", reason=reason.value, run_id=run_id or None)
        return IngestionResult(success=True, run_id=run_id, skipped_reason=reason.value)

    def _within_refresh_window(self, source: ContentSourceRecord, log: Any) -> bool:
        refresh_hours = self._resolve_number(
            source, "default_refresh_hours", REFRESH_HOURS_KEY, self._config.refresh_hours, float, log
        )
        if refresh_hours <= 0:
            return False
        last_run = self._repository.get_last_successful_run(source.id)
        if last_run is None or last_run.completed_at is None:
            return False
        return self._clock() - last_run.completed_at < timedelta(hours=refresh_hours)

    def _max_items(self, source: ContentSourceRecord, log: Any) -> int:
        value = self._resolve_number(
            source, "max_items_per_run", MAX_ITEMS_KEY, self._config.max_items_per_run, int, log
        )
        return max(1, value)

    def _resolve_number(
        self,
        source: ContentSourceRecord,
        source_option: str,
        config_key: str,
        default: Any,
        cast: Callable[[Any], Any],
        log: Any,
    ) -> Any:
        candidates: list[Any] = [source.config.get(source_option)]
        try:
            candidates.append(self._repository.get_config_value(config_key))
        except Exception as exc:  # noqa: BLE001
            log.warning("ingestion.config_read_failed", config_key=config_key, error=str(exc))
        for candidate in candidates:
            if candidate is None or isinstance(candidate, bool):
                continue
            try:
                return cast(candidate)
            except (TypeError, ValueError):
                log.warning("ingestion.config_invalid", key=source_option, value=repr(candidate))
        return default

    # -- run bookkeeping ---------------------------------------------------

    def _finalize(self, run_id: str, outcome: RunOutcome, log: Any) -> bool:
        """Return ``False`` only when the run had already left ``running``."""

        try:
            finalized = self._repository.finalize_run(run_id, outcome)
        except Exception as exc:  # noqa: BLE001
            log.exception("ingestion.finalize_failed", status=outcome.status.value, error=str(exc))
            return True
        if not finalized:
            log.warning("ingestion.finalize_noop", status=outcome.status.value)
        return finalized

    def _record_health(
        self,
        source: ContentSourceRecord,
        run_id: str,
        *,
        success: bool,
        items_created: int,
        log: Any,
        error: str | None = None,
    ) -> None:
        try:
            self._repository.record_source_health(
                source.id, run_id, success=success, items_created=items_created, error=error
            )
        except Exception as exc:  # noqa: BLE001
            log.warning("ingestion.health_update_failed", error=str(exc))

    def _track(self, source: ContentSourceRecord, run_id: str) -> None:
        with self._active_lock:
            self._active_runs[source.source_key] = (run_id, source)

    def _untrack(self, source_key: str, run_id: str) -> None:
        with self._active_lock:
            active = self._active_runs.get(source_key)
            if active is not None and active[0] == run_id:
                del self._active_runs[source_key]

    def _active_run(self, source_key: str) -> tuple[str, ContentSourceRecord] | None:
        with self._active_lock:
            return self._active_runs.get(source_key)

    @staticmethod
    def _outcome(status: RunStatus, counts: _RunCounts, error_message: str | None = None) -> RunOutcome:
        return RunOutcome(
            status=status,
            items_fetched=counts.fetched,
            items_created=counts.created,
            items_skipped=counts.skipped,
            items_updated=counts.updated,
            error_message=error_message,
        )

    @staticmethod
    def _result(run_id: str, counts: _RunCounts, *, success: bool, error: str | None = None) -> IngestionResult:
        return IngestionResult(
            success=success,
            run_id=run_id,
            items_fetched=counts.fetched,
            items_created=counts.created,
            items_skipped=counts.skipped,
            items_updated=counts.updated,
            error=error,
        )

    # -- batch -------------------------------------------------------------

    def run_batch(self, source_keys: Iterable[str] | None = None, force: bool = False) -> BatchSummary:
        """Run several sources concurrently; one source's failure never affects another.

        Without ``source_keys`` every active source is run. Each run gets
        ``run_timeout_seconds`` from the moment a worker picks it up; past that
        its run is finalized as failed and the abandoned worker's own
        finalization becomes a no-op. A source still queued once its turn is
        overdue (every worker held by a hung run) is reported as timed out
        without being started.
        """

        started_at = self._clock()
        if source_keys is None:
            keys = [source.source_key for source in self._repository.list_content_sources(active_only=True)]
        else:
            keys = list(dict.fromkeys(source_keys))
        logger.info("batch.started", sources=keys, force=force)

        timeout = self._config.run_timeout_seconds
        workers = max(1, min(self._config.max_concurrent_sources, len(keys) or 1))
        queued_since = time.monotonic()
        turn_deadlines = {key: queued_since + timeout * (index // workers + 1) for index, key in enumerate(keys)}
        run_starts: dict[str, float] = {}
        abandoned: set[str] = set()
        outcomes: dict[str, IngestionResult] = {}

        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest")
        try:
            pending: dict[Future[IngestionResult], str] = {
                pool.submit(self._run_in_batch, key, force, run_starts, abandoned): key for key in keys
            }
            while pending:
                next_deadline = min(
                    self._deadline(key, run_starts, turn_deadlines, timeout) for key in pending.values()
                )
                done, _ = wait(
                    pending, timeout=max(0.0, next_deadline - time.monotonic()), return_when=FIRST_COMPLETED
                )
                for future in done:
                    key = pending.pop(future)
                    outcomes[key] = self._collect(key, future)

                now = time.monotonic()
                for future, key in list(pending.items()):
                    with self._active_lock:
                        overdue = self._deadline(key, run_starts, turn_deadlines, timeout) <= now
                        if overdue:
                            abandoned.add(key)
                    if overdue:
                        future.cancel()
                        del pending[future]
                        outcomes[key] = self._time_out(key, timeout)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        results = [
            SourceRunSummary(source_key=key, status=outcomes[key].status, result=outcomes[key]) for key in keys
        ]
        summary = BatchSummary(started_at=started_at, finished_at=self._clock(), results=results)
        logger.info(
            "batch.completed",
            succeeded=summary.succeeded,
            skipped=summary.skipped,
            failed=summary.failed,
        )
        return summary

    def _run_in_batch(
        self, source_key: str, force: bool, run_starts: dict[str, float], abandoned: set[str]
    ) -> IngestionResult:
        with self._active_lock:
            if source_key in abandoned:
                return IngestionResult(success=False, error="ingestion abandoned before it started")
            run_starts[source_key] = time.monotonic()
        return self.run_ingestion(source_key, force)

    @staticmethod
    def _deadline(
        source_key: str, run_starts: Mapping[str, float], turn_deadlines: Mapping[str, float], timeout: float
    ) -> float:
        began = run_starts.get(source_key)
        return began + timeout if began is not None else turn_deadlines[source_key]

    @staticmethod
    def _collect(source_key: str, future: Future[IngestionResult]) -> IngestionResult:
        try:
            return future.result()
        except Exception as exc:  # noqa: BLE001
            logger.exception("batch.source_crashed", source_key=source_key, error=str(exc))
            return IngestionResult(success=False, error=str(exc))

    def _time_out(self, source_key: str, timeout: float) -> IngestionResult:
        error = f"ingestion timed out after {timeout:g}s"
        log = logger.bind(source_key=source_key)
        active = self._active_run(source_key)
        if active is None:
            log.error("batch.source_timed_out", timeout=timeout)
            return IngestionResult(success=False, error=error)

        run_id, source = active
        log = log.bind(run_id=run_id)
        if self._finalize(run_id, RunOutcome(status=RunStatus.FAILED, error_message=error), log):
            self._record_health(source, run_id, success=False, items_created=0, error=error, log=log)
        log.error("batch.source_timed_out", timeout=timeout)
        return IngestionResult(success=False, run_id=run_id, error=error)


def _new_item(source_id: str, content_hash: str, item: NormalizedItem) -> NewContentItem:
    return NewContentItem(
        source_id=source_id,
        content_hash=content_hash,
        title=item.title,
        url=item.source_url,
        external_id=item.external_id,
        excerpt=item.excerpt,
        image_url=item.image_url,
        published_at=parse_datetime(item.published_at),
        content_type=item.content_type,
        raw_data=item.raw_data,
    )
