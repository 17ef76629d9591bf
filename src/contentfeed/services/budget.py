"""Daily API call budgets shared across concurrent ingestion runs."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

import structlog
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from contentfeed.config import AppConfig
from contentfeed.errors import StorageError
from contentfeed.models.db import ApiUsageBudget
from contentfeed.services.database import SessionFactory, session_scope

logger = structlog.get_logger(__name__)

_UPSERT_BUILDERS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass(frozen=True)
class BudgetStatus:
    allowed: bool
    remaining: int
    reset_at: datetime
    used: int = 0


def utc_day_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` of the UTC day containing ``moment``."""

    start = moment.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


class UsageStore(Protocol):
    def get_usage(self, budget_key: str, period_start: datetime) -> int:
        ...

    def increment(
        self,
        budget_key: str,
        period_start: datetime,
        period_end: datetime,
        budget_limit: int,
        count: int,
    ) -> int:
        ...

    def prune_before(self, cutoff: datetime) -> int:
        ...


class SqlAlchemyUsageStore:
    """Counters in ``api_usage_budget``, incremented with a single upsert statement."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get_usage(self, budget_key: str, period_start: datetime) -> int:
        query = select(ApiUsageBudget.usage_count).where(
            ApiUsageBudget.budget_key == budget_key,
            ApiUsageBudget.period_start == period_start,
        )
        with session_scope(self._session_factory) as session:
            return session.scalar(query) or 0

    def increment(
        self,
        budget_key: str,
        period_start: datetime,
        period_end: datetime,
        budget_limit: int,
        count: int,
    ) -> int:
        now = datetime.now(tz=UTC)
        with session_scope(self._session_factory) as session:
            dialect = session.get_bind().dialect.name
            builder = _UPSERT_BUILDERS.get(dialect)
            if builder is None:
                raise StorageError(f"atomic budget increments are not supported on {dialect}")
            stmt = builder(ApiUsageBudget).values(
                id=uuid.uuid4(),
                budget_key=budget_key,
                period_start=period_start,
                period_end=period_end,
                budget_limit=budget_limit,
                usage_count=count,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[ApiUsageBudget.budget_key, ApiUsageBudget.period_start],
                set_={
                    "usage_count": ApiUsageBudget.usage_count + stmt.excluded.usage_count,
                    "budget_limit": stmt.excluded.budget_limit,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            session.execute(stmt)
            usage = session.scalar(
                select(ApiUsageBudget.usage_count).where(
                    ApiUsageBudget.budget_key == budget_key,
                    ApiUsageBudget.period_start == period_start,
                )
            )
        return usage or 0

    def prune_before(self, cutoff: datetime) -> int:
        with session_scope(self._session_factory) as session:
            result = session.execute(delete(ApiUsageBudget).where(ApiUsageBudget.period_end <= cutoff))
            return result.rowcount or 0


class BudgetGate:
    """Per-key daily quota check.

    ``check_limit`` fails open: if the usage read errors, the call is allowed
    and a warning is logged. A sustained storage outage therefore stops
    enforcing quotas rather than stopping ingestion.
    """

    def __init__(
        self,
        store: UsageStore,
        limits: Mapping[str, int] | None = None,
        default_limit: int = 1000,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._limits = dict(limits or {})
        self._default_limit = default_limit
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    @classmethod
    def from_config(cls, store: UsageStore, config: AppConfig) -> "BudgetGate":
        return cls(store, limits=config.daily_budgets, default_limit=config.default_daily_budget)

    def daily_limit(self, budget_key: str) -> int:
        return self._limits.get(budget_key, self._default_limit)

    def check_limit(self, budget_key: str) -> BudgetStatus:
        period_start, period_end = utc_day_bounds(self._clock())
        limit = self.daily_limit(budget_key)
        try:
            used = self._store.get_usage(budget_key, period_start)
        except Exception as exc:  # noqa: BLE001
            logger.warning("budget.check_failed_open", budget_key=budget_key, error=str(exc))
            return BudgetStatus(allowed=True, remaining=limit, reset_at=period_end)

        return BudgetStatus(
            allowed=used < limit,
            remaining=max(0, limit - used),
            reset_at=period_end,
            used=used,
        )

    def record_call(self, budget_key: str, count: int = 1) -> int:
        """Atomically add ``count`` calls to today's counter and return the new total."""

        period_start, period_end = utc_day_bounds(self._clock())
        usage = self._store.increment(
            budget_key,
            period_start,
            period_end,
            self.daily_limit(budget_key),
            count,
        )
        logger.debug("budget.recorded", budget_key=budget_key, count=count, usage=usage)
        return usage

    def prune(self, before: datetime) -> int:
        """Drop counters whose period ended at or before ``before``."""

        removed = self._store.prune_before(before)
        logger.info("budget.pruned", removed=removed, before=before.isoformat())
        return removed
