"""Persistence boundary consumed by the ingestion runner.

``ContentRepository`` is the narrow interface the runner depends on;
``SqlAlchemyContentRepository`` implements it on top of the ORM models. Every
method runs in its own short transaction, so items written before a late
failure stay written.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from contentfeed.errors import DuplicateContentError, StorageError
from contentfeed.models.db import (
    ContentCategory,
    ContentConfigEntry,
    ContentItem,
    ContentItemCategory,
    ContentRun,
    ContentSource,
    ContentSourceHealth,
)
from contentfeed.models.ingestion import (
    CategoryRef,
    ContentRunRecord,
    ContentSourceRecord,
    ItemUpdate,
    NewContentItem,
    RunOutcome,
    RunStatus,
)
from contentfeed.services.database import SessionFactory, session_scope

logger = structlog.get_logger(__name__)

HASH_LOOKUP_CHUNK = 500


class ContentRepository(Protocol):
    """Storage operations the ingestion runner relies on."""

    def get_content_source(self, source_key: str) -> ContentSourceRecord | None:
        ...

    def list_content_sources(self, active_only: bool = False) -> list[ContentSourceRecord]:
        ...

    def get_last_successful_run(self, source_id: str) -> ContentRunRecord | None:
        ...

    def create_run(self, source_id: str) -> str:
        ...

    def create_skipped_run(self, source_id: str, skipped_reason: str) -> str:
        ...

    def finalize_run(self, run_id: str, outcome: RunOutcome) -> bool:
        ...

    def existing_hashes(self, hashes: Sequence[str]) -> set[str]:
        ...

    def insert_item(self, item: NewContentItem) -> str:
        ...

    def update_item_by_source_and_external_id(
        self, source_id: str, external_id: str, changes: ItemUpdate
    ) -> bool:
        ...

    def resolve_category_ids(self, names: Sequence[str]) -> list[CategoryRef]:
        ...

    def attach_categories(self, item_id: str, category_ids: Sequence[str]) -> None:
        ...

    def record_source_health(
        self,
        source_id: str,
        run_id: str,
        *,
        success: bool,
        items_created: int,
        error: str | None = None,
    ) -> None:
        ...

    def get_config_value(self, config_key: str) -> Any | None:
        ...


def _as_uuid(value: str | uuid.UUID) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class SqlAlchemyContentRepository:
    """``ContentRepository`` backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    # -- sources -----------------------------------------------------------

    def get_content_source(self, source_key: str) -> ContentSourceRecord | None:
        with session_scope(self._session_factory) as session:
            row = session.scalar(select(ContentSource).where(ContentSource.source_key == source_key))
            return ContentSourceRecord.model_validate(row) if row else None

    def list_content_sources(self, active_only: bool = False) -> list[ContentSourceRecord]:
        query = select(ContentSource).order_by(ContentSource.source_key)
        if active_only:
            query = query.where(ContentSource.is_active.is_(True))
        with session_scope(self._session_factory) as session:
            return [ContentSourceRecord.model_validate(row) for row in session.scalars(query)]

    def upsert_content_source(
        self,
        source_key: str,
        name: str,
        *,
        is_active: bool = True,
        config: Mapping[str, Any] | None = None,
        api_base_url: str | None = None,
        rate_limit_per_hour: int | None = None,
    ) -> ContentSourceRecord:
        """Create a source, or refresh its name/URL and merge ``config`` into an existing one."""

        with session_scope(self._session_factory) as session:
            row = session.scalar(select(ContentSource).where(ContentSource.source_key == source_key))
            if row is None:
                row = ContentSource(
                    source_key=source_key,
                    name=name,
                    is_active=is_active,
                    config=dict(config or {}),
                    api_base_url=api_base_url,
                    rate_limit_per_hour=rate_limit_per_hour,
                )
                session.add(row)
            else:
                row.name = name
                row.config = {**(row.config or {}), **dict(config or {})}
                if api_base_url is not None:
                    row.api_base_url = api_base_url
                if rate_limit_per_hour is not None:
                    row.rate_limit_per_hour = rate_limit_per_hour
            session.flush()
            return ContentSourceRecord.model_validate(row)

    def set_source_active(self, source_key: str, is_active: bool) -> ContentSourceRecord | None:
        with session_scope(self._session_factory) as session:
            row = session.scalar(select(ContentSource).where(ContentSource.source_key == source_key))
            if row is None:
                return None
            row.is_active = is_active
            session.flush()
            return ContentSourceRecord.model_validate(row)

    def merge_source_config(self, source_key: str, patch: Mapping[str, Any]) -> ContentSourceRecord | None:
        """Shallow-merge ``patch`` over the stored config; keys not in the patch survive."""

        with session_scope(self._session_factory) as session:
            row = session.scalar(select(ContentSource).where(ContentSource.source_key == source_key))
            if row is None:
                return None
            # reassign so the JSON column is flagged dirty
            row.config = {**(row.config or {}), **dict(patch)}
            session.flush()
            return ContentSourceRecord.model_validate(row)

    # -- runs --------------------------------------------------------------

    def get_run(self, run_id: str) -> ContentRunRecord | None:
        try:
            key = _as_uuid(run_id)
        except ValueError:
            return None
        with session_scope(self._session_factory) as session:
            row = session.get(ContentRun, key)
            return ContentRunRecord.model_validate(row) if row else None

    def list_runs(self, source_id: str, limit: int = 20) -> list[ContentRunRecord]:
        query = (
            select(ContentRun)
            .where(ContentRun.source_id == _as_uuid(source_id))
            .order_by(ContentRun.started_at.desc())
            .limit(limit)
        )
        with session_scope(self._session_factory) as session:
            return [ContentRunRecord.model_validate(row) for row in session.scalars(query)]

    def get_last_successful_run(self, source_id: str) -> ContentRunRecord | None:
        query = (
            select(ContentRun)
            .where(
                ContentRun.source_id == _as_uuid(source_id),
                ContentRun.status == RunStatus.COMPLETED.value,
            )
            .order_by(ContentRun.completed_at.desc())
            .limit(1)
        )
        with session_scope(self._session_factory) as session:
            row = session.scalar(query)
            return ContentRunRecord.model_validate(row) if row else None

    def create_run(self, source_id: str) -> str:
        with session_scope(self._session_factory) as session:
            run = ContentRun(
                source_id=_as_uuid(source_id),
                status=RunStatus.RUNNING.value,
                started_at=_utcnow(),
            )
            session.add(run)
            session.flush()
            return str(run.id)

    def create_skipped_run(self, source_id: str, skipped_reason: str) -> str:
        now = _utcnow()
        with session_scope(self._session_factory) as session:
            run = ContentRun(
                source_id=_as_uuid(source_id),
                status=RunStatus.SKIPPED.value,
                skipped_reason=skipped_reason,
                started_at=now,
                completed_at=now,
            )
            session.add(run)
            session.flush()
            return str(run.id)

    def finalize_run(self, run_id: str, outcome: RunOutcome) -> bool:
        """Move a ``running`` run to its terminal state; returns ``False`` if it already left ``running``."""

        values = outcome.model_dump()
        values["status"] = outcome.status.value
        values["completed_at"] = _utcnow()
        stmt = (
            update(ContentRun)
            .where(
                ContentRun.id == _as_uuid(run_id),
                ContentRun.status == RunStatus.RUNNING.value,
            )
            .values(**values)
        )
        with session_scope(self._session_factory) as session:
            result = session.execute(stmt)
            return (result.rowcount or 0) > 0

    def fail_stale_runs(self, older_than: datetime) -> int:
        """Mark ``running`` runs started before ``older_than`` as failed."""

        stmt = (
            update(ContentRun)
            .where(
                ContentRun.status == RunStatus.RUNNING.value,
                ContentRun.started_at < older_than,
            )
            .values(
                status=RunStatus.FAILED.value,
                error_message="presumed dead: run never finalized",
                completed_at=_utcnow(),
            )
        )
        with session_scope(self._session_factory) as session:
            result = session.execute(stmt)
            count = result.rowcount or 0
        logger.info("runs.stale_failed", count=count, older_than=older_than.isoformat())
        return count

    # -- items -------------------------------------------------------------

    def existing_hashes(self, hashes: Sequence[str]) -> set[str]:
        unique = list(dict.fromkeys(hashes))
        found: set[str] = set()
        with session_scope(self._session_factory) as session:
            for start in range(0, len(unique), HASH_LOOKUP_CHUNK):
                chunk = unique[start : start + HASH_LOOKUP_CHUNK]
                query = select(ContentItem.content_hash).where(ContentItem.content_hash.in_(chunk))
                found.update(session.scalars(query))
        return found

    def insert_item(self, item: NewContentItem) -> str:
        row = ContentItem(
            source_id=_as_uuid(item.source_id),
            external_id=item.external_id,
            content_hash=item.content_hash,
            title=item.title,
            url=item.url or None,
            excerpt=item.excerpt,
            image_url=item.image_url,
            published_at=item.published_at,
            content_type=item.content_type,
            raw_data=item.raw_data if item.raw_data is not None else {},
        )
        try:
            with session_scope(self._session_factory) as session:
                session.add(row)
                session.flush()
                return str(row.id)
        except IntegrityError as exc:
            if self.existing_hashes([item.content_hash]):
                raise DuplicateContentError(item.content_hash) from exc
            raise StorageError(f"failed to insert content item: {exc.orig}") from exc

    def update_item_by_source_and_external_id(
        self, source_id: str, external_id: str, changes: ItemUpdate
    ) -> bool:
        values = changes.changes()
        values["updated_at"] = _utcnow()
        stmt = (
            update(ContentItem)
            .where(
                ContentItem.source_id == _as_uuid(source_id),
                ContentItem.external_id == external_id,
            )
            .values(**values)
        )
        with session_scope(self._session_factory) as session:
            result = session.execute(stmt)
            return (result.rowcount or 0) > 0

    # -- categories --------------------------------------------------------

    def ensure_categories(self, names: Iterable[str]) -> list[CategoryRef]:
        """Create any missing categories; used by seeding tooling."""

        wanted = list(dict.fromkeys(name for name in names if name))
        with session_scope(self._session_factory) as session:
            existing = {
                row.name: row
                for row in session.scalars(select(ContentCategory).where(ContentCategory.name.in_(wanted)))
            }
            for name in wanted:
                if name not in existing:
                    existing[name] = ContentCategory(name=name)
                    session.add(existing[name])
            session.flush()
            return [CategoryRef(id=str(existing[name].id), name=name) for name in wanted]

    def resolve_category_ids(self, names: Sequence[str]) -> list[CategoryRef]:
        if not names:
            return []
        query = select(ContentCategory).where(ContentCategory.name.in_(list(names)))
        with session_scope(self._session_factory) as session:
            return [CategoryRef(id=str(row.id), name=row.name) for row in session.scalars(query)]

    def attach_categories(self, item_id: str, category_ids: Sequence[str]) -> None:
        if not category_ids:
            return
        item_key = _as_uuid(item_id)
        with session_scope(self._session_factory) as session:
            for category_id in dict.fromkeys(category_ids):
                session.merge(ContentItemCategory(content_item_id=item_key, category_id=_as_uuid(category_id)))

    def categories_for_item(self, item_id: str) -> list[str]:
        query = (
            select(ContentCategory.name)
            .join(ContentItemCategory, ContentItemCategory.category_id == ContentCategory.id)
            .where(ContentItemCategory.content_item_id == _as_uuid(item_id))
            .order_by(ContentCategory.name)
        )
        with session_scope(self._session_factory) as session:
            return list(session.scalars(query))

    # -- health & runtime config ------------------------------------------

    def record_source_health(
        self,
        source_id: str,
        run_id: str,
        *,
        success: bool,
        items_created: int,
        error: str | None = None,
    ) -> None:
        now = _utcnow()
        key = _as_uuid(source_id)
        with session_scope(self._session_factory) as session:
            health = session.get(ContentSourceHealth, key)
            if health is None:
                health = ContentSourceHealth(source_id=key, consecutive_failures=0)
                session.add(health)
            health.last_run_id = _as_uuid(run_id) if run_id else None
            health.items_generated_last_run = items_created
            health.updated_at = now
            if success:
                health.last_success_at = now
                health.consecutive_failures = 0
            else:
                health.last_error_at = now
                health.last_error_reason = error or "Unknown error"
                health.consecutive_failures = (health.consecutive_failures or 0) + 1

    def get_source_health(self, source_id: str) -> ContentSourceHealth | None:
        with session_scope(self._session_factory) as session:
            return session.get(ContentSourceHealth, _as_uuid(source_id))

    def get_config_value(self, config_key: str) -> Any | None:
        query = select(ContentConfigEntry.config_value).where(
            ContentConfigEntry.config_key == config_key,
            ContentConfigEntry.is_active.is_(True),
        )
        try:
            with session_scope(self._session_factory) as session:
                return session.scalar(query)
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to read config {config_key}: {exc}") from exc

    def set_config_value(self, config_key: str, value: Any, description: str | None = None) -> None:
        with session_scope(self._session_factory) as session:
            session.merge(
                ContentConfigEntry(
                    config_key=config_key,
                    config_value=value,
                    description=description,
                    is_active=True,
                )
            )
