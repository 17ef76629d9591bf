"""Pydantic models used throughout the ingestion pipeline."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RunStatus(str, Enum):
    """Lifecycle states of a content run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    DISABLED = "disabled"
    CADENCE = "cadence"
    BUDGET_EXCEEDED = "budget_exceeded"


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class NormalizedItem(BaseModel):
    """Source-independent representation of one fetched item before persistence."""

    model_config = ConfigDict(frozen=True, extra="ignore", str_strip_whitespace=True)

    title: str = ""
    source_url: str = ""
    image_url: str | None = None
    excerpt: str | None = None
    published_at: str | None = None
    external_id: str | None = None
    content_type: str | None = None
    categories: list[str] | None = None
    raw_data: Any = None

    @field_validator("title", "source_url", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)

    @field_validator("image_url", "excerpt", "external_id", "content_type", mode="before")
    @classmethod
    def _blank_as_none(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class ContentSourceRecord(BaseModel):
    """Configuration and identity of one upstream source."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    source_key: str
    name: str
    api_base_url: str | None = None
    is_active: bool = True
    config: dict[str, Any] = Field(default_factory=dict)
    rate_limit_per_hour: int | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("config", mode="before")
    @classmethod
    def _default_config(cls, value: Any) -> dict[str, Any]:
        return dict(value or {})


class ContentRunRecord(BaseModel):
    """A single ingestion attempt for one source."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    source_id: str
    status: RunStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    items_fetched: int = 0
    items_created: int = 0
    items_skipped: int = 0
    items_updated: int = 0
    skipped_reason: str | None = None
    error_message: str | None = None

    @field_validator("id", "source_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("started_at", "completed_at", mode="after")
    @classmethod
    def _ensure_utc(cls, value: datetime | None) -> datetime | None:
        # SQLite hands back naive datetimes
        return _as_utc(value)


class RunOutcome(BaseModel):
    """Terminal values written to a run record when it is finalized."""

    status: RunStatus
    items_fetched: int = 0
    items_created: int = 0
    items_skipped: int = 0
    items_updated: int = 0
    error_message: str | None = None
    skipped_reason: str | None = None


class NewContentItem(BaseModel):
    """Row payload for inserting a deduplicated content item."""

    source_id: str
    content_hash: str
    title: str
    url: str = ""
    external_id: str | None = None
    excerpt: str | None = None
    image_url: str | None = None
    published_at: datetime | None = None
    content_type: str | None = None
    raw_data: Any = None


class ItemUpdate(BaseModel):
    """Mutable fields refreshed when an already known item is seen again."""

    excerpt: str | None = None
    image_url: str | None = None
    raw_data: Any = None

    def changes(self) -> dict[str, Any]:
        """Return only the fields that carry a value."""

        return {key: value for key, value in self.model_dump().items() if value is not None}


class CategoryRef(BaseModel):
    id: str
    name: str


class IngestionResult(BaseModel):
    """Structured outcome returned to callers; never raised."""

    success: bool
    run_id: str = ""
    items_fetched: int = 0
    items_created: int = 0
    items_skipped: int = 0
    items_updated: int = 0
    error: str | None = None
    skipped_reason: str | None = None

    @property
    def status(self) -> str:
        if self.skipped_reason:
            return "skipped"
        return "ok" if self.success else "error"


class SourceRunSummary(BaseModel):
    source_key: str
    status: str
    result: IngestionResult


class BatchSummary(BaseModel):
    """Per-source outcomes of one multi-source trigger."""

    started_at: datetime
    finished_at: datetime
    results: list[SourceRunSummary] = Field(default_factory=list)

    @property
    def succeeded(self) -> list[str]:
        return [entry.source_key for entry in self.results if entry.status == "ok"]

    @property
    def skipped(self) -> list[str]:
        return [entry.source_key for entry in self.results if entry.status == "skipped"]

    @property
    def failed(self) -> list[str]:
        return [entry.source_key for entry in self.results if entry.status == "error"]

    def for_source(self, source_key: str) -> SourceRunSummary | None:
        for entry in self.results:
            if entry.source_key == source_key:
                return entry
        return None
