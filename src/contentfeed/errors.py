"""Exception hierarchy for the ingestion pipeline."""

from __future__ import annotations

BODY_SNIPPET_LENGTH = 200


class IngestionError(Exception):
    """Base class for errors raised while ingesting a source."""


class ConfigurationError(IngestionError):
    """A source cannot run because credentials, URLs or the adapter are missing."""


class FetchError(IngestionError):
    """An upstream request failed (non-2xx, network failure or timeout)."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        self.status_code = status_code
        self.body_snippet = (body or "")[:BODY_SNIPPET_LENGTH]
        detail = message
        if status_code is not None:
            detail = f"{detail}: {status_code}"
        if self.body_snippet:
            detail = f"{detail} - {self.body_snippet}"
        super().__init__(detail)


class ParseError(IngestionError):
    """An adapter could not turn a raw payload into items."""


class StorageError(IngestionError):
    """The persistence layer failed for a reason other than a duplicate."""


class DuplicateContentError(StorageError):
    """An insert collided with the unique ``content_hash`` constraint."""

    def __init__(self, content_hash: str) -> None:
        self.content_hash = content_hash
        super().__init__(f"content_hash already exists: {content_hash}")
