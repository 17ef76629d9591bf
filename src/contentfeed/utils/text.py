"""Title normalization and content fingerprint helpers.

A content fingerprint is ``sha256(normalized_title|source_key|hour)`` where
``hour`` is the canonical published time truncated to the UTC hour. The
source key is part of the fingerprint, so the same story reported by two
different sources yields two different hashes; only repeated sightings from
one source collapse.
"""

from __future__ import annotations

import hashlib
import re
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

_PREFIX_RE = re.compile(r"^(breaking|exclusive|watch|live|update):\s*", re.IGNORECASE)
_EMOJI_RE = re.compile(
    "["
    "\U0001F300-\U0001F9FF"
    "\u2600-\u26FF"
    "\u2700-\u27BF"
    "\U0001F600-\U0001F64F"
    "\U0001F680-\U0001F6FF"
    "\U0001F1E0-\U0001F1FF"
    "]"
)
_PUNCTUATION_RE = re.compile(r"[.,!?:;\"'()\[\]{}]")
_WHITESPACE_RE = re.compile(r"\s+")
_SPACED_SUFFIX_RE = re.compile(r"\s+[-–—|]\s+[a-z0-9\s]+$", re.IGNORECASE)
_BARE_SUFFIX_RE = re.compile(r"[-–—|][a-z0-9\s]+$", re.IGNORECASE)


def normalize_title(title: str | None) -> str:
    """Return the canonical form of ``title`` used for fingerprinting.

    The pipeline lowercases, trims, drops one editorial prefix
    (``breaking:``, ``exclusive:``, ...), strips emoji and punctuation,
    collapses whitespace and removes trailing ``- Source Name`` suffixes.
    The result is stable under repeated application.
    """

    if not title:
        return ""

    normalized = title.lower().strip()
    normalized = _PREFIX_RE.sub("", normalized)
    normalized = _EMOJI_RE.sub("", normalized)
    normalized = _PUNCTUATION_RE.sub("", normalized)
    normalized = _WHITESPACE_RE.sub(" ", normalized)

    # "a - b - c" sheds one suffix per pass
    while True:
        stripped = _SPACED_SUFFIX_RE.sub("", normalized)
        stripped = _BARE_SUFFIX_RE.sub("", stripped).strip()
        if stripped == normalized:
            break
        normalized = stripped

    return normalized.strip()


def parse_datetime(value: Any) -> datetime | None:
    """Parse ISO-8601 or RFC 2822 input into an aware UTC datetime, else ``None``."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError, IndexError):
                return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def canonical_published_time(
    published_at: str | datetime | None,
    fetched_at: datetime | None = None,
) -> datetime:
    """Return ``published_at`` (or the fallback) truncated to the UTC hour."""

    moment = parse_datetime(published_at)
    if moment is None:
        moment = parse_datetime(fetched_at) or datetime.now(tz=UTC)
    return moment.replace(minute=0, second=0, microsecond=0)


def format_canonical_time(moment: datetime) -> str:
    """Render a canonical time the way the fingerprint expects (``...T10:00:00.000Z``)."""

    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def generate_content_hash(
    title: str | None,
    source_key: str,
    published_at: str | datetime | None = None,
    fetched_at: datetime | None = None,
) -> str:
    """Return the 64-character lowercase hex fingerprint for one item."""

    canonical_time = canonical_published_time(published_at, fetched_at)
    joined = "|".join((normalize_title(title), source_key, format_canonical_time(canonical_time)))
    return hashlib.sha256(joined.encode("utf-8", errors="ignore")).hexdigest()
