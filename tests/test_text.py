"""Tests for :mod:`contentfeed.utils.text`."""

from __future__ import annotations

import re
from datetime import UTC, datetime

import pytest

from contentfeed.utils.text import (
    canonical_published_time,
    format_canonical_time,
    generate_content_hash,
    normalize_title,
    parse_datetime,
)

FETCHED_AT = datetime(2024, 5, 1, 10, 20, tzinfo=UTC)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Breaking: Stocks Rally! - Reuters", "stocks rally"),
        ("  Stocks   rally \U0001F4C8 | CNN News", "stocks rally"),
        ("EXCLUSIVE: Inside the (new) lab", "inside the new lab"),
        ("Story — BBC News", "story"),
        ("Market update - Part 1 - Reuters", "market update"),
        ("live: Final score", "final score"),
        ("What happens next?", "what happens next"),
    ],
)
def test_normalize_title_canonical_forms(raw: str, expected: str) -> None:
    """Prefixes, emoji, punctuation and source suffixes are removed."""

    assert normalize_title(raw) == expected


@pytest.mark.parametrize("empty", [None, "", "   "])
def test_normalize_title_empty_input(empty: str | None) -> None:
    assert normalize_title(empty) == ""


@pytest.mark.parametrize(
    "title",
    [
        "Breaking: Exclusive: Stocks Rally - Reuters",
        "A - b - c",
        "☀ Sunny ☀ day | Weather Channel",
        "Plain headline",
    ],
)
def test_normalize_title_is_idempotent(title: str) -> None:
    once = normalize_title(title)
    assert normalize_title(once) == once


def test_only_one_leading_prefix_is_treated_as_editorial() -> None:
    """The prefix must sit at the start and carry a colon."""

    assert normalize_title("Live updates from the summit") == "live updates from the summit"
    assert normalize_title("Markets: breaking: news") == "markets breaking news"


def test_parse_datetime_accepts_iso_and_rfc2822() -> None:
    expected = datetime(2024, 5, 1, 10, 5, tzinfo=UTC)

    assert parse_datetime("2024-05-01T10:05:00Z") == expected
    assert parse_datetime("2024-05-01T12:05:00+02:00") == expected
    assert parse_datetime("Wed, 01 May 2024 10:05:00 GMT") == expected
    assert parse_datetime(datetime(2024, 5, 1, 10, 5)) == expected


@pytest.mark.parametrize("value", [None, "", "not a date", 12345, {"at": "noon"}])
def test_parse_datetime_rejects_garbage(value: object) -> None:
    assert parse_datetime(value) is None


def test_canonical_published_time_truncates_to_the_utc_hour() -> None:
    moment = canonical_published_time("2024-05-01T12:59:59.999+02:00")

    assert moment == datetime(2024, 5, 1, 10, tzinfo=UTC)
    assert format_canonical_time(moment) == "2024-05-01T10:00:00.000Z"


def test_canonical_published_time_falls_back_to_fetched_at() -> None:
    assert canonical_published_time(None, FETCHED_AT) == datetime(2024, 5, 1, 10, tzinfo=UTC)
    assert canonical_published_time("garbage", FETCHED_AT) == datetime(2024, 5, 1, 10, tzinfo=UTC)


def test_hash_is_64_lowercase_hex() -> None:
    content_hash = generate_content_hash("Stocks rally", "mediastack", "2024-05-01T10:05:00Z")

    assert re.fullmatch(r"[0-9a-f]{64}", content_hash)


def test_hash_ignores_cosmetic_title_variations() -> None:
    published = "2024-05-01T10:05:00Z"

    assert generate_content_hash("Breaking: Stocks Rally! - Reuters", "newsx", published) == generate_content_hash(
        "stocks   rally", "newsx", published
    )


def test_hash_is_scoped_per_source() -> None:
    """The same story from two sources yields two fingerprints."""

    published = "2024-05-01T10:05:00Z"

    assert generate_content_hash("Stocks rally", "newsx", published) != generate_content_hash(
        "Stocks rally", "google-news", published
    )


def test_hash_changes_with_the_hour_but_not_within_it() -> None:
    early = generate_content_hash("Stocks rally", "newsx", "2024-05-01T10:01:00Z")
    late = generate_content_hash("Stocks rally", "newsx", "2024-05-01T10:59:00Z")
    next_hour = generate_content_hash("Stocks rally", "newsx", "2024-05-01T11:00:00Z")

    assert early == late
    assert early != next_hour


def test_hash_missing_date_matches_fetched_hour() -> None:
    """Without a usable date the fetch time stands in for the publish time."""

    explicit = generate_content_hash("Stocks rally", "newsx", "2024-05-01T10:45:00Z")

    assert generate_content_hash("Stocks rally", "newsx", None, FETCHED_AT) == explicit
    assert generate_content_hash("Stocks rally", "newsx", "yesterday-ish", FETCHED_AT) == explicit
