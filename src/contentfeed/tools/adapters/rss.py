"""Generic RSS/Atom adapter built on feedparser."""

from __future__ import annotations

import calendar
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

import feedparser

from contentfeed.errors import ConfigurationError
from contentfeed.models.ingestion import NormalizedItem
from contentfeed.tools.adapters.base import BaseAdapter, as_text, bare_list, first_records, normalize_url


class RSSAdapter(BaseAdapter):
    """Fetch a list of feeds; the raw payload keeps each feed's XML for ``parse()``."""

    source_key = "rss"
    record_extractors = (bare_list,)

    def __init__(self, *, feeds: Sequence[str], **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.feeds = list(feeds)

    @property
    def calls_per_fetch(self) -> int:
        return len(self.feeds)

    def fetch(self) -> Any:
        if not self.feeds:
            raise ConfigurationError("RSS_FEEDS is not configured")
        return [{"feed": url, "body": self._get(url).text} for url in self.feeds]

    def parse(self, raw: Any) -> list[NormalizedItem]:
        entries: list[Any] = []
        for document in first_records(raw, self.record_extractors):
            if not isinstance(document, Mapping) or not document.get("body"):
                continue
            parsed = feedparser.parse(document["body"])
            feed_title = parsed.feed.get("title") or document.get("feed")
            for entry in parsed.entries:
                entries.append({**entry, "_feed_title": feed_title})
        return self._map_records(entries)

    def map_record(self, record: Mapping[str, Any]) -> NormalizedItem:
        link = record.get("link")
        categories = [
            term.get("term") if isinstance(term, Mapping) else str(term)
            for term in (record.get("tags") or [])
        ]
        raw = {
            "feed": record.get("_feed_title"),
            "id": record.get("id"),
            "link": link,
            "title": record.get("title"),
            "summary": record.get("summary"),
        }
        return NormalizedItem(
            title=record.get("title") or "",
            source_url=normalize_url(link),
            excerpt=record.get("summary"),
            published_at=_entry_datetime(record),
            external_id=as_text(record.get("id") or link),
            categories=[term for term in categories if term] or None,
            raw_data=raw,
        )


def _entry_datetime(entry: Mapping[str, Any]) -> str | None:
    struct_time = entry.get("published_parsed") or entry.get("updated_parsed")
    if not struct_time:
        return None
    timestamp = calendar.timegm(struct_time)
    return datetime.fromtimestamp(timestamp, tz=UTC).isoformat().replace("+00:00", "Z")
