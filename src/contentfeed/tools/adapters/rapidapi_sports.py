"""Sportspage news feed through RapidAPI."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from contentfeed.models.ingestion import NormalizedItem
from contentfeed.tools.adapters.base import (
    RapidApiAdapter,
    as_text,
    at_path,
    bare_list,
    normalize_url,
    parse_date,
    pick,
)

SPORTSPAGE_URL = "https://sportspage-feeds.p.rapidapi.com/news"
SPORTSPAGE_HOST = "sportspage-feeds.p.rapidapi.com"


class RapidApiSportsAdapter(RapidApiAdapter):
    source_key = "rapidapi-sports"
    record_extractors = (at_path("results"), bare_list)

    def __init__(
        self,
        *,
        base_url: str = SPORTSPAGE_URL,
        host: str = SPORTSPAGE_HOST,
        query: str = "sports",
        limit: int = 50,
        **kwargs: Any,
    ) -> None:
        super().__init__(host=host, **kwargs)
        self.base_url = base_url
        self.query = query
        self.limit = limit

    def fetch(self) -> Any:
        params = {"q": self.query, "limit": str(min(self.limit, self.max_items))}
        return self._get_json(self.base_url, params=params, headers=self._rapidapi_headers())

    def map_record(self, record: Mapping[str, Any]) -> NormalizedItem:
        link = pick(record, "link", "url")
        return NormalizedItem(
            title=record.get("title") or "",
            source_url=normalize_url(link),
            image_url=pick(record, "image", "thumbnail"),
            excerpt=pick(record, "description", "summary"),
            published_at=parse_date(pick(record, "pubDate", "publishedAt")),
            external_id=as_text(record.get("id")) or as_text(link),
            content_type="sports",
            raw_data=dict(record),
        )
