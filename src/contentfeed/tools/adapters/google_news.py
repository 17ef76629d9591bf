"""Google News topic headlines through RapidAPI."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from contentfeed.models.ingestion import NormalizedItem
from contentfeed.tools.adapters.base import (
    RapidApiAdapter,
    as_text,
    at_path,
    dig,
    normalize_url,
    parse_date,
    pick,
)

GOOGLE_NEWS_URL = "https://google-news22.p.rapidapi.com/v2/topic-headlines"
GOOGLE_NEWS_HOST = "google-news22.p.rapidapi.com"


class GoogleNewsAdapter(RapidApiAdapter):
    source_key = "google-news"
    record_extractors = (at_path("data", "items"), at_path("items"), at_path("articles"))

    def __init__(
        self,
        *,
        base_url: str = GOOGLE_NEWS_URL,
        host: str = GOOGLE_NEWS_HOST,
        country: str = "us",
        language: str = "en",
        topic: str = "business",
        **kwargs: Any,
    ) -> None:
        super().__init__(host=host, **kwargs)
        self.base_url = base_url
        self.country = country
        self.language = language
        self.topic = topic

    def fetch(self) -> Any:
        params = {"country": self.country, "language": self.language, "topic": self.topic}
        return self._get_json(self.base_url, params=params, headers=self._rapidapi_headers())

    def map_record(self, record: Mapping[str, Any]) -> NormalizedItem:
        publisher = as_text(dig(record, "source", "name"))
        return NormalizedItem(
            title=pick(record, "title", "headline") or "",
            source_url=normalize_url(pick(record, "url", "link")),
            image_url=dig(record, "images", "thumbnail") or pick(record, "image", "thumbnail"),
            excerpt=pick(record, "snippet", "description"),
            published_at=parse_date(pick(record, "published", "publishedAt", "date")),
            external_id=as_text(pick(record, "id", "url", "link")),
            categories=[publisher] if publisher else None,
            raw_data=dict(record),
        )
