"""NewsAPI ``/everything`` through RapidAPI."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from contentfeed.models.ingestion import NormalizedItem
from contentfeed.tools.adapters.base import RapidApiAdapter, as_text, at_path, dig, normalize_url, parse_date

NEWSAPI_URL = "https://newsapi-rapidapi.p.rapidapi.com/everything"
NEWSAPI_HOST = "newsapi-rapidapi.p.rapidapi.com"


class NewsApiRapidApiAdapter(RapidApiAdapter):
    source_key = "newsapi-rapidapi"
    record_extractors = (at_path("articles"),)

    def __init__(
        self,
        *,
        base_url: str = NEWSAPI_URL,
        host: str = NEWSAPI_HOST,
        query: str = "news",
        language: str = "en",
        sort_by: str = "publishedAt",
        limit: int = 50,
        **kwargs: Any,
    ) -> None:
        super().__init__(host=host, **kwargs)
        self.base_url = base_url
        self.query = query
        self.language = language
        self.sort_by = sort_by
        self.limit = limit

    def fetch(self) -> Any:
        params = {
            "q": self.query,
            "language": self.language,
            "sortBy": self.sort_by,
            "pageSize": str(min(self.limit, self.max_items)),
        }
        return self._get_json(self.base_url, params=params, headers=self._rapidapi_headers())

    def map_record(self, record: Mapping[str, Any]) -> NormalizedItem:
        publisher = as_text(dig(record, "source", "name"))
        return NormalizedItem(
            title=record.get("title") or "",
            source_url=normalize_url(record.get("url")),
            image_url=record.get("urlToImage"),
            excerpt=record.get("description"),
            published_at=parse_date(record.get("publishedAt")),
            external_id=as_text(record.get("url")),
            categories=[publisher] if publisher else None,
            raw_data=dict(record),
        )
