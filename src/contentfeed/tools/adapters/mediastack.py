"""mediastack live news adapter."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from contentfeed.models.ingestion import NormalizedItem
from contentfeed.tools.adapters.base import BaseAdapter, as_text, at_path, normalize_url, parse_date

MEDIASTACK_URL = "http://api.mediastack.com/v1/news"


class MediastackAdapter(BaseAdapter):
    """Latest articles from mediastack's ``/news`` endpoint."""

    source_key = "mediastack"
    record_extractors = (at_path("data"),)

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = MEDIASTACK_URL,
        keywords: str = "news",
        languages: str = "en",
        sort: str = "published_desc",
        limit: int = 50,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.base_url = base_url
        self.keywords = keywords
        self.languages = languages
        self.sort = sort
        self.limit = limit

    def fetch(self) -> Any:
        params = {
            "access_key": self._require(self.api_key, "MEDIASTACK_KEY"),
            "keywords": self.keywords,
            "languages": self.languages,
            "sort": self.sort,
            "limit": str(min(self.limit, self.max_items)),
        }
        return self._get_json(self.base_url, params=params)

    def map_record(self, record: Mapping[str, Any]) -> NormalizedItem:
        category = as_text(record.get("category"))
        return NormalizedItem(
            title=record.get("title") or "",
            source_url=normalize_url(record.get("url")),
            image_url=record.get("image"),
            excerpt=record.get("description"),
            published_at=parse_date(record.get("published_at")),
            external_id=as_text(record.get("url")),
            categories=[category] if category else None,
            raw_data=dict(record),
        )
