"""NewsX search through RapidAPI.

The endpoint has been seen answering with ``{"articles": [...]}``,
``{"results": [...]}`` and a bare list, so all three shapes are accepted.
"""

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

NEWSX_URL = "https://newsx.p.rapidapi.com"
NEWSX_HOST = "newsx.p.rapidapi.com"


class NewsXAdapter(RapidApiAdapter):
    source_key = "newsx"
    record_extractors = (at_path("articles"), at_path("results"), bare_list)

    def __init__(
        self,
        *,
        base_url: str = NEWSX_URL,
        host: str = NEWSX_HOST,
        limit: int = 50,
        skip: int = 0,
        **kwargs: Any,
    ) -> None:
        super().__init__(host=host, **kwargs)
        self.base_url = base_url.rstrip("/")
        self.limit = limit
        self.skip = skip

    def fetch(self) -> Any:
        params = {"limit": str(min(self.limit, self.max_items)), "skip": str(self.skip)}
        return self._get_json(f"{self.base_url}/search", params=params, headers=self._rapidapi_headers())

    def map_record(self, record: Mapping[str, Any]) -> NormalizedItem:
        record_id = as_text(record.get("id"))
        return NormalizedItem(
            title=pick(record, "title", "headline") or "",
            source_url=normalize_url(pick(record, "url", "link")),
            image_url=pick(record, "image", "imageUrl", "thumbnail"),
            excerpt=pick(record, "description", "excerpt", "summary"),
            published_at=parse_date(pick(record, "publishedAt", "published_at", "pubDate", "date")),
            external_id=record_id or as_text(pick(record, "url", "link")),
            raw_data=dict(record),
        )
