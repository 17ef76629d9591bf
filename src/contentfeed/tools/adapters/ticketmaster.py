"""Ticketmaster Discovery API events."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from contentfeed.models.ingestion import NormalizedItem
from contentfeed.tools.adapters.base import BaseAdapter, as_text, at_path, dig, normalize_url, parse_date, pick

TICKETMASTER_URL = "https://app.ticketmaster.com/discovery/v2/events.json"


class TicketmasterAdapter(BaseAdapter):
    source_key = "ticketmaster"
    record_extractors = (at_path("_embedded", "events"),)

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = TICKETMASTER_URL,
        country_code: str = "US",
        size: int = 50,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.base_url = base_url
        self.country_code = country_code
        self.size = size

    def fetch(self) -> Any:
        params = {
            "apikey": self._require(self.api_key, "TICKETMASTER_API_KEY"),
            "countryCode": self.country_code,
            "size": str(min(self.size, self.max_items)),
            "sort": "date,asc",
        }
        return self._get_json(self.base_url, params=params)

    def map_record(self, record: Mapping[str, Any]) -> NormalizedItem:
        classifications = record.get("classifications")
        first = classifications[0] if isinstance(classifications, list) and classifications else {}
        category = as_text(dig(first, "segment", "name") or dig(first, "genre", "name"))
        images = record.get("images")
        image = images[0].get("url") if isinstance(images, list) and images and isinstance(images[0], Mapping) else None
        return NormalizedItem(
            title=record.get("name") or "",
            source_url=normalize_url(record.get("url")),
            image_url=image,
            excerpt=pick(record, "info", "description"),
            published_at=parse_date(dig(record, "dates", "start", "dateTime")),
            external_id=as_text(record.get("id")),
            content_type="event",
            categories=[category] if category else None,
            raw_data=dict(record),
        )
