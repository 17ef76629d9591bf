"""TMDB daily trending movies and TV shows."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from contentfeed.models.ingestion import NormalizedItem
from contentfeed.tools.adapters.base import BaseAdapter, as_text, bare_list, first_records, parse_date, pick

TMDB_URL = "https://api.themoviedb.org/3"
TMDB_IMAGE_URL = "https://image.tmdb.org/t/p/w500"


class TmdbAdapter(BaseAdapter):
    """Fetches ``/trending/{movie,tv}/day``; the raw payload is ``[{"type", "data"}, ...]``."""

    source_key = "tmdb"
    record_extractors = (bare_list,)

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = TMDB_URL,
        image_base_url: str = TMDB_IMAGE_URL,
        media_types: Sequence[str] = ("movie", "tv"),
        per_type_limit: int = 50,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.image_base_url = image_base_url
        self.media_types = tuple(media_types)
        self.per_type_limit = per_type_limit

    @property
    def calls_per_fetch(self) -> int:
        return len(self.media_types)

    def fetch(self) -> Any:
        api_key = self._require(self.api_key, "TMDB_API_KEY")
        results = []
        for media_type in self.media_types:
            payload = self._get_json(
                f"{self.base_url}/trending/{media_type}/day",
                params={"api_key": api_key, "page": "1"},
            )
            data = payload.get("results") if isinstance(payload, Mapping) else None
            results.append({"type": media_type, "data": data or []})
        return results

    def parse(self, raw: Any) -> list[NormalizedItem]:
        per_type = min(self.per_type_limit, self.max_items)
        records: list[Any] = []
        for group in first_records(raw, self.record_extractors):
            if not isinstance(group, Mapping) or not isinstance(group.get("data"), list):
                continue
            for entry in group["data"][:per_type]:
                if isinstance(entry, Mapping):
                    records.append({**entry, "_media_type": group.get("type")})
        return self._map_records(records)

    def map_record(self, record: Mapping[str, Any]) -> NormalizedItem:
        media_type = record.get("_media_type") or record.get("media_type") or "movie"
        record_id = as_text(record.get("id"))
        poster = record.get("poster_path")
        raw = {key: value for key, value in record.items() if key != "_media_type"}
        return NormalizedItem(
            title=pick(record, "title", "name") or "",
            source_url=f"https://www.themoviedb.org/{media_type}/{record_id}" if record_id else "",
            image_url=f"{self.image_base_url}{poster}" if poster else None,
            excerpt=record.get("overview"),
            published_at=parse_date(pick(record, "release_date", "first_air_date")),
            external_id=record_id,
            content_type=media_type,
            raw_data=raw,
        )
