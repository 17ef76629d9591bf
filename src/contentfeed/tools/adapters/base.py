"""Shared adapter plumbing: HTTP fetching, payload-shape tolerance and field helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from typing import Any, ClassVar
from urllib.parse import urlsplit, urlunsplit

import httpx
import structlog
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from contentfeed.errors import ConfigurationError, FetchError, ParseError
from contentfeed.models.ingestion import NormalizedItem
from contentfeed.utils.text import parse_datetime

USER_AGENT = "ContentFeedBot/0.1 (+https://local.run/contentfeed)"

Extractor = Callable[[Any], list[Any] | None]


def at_path(*keys: str) -> Extractor:
    """Build an extractor returning the list found at ``raw[k1][k2]...``, else ``None``."""

    def extract(raw: Any) -> list[Any] | None:
        value = raw
        for key in keys:
            if not isinstance(value, Mapping):
                return None
            value = value.get(key)
        return value if isinstance(value, list) else None

    extract.__name__ = "at_path_" + "_".join(keys)
    return extract


def bare_list(raw: Any) -> list[Any] | None:
    return raw if isinstance(raw, list) else None


def first_records(raw: Any, extractors: Sequence[Extractor]) -> list[Any]:
    """Return the result of the first extractor that finds a list, or ``[]``."""

    for extractor in extractors:
        records = extractor(raw)
        if records is not None:
            return records
    return []


def pick(record: Mapping[str, Any], *keys: str) -> Any:
    """Return the first truthy value among ``keys``."""

    for key in keys:
        value = record.get(key)
        if value:
            return value
    return None


def dig(record: Any, *keys: str) -> Any:
    value = record
    for key in keys:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def as_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def normalize_url(url: Any) -> str:
    """Canonicalize an absolute URL and drop its fragment; non-URLs pass through unchanged."""

    if not url:
        return ""
    raw = str(url).strip()
    try:
        parts = urlsplit(raw)
    except ValueError:
        return raw
    if not parts.scheme or not parts.netloc:
        return raw
    path = parts.path or ("/" if parts.scheme in ("http", "https") else "")
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""))


def parse_date(value: Any) -> str | None:
    """Return an ISO-8601 UTC string, or ``None`` when ``value`` is not a date."""

    parsed = parse_datetime(value)
    if parsed is None:
        return None
    return parsed.isoformat().replace("+00:00", "Z")


class BaseAdapter(ABC):
    """One upstream source: ``fetch()`` returns the raw payload, ``parse()`` normalizes it.

    Subclasses declare ``source_key``, the ordered ``record_extractors`` used to
    locate the record list in a payload, and ``map_record``. Sources that draw
    on a shared upstream quota set ``budget_key``.
    """

    source_key: ClassVar[str]
    budget_key: ClassVar[str | None] = None
    record_extractors: ClassVar[tuple[Extractor, ...]] = (bare_list,)

    def __init__(
        self,
        *,
        max_items: int,
        timeout: float = 10.0,
        retry_attempts: int = 2,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.max_items = max_items
        self.timeout = timeout
        self.transport = transport
        self.log = structlog.get_logger(__name__).bind(adapter=self.source_key)
        self._retryer = Retrying(
            stop=stop_after_attempt(retry_attempts),
            wait=wait_exponential(multiplier=0.5, max=5),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )

    @property
    def calls_per_fetch(self) -> int:
        """Number of upstream requests one ``fetch()`` spends against the budget."""

        return 1

    @abstractmethod
    def fetch(self) -> Any:
        ...

    @abstractmethod
    def map_record(self, record: Mapping[str, Any]) -> NormalizedItem | None:
        ...

    def parse(self, raw: Any) -> list[NormalizedItem]:
        records = first_records(raw, self.record_extractors)
        return self._map_records(records)

    def _map_records(self, records: Sequence[Any]) -> list[NormalizedItem]:
        items: list[NormalizedItem] = []
        for record in records:
            if len(items) >= self.max_items:
                break
            if not isinstance(record, Mapping):
                self.log.warning("adapter.record_ignored", reason="not-a-mapping", kind=type(record).__name__)
                continue
            try:
                item = self.map_record(record)
            except Exception as exc:  # noqa: BLE001
                self.log.warning("adapter.record_failed", reason=str(exc), record_id=record.get("id"))
                continue
            if item is not None:
                items.append(item)
        self.log.info("adapter.parsed", records=len(records), count=len(items))
        return items

    def _require(self, value: str | None, setting: str) -> str:
        if not value:
            raise ConfigurationError(f"{setting} is not configured")
        return value

    def _get(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        request_headers = {"User-Agent": USER_AGENT, **dict(headers or {})}
        try:
            for attempt in self._retryer:
                with attempt:
                    with httpx.Client(
                        timeout=self.timeout,
                        headers=request_headers,
                        follow_redirects=True,
                        transport=self.transport,
                    ) as client:
                        response = client.get(url, params=params)
                    if response.is_error:
                        self.log.error("adapter.request_failed", url=url, status=response.status_code)
                        raise FetchError(
                            f"{self.source_key} fetch failed",
                            status_code=response.status_code,
                            body=response.text,
                        )
                    return response
        except httpx.TimeoutException as exc:
            raise FetchError(f"{self.source_key} fetch timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"{self.source_key} fetch failed: {exc}") from exc
        raise RuntimeError("Retryer exhausted without raising")

    def _get_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        response = self._get(url, params=params, headers=headers)
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(f"{self.source_key} returned a non-JSON body: {response.text[:200]}") from exc


class RapidApiAdapter(BaseAdapter):
    """Adapter for a RapidAPI-hosted upstream; all of them draw on one shared quota."""

    budget_key: ClassVar[str | None] = "rapidapi"

    def __init__(self, *, api_key: str | None, host: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.host = host

    def _rapidapi_headers(self) -> dict[str, str]:
        return {
            "X-RapidAPI-Key": self._require(self.api_key, "RAPIDAPI_KEY"),
            "X-RapidAPI-Host": self.host,
        }
