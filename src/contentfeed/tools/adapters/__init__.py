"""Source adapter registry."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol

from contentfeed.config import AppConfig
from contentfeed.errors import ConfigurationError
from contentfeed.models.ingestion import NormalizedItem
from contentfeed.tools.adapters.google_news import GoogleNewsAdapter
from contentfeed.tools.adapters.mediastack import MEDIASTACK_URL, MediastackAdapter
from contentfeed.tools.adapters.newsapi_rapidapi import NEWSAPI_URL, NewsApiRapidApiAdapter
from contentfeed.tools.adapters.newsx import NEWSX_URL, NewsXAdapter
from contentfeed.tools.adapters.rapidapi_sports import SPORTSPAGE_URL, RapidApiSportsAdapter
from contentfeed.tools.adapters.rss import RSSAdapter
from contentfeed.tools.adapters.therundown import THERUNDOWN_URL, TheRundownAdapter
from contentfeed.tools.adapters.ticketmaster import TICKETMASTER_URL, TicketmasterAdapter
from contentfeed.tools.adapters.tmdb import TMDB_URL, TmdbAdapter


class ContentAdapter(Protocol):
    """Small protocol implemented by every adapter."""

    source_key: str
    budget_key: str | None

    @property
    def calls_per_fetch(self) -> int:
        ...

    def fetch(self) -> Any:
        ...

    def parse(self, raw: Any) -> list[NormalizedItem]:
        ...


# (settings, source config, effective max items) -> adapter
AdapterFactory = Callable[[AppConfig, Mapping[str, Any], int], ContentAdapter]


def _http_options(config: AppConfig, max_items: int) -> dict[str, Any]:
    return {
        "max_items": max_items,
        "timeout": config.request_timeout_seconds,
        "retry_attempts": config.fetch_retry_attempts,
    }


def mediastack_factory(config: AppConfig, options: Mapping[str, Any], max_items: int) -> ContentAdapter:
    return MediastackAdapter(
        api_key=options.get("api_key") or config.mediastack_key,
        base_url=options.get("base_url") or MEDIASTACK_URL,
        keywords=options.get("keywords", "news"),
        languages=options.get("languages", "en"),
        sort=options.get("sort", "published_desc"),
        limit=int(options.get("limit", 50)),
        **_http_options(config, max_items),
    )


def newsapi_rapidapi_factory(config: AppConfig, options: Mapping[str, Any], max_items: int) -> ContentAdapter:
    return NewsApiRapidApiAdapter(
        api_key=options.get("api_key") or config.rapidapi_key,
        base_url=options.get("base_url") or NEWSAPI_URL,
        query=options.get("query", "news"),
        language=options.get("language", "en"),
        limit=int(options.get("limit", 50)),
        **_http_options(config, max_items),
    )


def newsx_factory(config: AppConfig, options: Mapping[str, Any], max_items: int) -> ContentAdapter:
    return NewsXAdapter(
        api_key=options.get("api_key") or config.rapidapi_key,
        base_url=options.get("base_url") or NEWSX_URL,
        limit=int(options.get("limit", 50)),
        skip=int(options.get("skip", 0)),
        **_http_options(config, max_items),
    )


def google_news_factory(config: AppConfig, options: Mapping[str, Any], max_items: int) -> ContentAdapter:
    extra = {key: options[key] for key in ("base_url", "country", "language", "topic") if options.get(key)}
    return GoogleNewsAdapter(
        api_key=options.get("api_key") or config.rapidapi_key,
        **extra,
        **_http_options(config, max_items),
    )


def rapidapi_sports_factory(config: AppConfig, options: Mapping[str, Any], max_items: int) -> ContentAdapter:
    return RapidApiSportsAdapter(
        api_key=options.get("api_key") or config.rapidapi_key,
        base_url=options.get("base_url") or SPORTSPAGE_URL,
        query=options.get("query", "sports"),
        limit=int(options.get("limit", 50)),
        **_http_options(config, max_items),
    )


def therundown_factory(config: AppConfig, options: Mapping[str, Any], max_items: int) -> ContentAdapter:
    return TheRundownAdapter(
        api_key=options.get("api_key") or config.rapidapi_key,
        base_url=options.get("base_url") or THERUNDOWN_URL,
        **_http_options(config, max_items),
    )


def tmdb_factory(config: AppConfig, options: Mapping[str, Any], max_items: int) -> ContentAdapter:
    return TmdbAdapter(
        api_key=options.get("api_key") or config.tmdb_api_key,
        base_url=options.get("base_url") or TMDB_URL,
        media_types=options.get("media_types", ("movie", "tv")),
        per_type_limit=int(options.get("per_type_limit", 50)),
        **_http_options(config, max_items),
    )


def ticketmaster_factory(config: AppConfig, options: Mapping[str, Any], max_items: int) -> ContentAdapter:
    return TicketmasterAdapter(
        api_key=options.get("api_key") or config.ticketmaster_api_key,
        base_url=options.get("base_url") or TICKETMASTER_URL,
        country_code=options.get("country_code", "US"),
        size=int(options.get("size", 50)),
        **_http_options(config, max_items),
    )


def rss_factory(config: AppConfig, options: Mapping[str, Any], max_items: int) -> ContentAdapter:
    return RSSAdapter(
        feeds=options.get("feeds") or config.rss_feeds,
        **_http_options(config, max_items),
    )


AVAILABLE_ADAPTERS: dict[str, AdapterFactory] = {
    "mediastack": mediastack_factory,
    "newsapi-rapidapi": newsapi_rapidapi_factory,
    "newsx": newsx_factory,
    "google-news": google_news_factory,
    "rapidapi-sports": rapidapi_sports_factory,
    "therundown": therundown_factory,
    "tmdb": tmdb_factory,
    "ticketmaster": ticketmaster_factory,
    "rss": rss_factory,
}


def build_adapter(
    source_key: str,
    config: AppConfig,
    options: Mapping[str, Any],
    max_items: int,
    registry: Mapping[str, AdapterFactory] = AVAILABLE_ADAPTERS,
) -> ContentAdapter:
    """Instantiate the adapter registered for ``source_key``."""

    factory = registry.get(source_key)
    if factory is None:
        raise ConfigurationError(f"Adapter not found for source_key: {source_key}")
    adapter = factory(config, options, max_items)
    if adapter.source_key != source_key:
        raise ConfigurationError(f"Adapter key mismatch: expected {source_key}, got {adapter.source_key}")
    return adapter
