"""Structured logging helpers."""

from __future__ import annotations

import logging
import sys
from typing import Any, Literal

import structlog

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

SERVICE_NAME = "contentfeed"

# these log every request at INFO
_CHATTY_LOGGERS = ("httpx", "httpcore")

_LOGGING_IS_CONFIGURED = False


def add_service_name(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Stamp every event with the service name."""

    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(level: LogLevel = "INFO") -> None:
    """Configure structlog + stdlib logging only once."""

    global _LOGGING_IS_CONFIGURED
    if _LOGGING_IS_CONFIGURED:
        return

    numeric_level = getattr(logging, level, logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_service_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )

    _LOGGING_IS_CONFIGURED = True
