"""
Structured logging for the indexer, API and CLI.

Every module does `logger = get_logger(__name__)` and logs a snake_case event
name with keyword fields (block_height, tx_hash, events, error, ...). The event
name is emitted as `event_type`. Output is one JSON object per line by
default, or a console rendering with LOG_FORMAT=console.

configure_logging() may be called again (the CLI does for --log-level);
loggers are resolved lazily so module-level loggers pick up the new setup.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog
from structlog._config import BoundLoggerLazyProxy


def _normalize_event(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Rename structlog 'event' to event_type."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    return event_dict


def _level_value(name: str) -> int:
    value = logging.getLevelName(name.strip().upper())
    return value if isinstance(value, int) else logging.INFO


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """
    (Re)configure structlog.

    Args:
        level: level name; defaults to LOG_LEVEL env, then INFO. Unknown names mean INFO.
        fmt: "json" or "console"; defaults to LOG_FORMAT env, then json.
    """
    level = level or os.getenv("LOG_LEVEL", "INFO")
    fmt = (fmt or os.getenv("LOG_FORMAT", "json")).strip().lower()

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _normalize_event,
    ]
    if fmt == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_level_value(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


if not structlog.is_configured():
    configure_logging()


def get_logger(name: str) -> Any:
    """
    Logger with `logger=<name>` bound.

        logger = get_logger(__name__)
        logger.info("block_events_indexed", block_height=100000000, events=2)

    {"logger": "...", "block_height": 100000000, "events": 2, "level": "info",
     "timestamp": "...", "event_type": "block_events_indexed"}
    """
    # structlog.get_logger(logger=...) collides with wrap_logger's `logger`
    # parameter, so build the same lazy proxy with the initial values directly.
    return BoundLoggerLazyProxy(None, initial_values={"logger": name})
