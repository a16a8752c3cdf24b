"""Structured logging setup (structlog on top of stdlib logging)."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

_LEVELS = ("debug", "info", "warning", "error", "critical")


def setup_logging(level: str = "info", *, json: bool = False) -> None:
    """Configure structlog and the stdlib root logger.

    Console output is the default; ``json=True`` emits one JSON object per
    line for log collectors.
    """
    level_name = level.lower()
    if level_name not in _LEVELS:
        raise ValueError(f"unknown log level {level!r}")
    numeric_level = getattr(logging, level_name.upper())

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
        force=True,
    )
    # aiohttp.access is noisy and duplicates our own request events.
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    renderers: list[Any]
    if json:
        renderers = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            *renderers,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)
