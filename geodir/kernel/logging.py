"""structlog setup shared by the API process and `geodir-worker`."""

from __future__ import annotations

import logging

import structlog

from geodir.config import get_settings


def configure_logging() -> None:
    """Configure structlog for this process.

    `LOG_FORMAT=json` renders one JSON object per line for log shipping; any
    other value uses the coloured console renderer. Request ids and worker
    names bound through contextvars are merged into every event.
    """
    settings = get_settings()
    level = logging.getLevelNamesMapping().get(settings.log_level.upper(), logging.INFO)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if settings.log_format == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
