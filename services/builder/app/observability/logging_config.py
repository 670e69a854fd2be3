"""structlog configuration for the workspace builder."""
from __future__ import annotations

import logging
import sys

import structlog

from ..config import BuilderSettings, get_settings


def configure_logging(settings: BuilderSettings | None = None) -> None:
    """Render structured events to stderr; stdout belongs to the terminal screen."""
    settings = settings or get_settings()
    level = logging.getLevelName(settings.observability.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.observability.json_logs
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


__all__ = ["configure_logging"]
