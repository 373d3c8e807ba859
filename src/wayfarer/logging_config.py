"""structlog setup for Wayfarer."""

import logging
import sys

import structlog

from wayfarer.config import get_settings


def configure_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structlog output.

    Args:
        level: Logging level name; defaults to settings.log_level
        log_format: "console" or "json"; defaults to settings.log_format
    """
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    fmt = (log_format or settings.log_format).lower()
    min_level = logging.getLevelNamesMapping().get(level_name, logging.INFO)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if fmt == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
