"""
Logging configuration module for structured logging.

This module configures the application's logging system using structlog.
It provides JSON output for production and human-readable console output for
development.

The logging configuration includes:
- ISO timestamps
- Log level inclusion
- JSON/Console output based on settings
"""

import logging

import structlog

from airavat.core.config.settings import settings


def configure_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """
    Configures the application's logging system.

    Every event carries an ISO timestamp and its level, and is rendered as
    JSON when ``json_logs`` is set, otherwise for the console. Events below
    ``log_level`` are dropped.

    Args:
        log_level: Minimum level name, e.g. ``INFO``.
        json_logs: Render JSON lines instead of console output.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", level=level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


# Create a singleton logger instance for the application
logger = structlog.get_logger(settings.PROJECT_NAME)
