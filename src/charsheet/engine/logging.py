"""Structured logging for the feature engine.

The engine only ever logs through `get_logger`; applications embedding it
call `configure_logging` once at start-up to choose between human-readable
console output and JSON lines.

Example:
    >>> from charsheet.engine.logging import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.warning("Unknown formula", formula="bogus")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from structlog.types import EventDict
    from structlog.types import WrappedLogger

    from .settings import EngineSettings


def add_engine_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["app"] = "charsheet"
    return event_dict


def configure_logging(*, level: str = "INFO", json_format: bool = False) -> None:
    """Configure structlog for the process.

    Only structlog is configured; the host application's stdlib logging
    setup is left alone.

    Args:
        level: The logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: If True, render log lines as JSON instead of the
            colorized console format.
    """
    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_engine_context,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
    )


def configure_from_settings(settings: EngineSettings) -> None:
    configure_logging(level=settings.log_level, json_format=settings.log_json)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


__all__ = [
    "configure_logging",
    "configure_from_settings",
    "get_logger",
]
