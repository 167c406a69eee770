"""Structured logging configuration using structlog.

Key Features:
- Development: Pretty console output with colors
- Production: JSON output for log aggregation
- Context variables (correlation_id, task_id, scope) merged into every line
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO, cast

import structlog

from reqconflict.core.config import get_settings

# Requirement texts are clipped to this many characters in log fields
LOG_TEXT_PREVIEW_CHARS = 50


def configure_logging(stream: TextIO | None = None) -> None:
    """Configure structured logging for the application.

    In development (DEBUG=true):
        - Pretty console output with colors

    In production (DEBUG=false):
        - JSON output for log aggregation

    Args:
        stream: Log destination. Defaults to stdout; the CLI passes stderr
            so command output stays machine-readable.
    """
    settings = get_settings()

    log_level = logging.DEBUG if settings.debug else logging.INFO

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=log_level,
    )

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.debug:
        processors: list[structlog.types.Processor] = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            # JSONRenderer must be last
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name. If None, uses the calling module's name.

    Returns:
        A structured logger instance.
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


def preview(text: str, limit: int = LOG_TEXT_PREVIEW_CHARS) -> str:
    """Clip requirement text for log output."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
