"""
Logging Configuration

Configures structlog for the policy engine: human-readable console output in
development, JSON lines everywhere else.
"""

import logging
import sys
from typing import Optional, TextIO

import structlog

from config import Settings


def configure_logging(settings: Settings, stream: Optional[TextIO] = None) -> None:
    """
    Configure structlog once at process start.

    Args:
        settings: Application settings (log level and environment)
        stream: Destination for log lines, stdout when omitted
    """
    stream = stream or sys.stdout
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if settings.is_development:
        processors.append(structlog.dev.ConsoleRenderer(colors=stream.isatty()))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )
