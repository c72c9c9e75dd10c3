# kerits/core/log.py
"""
Structured logging for kerits.

Library modules only call `structlog.get_logger(__name__)`; the CLI (or the
embedding application) calls `configure_logging()` once at startup.

    configure_logging()                     # level from KERITS_LOG_LEVEL
    configure_logging(level="DEBUG", fmt="json")
"""

import logging
import os
from typing import Optional

import structlog
from structlog.typing import Processor

LOG_LEVEL_ENV = "KERITS_LOG_LEVEL"
LOG_FORMAT_ENV = "KERITS_LOG_FORMAT"
DEFAULT_LOG_LEVEL = "INFO"


def _get_log_level(level: Optional[str] = None) -> int:
    level_name = (level or os.getenv(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL)).upper()
    return getattr(logging, level_name, logging.INFO)


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """
    Configure structlog processors and the minimum level.

    fmt: 'console' (default) for readable output, 'json' for log aggregation.
    """
    fmt = (fmt or os.getenv(LOG_FORMAT_ENV, "console")).lower()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    # Loggers are not cached so that reconfiguring (tests, CLI) takes effect.
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_get_log_level(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )

