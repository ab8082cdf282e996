"""
Structured logging for the memory engine.

All modules log through structlog with key/value event fields so that
retry exhaustion, maintenance summaries and feedback updates can be
filtered by field rather than by message text.
"""

import logging
import sys
from typing import Any, Optional

import structlog


_CONFIGURED = False


def configure_logging(level: int = logging.INFO, json: bool = True) -> None:
    """
    Configure structlog on top of stdlib logging.

    Safe to call more than once; only the first call takes effect.

    Args:
        level: Minimum stdlib log level
        json: Render events as JSON lines (otherwise console renderer)
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stderr,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


def get_logger(name: Optional[str] = None, **initial: Any):
    """Return a structlog logger bound to ``name`` and any initial fields."""
    logger = structlog.get_logger(name)
    if initial:
        logger = logger.bind(**initial)
    return logger


def preview(text: Optional[str], max_chars: int = 50) -> str:
    """Truncate free text before it goes into a log line."""
    if not text:
        return ""
    return text[:max_chars]
