"""structlog setup shared by every component."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

_LOGGER_PREFIX = "datapoint_gateway"


def configure_logging(level: str = "info", *, json: bool = False) -> None:
    """Configure structlog once per process.

    Args:
        level: Minimum level name (``"debug"``, ``"info"``, ...).
        json:  Render JSON lines instead of the colored console format.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(area: str, **initial: Any) -> Any:
    """Return a bound logger named ``datapoint_gateway.<area>``."""
    return structlog.get_logger(f"{_LOGGER_PREFIX}.{area}", **initial)
