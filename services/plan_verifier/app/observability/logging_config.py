"""structlog configuration shared by the CLI and the API."""
from __future__ import annotations

import logging
import sys

import structlog

from ..config import get_settings


def _stderr_logger(*args: object) -> structlog.PrintLogger:
    # Resolved per logger so redirected streams (CLI runners, pytest capture) are honoured.
    return structlog.PrintLogger(file=sys.stderr)


def configure_logging(level: str | None = None, *, json_output: bool = False) -> None:
    """Route structlog output to stderr at ``level`` (defaults to settings)."""
    name = (level or get_settings().observability.log_level).upper()
    numeric = logging.getLevelName(name)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )


__all__ = ["configure_logging"]
