"""Structlog configuration helpers."""

from __future__ import annotations

import logging as std_logging
import sys
from typing import TextIO

import structlog

_VERBOSITY_LEVELS: tuple[int, ...] = (
    std_logging.WARNING,
    std_logging.INFO,
    std_logging.DEBUG,
)


def level_from_verbosity(verbosity: int) -> int:
    """Map a `-v` count onto a stdlib logging level."""

    if verbosity <= 0:
        return _VERBOSITY_LEVELS[0]
    return _VERBOSITY_LEVELS[min(verbosity, len(_VERBOSITY_LEVELS) - 1)]


def configure_logging(
    json_mode: bool = False,
    verbosity: int = 0,
    *,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog for library consumers and the CLI.

    Runtime stdout is handed back to callers verbatim, so every diagnostic
    goes to stderr (or the explicit `stream`).
    """

    target = stream if stream is not None else sys.stderr
    level = level_from_verbosity(verbosity)
    handler = std_logging.StreamHandler(target)
    handler.setFormatter(std_logging.Formatter("%(message)s"))
    std_logging.basicConfig(level=level, handlers=[handler], force=True)

    renderer: structlog.typing.Processor = (
        structlog.processors.JSONRenderer() if json_mode else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=target),
        cache_logger_on_first_use=False,
    )
