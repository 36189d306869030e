"""Structlog configuration for the cmdexec CLI."""

from __future__ import annotations

import logging as std_logging
import sys

import structlog

# Captured stdout lines log at INFO and stderr lines at ERROR, so quiet mode
# hides child stdout while still surfacing child stderr.
_LEVEL_BY_VERBOSITY: dict[int, int] = {
    -1: std_logging.WARNING,
    0: std_logging.INFO,
    1: std_logging.DEBUG,
}


def level_for_verbosity(verbosity: int) -> int:
    clamped = max(min(verbosity, 1), -1)
    return _LEVEL_BY_VERBOSITY[clamped]


def configure_logging(json_mode: bool = False, verbosity: int = 0) -> None:
    """Configure structlog and stdlib logging to write to stderr.

    `verbosity` below zero is quiet mode, zero shows captured output, and
    anything above zero adds engine debug records.
    """

    level = level_for_verbosity(verbosity)
    handler = std_logging.StreamHandler(sys.stderr)
    handler.setFormatter(std_logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    std_logging.basicConfig(level=level, handlers=[handler], force=True)

    processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_mode:
        processors.extend(
            [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        )
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        # stdout is reserved for the emitted result.
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
