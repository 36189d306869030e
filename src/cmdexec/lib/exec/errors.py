"""Execution error kinds, exceptions, and retry classification."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cmdexec.lib.exec.engine import ExecutionResult


class ErrorKind(StrEnum):
    INVALID_COMMAND = "invalid_command"
    SPAWN_FAILURE = "spawn_failure"
    TIMED_OUT = "timed_out"
    TERMINATION_FAILURE = "termination_failure"
    LOG_SINK_FAILURE = "log_sink_failure"


class CommandError(Exception):
    """Base class for errors surfaced by the execution engine."""

    kind: ErrorKind


class InvalidCommandError(CommandError, ValueError):
    """Raised before spawn when the command specification is unusable."""

    kind = ErrorKind.INVALID_COMMAND


class SpawnFailureError(CommandError, OSError):
    """Raised by `ExecutionResult.raise_for_outcome` when the OS refused to spawn."""

    kind = ErrorKind.SPAWN_FAILURE


class CommandTimeoutError(CommandError, TimeoutError):
    """Raised by `ExecutionResult.raise_for_outcome` after a watchdog kill."""

    kind = ErrorKind.TIMED_OUT

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Command exceeded timeout after {timeout_seconds:.3f}s")


class TerminationFailureError(CommandError, RuntimeError):
    """Raised when a timed-out process survived SIGTERM and SIGKILL."""

    kind = ErrorKind.TERMINATION_FAILURE


_RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {ErrorKind.TIMED_OUT, ErrorKind.SPAWN_FAILURE}
)


def should_retry(
    result: ExecutionResult,
    *,
    retries_attempted: int,
    max_retries: int = 3,
) -> bool:
    """Return whether a caller-driven retry is reasonable for one result.

    Non-zero exit codes are the caller's business and never count as retryable.
    """

    if retries_attempted >= max_retries:
        return False
    kind = result.error_kind
    return kind is not None and kind in _RETRYABLE_KINDS
