"""Execution engine primitives."""

from cmdexec.lib.exec.command import CommandSpec
from cmdexec.lib.exec.engine import ExecutionEngine, ExecutionResult
from cmdexec.lib.exec.errors import (
    CommandError,
    CommandTimeoutError,
    ErrorKind,
    InvalidCommandError,
    SpawnFailureError,
    TerminationFailureError,
    should_retry,
)
from cmdexec.lib.exec.line_sink import LineBufferSink, LineLogger, Severity
from cmdexec.lib.exec.process_groups import signal_process_group, signal_session
from cmdexec.lib.exec.watchdog import Watchdog, WatchdogState

__all__ = [
    "CommandError",
    "CommandSpec",
    "CommandTimeoutError",
    "ErrorKind",
    "ExecutionEngine",
    "ExecutionResult",
    "InvalidCommandError",
    "LineBufferSink",
    "LineLogger",
    "Severity",
    "SpawnFailureError",
    "TerminationFailureError",
    "Watchdog",
    "WatchdogState",
    "should_retry",
    "signal_process_group",
    "signal_session",
]
