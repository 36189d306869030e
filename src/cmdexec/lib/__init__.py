"""Core cmdexec library exports."""

from cmdexec.lib.config.settings import ExecutorConfig
from cmdexec.lib.exec.command import CommandSpec
from cmdexec.lib.exec.engine import ExecutionEngine, ExecutionResult

__all__ = ["CommandSpec", "ExecutionEngine", "ExecutionResult", "ExecutorConfig"]
