"""Process execution engine: spawn, drain, watchdog, report."""

from __future__ import annotations

import asyncio
import signal
import time
from dataclasses import dataclass

import structlog

from cmdexec.lib.config.settings import ExecutorConfig
from cmdexec.lib.exec.command import CommandSpec
from cmdexec.lib.exec.errors import (
    CommandTimeoutError,
    ErrorKind,
    SpawnFailureError,
    TerminationFailureError,
)
from cmdexec.lib.exec.line_sink import LineBufferSink, LineLogger, Severity
from cmdexec.lib.exec.process_groups import signal_process_group, signal_session
from cmdexec.lib.exec.watchdog import Watchdog

logger = structlog.get_logger(__name__)

STDOUT_LOGGER_NAME = "cmdexec.process.stdout"
STDERR_LOGGER_NAME = "cmdexec.process.stderr"


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Outcome of one engine invocation.

    `exit_code` is None whenever the command timed out or never ran. A
    non-zero exit code is an ordinary result, not an error.
    """

    command: tuple[str, ...]
    exit_code: int | None
    timed_out: bool = False
    error: ErrorKind | None = None
    error_message: str | None = None
    timeout_seconds: float = 0.0
    duration_seconds: float = 0.0
    stdout_lines: int = 0
    stderr_lines: int = 0
    log_sink_failures: int = 0

    @property
    def error_kind(self) -> ErrorKind | None:
        if self.error is not None:
            return self.error
        if self.timed_out:
            return ErrorKind.TIMED_OUT
        return None

    @property
    def ok(self) -> bool:
        return self.error_kind is None and self.exit_code == 0

    def format_text(self) -> str:
        kind = self.error_kind
        if kind is None:
            status = f"exit_code={self.exit_code}"
        elif self.error_message:
            status = f"{kind} ({self.error_message})"
        else:
            status = str(kind)
        return (
            f"{' '.join(self.command)}: {status} "
            f"in {self.duration_seconds:.3f}s "
            f"[stdout_lines={self.stdout_lines} stderr_lines={self.stderr_lines}]"
        )

    def raise_for_outcome(self) -> None:
        """Raise the exception matching a timeout or infrastructure failure."""

        kind = self.error_kind
        if kind is None:
            return
        if kind is ErrorKind.SPAWN_FAILURE:
            raise SpawnFailureError(self.error_message or "Failed to spawn command.")
        if kind is ErrorKind.TERMINATION_FAILURE:
            raise TerminationFailureError(
                self.error_message or "Timed-out command could not be terminated."
            )
        raise CommandTimeoutError(self.timeout_seconds)


async def _drain(reader: asyncio.StreamReader, sink: LineBufferSink, chunk_size: int) -> None:
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            return
        sink.write(chunk)


async def _interrupt_and_reap(
    process: asyncio.subprocess.Process,
    *,
    kill_grace_seconds: float,
) -> None:
    if process.returncode is not None:
        return

    if not signal_process_group(process, signal.SIGINT):
        # The group is already gone, so the leader only needs reaping.
        await process.wait()
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=kill_grace_seconds)
    except TimeoutError:
        if process.returncode is None:
            signal_process_group(process, signal.SIGKILL)
            await process.wait()


class ExecutionEngine:
    """Run one command at a time per call, with a hard wall-clock timeout.

    Standard output lines are logged at INFO and standard error lines at
    ERROR. Both pipes are drained by independent tasks so a child that fills
    one pipe cannot stall the other. Every completed line has been delivered
    to its logger by the time a result is returned.
    """

    def __init__(
        self,
        config: ExecutorConfig | None = None,
        *,
        stdout_logger: LineLogger | None = None,
        stderr_logger: LineLogger | None = None,
    ) -> None:
        self._config = config or ExecutorConfig()
        self._stdout_logger = stdout_logger
        self._stderr_logger = stderr_logger

    def resolve_timeout(self, spec: CommandSpec, timeout: float | None = None) -> float:
        if timeout is not None:
            resolved = timeout
        elif spec.timeout_seconds is not None:
            resolved = spec.timeout_seconds
        else:
            resolved = self._config.default_timeout_seconds
        if resolved <= 0:
            raise ValueError("timeout must be > 0.")
        return resolved

    def execute(self, spec: CommandSpec, timeout: float | None = None) -> ExecutionResult:
        """Blocking entry point. Use `execute_async` from inside an event loop."""

        return asyncio.run(self.execute_async(spec, timeout))

    async def execute_async(
        self,
        spec: CommandSpec,
        timeout: float | None = None,
    ) -> ExecutionResult:
        spec.validate()
        timeout_seconds = self.resolve_timeout(spec, timeout)
        argv = spec.argv()
        started_at = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(spec.cwd) if spec.cwd is not None else None,
                env=dict(spec.env) if spec.env is not None else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            logger.error("Failed to spawn command.", command=list(argv), error=str(exc))
            return ExecutionResult(
                command=argv,
                exit_code=None,
                error=ErrorKind.SPAWN_FAILURE,
                error_message=str(exc),
                timeout_seconds=timeout_seconds,
                duration_seconds=time.monotonic() - started_at,
            )

        if process.stdout is None or process.stderr is None:
            await _interrupt_and_reap(
                process, kill_grace_seconds=self._config.kill_grace_seconds
            )
            return ExecutionResult(
                command=argv,
                exit_code=None,
                error=ErrorKind.SPAWN_FAILURE,
                error_message="Subprocess did not expose stdout/stderr pipes.",
                timeout_seconds=timeout_seconds,
                duration_seconds=time.monotonic() - started_at,
            )

        logger.info(
            "Started command.",
            command=list(argv),
            pid=process.pid,
            timeout_seconds=timeout_seconds,
        )

        stdout_sink = LineBufferSink(
            Severity.INFO,
            self._line_logger(self._stdout_logger, STDOUT_LOGGER_NAME, spec, process.pid),
            encoding=self._config.encoding,
        )
        stderr_sink = LineBufferSink(
            Severity.ERROR,
            self._line_logger(self._stderr_logger, STDERR_LOGGER_NAME, spec, process.pid),
            encoding=self._config.encoding,
        )
        chunk_size = self._config.read_chunk_size
        drain_tasks = (
            asyncio.create_task(_drain(process.stdout, stdout_sink, chunk_size)),
            asyncio.create_task(_drain(process.stderr, stderr_sink, chunk_size)),
        )
        watchdog = Watchdog(timeout_seconds, kill_grace_seconds=self._config.kill_grace_seconds)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds
        watchdog_task = watchdog.arm(process)
        exit_task = asyncio.create_task(process.wait())

        raw_return_code: int | None = None
        drains_finished = True
        try:
            await asyncio.wait({exit_task, watchdog_task}, return_when=asyncio.FIRST_COMPLETED)
            if watchdog.termination_failed:
                exit_task.cancel()
                for task in drain_tasks:
                    task.cancel()
                await asyncio.gather(exit_task, *drain_tasks, return_exceptions=True)
            else:
                raw_return_code = await exit_task
                watchdog.disarm()
                await asyncio.gather(watchdog_task, return_exceptions=True)
                # Buffered output always gets at least one grace period to drain.
                drain_budget = max(deadline - loop.time(), self._config.kill_grace_seconds)
                drains_finished = await self._join_drains(process, drain_tasks, drain_budget)
        except asyncio.CancelledError:
            watchdog.disarm()
            await _interrupt_and_reap(
                process, kill_grace_seconds=self._config.kill_grace_seconds
            )
            for task in (exit_task, watchdog_task, *drain_tasks):
                task.cancel()
            raise
        finally:
            stdout_sink.close()
            stderr_sink.close()

        duration_seconds = time.monotonic() - started_at
        common = {
            "command": argv,
            "timeout_seconds": timeout_seconds,
            "duration_seconds": duration_seconds,
            "stdout_lines": stdout_sink.flush_count,
            "stderr_lines": stderr_sink.flush_count,
            "log_sink_failures": stdout_sink.failure_count + stderr_sink.failure_count,
        }

        if watchdog.termination_failed:
            return ExecutionResult(
                exit_code=None,
                timed_out=True,
                error=ErrorKind.TERMINATION_FAILURE,
                error_message=f"Process {process.pid} could not be terminated after timeout.",
                **common,
            )

        if watchdog.expired or not drains_finished:
            logger.warning(
                "Command timed out.",
                command=list(argv),
                pid=process.pid,
                output_held_open=not drains_finished,
                raw_return_code=raw_return_code,
                duration_seconds=round(duration_seconds, 3),
            )
            return ExecutionResult(exit_code=None, timed_out=True, **common)

        logger.info(
            "Command finished.",
            command=list(argv),
            pid=process.pid,
            exit_code=raw_return_code,
            duration_seconds=round(duration_seconds, 3),
        )
        return ExecutionResult(exit_code=raw_return_code, **common)

    async def _join_drains(
        self,
        process: asyncio.subprocess.Process,
        drain_tasks: tuple[asyncio.Task[None], ...],
        budget_seconds: float,
    ) -> bool:
        """Wait for both pipes to reach EOF within the remaining deadline.

        Descendants that inherited stdout or stderr keep the pipes open after
        the command itself exits. When the budget runs out the whole session
        is killed, and drains that still have not finished are cancelled.
        Returns whether the pipes closed on their own.
        """

        _done, pending = await asyncio.wait(drain_tasks, timeout=budget_seconds)
        if not pending:
            await asyncio.gather(*drain_tasks)
            return True

        logger.warning(
            "Command exited but its output pipes are still open; killing its session.",
            pid=process.pid,
        )
        try:
            delivered = signal_session(process.pid, signal.SIGKILL)
        except OSError:
            logger.error("Failed to signal command session.", pid=process.pid, exc_info=True)
            delivered = False
        if delivered:
            _done, pending = await asyncio.wait(
                pending, timeout=self._config.kill_grace_seconds
            )
        for task in pending:
            task.cancel()
        await asyncio.gather(*drain_tasks, return_exceptions=True)
        return False

    def _line_logger(
        self,
        configured: LineLogger | None,
        name: str,
        spec: CommandSpec,
        pid: int,
    ) -> LineLogger:
        if configured is not None:
            return configured
        return structlog.get_logger(name).bind(program=str(spec.program), pid=pid)
