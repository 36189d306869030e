"""Deadline watchdog that forcibly terminates overrunning processes."""

from __future__ import annotations

import asyncio
import signal
from enum import StrEnum

import structlog

from cmdexec.lib.exec.process_groups import signal_process_group

logger = structlog.get_logger(__name__)


class WatchdogState(StrEnum):
    IDLE = "idle"
    ARMED = "armed"
    EXPIRED = "expired"


class Watchdog:
    """One-shot timer bound to a single spawned process.

    The watchdog expires at most once. If the process has already been reaped
    when the deadline fires, the exit wins and the watchdog stays quiet.
    Termination starts with SIGTERM to the process group and escalates to
    SIGKILL after `kill_grace_seconds`; a process that survives both is
    reported through `termination_failed` instead of being waited on forever.
    """

    def __init__(self, timeout_seconds: float, *, kill_grace_seconds: float = 2.0) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0.")
        if kill_grace_seconds <= 0:
            raise ValueError("kill_grace_seconds must be > 0.")
        self._timeout_seconds = timeout_seconds
        self._kill_grace_seconds = kill_grace_seconds
        self._state = WatchdogState.IDLE
        self._used = False
        self._termination_failed = False
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> WatchdogState:
        return self._state

    @property
    def expired(self) -> bool:
        return self._state is WatchdogState.EXPIRED

    @property
    def termination_failed(self) -> bool:
        return self._termination_failed

    def arm(self, process: asyncio.subprocess.Process) -> asyncio.Task[None]:
        if self._used:
            raise RuntimeError("Watchdog instances cannot be re-armed.")
        self._used = True
        self._state = WatchdogState.ARMED
        self._task = asyncio.create_task(self._run(process))
        return self._task

    def disarm(self) -> None:
        if self._state is not WatchdogState.ARMED:
            return
        self._state = WatchdogState.IDLE
        if self._task is not None:
            self._task.cancel()

    async def _run(self, process: asyncio.subprocess.Process) -> None:
        await asyncio.sleep(self._timeout_seconds)
        if self._state is not WatchdogState.ARMED or process.returncode is not None:
            return

        self._state = WatchdogState.EXPIRED
        logger.warning(
            "Command exceeded timeout; terminating process group.",
            pid=process.pid,
            timeout_seconds=self._timeout_seconds,
        )
        await self._terminate(process)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        for signum in (signal.SIGTERM, signal.SIGKILL):
            if process.returncode is not None:
                return
            try:
                delivered = signal_process_group(process, signum)
            except OSError:
                logger.error(
                    "Failed to signal process group.",
                    pid=process.pid,
                    signal=signum.name,
                    exc_info=True,
                )
                break
            if await self._wait_for_exit(process):
                return
            if not delivered:
                # Nothing left in the group; a stronger signal reaches no one.
                break

        if process.returncode is None:
            self._termination_failed = True
            logger.error(
                "Process could not be terminated after timeout.",
                pid=process.pid,
                kill_grace_seconds=self._kill_grace_seconds,
            )

    async def _wait_for_exit(self, process: asyncio.subprocess.Process) -> bool:
        try:
            await asyncio.wait_for(process.wait(), timeout=self._kill_grace_seconds)
        except TimeoutError:
            return False
        return True
