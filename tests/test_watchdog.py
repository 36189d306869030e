"""Watchdog deadline and termination behavior."""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING, cast

import pytest
from structlog.testing import capture_logs

import cmdexec.lib.exec.watchdog as watchdog_module
from cmdexec.lib.exec.watchdog import Watchdog, WatchdogState

if TYPE_CHECKING:
    from collections.abc import Callable


class FakeProcess:
    """Process double whose exit is controlled by the test."""

    def __init__(self, *, returncode: int | None = None, pid: int = 999_999) -> None:
        self.returncode = returncode
        self.pid = pid
        self._exited = asyncio.Event()
        if returncode is not None:
            self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode


@pytest.fixture
def sent_signals(monkeypatch: pytest.MonkeyPatch) -> list[signal.Signals]:
    sent: list[signal.Signals] = []

    def _record(process: object, signum: signal.Signals) -> bool:
        _ = process
        sent.append(signum)
        return True

    monkeypatch.setattr(watchdog_module, "signal_process_group", _record)
    return sent


def _as_process(fake: FakeProcess) -> asyncio.subprocess.Process:
    return cast("asyncio.subprocess.Process", fake)


@pytest.mark.parametrize("timeout_seconds", [0, -1.0])
def test_watchdog_rejects_non_positive_timeout(timeout_seconds: float) -> None:
    with pytest.raises(ValueError, match="timeout_seconds"):
        Watchdog(timeout_seconds)


def test_new_watchdog_is_idle() -> None:
    watchdog = Watchdog(1.0)

    assert watchdog.state is WatchdogState.IDLE
    assert watchdog.expired is False
    assert watchdog.termination_failed is False


@pytest.mark.asyncio
async def test_reaped_process_wins_tie_against_deadline(sent_signals: list[signal.Signals]) -> None:
    watchdog = Watchdog(0.01, kill_grace_seconds=0.01)

    await watchdog.arm(_as_process(FakeProcess(returncode=0)))

    assert watchdog.expired is False
    assert sent_signals == []
    watchdog.disarm()
    assert watchdog.state is WatchdogState.IDLE


@pytest.mark.asyncio
async def test_disarm_cancels_pending_timer(sent_signals: list[signal.Signals]) -> None:
    watchdog = Watchdog(30.0)
    task = watchdog.arm(_as_process(FakeProcess()))
    assert watchdog.state is WatchdogState.ARMED

    watchdog.disarm()
    await asyncio.gather(task, return_exceptions=True)

    assert task.cancelled() is True
    assert watchdog.state is WatchdogState.IDLE
    assert sent_signals == []


@pytest.mark.asyncio
async def test_watchdog_cannot_be_rearmed() -> None:
    watchdog = Watchdog(30.0)
    watchdog.arm(_as_process(FakeProcess()))
    watchdog.disarm()

    with pytest.raises(RuntimeError, match="re-armed"):
        watchdog.arm(_as_process(FakeProcess()))


@pytest.mark.asyncio
async def test_unkillable_process_reports_termination_failure(
    sent_signals: list[signal.Signals],
) -> None:
    watchdog = Watchdog(0.01, kill_grace_seconds=0.05)

    await asyncio.wait_for(watchdog.arm(_as_process(FakeProcess())), timeout=5.0)

    assert watchdog.expired is True
    assert watchdog.termination_failed is True
    assert sent_signals == [signal.SIGTERM, signal.SIGKILL]


@pytest.mark.asyncio
async def test_signal_permission_error_reports_termination_failure(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    attempts: list[signal.Signals] = []

    def _deny(process: object, signum: signal.Signals) -> bool:
        _ = process
        attempts.append(signum)
        raise PermissionError(1, "Operation not permitted")

    monkeypatch.setattr(watchdog_module, "signal_process_group", _deny)
    watchdog = Watchdog(0.01, kill_grace_seconds=0.05)

    with capture_logs() as captured:
        await asyncio.wait_for(watchdog.arm(_as_process(FakeProcess())), timeout=5.0)

    assert watchdog.expired is True
    assert watchdog.termination_failed is True
    assert attempts == [signal.SIGTERM]
    errors = [entry for entry in captured if entry["log_level"] == "error"]
    assert errors[0]["event"] == "Failed to signal process group."
    assert errors[0]["signal"] == "SIGTERM"


@pytest.mark.asyncio
async def test_undelivered_signal_does_not_escalate(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    attempts: list[signal.Signals] = []

    def _vanished(process: object, signum: signal.Signals) -> bool:
        _ = process
        attempts.append(signum)
        return False

    monkeypatch.setattr(watchdog_module, "signal_process_group", _vanished)
    watchdog = Watchdog(0.01, kill_grace_seconds=0.05)

    await asyncio.wait_for(watchdog.arm(_as_process(FakeProcess())), timeout=5.0)

    assert attempts == [signal.SIGTERM]
    assert watchdog.termination_failed is True


@pytest.mark.asyncio
async def test_disarm_after_expiry_keeps_expired_state(
    sent_signals: list[signal.Signals],
) -> None:
    watchdog = Watchdog(0.01, kill_grace_seconds=0.01)
    await watchdog.arm(_as_process(FakeProcess()))

    watchdog.disarm()

    assert watchdog.state is WatchdogState.EXPIRED
    assert len(sent_signals) == 2


@pytest.mark.asyncio
async def test_expiry_terminates_real_process_with_sigterm(
    mock_command: Callable[..., list[str]],
) -> None:
    process = await asyncio.create_subprocess_exec(
        *mock_command("--hang"),
        stdout=asyncio.subprocess.DEVNULL,
        start_new_session=True,
    )
    watchdog = Watchdog(0.2, kill_grace_seconds=2.0)

    await asyncio.wait_for(watchdog.arm(process), timeout=10.0)

    assert watchdog.expired is True
    assert watchdog.termination_failed is False
    assert process.returncode == -signal.SIGTERM


@pytest.mark.asyncio
async def test_expiry_escalates_to_sigkill_when_sigterm_ignored(
    mock_command: Callable[..., list[str]],
) -> None:
    process = await asyncio.create_subprocess_exec(
        *mock_command("--ignore-sigterm", "--print-pid", "--hang"),
        stdout=asyncio.subprocess.PIPE,
        start_new_session=True,
    )
    assert process.stdout is not None
    # The pid line is printed after the SIGTERM handler is installed.
    await asyncio.wait_for(process.stdout.readline(), timeout=10.0)
    watchdog = Watchdog(0.05, kill_grace_seconds=0.3)

    await asyncio.wait_for(watchdog.arm(process), timeout=10.0)

    assert watchdog.expired is True
    assert watchdog.termination_failed is False
    assert process.returncode == -signal.SIGKILL
