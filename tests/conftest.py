"""Shared pytest fixtures for engine and CLI checks."""

from __future__ import annotations

import os
import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from collections.abc import Callable

PACKAGE_ROOT = Path(__file__).resolve().parents[1]


@dataclass(frozen=True, slots=True)
class CliResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


class RecordingLogger:
    """Thread-safe stand-in for the logging collaborator."""

    def __init__(self, *, fail_on_calls: frozenset[int] = frozenset()) -> None:
        self._lock = threading.Lock()
        self._fail_on_calls = fail_on_calls
        self._calls = 0
        self.records: list[tuple[str, str]] = []

    def _record(self, level: str, event: str) -> None:
        with self._lock:
            self._calls += 1
            if self._calls in self._fail_on_calls:
                raise RuntimeError("logger is broken")
            self.records.append((level, event))

    def info(self, event: str, *args: object, **kwargs: object) -> None:
        _ = (args, kwargs)
        self._record("info", event)

    def error(self, event: str, *args: object, **kwargs: object) -> None:
        _ = (args, kwargs)
        self._record("error", event)

    @property
    def lines(self) -> list[str]:
        with self._lock:
            return [line for _level, line in self.records]


@pytest.fixture
def package_root() -> Path:
    return PACKAGE_ROOT


@pytest.fixture
def mock_command(package_root: Path) -> Callable[..., list[str]]:
    script = package_root / "tests" / "mock_command.py"

    def _build(*args: str) -> list[str]:
        return [sys.executable, str(script), *args]

    return _build


@pytest.fixture
def stdout_log() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def stderr_log() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def cli_env(package_root: Path) -> dict[str, str]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("CMDEXEC_")}
    existing = env.get("PYTHONPATH", "")
    root = str(package_root / "src")
    env["PYTHONPATH"] = root if not existing else f"{root}:{existing}"
    return env


@pytest.fixture
def run_cmdexec(package_root: Path, cli_env: dict[str, str]) -> Callable[..., CliResult]:
    def _run(args: list[str], timeout: float = 30.0) -> CliResult:
        completed = subprocess.run(
            [sys.executable, "-m", "cmdexec", *args],
            cwd=package_root,
            env=cli_env,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
        return CliResult(
            args=tuple(args),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )

    return _run


@pytest.fixture
def broken_logger() -> Callable[..., RecordingLogger]:
    def _build(*fail_on_calls: int) -> RecordingLogger:
        return RecordingLogger(fail_on_calls=frozenset(fail_on_calls))

    return _build
