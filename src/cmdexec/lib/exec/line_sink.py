"""Line-buffered sink that turns raw process output into log records."""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from types import TracebackType
from typing import Final, Protocol

import structlog

from cmdexec.lib.exec.errors import ErrorKind

logger = structlog.get_logger(__name__)

NEW_LINE: Final[int] = ord("\n")
DEFAULT_ENCODING: Final[str] = "utf-8"


class Severity(StrEnum):
    INFO = "info"
    ERROR = "error"


class LineLogger(Protocol):
    """Anything exposing `info` and `error` like a structlog or stdlib logger."""

    def info(self, event: str, *args: object, **kwargs: object) -> object: ...

    def error(self, event: str, *args: object, **kwargs: object) -> object: ...


def _log_info(target: LineLogger, line: str) -> None:
    target.info(line)


def _log_error(target: LineLogger, line: str) -> None:
    target.error(line)


_EMITTERS: Final[dict[Severity, Callable[[LineLogger, str], None]]] = {
    Severity.INFO: _log_info,
    Severity.ERROR: _log_error,
}


class LineBufferSink:
    """Accumulate bytes and emit one log record per newline-terminated line.

    A newline seen while nothing is pending is dropped, so blank lines never
    produce records. Bytes left without a terminator when the sink is closed
    are discarded.
    """

    def __init__(
        self,
        severity: Severity,
        target: LineLogger | None = None,
        *,
        encoding: str = DEFAULT_ENCODING,
    ) -> None:
        self._severity = severity
        self._target: LineLogger = target if target is not None else structlog.get_logger(
            "cmdexec.process"
        )
        self._encoding = encoding
        self._emit = _EMITTERS[severity]
        self._pending = bytearray()
        self._flush_count = 0
        self._failure_count = 0
        self._closed = False

    @property
    def flush_count(self) -> int:
        return self._flush_count

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def pending(self) -> bytes:
        return bytes(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes) -> None:
        if self._closed:
            raise ValueError("write to closed LineBufferSink")

        start = 0
        while True:
            index = data.find(NEW_LINE, start)
            if index < 0:
                self._pending.extend(data[start:])
                return
            self._pending.extend(data[start:index])
            start = index + 1
            if self._pending:
                self._flush()

    def close(self) -> None:
        # Unterminated trailing output is never emitted.
        self._pending.clear()
        self._closed = True

    def __enter__(self) -> LineBufferSink:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _flush(self) -> None:
        line = self._pending.decode(self._encoding, errors="replace")
        self._pending.clear()
        try:
            self._emit(self._target, line)
        except Exception:
            self._failure_count += 1
            logger.warning(
                "Failed to write captured output line to logger.",
                severity=str(self._severity),
                error_kind=str(ErrorKind.LOG_SINK_FAILURE),
                exc_info=True,
            )
        self._flush_count += 1
