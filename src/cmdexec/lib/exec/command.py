"""Command specification handed to the execution engine."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from cmdexec.lib.exec.errors import InvalidCommandError


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Program plus ordered arguments, with optional per-command overrides.

    `cwd` and `env` are passed to the child untouched when set; otherwise the
    child inherits them from the current process.
    """

    program: str | Path
    arguments: tuple[str, ...] = ()
    timeout_seconds: float | None = None
    cwd: Path | None = None
    env: Mapping[str, str] | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.arguments, tuple):
            object.__setattr__(self, "arguments", tuple(self.arguments))

    @classmethod
    def of(
        cls,
        program: str | Path,
        *arguments: str,
        timeout_seconds: float | None = None,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandSpec:
        return cls(
            program=program,
            arguments=tuple(arguments),
            timeout_seconds=timeout_seconds,
            cwd=cwd,
            env=env,
        )

    @classmethod
    def from_argv(
        cls,
        argv: Sequence[str],
        *,
        timeout_seconds: float | None = None,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandSpec:
        if not argv:
            raise InvalidCommandError("Command is empty.")
        return cls(
            program=argv[0],
            arguments=tuple(argv[1:]),
            timeout_seconds=timeout_seconds,
            cwd=cwd,
            env=env,
        )

    def argv(self) -> tuple[str, ...]:
        return (str(self.program), *self.arguments)

    def validate(self) -> None:
        """Reject specs that cannot be spawned, before any process exists."""

        if not str(self.program).strip():
            raise InvalidCommandError("Command program is empty.")
        if not self.arguments:
            raise InvalidCommandError(f"Command '{self.program}' has no arguments.")
        for argument in self.arguments:
            if not isinstance(argument, str):
                raise InvalidCommandError(
                    f"Command arguments must be strings, got "
                    f"{type(argument).__name__} ({argument!r})."
                )
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise InvalidCommandError("Command timeout_seconds must be > 0 when provided.")
