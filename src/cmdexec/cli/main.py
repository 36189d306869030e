"""Cyclopts CLI entry point for cmdexec."""

from __future__ import annotations

import sys
from contextvars import ContextVar
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import structlog
from cyclopts import App, Parameter

from cmdexec import __version__
from cmdexec.cli.output import OutputConfig
from cmdexec.cli.output import emit as emit_output
from cmdexec.lib.config.settings import load_config
from cmdexec.lib.exec.command import CommandSpec
from cmdexec.lib.exec.engine import ExecutionEngine, ExecutionResult
from cmdexec.lib.exec.errors import ErrorKind

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = structlog.get_logger(__name__)

TIMEOUT_EXIT_CODE = 3
INFRA_EXIT_CODE = 2

_OUTPUT: ContextVar[OutputConfig | None] = ContextVar("_OUTPUT", default=None)


def emit(payload: object) -> None:
    """Write command output using current output format settings."""

    emit_output(payload, _OUTPUT.get() or OutputConfig(format="text"))


app = App(
    name="cmdexec",
    help="Run external commands under a hard timeout with line-logged output.",
    version=__version__,
    help_formatter="plain",
)
config_app = App(name="config", help="Executor configuration commands", help_formatter="plain")
app.command(config_app, name="config")


def result_exit_code(result: ExecutionResult) -> int:
    """Map one execution result to a process exit status."""

    kind = result.error_kind
    if kind is ErrorKind.TIMED_OUT:
        return TIMEOUT_EXIT_CODE
    if kind is not None:
        return INFRA_EXIT_CODE
    return result.exit_code if result.exit_code is not None else INFRA_EXIT_CODE


@app.command(name="run")
def run(
    *command: str,
    timeout: Annotated[
        float | None,
        Parameter(name="--timeout", help="Wall-clock timeout in seconds."),
    ] = None,
    kill_grace: Annotated[
        float | None,
        Parameter(
            name="--kill-grace",
            help="Seconds to wait after SIGTERM before escalating to SIGKILL.",
        ),
    ] = None,
    cwd: Annotated[
        str | None,
        Parameter(name="--cwd", help="Working directory for the command."),
    ] = None,
) -> None:
    """Execute one command; pass it after `--`."""

    config = load_config(Path.cwd())
    if kill_grace is not None:
        config = replace(config, kill_grace_seconds=kill_grace)
    spec = CommandSpec.from_argv(
        command,
        cwd=Path(cwd).expanduser() if cwd is not None else None,
    )
    result = ExecutionEngine(config).execute(spec, timeout)
    emit(result)
    raise SystemExit(result_exit_code(result))


@config_app.command(name="show")
def config_show() -> None:
    """Show the resolved executor configuration."""

    emit(load_config(Path.cwd()))


def _extract_global_options(argv: Sequence[str]) -> tuple[list[str], bool, int]:
    json_mode = False
    verbosity = 0
    cleaned: list[str] = []

    for index, arg in enumerate(argv):
        if arg == "--":
            # Everything after the delimiter belongs to the child command.
            cleaned.extend(argv[index:])
            break
        if arg == "--json":
            json_mode = True
            continue
        if arg in {"--verbose", "-v"}:
            verbosity += 1
            continue
        if arg in {"--quiet", "-q"}:
            verbosity -= 1
            continue
        cleaned.append(arg)

    return cleaned, json_mode, verbosity


def _operation_error_message(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point used by `cmdexec` and `python -m cmdexec`."""

    from cmdexec.lib.logging import configure_logging

    args = list(sys.argv[1:] if argv is None else argv)
    cleaned_args, json_mode, verbosity = _extract_global_options(args)
    configure_logging(json_mode=json_mode, verbosity=verbosity)

    token = _OUTPUT.set(OutputConfig(format="json" if json_mode else "text"))
    try:
        try:
            app(cleaned_args)
        except (KeyError, ValueError, OSError) as exc:
            logger.debug("cmdexec command failed.", exc_info=True)
            print(f"error: {_operation_error_message(exc)}", file=sys.stderr)
            raise SystemExit(1) from None
    finally:
        _OUTPUT.reset(token)
