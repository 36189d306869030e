"""Process-group signalling for spawned commands.

Commands are spawned with `start_new_session=True`, so each one leads its own
session and process group whose id equals the leader's pid.
"""

from __future__ import annotations

import asyncio
import os
import signal


def signal_process_group(
    process: asyncio.subprocess.Process,
    signum: signal.Signals,
) -> bool:
    """Send one signal to the process group led by a live command.

    Returns False when the leader was already reaped or the group vanished
    before delivery. Other OSErrors, such as PermissionError, propagate.
    """

    if process.returncode is not None:
        return False
    return signal_session(process.pid, signum)


def signal_session(session_id: int, signum: signal.Signals) -> bool:
    """Signal whatever is left of a command's session, leader or not.

    Descendants keep the group alive after the leader has been reaped, so
    this reaches processes that still hold the command's output pipes.
    """

    try:
        os.killpg(session_id, signum)
    except ProcessLookupError:
        return False
    return True
