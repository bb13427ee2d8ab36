"""Process-group helpers for runtime subprocess termination."""

from __future__ import annotations

import asyncio
import os
import signal
import subprocess

type ChildProcess = asyncio.subprocess.Process | subprocess.Popen[bytes]


def _group_id(process: ChildProcess) -> int | None:
    # Children are spawned with `start_new_session=True`, so the group id is the
    # leader's pid and stays valid while any member is alive, even after the
    # leader itself has exited and been reaped.
    return process.pid


def signal_process_group(process: ChildProcess, signum: signal.Signals) -> None:
    """Send one signal to every process in the child's group.

    The leader may already have exited while a descendant (a runtime helper
    plugin, a backgrounded shell job) still holds the output pipes, so the
    group is signalled regardless of the leader's returncode. An empty group
    raises ProcessLookupError, which is an expected race.
    """

    pgid = _group_id(process)
    if pgid is None:
        return

    try:
        os.killpg(pgid, signum)
    except ProcessLookupError:
        return
    except PermissionError:
        # Group id reused by a process we do not own; fall back to the child itself.
        if process.returncode is not None:
            return
        try:
            os.kill(pgid, signum)
        except ProcessLookupError:
            return


def process_group_alive(process: ChildProcess) -> bool:
    """Return whether any member of the child's process group still exists."""

    pgid = _group_id(process)
    if pgid is None:
        return False
    try:
        os.killpg(pgid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return False
    return True
