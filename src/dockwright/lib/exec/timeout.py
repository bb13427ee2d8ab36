"""Timeout enforcement for runtime subprocesses."""

from __future__ import annotations

import asyncio
import signal
import subprocess

from dockwright.lib.config.settings import DockwrightConfig
from dockwright.lib.exec.errors import ExecutionTimeout, InvalidConfiguration
from dockwright.lib.exec.process_groups import process_group_alive, signal_process_group

DEFAULT_KILL_GRACE_SECONDS = DockwrightConfig().kill_grace_seconds
_GROUP_POLL_INTERVAL_SECONDS = 0.05


def validate_timeout(timeout_seconds: float | None) -> float | None:
    if timeout_seconds is not None and timeout_seconds <= 0:
        raise InvalidConfiguration(
            f"timeout_seconds must be > 0 when provided, got {timeout_seconds!r}."
        )
    return timeout_seconds


async def _wait_for_group_exit(process: asyncio.subprocess.Process) -> None:
    await process.wait()
    while process_group_alive(process):
        await asyncio.sleep(_GROUP_POLL_INTERVAL_SECONDS)


async def terminate_process(
    process: asyncio.subprocess.Process,
    *,
    grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
) -> None:
    """Send SIGTERM to the process group, escalating to SIGKILL after grace.

    The whole group is waited on, not just the leader, so descendants that
    outlive the runtime process are terminated too.
    """

    signal_process_group(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(_wait_for_group_exit(process), timeout=grace_seconds)
    except TimeoutError:
        signal_process_group(process, signal.SIGKILL)
        await process.wait()


def _close_pipes(process: subprocess.Popen[bytes]) -> None:
    for stream in (process.stdout, process.stderr):
        if stream is not None:
            stream.close()


def terminate_process_blocking(
    process: subprocess.Popen[bytes],
    *,
    grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
) -> None:
    """Blocking twin of `terminate_process`; also drains and closes the pipes.

    Never blocks much longer than twice `grace_seconds`, even when a member
    of the group escaped into its own session and keeps the pipes open.
    """

    signal_process_group(process, signal.SIGTERM)
    try:
        process.communicate(timeout=grace_seconds)
        return
    except subprocess.TimeoutExpired:
        signal_process_group(process, signal.SIGKILL)

    try:
        process.communicate(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        _close_pipes(process)
        process.wait()


async def wait_for_completion(
    process: asyncio.subprocess.Process,
    stdout_task: asyncio.Task[bytes],
    stderr_task: asyncio.Task[bytes],
    *,
    timeout_seconds: float | None,
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
) -> tuple[int, bytes, bytes]:
    """Wait for exit and both pipe drains under one deadline.

    A child can exit while a descendant still holds its pipes open, so the
    deadline covers reaching EOF on both streams, not only the exit. On
    timeout the group is terminated and partial output is discarded.
    """

    completion = asyncio.gather(process.wait(), stdout_task, stderr_task)
    if validate_timeout(timeout_seconds) is None:
        return_code, stdout_bytes, stderr_bytes = await completion
        return return_code, stdout_bytes, stderr_bytes

    try:
        return_code, stdout_bytes, stderr_bytes = await asyncio.wait_for(
            completion, timeout=timeout_seconds
        )
    except TimeoutError as exc:
        await terminate_process(process, grace_seconds=kill_grace_seconds)
        raise ExecutionTimeout(timeout_seconds) from exc
    return return_code, stdout_bytes, stderr_bytes
