"""Container runtime detection and per-runtime command support."""

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Callable, Sequence
from enum import StrEnum

import structlog

logger = structlog.get_logger(__name__)

_VERSION_CHECK_TIMEOUT_SECONDS = 10.0

# Command prefixes podman does not implement (no swarm mode, no buildx builders).
_PODMAN_UNSUPPORTED: frozenset[tuple[str, ...]] = frozenset(
    {
        ("builder", "create"),
        ("builder", "inspect"),
        ("builder", "ls"),
        ("builder", "rm"),
        ("builder", "stop"),
        ("builder", "use"),
        ("node",),
        ("service",),
        ("stack",),
        ("swarm",),
    }
)


class ContainerRuntime(StrEnum):
    DOCKER = "docker"
    PODMAN = "podman"

    @property
    def command(self) -> str:
        return self.value

    def supports(self, args: Sequence[str]) -> bool:
        """Return whether this runtime implements the subcommand that `args` starts with."""

        if self is not ContainerRuntime.PODMAN:
            return True
        positional = tuple(arg for arg in args if not arg.startswith("-"))
        return not any(
            positional[: len(prefix)] == prefix for prefix in _PODMAN_UNSUPPORTED
        )


def _responds(command: Sequence[str]) -> bool:
    try:
        completed = subprocess.run(
            list(command),
            capture_output=True,
            check=False,
            timeout=_VERSION_CHECK_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.SubprocessError):
        return False
    return completed.returncode == 0


def detect_runtime(
    *,
    which: Callable[[str], str | None] = shutil.which,
    check: Callable[[Sequence[str]], bool] = _responds,
) -> ContainerRuntime:
    """Prefer a working podman installation, otherwise fall back to docker."""

    if which("podman") is not None and check(("podman", "version")):
        logger.debug("Detected container runtime.", runtime="podman")
        return ContainerRuntime.PODMAN
    logger.debug("Detected container runtime.", runtime="docker")
    return ContainerRuntime.DOCKER
