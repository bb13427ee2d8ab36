"""Typed failure taxonomy for container runtime invocations.

Every failure surfaced by the executor is exactly one `DockerError` subclass.
Each variant carries only the payload needed to explain it, and `retryable`
is derived from the variant and that payload alone.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

MESSAGE_EXCERPT_LIMIT = 200

DEFAULT_TRANSIENT_MARKERS: tuple[str, ...] = (
    "connection refused",
    "toomanyrequests",
    "rate limit",
    "503",
    "service unavailable",
    "network is unreachable",
    "port is already allocated",
    "connection timed out",
    "i/o timeout",
    "tls handshake timeout",
)

_NOT_FOUND_MARKERS: tuple[str, ...] = (
    "no such container",
    "no such image",
    "no such network",
    "no such volume",
    "not found",
)

_DAEMON_MARKERS: tuple[str, ...] = (
    "cannot connect to the docker daemon",
    "is the docker daemon running",
    "cannot connect to podman",
)


class ResourceKind(StrEnum):
    CONTAINER = "container"
    IMAGE = "image"
    NETWORK = "network"
    VOLUME = "volume"


def normalize_markers(markers: Iterable[str]) -> tuple[str, ...]:
    """Lower-case, strip and de-duplicate markers, keeping first-seen order."""

    normalized: list[str] = []
    for marker in markers:
        candidate = marker.strip().lower()
        if candidate and candidate not in normalized:
            normalized.append(candidate)
    return tuple(normalized)


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    normalized = text.lower()
    return any(marker in normalized for marker in markers)


def diagnostic_text(stdout: str, stderr: str) -> str:
    """Pick the stream that explains a failure: stderr, else stdout."""

    if stderr.strip():
        return stderr
    return stdout


def is_transient(text: str, markers: Iterable[str] = DEFAULT_TRANSIENT_MARKERS) -> bool:
    """Return whether diagnostic text names a transient network/service condition."""

    return _contains_any(text, normalize_markers(markers))


class DockerError(Exception):
    """Base class for all classified runtime failures."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return False


class ExecutableNotFound(DockerError):
    """The runtime binary is not on the search path."""

    def __init__(self, executable: str) -> None:
        self.executable = executable
        super().__init__(f"Executable '{executable}' not found in PATH")


class DaemonUnavailable(DockerError):
    """The daemon backing the runtime cannot be reached."""

    def __init__(self, message: str = "Container daemon is not running") -> None:
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return True


class CommandFailed(DockerError):
    """The runtime ran and exited non-zero."""

    def __init__(
        self,
        command: str,
        exit_code: int,
        stdout: str,
        stderr: str,
        *,
        transient_markers: Iterable[str] = DEFAULT_TRANSIENT_MARKERS,
    ) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.transient_markers = normalize_markers(transient_markers)

        excerpt = diagnostic_text(stdout, stderr).strip()[:MESSAGE_EXCERPT_LIMIT]
        message = f"Command '{command}' failed with exit code {exit_code}"
        if excerpt:
            message = f"{message}: {excerpt}"
        super().__init__(message)

    @property
    def diagnostic(self) -> str:
        return diagnostic_text(self.stdout, self.stderr)

    @property
    def retryable(self) -> bool:
        text = self.diagnostic
        if not text.strip():
            return False
        return _contains_any(text, self.transient_markers)


class ExecutionTimeout(DockerError, TimeoutError):
    """The runtime did not finish within the allotted time."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Command timed out after {timeout_seconds:.3f}s")

    @property
    def retryable(self) -> bool:
        return True


class ResourceNotFound(DockerError):
    """A container, image, network or volume lookup failed."""

    kind: ResourceKind

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"{self.kind.value.capitalize()} not found: {identifier}")


class ContainerNotFound(ResourceNotFound):
    kind = ResourceKind.CONTAINER


class ImageNotFound(ResourceNotFound):
    kind = ResourceKind.IMAGE


class NetworkNotFound(ResourceNotFound):
    kind = ResourceKind.NETWORK


class VolumeNotFound(ResourceNotFound):
    kind = ResourceKind.VOLUME


_NOT_FOUND_BY_KIND: dict[ResourceKind, type[ResourceNotFound]] = {
    ResourceKind.CONTAINER: ContainerNotFound,
    ResourceKind.IMAGE: ImageNotFound,
    ResourceKind.NETWORK: NetworkNotFound,
    ResourceKind.VOLUME: VolumeNotFound,
}


def resource_not_found(kind: ResourceKind, identifier: str) -> ResourceNotFound:
    """Build the not-found variant for one resource kind."""

    return _NOT_FOUND_BY_KIND[ResourceKind(kind)](identifier)


class InvalidConfiguration(DockerError):
    """Caller-supplied options contradict each other; nothing was spawned."""


class UnsupportedOperation(DockerError):
    """The active runtime does not implement the requested command."""

    def __init__(self, command: str, runtime: str) -> None:
        self.command = command
        self.runtime = runtime
        super().__init__(f"Command '{command}' is not supported by {runtime}")


class GenericDockerError(DockerError):
    """Catch-all for failures that fit no other variant."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause


@dataclass(frozen=True, slots=True)
class ClassifierHint:
    """Caller knowledge used to refine a non-zero exit into a specific variant."""

    resource_kind: ResourceKind | None = None
    identifier: str | None = None
    detect_daemon: bool = True


def classify_failure(
    *,
    command: str,
    exit_code: int,
    stdout: str,
    stderr: str,
    hint: ClassifierHint | None = None,
    transient_markers: Iterable[str] = DEFAULT_TRANSIENT_MARKERS,
) -> DockerError:
    """Classify one non-zero runtime exit into exactly one error variant."""

    if hint is not None:
        text = diagnostic_text(stdout, stderr)
        if hint.detect_daemon and _contains_any(text, _DAEMON_MARKERS):
            excerpt = text.strip()[:MESSAGE_EXCERPT_LIMIT]
            return DaemonUnavailable(excerpt or "Container daemon is not running")
        if (
            hint.resource_kind is not None
            and hint.identifier is not None
            and _contains_any(text, _NOT_FOUND_MARKERS)
        ):
            return resource_not_found(hint.resource_kind, hint.identifier)

    return CommandFailed(
        command,
        exit_code,
        stdout,
        stderr,
        transient_markers=transient_markers,
    )
