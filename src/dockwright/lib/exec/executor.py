"""Blocking and asyncio execution of container runtime commands."""

from __future__ import annotations

import asyncio
import os
import shlex
import shutil
import signal
import subprocess
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

import structlog

from dockwright.lib.config.settings import DockwrightConfig
from dockwright.lib.exec.errors import (
    DEFAULT_TRANSIENT_MARKERS,
    ClassifierHint,
    DockerError,
    ExecutableNotFound,
    ExecutionTimeout,
    GenericDockerError,
    InvalidConfiguration,
    UnsupportedOperation,
    classify_failure,
    normalize_markers,
)
from dockwright.lib.exec.runtime import ContainerRuntime
from dockwright.lib.exec.timeout import (
    DEFAULT_KILL_GRACE_SECONDS,
    terminate_process,
    terminate_process_blocking,
    validate_timeout,
    wait_for_completion,
)

_DEFAULT_CONFIG = DockwrightConfig()
DEFAULT_TIMEOUT_SECONDS = _DEFAULT_CONFIG.default_timeout_seconds
logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """One runtime invocation: arguments without the binary, plus overrides."""

    args: tuple[str, ...]
    timeout_seconds: float | None = None
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    hint: ClassifierHint | None = None


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Captured output of one runtime invocation that exited zero."""

    command: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    elapsed_seconds: float

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def stdout_lines(self) -> list[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]

    def stderr_lines(self) -> list[str]:
        return [line for line in self.stderr.splitlines() if line.strip()]


def normalize_exit_code(raw_return_code: int) -> int:
    """Map a negative "killed by signal N" return code to the shell's 128+N."""

    if raw_return_code >= 0:
        return raw_return_code
    try:
        signum = signal.Signals(-raw_return_code)
    except ValueError:
        return 1
    return 128 + int(signum)


def _decode(payload: bytes) -> str:
    return payload.decode("utf-8", errors="replace")


async def _drain(reader: asyncio.StreamReader | None) -> bytes:
    if reader is None:
        return b""
    return await reader.read()


class ProcessExecutor:
    """Spawn the runtime binary and turn each invocation into a result or a DockerError.

    Holds no per-call state, so one instance can serve concurrent callers.
    Retries are never attempted here; callers decide based on `retryable`.
    """

    def __init__(
        self,
        *,
        binary: str = "docker",
        default_timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
        transient_markers: Iterable[str] = (),
        env: Mapping[str, str] | None = None,
        runtime: ContainerRuntime | None = None,
    ) -> None:
        if not binary.strip():
            raise InvalidConfiguration("binary must be a non-empty string.")
        if kill_grace_seconds <= 0:
            raise InvalidConfiguration("kill_grace_seconds must be > 0.")
        self._binary = binary
        self._default_timeout_seconds = validate_timeout(default_timeout_seconds)
        self._kill_grace_seconds = kill_grace_seconds
        self._transient_markers = normalize_markers(
            (*DEFAULT_TRANSIENT_MARKERS, *transient_markers)
        )
        self._env = dict(env) if env is not None else None
        self._runtime = runtime

    @classmethod
    def from_config(
        cls,
        config: DockwrightConfig,
        *,
        runtime: ContainerRuntime | None = None,
    ) -> ProcessExecutor:
        return cls(
            binary=config.binary,
            default_timeout_seconds=config.default_timeout_seconds,
            kill_grace_seconds=config.kill_grace_seconds,
            transient_markers=config.transient_markers,
            runtime=runtime,
        )

    @property
    def binary(self) -> str:
        return self._binary

    @property
    def runtime(self) -> ContainerRuntime | None:
        return self._runtime

    @property
    def transient_markers(self) -> tuple[str, ...]:
        return self._transient_markers

    def resolve_binary(self) -> str:
        """Locate the runtime binary on PATH without spawning anything."""

        resolved = shutil.which(self._binary)
        if resolved is None:
            raise ExecutableNotFound(self._binary)
        return resolved

    def supports(self, args: Iterable[str]) -> bool:
        if self._runtime is None:
            return True
        return self._runtime.supports(tuple(args))

    def ensure_supported(self, args: Iterable[str]) -> None:
        arg_tuple = tuple(args)
        runtime = self._runtime
        if runtime is None or runtime.supports(arg_tuple):
            return
        subcommand = " ".join(arg for arg in arg_tuple[:2] if not arg.startswith("-"))
        raise UnsupportedOperation(subcommand, runtime.value)

    def display_command(self, request: ExecutionRequest) -> str:
        return " ".join((self._binary, *request.args))

    def preview(self, request: ExecutionRequest) -> str:
        """Shell-quoted command line that `execute` would run."""

        return shlex.join((self._binary, *request.args))

    def run(
        self,
        *args: str,
        timeout_seconds: float | None = None,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        hint: ClassifierHint | None = None,
    ) -> ExecutionResult:
        return self.execute(
            ExecutionRequest(
                args=tuple(args),
                timeout_seconds=timeout_seconds,
                cwd=cwd,
                env=env,
                hint=hint,
            )
        )

    async def run_async(
        self,
        *args: str,
        timeout_seconds: float | None = None,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        hint: ClassifierHint | None = None,
    ) -> ExecutionResult:
        return await self.execute_async(
            ExecutionRequest(
                args=tuple(args),
                timeout_seconds=timeout_seconds,
                cwd=cwd,
                env=env,
                hint=hint,
            )
        )

    def _prepare(self, request: ExecutionRequest) -> tuple[tuple[str, ...], float | None]:
        if not request.args:
            raise InvalidConfiguration("Cannot execute runtime command: args are empty.")
        if request.cwd is not None and not request.cwd.is_dir():
            raise InvalidConfiguration(f"Working directory does not exist: {request.cwd}")

        timeout_seconds = (
            request.timeout_seconds
            if request.timeout_seconds is not None
            else self._default_timeout_seconds
        )
        validate_timeout(timeout_seconds)

        resolved = self.resolve_binary()
        self.ensure_supported(request.args)
        return (resolved, *request.args), timeout_seconds

    def _child_env(self, request: ExecutionRequest) -> dict[str, str] | None:
        if self._env is None and request.env is None:
            return None
        merged = dict(os.environ)
        if self._env is not None:
            merged.update(self._env)
        if request.env is not None:
            merged.update(request.env)
        return merged

    def _finish(
        self,
        *,
        request: ExecutionRequest,
        command: tuple[str, ...],
        raw_return_code: int,
        stdout_bytes: bytes,
        stderr_bytes: bytes,
        started: float,
    ) -> ExecutionResult:
        elapsed_seconds = time.monotonic() - started
        exit_code = normalize_exit_code(raw_return_code)
        stdout = _decode(stdout_bytes)
        stderr = _decode(stderr_bytes)
        logger.debug(
            "Runtime command completed.",
            command=self.display_command(request),
            exit_code=exit_code,
            elapsed_seconds=round(elapsed_seconds, 3),
        )

        if exit_code != 0:
            raise classify_failure(
                command=self.display_command(request),
                exit_code=exit_code,
                stdout=stdout,
                stderr=stderr,
                hint=request.hint,
                transient_markers=self._transient_markers,
            )

        return ExecutionResult(
            command=command,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            elapsed_seconds=elapsed_seconds,
        )

    def _spawn_failed(self, request: ExecutionRequest, error: OSError) -> DockerError:
        if isinstance(error, FileNotFoundError):
            return ExecutableNotFound(self._binary)
        return GenericDockerError(
            f"Failed to spawn '{self.display_command(request)}': {error}",
            error,
        )

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run one command, blocking the calling thread until it exits or times out."""

        command, timeout_seconds = self._prepare(request)
        logger.debug("Executing runtime command.", command=self.display_command(request))

        started = time.monotonic()
        try:
            process = subprocess.Popen(
                command,
                cwd=str(request.cwd) if request.cwd is not None else None,
                env=self._child_env(request),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as error:
            raise self._spawn_failed(request, error) from error

        try:
            stdout_bytes, stderr_bytes = process.communicate(timeout=timeout_seconds)
        except subprocess.TimeoutExpired as exc:
            terminate_process_blocking(process, grace_seconds=self._kill_grace_seconds)
            logger.warning(
                "Runtime command timed out.",
                command=self.display_command(request),
                timeout_seconds=exc.timeout,
            )
            raise ExecutionTimeout(exc.timeout) from exc
        except BaseException:
            terminate_process_blocking(process, grace_seconds=self._kill_grace_seconds)
            raise

        return self._finish(
            request=request,
            command=command,
            raw_return_code=process.returncode,
            stdout_bytes=stdout_bytes,
            stderr_bytes=stderr_bytes,
            started=started,
        )

    async def execute_async(self, request: ExecutionRequest) -> ExecutionResult:
        """Run one command, suspending until exit plus EOF on both pipes, or timeout."""

        command, timeout_seconds = self._prepare(request)
        logger.debug("Executing runtime command.", command=self.display_command(request))

        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(request.cwd) if request.cwd is not None else None,
                env=self._child_env(request),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as error:
            raise self._spawn_failed(request, error) from error

        # Both pipes drain concurrently so a chatty child never blocks on a full buffer.
        stdout_task = asyncio.create_task(_drain(process.stdout))
        stderr_task = asyncio.create_task(_drain(process.stderr))
        try:
            raw_return_code, stdout_bytes, stderr_bytes = await wait_for_completion(
                process,
                stdout_task,
                stderr_task,
                timeout_seconds=timeout_seconds,
                kill_grace_seconds=self._kill_grace_seconds,
            )
        except ExecutionTimeout:
            await asyncio.gather(stdout_task, stderr_task, return_exceptions=True)
            logger.warning(
                "Runtime command timed out.",
                command=self.display_command(request),
                timeout_seconds=timeout_seconds,
            )
            raise
        except asyncio.CancelledError:
            await terminate_process(process, grace_seconds=self._kill_grace_seconds)
            await asyncio.gather(stdout_task, stderr_task, return_exceptions=True)
            raise

        return self._finish(
            request=request,
            command=command,
            raw_return_code=raw_return_code,
            stdout_bytes=stdout_bytes,
            stderr_bytes=stderr_bytes,
            started=started,
        )
