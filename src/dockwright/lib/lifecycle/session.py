"""Session bookkeeping for resources created through dockwright.

A `Session` owns a short session id, the set of resource ids created during
this process lifetime, and the `LifecycleConfig` that governs cleanup at
shutdown. `get_session()` returns the process-wide instance; collaborators
that want isolation (tests, embedded tools) construct their own.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime
from threading import Lock, RLock

import structlog

from dockwright.lib.commands import (
    PS_LABEL_FORMAT,
    parse_label_string,
    ps_args,
    rm_args,
    stop_args,
)
from dockwright.lib.config.settings import LifecycleConfig, load_config
from dockwright.lib.exec.errors import (
    ClassifierHint,
    DockerError,
    ExecutionTimeout,
    InvalidConfiguration,
    ResourceKind,
)
from dockwright.lib.exec.executor import ProcessExecutor
from dockwright.lib.lifecycle.shutdown import ShutdownCallback, install_shutdown_hook
from dockwright.lib.types import ResourceId, SessionId

logger = structlog.get_logger(__name__)

LABEL_PREFIX = "io.github.dockwright"
LABEL_MANAGED = f"{LABEL_PREFIX}.managed"
LABEL_SESSION = f"{LABEL_PREFIX}.session"
LABEL_CREATED = f"{LABEL_PREFIX}.created"

SESSION_ID_LENGTH = 8
# Extra time granted to `stop` beyond its own --time before the executor gives up.
_STOP_TIMEOUT_SLACK_SECONDS = 10.0


def _new_session_id() -> str:
    return secrets.token_hex(SESSION_ID_LENGTH // 2)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def validate_lifecycle_config(config: LifecycleConfig) -> LifecycleConfig:
    """Reject ill-typed or non-positive values before they are installed."""

    for flag in ("enable_shutdown_hook", "cleanup_on_shutdown"):
        value = getattr(config, flag)
        if not isinstance(value, bool):
            raise InvalidConfiguration(
                f"{flag} must be a bool, got {type(value).__name__} ({value!r})."
            )
    timeout = config.shutdown_timeout_seconds
    if isinstance(timeout, bool) or not isinstance(timeout, int | float):
        raise InvalidConfiguration(
            "shutdown_timeout_seconds must be a number, got "
            f"{type(timeout).__name__} ({timeout!r})."
        )
    if timeout <= 0:
        raise InvalidConfiguration(f"shutdown_timeout_seconds must be > 0, got {timeout!r}.")
    return config


@dataclass(frozen=True, slots=True)
class ManagedContainer:
    """One container carrying the managed label, as reported by `ps`."""

    id: ResourceId
    names: str
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def session_id(self) -> str | None:
        return self.labels.get(LABEL_SESSION)


def parse_managed_containers(stdout: str) -> list[ManagedContainer]:
    containers: list[ManagedContainer] = []
    for line in stdout.splitlines():
        if not line.strip():
            continue
        container_id, _, rest = line.partition("\t")
        names, _, raw_labels = rest.partition("\t")
        containers.append(
            ManagedContainer(
                id=ResourceId(container_id.strip()),
                names=names.strip(),
                labels=parse_label_string(raw_labels),
            )
        )
    return containers


class Session:
    """Tracked resources and cleanup policy for one process lifetime."""

    def __init__(
        self,
        *,
        executor: ProcessExecutor | None = None,
        config: LifecycleConfig | None = None,
        clock: Callable[[], datetime] = _utc_now,
        id_factory: Callable[[], str] = _new_session_id,
        hook_installer: Callable[[ShutdownCallback], None] = install_shutdown_hook,
    ) -> None:
        self._lock = RLock()
        self._executor = executor
        self._config = validate_lifecycle_config(config or LifecycleConfig())
        self._clock = clock
        self._id_factory = id_factory
        self._hook_installer = hook_installer
        self._session_id: SessionId | None = None
        self._tracked: set[ResourceId] = set()
        self._hook_registered = False
        self._hook_ran = False

    @property
    def executor(self) -> ProcessExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ProcessExecutor()
            return self._executor

    @property
    def session_id(self) -> SessionId:
        with self._lock:
            if self._session_id is None:
                self._session_id = SessionId(self._id_factory())
                logger.debug("Generated session id.", session_id=self._session_id)
            return self._session_id

    @property
    def config(self) -> LifecycleConfig:
        with self._lock:
            return self._config

    @property
    def shutdown_hook_registered(self) -> bool:
        with self._lock:
            return self._hook_registered

    def managed_labels(self) -> dict[str, str]:
        """Labels that mark a resource as owned by this session."""

        return {
            LABEL_MANAGED: "true",
            LABEL_SESSION: self.session_id,
            LABEL_CREATED: self._clock().isoformat(),
        }

    def label_filter_args(self) -> tuple[str, ...]:
        return ("--filter", f"label={LABEL_MANAGED}=true")

    def configure(
        self,
        config: LifecycleConfig | None = None,
        **changes: object,
    ) -> LifecycleConfig:
        """Install a new configuration atomically.

        Pass a complete `LifecycleConfig`, keyword overrides applied to the
        current one, or both. Invalid input raises `InvalidConfiguration` and
        leaves the previous configuration in place.
        """

        known = {item.name for item in fields(LifecycleConfig)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise InvalidConfiguration(f"Unknown lifecycle option(s): {', '.join(unknown)}.")

        with self._lock:
            base = config if config is not None else self._config
            candidate = validate_lifecycle_config(replace(base, **changes))  # type: ignore[arg-type]
            self._config = candidate
            self._ensure_shutdown_hook_locked()
        logger.debug(
            "Lifecycle configured.",
            enable_shutdown_hook=candidate.enable_shutdown_hook,
            shutdown_timeout_seconds=candidate.shutdown_timeout_seconds,
            cleanup_on_shutdown=candidate.cleanup_on_shutdown,
        )
        return candidate

    def track(self, resource_id: str) -> None:
        normalized = resource_id.strip()
        if not normalized:
            raise InvalidConfiguration("Cannot track an empty resource id.")
        with self._lock:
            self._tracked.add(ResourceId(normalized))
            self._ensure_shutdown_hook_locked()
        logger.debug("Tracking resource.", resource_id=normalized)

    def untrack(self, resource_id: str) -> None:
        with self._lock:
            self._tracked.discard(ResourceId(resource_id.strip()))
        logger.debug("Untracked resource.", resource_id=resource_id)

    def tracked_resources(self) -> frozenset[ResourceId]:
        with self._lock:
            return frozenset(self._tracked)

    def _remove_resource(
        self,
        resource_id: str,
        *,
        force: bool,
        deadline: float | None = None,
    ) -> None:
        """Stop gracefully (best effort), then remove; `force` adds `rm --force`.

        With a `deadline` (a `time.monotonic()` value) the stop gets at most half
        of the time left and the removal gets the rest.
        """

        executor = self.executor
        hint = ClassifierHint(resource_kind=ResourceKind.CONTAINER, identifier=resource_id)
        grace = int(self.config.shutdown_timeout_seconds)
        stop_timeout = grace + _STOP_TIMEOUT_SLACK_SECONDS
        if deadline is not None:
            budget = self._time_left(deadline) / 2
            grace = min(grace, int(budget))
            stop_timeout = budget

        try:
            executor.run(
                *stop_args(resource_id, time_seconds=grace),
                timeout_seconds=stop_timeout,
                hint=hint,
            )
        except DockerError as error:
            logger.debug("Stop failed.", resource_id=resource_id, error=error.message)

        rm_timeout = None if deadline is None else self._time_left(deadline)
        executor.run(*rm_args(resource_id, force=force), timeout_seconds=rm_timeout, hint=hint)
        logger.debug("Removed resource.", resource_id=resource_id)

    def _time_left(self, deadline: float) -> float:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ExecutionTimeout(self.config.shutdown_timeout_seconds)
        return remaining

    def _cleanup_resources(
        self,
        resource_ids: Sequence[ResourceId],
        *,
        force: bool,
        deadline: float | None = None,
    ) -> int:
        cleaned = 0
        with structlog.contextvars.bound_contextvars(session_id=self.session_id):
            for index, resource_id in enumerate(resource_ids):
                if deadline is not None and time.monotonic() >= deadline:
                    logger.warning(
                        "Cleanup deadline passed; abandoning remaining resources.",
                        remaining=len(resource_ids) - index,
                    )
                    break
                try:
                    self._remove_resource(resource_id, force=force, deadline=deadline)
                except DockerError as error:
                    logger.warning(
                        "Failed to clean up resource.",
                        resource_id=resource_id,
                        error=error.message,
                        retryable=error.retryable,
                    )
                else:
                    cleaned += 1
                finally:
                    self.untrack(resource_id)
        return cleaned

    def cleanup_all(self, *, force: bool = True) -> int:
        """Remove every tracked resource; return how many removals succeeded.

        Works on a snapshot, so concurrent track/untrack calls are safe. Each
        resource is untracked whether or not its removal succeeded.
        """

        snapshot = sorted(self.tracked_resources())
        if not snapshot:
            logger.debug("No tracked resources to clean up.")
            return 0

        logger.info("Cleaning up tracked resources.", count=len(snapshot))
        return self._cleanup_resources(snapshot, force=force)

    def list_managed_containers(self) -> list[ManagedContainer]:
        """All containers carrying the managed label, from any session."""

        try:
            result = self.executor.run(
                *ps_args(
                    all_containers=True,
                    filters=(f"label={LABEL_MANAGED}=true",),
                    format_template=PS_LABEL_FORMAT,
                )
            )
        except DockerError as error:
            logger.warning("Failed to list managed containers.", error=error.message)
            return []
        return parse_managed_containers(result.stdout)

    def cleanup(
        self,
        predicate: Callable[[ManagedContainer], bool],
        *,
        force: bool = True,
    ) -> int:
        """Remove managed containers selected by `predicate`; return the success count."""

        selected = [container for container in self.list_managed_containers() if predicate(container)]
        if not selected:
            logger.debug("No managed containers match the cleanup predicate.")
            return 0

        logger.info("Cleaning up managed containers.", count=len(selected))
        cleaned = 0
        for container in selected:
            try:
                self._remove_resource(container.id, force=force)
            except DockerError as error:
                logger.warning(
                    "Failed to clean up container.",
                    resource_id=container.id,
                    error=error.message,
                )
                continue
            self.untrack(container.id)
            cleaned += 1
        return cleaned

    def cleanup_orphans(self, *, force: bool = True) -> int:
        """Remove managed containers left behind by other (earlier) sessions."""

        current = self.session_id
        return self.cleanup(
            lambda container: container.session_id is not None
            and container.session_id != current,
            force=force,
        )

    def _ensure_shutdown_hook_locked(self) -> None:
        if self._hook_registered or not self._config.enable_shutdown_hook:
            return
        self._hook_installer(self.run_shutdown_hook)
        self._hook_registered = True
        logger.debug("Registered shutdown hook.")

    def run_shutdown_hook(self) -> None:
        """Best-effort cleanup bounded by `shutdown_timeout_seconds`; runs at most once.

        Runs on the calling thread: atexit callbacks cannot start threads during
        interpreter finalization, and a SIGTERM handler may interrupt the main
        thread while it already holds the session lock.
        """

        with self._lock:
            if self._hook_ran:
                return
            self._hook_ran = True
            config = self._config
            snapshot = sorted(self._tracked)

        if not config.enable_shutdown_hook or not config.cleanup_on_shutdown or not snapshot:
            return

        logger.info("Process shutdown, cleaning up tracked resources.", count=len(snapshot))
        deadline = time.monotonic() + config.shutdown_timeout_seconds
        self._cleanup_resources(snapshot, force=True, deadline=deadline)

    def reset(self) -> None:
        """Clear tracked resources, restore defaults and drop the session id.

        Intended for tests. An already-registered shutdown hook stays registered.
        """

        with self._lock:
            self._tracked.clear()
            self._config = LifecycleConfig()
            self._session_id = None
            self._hook_ran = False


_SESSION_LOCK = Lock()
_SESSION: Session | None = None


def get_session() -> Session:
    """Return the process-wide session, creating it from loaded config on first use."""

    global _SESSION
    if _SESSION is None:
        with _SESSION_LOCK:
            if _SESSION is None:
                loaded = load_config()
                _SESSION = Session(
                    executor=ProcessExecutor.from_config(loaded),
                    config=loaded.lifecycle,
                )
    return _SESSION
