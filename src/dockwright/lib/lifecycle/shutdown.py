"""Process-exit hooks: run registered callbacks on interpreter exit or SIGTERM."""

from __future__ import annotations

import atexit
import os
import signal
from collections.abc import Callable
from threading import Lock, RLock
from types import FrameType
from typing import cast

import structlog

logger = structlog.get_logger(__name__)

ShutdownCallback = Callable[[], None]


class ShutdownCoordinator:
    """Process-global fan-out of shutdown callbacks.

    `atexit` covers normal interpreter exit (including an uncaught
    KeyboardInterrupt). SIGTERM would otherwise kill the interpreter without
    running `atexit`, so a handler runs the callbacks first and then hands the
    signal to whatever handler was installed before.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._callbacks: list[ShutdownCallback] = []
        self._atexit_installed = False
        self._sigterm_installed = False
        self._previous_sigterm: signal.Handlers | None = None

    def register(self, callback: ShutdownCallback) -> None:
        with self._lock:
            if callback in self._callbacks:
                return
            self._callbacks.append(callback)
            self._ensure_hooks_installed_locked()

    def unregister(self, callback: ShutdownCallback) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    @property
    def sigterm_installed(self) -> bool:
        return self._sigterm_installed

    def run_callbacks(self) -> None:
        with self._lock:
            callbacks = tuple(self._callbacks)
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.warning("Shutdown callback failed.", exc_info=True)

    def _ensure_hooks_installed_locked(self) -> None:
        if not self._atexit_installed:
            atexit.register(self.run_callbacks)
            self._atexit_installed = True

        if self._sigterm_installed:
            return
        try:
            previous = cast("signal.Handlers", signal.getsignal(signal.SIGTERM))
            signal.signal(signal.SIGTERM, self._on_sigterm)
        except ValueError:
            # Signal handlers can only be changed from the main thread.
            logger.debug("SIGTERM hook not installed outside the main thread.")
            return
        self._previous_sigterm = previous
        self._sigterm_installed = True

    def _dispatch_previous_handler(self, frame: FrameType | None) -> None:
        previous = self._previous_sigterm
        if previous == signal.SIG_IGN:
            return
        if callable(previous):
            previous(signal.SIGTERM.value, frame)
            return
        # SIG_DFL or unknown: restore default semantics and re-deliver.
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        os.kill(os.getpid(), signal.SIGTERM)

    def _on_sigterm(self, raw_signum: int, frame: FrameType | None) -> None:
        _ = raw_signum
        logger.info("SIGTERM received, running shutdown hooks.")
        self.run_callbacks()
        self._dispatch_previous_handler(frame)


_COORDINATOR_LOCK = Lock()
_COORDINATOR: ShutdownCoordinator | None = None


def shutdown_coordinator() -> ShutdownCoordinator:
    """Return the process-global shutdown coordinator singleton."""

    global _COORDINATOR
    if _COORDINATOR is None:
        with _COORDINATOR_LOCK:
            if _COORDINATOR is None:
                _COORDINATOR = ShutdownCoordinator()
    return _COORDINATOR


def install_shutdown_hook(callback: ShutdownCallback) -> None:
    shutdown_coordinator().register(callback)
