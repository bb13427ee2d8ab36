"""Session tracking and shutdown cleanup."""

from dockwright.lib.lifecycle.session import (
    LABEL_CREATED,
    LABEL_MANAGED,
    LABEL_PREFIX,
    LABEL_SESSION,
    ManagedContainer,
    Session,
    get_session,
)
from dockwright.lib.lifecycle.shutdown import ShutdownCoordinator, shutdown_coordinator

__all__ = [
    "LABEL_CREATED",
    "LABEL_MANAGED",
    "LABEL_PREFIX",
    "LABEL_SESSION",
    "ManagedContainer",
    "Session",
    "ShutdownCoordinator",
    "get_session",
    "shutdown_coordinator",
]
