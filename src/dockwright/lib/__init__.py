"""Core dockwright library exports."""

from dockwright.lib.exec import (
    DockerError,
    ExecutionRequest,
    ExecutionResult,
    ProcessExecutor,
)
from dockwright.lib.lifecycle import Session, get_session
from dockwright.lib.types import ResourceId, SessionId

__all__ = [
    "DockerError",
    "ExecutionRequest",
    "ExecutionResult",
    "ProcessExecutor",
    "ResourceId",
    "Session",
    "SessionId",
    "get_session",
]
