"""Execution engine primitives."""

from dockwright.lib.exec.errors import (
    DEFAULT_TRANSIENT_MARKERS,
    ClassifierHint,
    CommandFailed,
    ContainerNotFound,
    DaemonUnavailable,
    DockerError,
    ExecutableNotFound,
    ExecutionTimeout,
    GenericDockerError,
    ImageNotFound,
    InvalidConfiguration,
    NetworkNotFound,
    ResourceKind,
    ResourceNotFound,
    UnsupportedOperation,
    VolumeNotFound,
    classify_failure,
)
from dockwright.lib.exec.executor import ExecutionRequest, ExecutionResult, ProcessExecutor
from dockwright.lib.exec.retry import (
    ExponentialBackoff,
    FixedBackoff,
    LinearBackoff,
    RetryPolicy,
    call_with_retry,
    call_with_retry_async,
)
from dockwright.lib.exec.runtime import ContainerRuntime, detect_runtime

__all__ = [
    "DEFAULT_TRANSIENT_MARKERS",
    "ClassifierHint",
    "CommandFailed",
    "ContainerNotFound",
    "ContainerRuntime",
    "DaemonUnavailable",
    "DockerError",
    "ExecutableNotFound",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionTimeout",
    "ExponentialBackoff",
    "FixedBackoff",
    "GenericDockerError",
    "ImageNotFound",
    "InvalidConfiguration",
    "LinearBackoff",
    "NetworkNotFound",
    "ProcessExecutor",
    "ResourceKind",
    "ResourceNotFound",
    "RetryPolicy",
    "UnsupportedOperation",
    "VolumeNotFound",
    "call_with_retry",
    "call_with_retry_async",
    "classify_failure",
    "detect_runtime",
]
