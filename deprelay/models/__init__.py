"""Shared models for release propagation."""

from .events import (
    BUILD_FAILED,
    PUBLISHED,
    BuildFailedEvent,
    DispatchRequest,
    PackageFormat,
    ReleaseEvent,
    WorkerResult,
    WorkerState,
)

from .errors import (
    CloneError,
    DependencyNotFound,
    ExecutionCancelled,
    LaunchError,
    MalformedEvent,
    NotificationError,
    PipelineError,
    PullRequestError,
    PushConflict,
    PushError,
    WorkerError,
    WorkerTimeoutError,
)

__all__ = [
    # Event models
    "BUILD_FAILED",
    "PUBLISHED",
    "BuildFailedEvent",
    "DispatchRequest",
    "PackageFormat",
    "ReleaseEvent",
    "WorkerResult",
    "WorkerState",
    # Errors
    "CloneError",
    "DependencyNotFound",
    "ExecutionCancelled",
    "LaunchError",
    "MalformedEvent",
    "NotificationError",
    "PipelineError",
    "PullRequestError",
    "PushConflict",
    "PushError",
    "WorkerError",
    "WorkerTimeoutError",
]
