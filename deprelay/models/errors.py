"""Error taxonomy for the release propagation pipeline."""


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""

    kind = "PipelineError"

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class MalformedEvent(PipelineError):
    """A raw notification could not be normalized."""

    kind = "MalformedEvent"


class LaunchError(PipelineError):
    """The execution environment was unreachable or out of capacity."""

    kind = "LaunchError"


class WorkerError(PipelineError):
    """Terminal failure of a single worker execution."""

    kind = "WorkerError"


class CloneError(WorkerError):
    kind = "CloneError"


class DependencyNotFound(WorkerError):
    kind = "DependencyNotFound"


class PushConflict(WorkerError):
    kind = "PushConflict"


class PushError(WorkerError):
    kind = "PushError"


class PullRequestError(WorkerError):
    kind = "PullRequestError"


class WorkerTimeoutError(WorkerError, TimeoutError):
    kind = "TimeoutError"


class ExecutionCancelled(WorkerError):
    kind = "ExecutionCancelled"


class NotificationError(PipelineError):
    """A build failure notification could not be delivered to subscribers."""

    kind = "NotificationError"
