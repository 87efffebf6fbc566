"""Error taxonomy for lifecycle operations.

Each error maps to a different remediation:
- ResourceValidationError: fix the configuration, never retried here
- SubmissionError: request rejected before a task existed, safe to retry
- TaskFailedError: remote task ran and failed, not retried automatically
- TaskTimeoutError: task outcome unknown, caller decides to re-poll or abort
- TransportError: communication failure, safe to retry

NotFound is deliberately absent: a missing remote object is a reconciliation
signal, converted into a state-clearing success by the reconciler.

All errors preserve the remote diagnostic text. Wrapping adds a prefix and
chains the original exception via ``raise ... from``.
"""

from __future__ import annotations


class ProviderError(Exception):
    """Base class for all lifecycle errors."""

    pass


class ResourceValidationError(ProviderError):
    """Raised when a desired resource cannot be translated into a request."""

    pass


class SubmissionError(ProviderError):
    """Raised when the remote system rejected a mutating request.

    No task was created, so nothing ran remotely.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TaskFailedError(ProviderError):
    """Raised when an accepted task reached a failed terminal state."""

    def __init__(
        self,
        message: str,
        task_href: str,
        status: str,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.task_href = task_href
        self.status = status
        self.operation = operation


class TaskTimeoutError(ProviderError, TimeoutError):
    """Raised when a task did not reach a terminal state in time.

    The task may still complete server-side. ``task_href`` allows the
    caller to resume waiting with TaskTracker.await_task().
    """

    def __init__(self, message: str, task_href: str, timeout_seconds: float) -> None:
        super().__init__(message)
        self.task_href = task_href
        self.timeout_seconds = timeout_seconds


class TransportError(ProviderError):
    """Raised on network, authentication or malformed-response failures."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        task_href: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.task_href = task_href
