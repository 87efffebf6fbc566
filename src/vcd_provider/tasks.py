"""Asynchronous task tracking.

vCD answers every mutating request with a Task. Tracking is split in two
phases so callers can tell "my request was malformed" apart from "my
request was accepted but failed remotely":

1. Submission: the blocking SDK call runs in the default executor. A
   rejected request raises SubmissionError; no task exists.
2. Await: the task is polled through an azure-core AsyncLROPoller driven by
   TaskPollingMethod, with bounded exponential backoff between polls. The
   wait is bounded by ``asyncio.wait_for`` and can be cancelled.

Outcomes of the await phase:
- success -> the task owner's href (the RemoteLocator)
- error/aborted/canceled -> TaskFailedError with the remote message
- no terminal state in time -> TaskTimeoutError (outcome unknown)
- polling transport failure -> TransportError carrying the task href

A failed task is never retried here: repeating a remote mutation risks
duplicate side effects.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from azure.core.exceptions import (
    AzureError,
    DecodeError,
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.core.polling import AsyncLROPoller, AsyncPollingMethod

from .context import ProviderContext
from .entities import Task, TaskState
from .errors import SubmissionError, TaskFailedError, TaskTimeoutError, TransportError

logger = logging.getLogger(__name__)

# Backoff multiplier between consecutive polls
POLL_BACKOFF_FACTOR = 2.0


def _final_task(task: Task) -> Task:
    return task


class TaskPollingMethod(AsyncPollingMethod):
    """Poll a vCD task until it reaches a terminal status.

    The delay starts at ``initial_delay`` and doubles up to ``max_delay``.
    """

    def __init__(self, *, initial_delay: float = 1.0, max_delay: float = 10.0) -> None:
        self._initial_delay = initial_delay
        self._max_delay = max_delay
        self._client: Any = None
        self._task: Task | None = None
        self._deserialize: Callable[[Task], Any] = _final_task
        self.poll_count = 0

    def initialize(
        self,
        client: Any,
        initial_response: Task,
        deserialization_callback: Callable[[Task], Any],
    ) -> None:
        self._client = client
        self._task = initial_response
        self._deserialize = deserialization_callback

    @property
    def task(self) -> Task:
        if self._task is None:
            raise RuntimeError("TaskPollingMethod used before initialize()")
        return self._task

    async def run(self) -> None:
        """Poll until terminal.

        Raises:
            TaskFailedError: If the task finished unsuccessfully.
            AzureError: If a poll request fails.
        """
        loop = asyncio.get_running_loop()
        delay = self._initial_delay

        while not self.task.is_terminal:
            await asyncio.sleep(delay)
            self._task = await loop.run_in_executor(None, self._client.get_task, self.task.href)
            self.poll_count += 1
            logger.debug(
                "Polled task",
                extra={
                    "task_href": self.task.href,
                    "status": self.task.status,
                    "poll_count": self.poll_count,
                },
            )
            delay = min(delay * POLL_BACKOFF_FACTOR, self._max_delay)

        if self.task.state == TaskState.FAILED:
            message = self.task.error_message or (
                f"Task {self.task.operation_name or self.task.href} ended with "
                f"status '{self.task.status}'"
            )
            raise TaskFailedError(
                message,
                task_href=self.task.href,
                status=self.task.status,
                operation=self.task.operation_name,
            )

    def status(self) -> str:
        return self.task.status

    def finished(self) -> bool:
        return self.task.is_terminal

    def resource(self) -> Any:
        return self._deserialize(self.task)

    def get_continuation_token(self) -> str:
        return self.task.href

    @classmethod
    def from_continuation_token(
        cls, continuation_token: str, **kwargs: Any
    ) -> tuple[Any, Task, Callable[[Task], Any]]:
        try:
            client = kwargs["client"]
        except KeyError as e:
            raise ValueError("Need kwarg 'client' to resume a task from its href") from e
        # Status is unknown until the first poll
        task = Task(href=continuation_token, status="running")
        return client, task, kwargs.get("deserialization_callback", _final_task)


class TaskTracker:
    """Submit mutating calls and await the tasks they return."""

    def __init__(
        self,
        client: Any,
        *,
        timeout_seconds: float = 600,
        poll_initial_seconds: float = 1.0,
        poll_max_seconds: float = 10.0,
    ) -> None:
        self._client = client
        self._timeout_seconds = timeout_seconds
        self._poll_initial_seconds = poll_initial_seconds
        self._poll_max_seconds = poll_max_seconds

    @classmethod
    def from_context(cls, context: ProviderContext) -> TaskTracker:
        return cls(
            context.client,
            timeout_seconds=context.task_timeout_seconds,
            poll_initial_seconds=context.task_poll_initial_seconds,
            poll_max_seconds=context.task_poll_max_seconds,
        )

    def _polling_method(self) -> TaskPollingMethod:
        return TaskPollingMethod(
            initial_delay=self._poll_initial_seconds,
            max_delay=self._poll_max_seconds,
        )

    async def submit(self, submit: Callable[[], Task], description: str) -> Task:
        """Run the blocking submission call.

        Raises:
            SubmissionError: If vCD rejected the request or it was never sent.
            TransportError: If the request was sent but the outcome is unknown.
        """
        loop = asyncio.get_running_loop()
        try:
            task = await loop.run_in_executor(None, submit)
        except DecodeError as e:
            # The request was accepted but the task handle is unreadable
            raise TransportError(
                f"{description}: unreadable submission response: {e.message}",
                status_code=e.status_code,
            ) from e
        except HttpResponseError as e:
            logger.debug(
                "Submission rejected",
                extra={"operation": description, "status_code": e.status_code},
            )
            raise SubmissionError(f"{description} rejected: {e.message}", e.status_code) from e
        except ServiceRequestError as e:
            raise SubmissionError(f"{description} could not be sent: {e.message}") from e
        except ServiceResponseError as e:
            raise TransportError(f"{description}: no response to submission: {e.message}") from e
        except AzureError as e:
            raise TransportError(f"{description}: {e.message}") from e

        logger.info(
            "Task submitted",
            extra={
                "operation": description,
                "task_href": task.href,
                "owner_href": task.owner_href,
                "status": task.status,
            },
        )
        return task

    async def await_task(
        self,
        task: Task | str,
        *,
        description: str,
        timeout_seconds: float | None = None,
    ) -> Task:
        """Block the calling coroutine until the task is terminal.

        Args:
            task: The submitted task, or a task href to resume waiting on.
            description: Human-readable operation name for logs and errors.
            timeout_seconds: Overrides the tracker default.

        Returns:
            The final (successful) task.

        Raises:
            TaskFailedError: If the task ended unsuccessfully.
            TaskTimeoutError: If the task did not finish in time.
            TransportError: If polling failed.
        """
        timeout = timeout_seconds if timeout_seconds is not None else self._timeout_seconds
        polling_method = self._polling_method()

        if isinstance(task, str):
            poller = AsyncLROPoller.from_continuation_token(
                polling_method, task, client=self._client
            )
        else:
            poller = AsyncLROPoller(self._client, task, _final_task, polling_method)

        task_href = polling_method.get_continuation_token()

        try:
            return await asyncio.wait_for(poller.result(), timeout=timeout)
        except TimeoutError as e:
            logger.error(
                f"{description} timed out",
                extra={"task_href": task_href, "timeout_seconds": timeout},
            )
            raise TaskTimeoutError(
                f"{description}: task {task_href} did not finish within {timeout}s",
                task_href=task_href,
                timeout_seconds=timeout,
            ) from e
        except TaskFailedError as e:
            logger.error(
                f"{description} failed",
                extra={"task_href": task_href, "status": e.status, "error": str(e)},
            )
            raise
        except AzureError as e:
            raise TransportError(
                f"{description}: polling task {task_href} failed: {e.message}",
                status_code=getattr(e, "status_code", None),
                task_href=task_href,
            ) from e

    async def submit_and_await(
        self,
        submit: Callable[[], Task],
        *,
        description: str,
        timeout_seconds: float | None = None,
    ) -> str:
        """Submit a mutating call and wait for its task.

        Returns:
            The href of the object the task acted on.
        """
        task = await self.submit(submit, description)
        final = await self.await_task(
            task, description=description, timeout_seconds=timeout_seconds
        )
        locator = final.owner_href or task.owner_href or ""
        logger.info(
            "Task completed",
            extra={"operation": description, "task_href": final.href, "owner_href": locator},
        )
        return locator
