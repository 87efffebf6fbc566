"""Tests for task submission and awaiting."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from azure.core.exceptions import (
    DecodeError,
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
)
from vcd_mock import MockVcdClient, MockVcdState
from vcd_mock.client import task_element

from vcd_provider.entities import Task, TaskState, parse_task
from vcd_provider.errors import (
    SubmissionError,
    TaskFailedError,
    TaskTimeoutError,
    TransportError,
)
from vcd_provider.kinds import completed_task
from vcd_provider.tasks import TaskPollingMethod, TaskTracker

OWNER_HREF = "https://vcd.example.com/api/disk/owner"


@pytest.fixture
def tracker(mock_client: MockVcdClient) -> TaskTracker:
    return TaskTracker(
        mock_client,
        timeout_seconds=5,
        poll_initial_seconds=0.001,
        poll_max_seconds=0.01,
    )


def submitted(mock_state: MockVcdState) -> Task:
    """Create a running remote task and return its submission handle."""
    task = mock_state.create_task("vdcCreateDisk", OWNER_HREF, "disk1")
    return parse_task(task_element(task))


class TestAwaitTask:
    """Tests for TaskTracker.await_task."""

    @pytest.mark.asyncio
    async def test_success(self, tracker: TaskTracker, mock_state: MockVcdState) -> None:
        """A successful task returns the final task."""
        mock_state.task_polls = 3
        task = submitted(mock_state)

        final = await tracker.await_task(task, description="Create disk")

        assert final.state == TaskState.SUCCEEDED
        assert final.owner_href == OWNER_HREF
        assert mock_state.calls.count(("GET", task.href)) == 3

    @pytest.mark.asyncio
    async def test_backoff_is_bounded(self, mock_client: MockVcdClient) -> None:
        """Poll delays double from the initial delay up to the maximum."""
        mock_client.state.task_polls = 5
        task = submitted(mock_client.state)
        tracker = TaskTracker(
            mock_client, timeout_seconds=60, poll_initial_seconds=1.0, poll_max_seconds=4.0
        )

        with patch("vcd_provider.tasks.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await tracker.await_task(task, description="Create disk")

        delays = [call.args[0] for call in sleep.await_args_list]
        assert delays == [1.0, 2.0, 4.0, 4.0, 4.0]

    @pytest.mark.asyncio
    async def test_terminal_task_is_not_polled(
        self, tracker: TaskTracker, mock_state: MockVcdState
    ) -> None:
        """A task that is already terminal returns without a poll."""
        final = await tracker.await_task(completed_task(OWNER_HREF), description="Enable VDC")

        assert final.owner_href == OWNER_HREF
        assert mock_state.calls == []

    @pytest.mark.asyncio
    async def test_failure_carries_remote_message(
        self, tracker: TaskTracker, mock_state: MockVcdState
    ) -> None:
        """A failed task raises TaskFailedError with the vCD message."""
        mock_state.fail_next_task("Insufficient storage")
        task = submitted(mock_state)

        with pytest.raises(TaskFailedError) as exc_info:
            await tracker.await_task(task, description="Create disk")

        error = exc_info.value
        assert str(error) == "Insufficient storage"
        assert error.task_href == task.href
        assert error.status == "error"
        assert error.operation == "vdcCreateDisk"

    @pytest.mark.asyncio
    async def test_aborted_without_message(
        self, tracker: TaskTracker, mock_state: MockVcdState
    ) -> None:
        """A task aborted without a message still fails with its status."""
        task = submitted(mock_state)
        mock_state.tasks[task.href].outcome = "aborted"

        with pytest.raises(TaskFailedError, match="status 'aborted'"):
            await tracker.await_task(task, description="Create disk")

    @pytest.mark.asyncio
    async def test_timeout_is_distinct_from_failure(
        self, tracker: TaskTracker, mock_state: MockVcdState
    ) -> None:
        """A hung task raises TaskTimeoutError with the task href."""
        mock_state.hang_next_task()
        task = submitted(mock_state)

        with pytest.raises(TaskTimeoutError) as exc_info:
            await tracker.await_task(task, description="Create disk", timeout_seconds=0.05)

        assert exc_info.value.task_href == task.href
        assert exc_info.value.timeout_seconds == 0.05
        assert not isinstance(exc_info.value, TaskFailedError)

    @pytest.mark.asyncio
    async def test_poll_failure_is_transport_error(
        self, tracker: TaskTracker, mock_state: MockVcdState
    ) -> None:
        """A failed poll is a TransportError that keeps the task href."""
        task = submitted(mock_state)
        mock_state.poll_error = ServiceResponseError("Connection reset by peer")

        with pytest.raises(TransportError, match="Connection reset by peer") as exc_info:
            await tracker.await_task(task, description="Create disk")

        assert exc_info.value.task_href == task.href

    @pytest.mark.asyncio
    async def test_resume_from_href(self, tracker: TaskTracker, mock_state: MockVcdState) -> None:
        """Waiting can resume from a task href after a timeout."""
        mock_state.hang_next_task()
        task = submitted(mock_state)
        with pytest.raises(TaskTimeoutError) as exc_info:
            await tracker.await_task(task, description="Create disk", timeout_seconds=0.02)

        mock_state.tasks[task.href].hung = False
        final = await tracker.await_task(exc_info.value.task_href, description="Create disk")

        assert final.status == "success"
        assert final.owner_href == OWNER_HREF


class TestPollingMethod:
    """Tests for TaskPollingMethod."""

    def test_continuation_token_is_task_href(self) -> None:
        """The continuation token is the task href."""
        method = TaskPollingMethod()
        task = Task(href="https://vcd.example.com/api/task/1", status="running")
        method.initialize(MagicMock(), task, lambda t: t)

        assert method.get_continuation_token() == task.href
        assert method.status() == "running"
        assert not method.finished()

    def test_resume_requires_client(self) -> None:
        """Resuming without a client is a programming error."""
        with pytest.raises(ValueError, match="client"):
            TaskPollingMethod.from_continuation_token("https://vcd.example.com/api/task/1")

    def test_uninitialized(self) -> None:
        """Using the method before initialize fails loudly."""
        with pytest.raises(RuntimeError):
            TaskPollingMethod().status()


class TestSubmit:
    """Tests for TaskTracker.submit error mapping."""

    @pytest.mark.asyncio
    async def test_rejected_request(self, tracker: TaskTracker) -> None:
        """An HTTP error response is a SubmissionError with the remote text."""
        error = HttpResponseError(message="The VDC is busy")
        error.status_code = 400

        with pytest.raises(SubmissionError, match="The VDC is busy") as exc_info:
            await tracker.submit(MagicMock(side_effect=error), "Create disk")

        assert exc_info.value.status_code == 400
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_request_never_sent(self, tracker: TaskTracker) -> None:
        """A connection failure before sending is a SubmissionError."""
        submit = MagicMock(side_effect=ServiceRequestError("Name or service not known"))

        with pytest.raises(SubmissionError, match="could not be sent"):
            await tracker.submit(submit, "Create disk")

    @pytest.mark.asyncio
    async def test_response_lost(self, tracker: TaskTracker) -> None:
        """A lost response is a TransportError: the request may have run."""
        submit = MagicMock(side_effect=ServiceResponseError("Read timed out"))

        with pytest.raises(TransportError, match="Read timed out"):
            await tracker.submit(submit, "Create disk")

    @pytest.mark.asyncio
    async def test_unreadable_response(self, tracker: TaskTracker) -> None:
        """An undecodable task handle is a TransportError, not a rejection."""
        submit = MagicMock(side_effect=DecodeError(message="Malformed XML"))

        with pytest.raises(TransportError, match="unreadable submission response"):
            await tracker.submit(submit, "Create disk")


class TestSubmitAndAwait:
    """Tests for TaskTracker.submit_and_await."""

    @pytest.mark.asyncio
    async def test_returns_owner_href(
        self, tracker: TaskTracker, mock_state: MockVcdState
    ) -> None:
        """The locator of the created object is the task owner."""
        locator = await tracker.submit_and_await(
            lambda: submitted(mock_state), description="Create disk"
        )

        assert locator == OWNER_HREF

    @pytest.mark.asyncio
    async def test_synchronous_completion(self, tracker: TaskTracker) -> None:
        """Calls completed synchronously return their owner directly."""
        locator = await tracker.submit_and_await(
            lambda: completed_task(OWNER_HREF), description="Disable VDC"
        )

        assert locator == OWNER_HREF
