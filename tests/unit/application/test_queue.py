"""
Unit Tests for background task processing

Uses real SQLite repositories in a temporary directory and a mocked
executor so retries, leases and conversation bookkeeping can be checked
against persisted state.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from questforce.application.conversations import ConversationStore
from questforce.application.queue import (
    BackgroundProcessor,
    RetryPolicy,
    TaskJob,
    TaskQueue,
    TaskWorker,
)
from questforce.core.domain.errors import (
    ConversationNotFoundError,
    TaskExecutionError,
    TaskNotFoundError,
)
from questforce.core.domain.models import (
    AgentTask,
    AgentTaskResult,
    ExecutionOutcome,
    TaskMetadata,
    TaskStatus,
)


def success(text="All done", iterations=2):
    return AgentTaskResult(
        task_id="ignored",
        success=True,
        result=text,
        metadata=TaskMetadata(tools_used=1, iterations=iterations, duration_ms=12),
    )


def failure(error="Agent execution failed: boom"):
    return AgentTaskResult(
        task_id="ignored",
        success=False,
        error=error,
        outcome=ExecutionOutcome.FAILED,
    )


@pytest.fixture
def mock_executor():
    executor = MagicMock()
    executor.execute_task = AsyncMock(return_value=success())
    return executor


@pytest.fixture
def conversations(sqlite_store):
    return ConversationStore(sqlite_store.conversations, sqlite_store.messages)


@pytest.fixture
def processor(mock_executor, sqlite_store, conversations):
    return BackgroundProcessor(mock_executor, sqlite_store.tasks, conversations)


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def worker(processor, sqlite_store, sleep):
    return TaskWorker(processor, sqlite_store.tasks, retry_policy=RetryPolicy(), sleep=sleep)


@pytest.fixture
def task_queue(sqlite_store, worker):
    return TaskQueue(sqlite_store.tasks, worker)


async def create_task(store, task_id="task-1", user_id="user-a", description="List my questions"):
    return await store.tasks.create(
        AgentTask(task_id=task_id, user_id=user_id, description=description)
    )


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()

        assert policy.attempts == 3
        assert policy.total_runs == 4
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [5, 15, 30]

    def test_last_delay_repeats(self):
        assert RetryPolicy(attempts=5, delays=(1, 2)).delay_for(5) == 2

    def test_no_delays(self):
        assert RetryPolicy(delays=()).delay_for(1) == 0


class TestBackgroundProcessor:
    @pytest.mark.asyncio
    async def test_success_persists_everything(
        self, processor, sqlite_store, mock_executor
    ):
        await create_task(sqlite_store)

        task = await processor.process_task("task-1", "List my questions", "user-a")

        assert task.status == TaskStatus.COMPLETED
        assert task.result == "All done"
        assert task.error is None
        assert task.attempts == 1
        assert task.metadata.iterations == 2
        assert task.completed_at is not None
        assert task.conversation_id is not None

        messages = await sqlite_store.messages.list_by_conversation(task.conversation_id)
        assert [(m.role, m.content) for m in messages] == [
            ("user", "List my questions"),
            ("assistant", "All done"),
        ]
        conversation = await sqlite_store.conversations.get(task.conversation_id, "user-a")
        assert conversation.title == "List my questions"

        mock_executor.execute_task.assert_awaited_once()
        kwargs = mock_executor.execute_task.await_args.kwargs
        assert kwargs["conversation_history"] == []
        assert kwargs["task_id"] == "task-1"

    @pytest.mark.asyncio
    async def test_long_description_title_is_truncated(self, processor, sqlite_store):
        description = "x" * 60
        await create_task(sqlite_store, description=description)

        task = await processor.process_task("task-1", description, "user-a")

        conversation = await sqlite_store.conversations.get(task.conversation_id, "user-a")
        assert conversation.title == "x" * 47 + "..."

    @pytest.mark.asyncio
    async def test_existing_conversation_supplies_history(
        self, processor, sqlite_store, mock_executor
    ):
        conversation = await sqlite_store.conversations.create("user-a", "Earlier")
        await sqlite_store.messages.create(conversation.conversation_id, "user", "Hi")
        await sqlite_store.messages.create(conversation.conversation_id, "assistant", "Hello")
        await create_task(sqlite_store)

        task = await processor.process_task(
            "task-1", "List my questions", "user-a", conversation.conversation_id
        )

        history = mock_executor.execute_task.await_args.kwargs["conversation_history"]
        assert [(m.role, m.content) for m in history] == [
            ("user", "Hi"),
            ("assistant", "Hello"),
        ]
        assert task.conversation_id == conversation.conversation_id

    @pytest.mark.asyncio
    async def test_foreign_conversation_is_rejected(self, processor, sqlite_store):
        conversation = await sqlite_store.conversations.create("user-b", "Not yours")
        await create_task(sqlite_store)

        with pytest.raises(ConversationNotFoundError):
            await processor.process_task(
                "task-1", "List my questions", "user-a", conversation.conversation_id
            )

        task = await sqlite_store.tasks.get("task-1", "user-a")
        assert task.status == TaskStatus.FAILED
        assert "Conversation not found" in task.error

    @pytest.mark.asyncio
    async def test_failure_with_retries_left_stays_processing(
        self, processor, sqlite_store, mock_executor
    ):
        mock_executor.execute_task.return_value = failure()
        await create_task(sqlite_store)

        with pytest.raises(TaskExecutionError, match="Agent task failed: Agent execution failed: boom"):
            await processor.process_task(
                "task-1", "List my questions", "user-a", job_id="job-1", final_attempt=False
            )

        task = await sqlite_store.tasks.get("task-1", "user-a")
        assert task.status == TaskStatus.PROCESSING
        assert task.error == "Agent task failed: Agent execution failed: boom"

    @pytest.mark.asyncio
    async def test_failure_on_final_attempt_marks_failed(
        self, processor, sqlite_store, mock_executor
    ):
        mock_executor.execute_task.return_value = failure("Agent task was cancelled")
        await create_task(sqlite_store)

        with pytest.raises(TaskExecutionError):
            await processor.process_task("task-1", "List my questions", "user-a")

        task = await sqlite_store.tasks.get("task-1", "user-a")
        assert task.status == TaskStatus.FAILED
        assert task.error == "Agent task failed: Agent task was cancelled"

    @pytest.mark.asyncio
    async def test_error_store_failure_is_logged_not_raised(
        self, mock_executor, sqlite_store, conversations
    ):
        tasks = MagicMock(wraps=sqlite_store.tasks)
        tasks.claim = sqlite_store.tasks.claim
        tasks.set_conversation = sqlite_store.tasks.set_conversation
        tasks.set_error = AsyncMock(side_effect=OSError("disk full"))
        processor = BackgroundProcessor(mock_executor, tasks, conversations)
        mock_executor.execute_task.return_value = failure()
        await create_task(sqlite_store)

        with pytest.raises(TaskExecutionError):
            await processor.process_task("task-1", "List my questions", "user-a")

        tasks.set_error.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_skipped(
        self, processor, sqlite_store, mock_executor
    ):
        await create_task(sqlite_store)
        await processor.process_task("task-1", "List my questions", "user-a", job_id="job-1")

        again = await processor.process_task(
            "task-1", "List my questions", "user-a", job_id="job-2"
        )

        assert again is None
        assert mock_executor.execute_task.await_count == 1

    @pytest.mark.asyncio
    async def test_task_leased_by_other_job_is_skipped(
        self, processor, sqlite_store, mock_executor
    ):
        await create_task(sqlite_store)
        await sqlite_store.tasks.claim("task-1", "user-a", "job-1", lease_seconds=300)

        result = await processor.process_task(
            "task-1", "List my questions", "user-a", job_id="job-2"
        )

        assert result is None
        mock_executor.execute_task.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_reuses_conversation_and_user_message(
        self, processor, sqlite_store, mock_executor
    ):
        prior = await sqlite_store.conversations.create("user-a", "Ongoing")
        await sqlite_store.messages.create(prior.conversation_id, "user", "Earlier")
        await create_task(sqlite_store)
        mock_executor.execute_task.side_effect = [failure(), success()]

        with pytest.raises(TaskExecutionError):
            await processor.process_task(
                "task-1",
                "List my questions",
                "user-a",
                prior.conversation_id,
                job_id="job-1",
                final_attempt=False,
            )
        task = await processor.process_task(
            "task-1", "List my questions", "user-a", prior.conversation_id, job_id="job-1"
        )

        assert task.status == TaskStatus.COMPLETED
        assert task.attempts == 2
        messages = await sqlite_store.messages.list_by_conversation(prior.conversation_id)
        assert [m.content for m in messages] == ["Earlier", "List my questions", "All done"]
        histories = [
            c.kwargs["conversation_history"] for c in mock_executor.execute_task.await_args_list
        ]
        assert [[m.content for m in h] for h in histories] == [["Earlier"], ["Earlier"]]


class TestTaskWorker:
    @pytest.mark.asyncio
    async def test_throw_once_then_succeed(
        self, worker, task_queue, mock_executor, sqlite_store, sleep
    ):
        mock_executor.execute_task.side_effect = [failure(), success()]
        task_id = await task_queue.queue_task("List my questions", "user-a")

        await worker.start()
        await worker.join()
        await worker.stop()

        task = await task_queue.get_task(task_id, "user-a")
        assert task.status == TaskStatus.COMPLETED
        assert task.result == "All done"
        assert task.attempts == 2
        sleep.assert_awaited_once_with(5)

        # One conversation, one user message, one reply
        messages = await sqlite_store.messages.list_by_conversation(task.conversation_id)
        assert [m.role for m in messages] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_always_failing_task_ends_failed(
        self, worker, task_queue, mock_executor, sleep
    ):
        mock_executor.execute_task.return_value = failure()
        task_id = await task_queue.queue_task("List my questions", "user-a")

        await worker.start()
        await worker.join()
        await worker.stop()

        task = await task_queue.get_task(task_id, "user-a")
        assert task.status == TaskStatus.FAILED
        assert task.attempts == 4
        assert mock_executor.execute_task.await_count == 4
        assert [c.args[0] for c in sleep.await_args_list] == [5, 15, 30]

    @pytest.mark.asyncio
    async def test_run_job_returns_final_state(self, worker, sqlite_store):
        await create_task(sqlite_store)

        task = await worker.run_job(
            TaskJob(
                job_id="job-1",
                task_id="task-1",
                user_id="user-a",
                description="List my questions",
            )
        )

        assert task.status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_start_recovers_queued_tasks(
        self, worker, sqlite_store, mock_executor
    ):
        await create_task(sqlite_store, task_id="left-over")

        await worker.start()
        await worker.join()
        await worker.stop()

        task = await sqlite_store.tasks.get("left-over", "user-a")
        assert task.status == TaskStatus.COMPLETED
        assert worker.running is False

    @pytest.mark.asyncio
    async def test_recover_skips_live_leases(self, worker, sqlite_store):
        await create_task(sqlite_store, task_id="busy")
        await sqlite_store.tasks.claim("busy", "user-a", "other-job", lease_seconds=300)

        assert await worker.recover() == 0


class TestTaskQueue:
    @pytest.mark.asyncio
    async def test_queue_task_persists_queued(self, task_queue, sqlite_store):
        task_id = await task_queue.queue_task("Find duplicates", "user-a")

        task = await task_queue.get_task(task_id, "user-a")
        assert task.status == TaskStatus.QUEUED
        assert task.description == "Find duplicates"
        assert task.attempts == 0

    @pytest.mark.asyncio
    async def test_tasks_are_scoped_to_their_owner(self, task_queue):
        task_id = await task_queue.queue_task("Mine", "user-a")
        await task_queue.queue_task("Theirs", "user-b")

        with pytest.raises(TaskNotFoundError):
            await task_queue.get_task(task_id, "user-b")
        assert [t.description for t in await task_queue.list_tasks("user-a")] == ["Mine"]
        assert [t.description for t in await task_queue.list_tasks("user-b")] == ["Theirs"]
