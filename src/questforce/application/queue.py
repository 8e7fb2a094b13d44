"""
Application Layer - Background Task Processing

Tasks are submitted through TaskQueue, which persists them as QUEUED and
hands a TaskJob to the TaskWorker. Worker coroutines run each job through
BackgroundProcessor.process_task, retrying failed runs according to the
RetryPolicy (3 retries, waiting 5, 15 and 30 seconds).

Redelivered jobs are harmless: processing starts by claiming a lease on the
task, so a job whose task is already finished or owned by another job is
skipped, and a retry of the same job reuses the conversation and user
message recorded by its earlier attempt.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from questforce.application.conversations import ConversationStore
from questforce.application.executor import AgentExecutor
from questforce.core.domain.errors import TaskExecutionError, TaskNotFoundError
from questforce.core.domain.models import AgentTask, ConversationMessage, TaskStatus, utc_now
from questforce.core.interfaces.repositories import TaskRepositoryProtocol

logger = structlog.get_logger()


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration for background runs.

    Attributes:
        attempts: Retries after the first run (total runs = attempts + 1)
        delays: Seconds to wait before each retry; the last value repeats
            when there are more retries than delays
    """

    attempts: int = 3
    delays: tuple[float, ...] = (5, 15, 30)

    @property
    def total_runs(self) -> int:
        return self.attempts + 1

    def delay_for(self, retry_number: int) -> float:
        """Delay before the given retry (1-based)."""
        if not self.delays:
            return 0
        return self.delays[min(retry_number, len(self.delays)) - 1]


@dataclass
class TaskJob:
    """A unit of work handed to the worker for one task."""

    job_id: str
    task_id: str
    user_id: str
    description: str
    conversation_id: str | None = None


class BackgroundProcessor:
    """Runs one queued task through the executor and records the outcome."""

    def __init__(
        self,
        executor: AgentExecutor,
        task_repository: TaskRepositoryProtocol,
        conversations: ConversationStore,
        lease_seconds: float = 300,
    ):
        self.executor = executor
        self.task_repository = task_repository
        self.conversations = conversations
        self.lease_seconds = lease_seconds
        self.logger = logger.bind(component="background_processor")

    async def process_task(
        self,
        task_id: str,
        description: str,
        user_id: str,
        conversation_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
        job_id: str | None = None,
        final_attempt: bool = True,
    ) -> AgentTask | None:
        """Process a background task with status tracking.

        Args:
            task_id: Task to process
            description: Task text for the agent
            user_id: Owner of the task
            conversation_id: Optional conversation to continue
            cancel_event: Optional cancellation signal for the execution
            job_id: Lease owner; a retry of the same job passes the same id
            final_attempt: Whether a failure should mark the task FAILED

        Returns:
            The updated task, or None when the job was skipped because the
            task is finished or leased by another job

        Raises:
            TaskExecutionError: The execution did not succeed
            Exception: Persistence errors propagate so the job is retried
        """
        owner = job_id or task_id
        task = await self.task_repository.claim(
            task_id, user_id, owner, self.lease_seconds
        )
        if task is None:
            self.logger.warning("task_skipped", task_id=task_id, job_id=owner)
            return None

        self.logger.info(
            "task_processing",
            task_id=task_id,
            user_id=user_id,
            attempt=task.attempts,
            conversation_id=task.conversation_id or conversation_id,
        )

        try:
            active_conversation_id, history = await self._resolve_context(
                task, description, conversation_id
            )

            result = await self.executor.execute_task(
                description,
                user_id,
                conversation_history=history,
                cancel_event=cancel_event,
                task_id=task_id,
            )

            if not result.success:
                self.logger.warning("task_run_failed", task_id=task_id, error=result.error)
                raise TaskExecutionError(task_id, result.error or "Unknown error")

            await self.conversations.record_reply(
                active_conversation_id, user_id, result.result
            )
            await self.task_repository.set_result(
                task_id, user_id, result.result, result.metadata
            )
            self.logger.info(
                "task_processed",
                task_id=task_id,
                outcome=result.outcome.value,
                iterations=result.metadata.iterations,
            )
            return await self.task_repository.get(task_id, user_id)

        except Exception as e:
            self.logger.error(
                "task_processing_error",
                task_id=task_id,
                error=str(e),
                error_type=type(e).__name__,
                final_attempt=final_attempt,
            )
            try:
                await self.task_repository.set_error(
                    task_id, user_id, str(e), terminal=final_attempt
                )
            except Exception as inner:
                self.logger.error(
                    "task_error_not_stored",
                    task_id=task_id,
                    error=str(inner),
                    error_type=type(inner).__name__,
                )
            raise

    async def _resolve_context(
        self,
        task: AgentTask,
        description: str,
        conversation_id: str | None,
    ) -> tuple[str, list[ConversationMessage]]:
        """Find or create the conversation and store the user message once."""
        active = task.conversation_id or conversation_id

        if active is None:
            conversation = await self.conversations.create_conversation(
                task.user_id, description
            )
            active = conversation.conversation_id
            self.logger.info(
                "conversation_created", task_id=task.task_id, conversation_id=active
            )
            await self.task_repository.set_conversation(task.task_id, task.user_id, active)
        elif task.user_message_id is None:
            await self.conversations.require(active, task.user_id)
            if task.conversation_id is None:
                await self.task_repository.set_conversation(
                    task.task_id, task.user_id, active
                )

        if task.user_message_id is not None:
            history = await self.conversations.load_history(
                active, before_message_id=task.user_message_id
            )
            return active, history

        history = await self.conversations.load_history(active)
        message = await self.conversations.append_user_message(active, description)
        await self.task_repository.set_conversation(
            task.task_id, task.user_id, active, message.message_id
        )
        return active, history


Sleep = Callable[[float], Awaitable[None]]


class TaskWorker:
    """Pool of asyncio worker coroutines consuming TaskJobs."""

    def __init__(
        self,
        processor: BackgroundProcessor,
        task_repository: TaskRepositoryProtocol,
        retry_policy: RetryPolicy | None = None,
        worker_count: int = 1,
        sleep: Sleep = asyncio.sleep,
    ):
        self.processor = processor
        self.task_repository = task_repository
        self.retry_policy = retry_policy or RetryPolicy()
        self.worker_count = worker_count
        self._sleep = sleep
        self._jobs: asyncio.Queue[TaskJob] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self.logger = logger.bind(component="task_worker")

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def enqueue(self, job: TaskJob) -> None:
        await self._jobs.put(job)
        self.logger.debug("job_enqueued", job_id=job.job_id, task_id=job.task_id)

    async def start(self) -> None:
        """Recover pending tasks and spawn the worker coroutines."""
        if self._workers:
            return
        recovered = await self.recover()
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"questforce-worker-{i}")
            for i in range(self.worker_count)
        ]
        self.logger.info(
            "worker_started", workers=self.worker_count, recovered=recovered
        )

    async def stop(self) -> None:
        """Cancel the worker coroutines and wait for them to finish."""
        for worker in self._workers:
            worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self.logger.info("worker_stopped")

    async def join(self) -> None:
        """Wait until every enqueued job has been handled."""
        await self._jobs.join()

    async def recover(self) -> int:
        """Enqueue persisted tasks that no live job is handling.

        QUEUED tasks are always recovered. PROCESSING tasks are recovered
        when their lease has expired; the claim step rejects the rest.
        """
        now = utc_now()
        pending = await self.task_repository.list_by_status(TaskStatus.QUEUED)
        stale = [
            t
            for t in await self.task_repository.list_by_status(TaskStatus.PROCESSING)
            if t.lease_expires_at is None or t.lease_expires_at < now
        ]
        for task in pending + stale:
            await self.enqueue(
                TaskJob(
                    job_id=str(uuid.uuid4()),
                    task_id=task.task_id,
                    user_id=task.user_id,
                    description=task.description,
                    conversation_id=task.conversation_id,
                )
            )
        return len(pending) + len(stale)

    async def run_job(self, job: TaskJob) -> AgentTask | None:
        """Process a job, retrying failed runs per the retry policy."""
        policy = self.retry_policy

        for run in range(policy.total_runs):
            final = run == policy.total_runs - 1
            try:
                return await self.processor.process_task(
                    job.task_id,
                    job.description,
                    job.user_id,
                    conversation_id=job.conversation_id,
                    job_id=job.job_id,
                    final_attempt=final,
                )
            except Exception as e:
                if final:
                    self.logger.error(
                        "job_failed_permanently",
                        job_id=job.job_id,
                        task_id=job.task_id,
                        runs=run + 1,
                        error=str(e),
                    )
                    break
                delay = policy.delay_for(run + 1)
                self.logger.warning(
                    "job_retry_scheduled",
                    job_id=job.job_id,
                    task_id=job.task_id,
                    retry=run + 1,
                    delay_seconds=delay,
                    error=str(e),
                )
                await self._sleep(delay)

        return await self.task_repository.get(job.task_id, job.user_id)

    async def _worker_loop(self, index: int) -> None:
        log = self.logger.bind(worker=index)
        while True:
            job = await self._jobs.get()
            try:
                await self.run_job(job)
            except Exception as e:
                log.error(
                    "job_crashed",
                    job_id=job.job_id,
                    task_id=job.task_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._jobs.task_done()


class TaskQueue:
    """Entry point for submitting and inspecting background tasks."""

    def __init__(self, task_repository: TaskRepositoryProtocol, worker: TaskWorker):
        self.task_repository = task_repository
        self.worker = worker
        self.logger = logger.bind(component="task_queue")

    async def queue_task(
        self,
        description: str,
        user_id: str,
        conversation_id: str | None = None,
    ) -> str:
        """Persist a QUEUED task and hand it to the worker.

        Returns:
            The new task id
        """
        task = AgentTask(
            task_id=str(uuid.uuid4()),
            user_id=user_id,
            description=description,
            conversation_id=conversation_id,
            status=TaskStatus.QUEUED,
        )
        await self.task_repository.create(task)

        job = TaskJob(
            job_id=str(uuid.uuid4()),
            task_id=task.task_id,
            user_id=user_id,
            description=description,
            conversation_id=conversation_id,
        )
        await self.worker.enqueue(job)

        self.logger.info(
            "task_queued",
            task_id=task.task_id,
            job_id=job.job_id,
            user_id=user_id,
            conversation_id=conversation_id,
        )
        return task.task_id

    async def get_task(self, task_id: str, user_id: str) -> AgentTask:
        """
        Raises:
            TaskNotFoundError: Unknown task or owned by another user
        """
        task = await self.task_repository.get(task_id, user_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def list_tasks(self, user_id: str, limit: int = 50) -> list[AgentTask]:
        return await self.task_repository.list_by_user(user_id, limit)
