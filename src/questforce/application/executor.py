"""
Application Layer - Agent Executor Service

This module provides the service layer wrapping one agent execution.
CLI commands, the conversation service and the background processor all
run tasks through it.

The AgentExecutor:
- Runs the Agent loop under a wall-clock timeout
- Races the loop against the caller's cancel signal
- Packages every outcome (success, timeout, cancellation, failure) into an
  AgentTaskResult instead of raising
- Provides real-time progress through a bounded streaming channel
- Handles structured logging of start, completion and failure
"""

import asyncio
import time
import uuid
from collections.abc import AsyncIterator

import structlog

from questforce.core.config import AgentConfiguration
from questforce.core.domain.agent import Agent, EventSink
from questforce.core.domain.errors import AgentCancelledError, AgentDeadlineExceededError
from questforce.core.domain.events import AgentStreamEvent, StreamEventType
from questforce.core.domain.models import (
    AgentTaskResult,
    ConversationMessage,
    ExecutionOutcome,
    TaskMetadata,
)
from questforce.core.interfaces.llm import LLMProviderProtocol
from questforce.core.tools.registry import ToolRegistry

logger = structlog.get_logger()


class AgentExecutor:
    """Service layer running one agent execution to a packaged result.

    ``execute_task`` never raises for execution problems: timeouts,
    cancellation, provider errors and internal errors all come back as an
    unsuccessful AgentTaskResult with a descriptive error string.
    """

    def __init__(
        self,
        llm_provider: LLMProviderProtocol,
        tool_registry: ToolRegistry,
        config: AgentConfiguration,
        channel_size: int = 100,
        cancel_grace_seconds: float = 2.0,
    ):
        """Initialize AgentExecutor.

        Args:
            llm_provider: Model provider used by the loop
            tool_registry: Tools available to the model
            config: Agent configuration, including the system prompt
            channel_size: Capacity of the streaming channel. A slow consumer
                makes the producer wait instead of buffering without bound.
            cancel_grace_seconds: How long a timed-out or abandoned run may
                take to wind down before the caller stops waiting for it
        """
        self.config = config
        self.agent = Agent(llm_provider, tool_registry, self.config)
        self.channel_size = channel_size
        self.cancel_grace_seconds = cancel_grace_seconds
        self.logger = logger.bind(component="agent_executor")

    async def execute_task(
        self,
        task: str,
        user_id: str,
        conversation_history: list[ConversationMessage] | None = None,
        cancel_event: asyncio.Event | None = None,
        task_id: str | None = None,
    ) -> AgentTaskResult:
        """Execute a task and wait for its result.

        Args:
            task: Task description
            user_id: Authenticated user the tools act for
            conversation_history: Prior conversation turns
            cancel_event: Optional cancellation signal
            task_id: Identifier for this execution; generated when omitted

        Returns:
            AgentTaskResult. On timeout the in-flight loop is cancelled
            before the result is returned.
        """
        return await self._execute(
            task_id or self._generate_task_id(),
            task,
            user_id,
            conversation_history,
            cancel_event,
            emit=None,
        )

    async def execute_task_streaming(
        self,
        task: str,
        user_id: str,
        conversation_history: list[ConversationMessage] | None = None,
        cancel_event: asyncio.Event | None = None,
        task_id: str | None = None,
    ) -> AsyncIterator[AgentStreamEvent]:
        """Execute a task and yield events as they happen.

        Yields one ``started`` event, progress events for iterations and
        tool calls, and exactly one terminal ``completed`` or ``error``
        event, after which the stream ends. Closing the iterator early
        cancels the running execution.
        """
        task_id = task_id or self._generate_task_id()
        channel: asyncio.Queue[AgentStreamEvent] = asyncio.Queue(
            maxsize=self.channel_size
        )

        async def emit(event: AgentStreamEvent) -> None:
            await channel.put(event)

        async def produce() -> None:
            await emit(
                AgentStreamEvent(
                    type=StreamEventType.STARTED,
                    task_id=task_id,
                    message=f"Starting task: {task[:80]}",
                )
            )
            result = await self._execute(
                task_id, task, user_id, conversation_history, cancel_event, emit
            )
            await emit(self._terminal_event(result))

        self.logger.info("task.streaming.started", task_id=task_id, user_id=user_id)
        producer = asyncio.create_task(produce())

        try:
            while True:
                if not channel.empty():
                    event = channel.get_nowait()
                elif producer.done():
                    # Producer ended without a terminal event; surface its error
                    producer.result()
                    break
                else:
                    getter = asyncio.ensure_future(channel.get())
                    await asyncio.wait(
                        {getter, producer}, return_when=asyncio.FIRST_COMPLETED
                    )
                    if not getter.done():
                        getter.cancel()
                        continue
                    event = getter.result()
                yield event
                if event.is_terminal:
                    break
        finally:
            if not producer.done():
                producer.cancel()
                self.logger.info("task.streaming.abandoned", task_id=task_id)
            await asyncio.wait({producer})

    async def _execute(
        self,
        task_id: str,
        task: str,
        user_id: str,
        conversation_history: list[ConversationMessage] | None,
        cancel_event: asyncio.Event | None,
        emit: EventSink | None,
    ) -> AgentTaskResult:
        start = time.monotonic()
        metadata = TaskMetadata()

        self.logger.info(
            "task.execution.started",
            task_id=task_id,
            user_id=user_id,
            task=task[:100],
            timeout_seconds=self.config.timeout_seconds,
        )

        run = asyncio.ensure_future(
            self.agent.run(
                task_id=task_id,
                task=task,
                user_id=user_id,
                conversation_history=conversation_history,
                cancel_event=cancel_event,
                emit=emit,
                metadata=metadata,
                deadline=start + self.config.timeout_seconds,
            )
        )

        try:
            done, _ = await asyncio.wait({run}, timeout=self.config.timeout_seconds)
        except asyncio.CancelledError:
            await self._stop_run(task_id, run)
            raise

        if not done:
            await self._stop_run(task_id, run)
            result = self._timed_out(task_id, metadata)
        else:
            try:
                result = run.result()
            except AgentDeadlineExceededError:
                result = self._timed_out(task_id, metadata)
            except AgentCancelledError:
                result = self._failure(
                    task_id, metadata, ExecutionOutcome.CANCELLED, "Agent task was cancelled"
                )
            except Exception as e:
                self.logger.error(
                    "task.execution.error",
                    task_id=task_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result = self._failure(
                    task_id,
                    metadata,
                    ExecutionOutcome.FAILED,
                    f"Agent execution failed: {e}",
                )

        metadata.duration_ms = int((time.monotonic() - start) * 1000)
        result.metadata = metadata

        log = self.logger.info if result.success else self.logger.warning
        log(
            "task.execution.finished",
            task_id=task_id,
            success=result.success,
            outcome=result.outcome.value,
            error=result.error,
            iterations=metadata.iterations,
            tools_used=metadata.tools_used,
            duration_ms=metadata.duration_ms,
        )
        return result

    async def _stop_run(self, task_id: str, run: asyncio.Future) -> None:
        """Cancel ``run`` and wait at most the grace period for it to end."""
        run.cancel()
        done, _ = await asyncio.wait({run}, timeout=self.cancel_grace_seconds)
        if not done:
            self.logger.error(
                "task.execution.leaked",
                task_id=task_id,
                grace_seconds=self.cancel_grace_seconds,
            )
            run.add_done_callback(self._consume_result)

    def _consume_result(self, run: asyncio.Future) -> None:
        if not run.cancelled() and run.exception() is not None:
            self.logger.warning(
                "task.execution.leaked_run_failed", error=str(run.exception())
            )

    def _timed_out(self, task_id: str, metadata: TaskMetadata) -> AgentTaskResult:
        return self._failure(
            task_id,
            metadata,
            ExecutionOutcome.TIMED_OUT,
            f"Agent task exceeded timeout of {self.config.timeout_seconds:g} seconds",
        )

    def _failure(
        self,
        task_id: str,
        metadata: TaskMetadata,
        outcome: ExecutionOutcome,
        error: str,
    ) -> AgentTaskResult:
        return AgentTaskResult(
            task_id=task_id,
            success=False,
            error=error,
            outcome=outcome,
            metadata=metadata,
        )

    def _terminal_event(self, result: AgentTaskResult) -> AgentStreamEvent:
        if result.success:
            return AgentStreamEvent(
                type=StreamEventType.COMPLETED,
                task_id=result.task_id,
                message="Task completed",
                content=result.result,
                outcome=result.outcome.value,
            )
        return AgentStreamEvent(
            type=StreamEventType.ERROR,
            task_id=result.task_id,
            message=result.error or "Task failed",
            output=result.error,
            outcome=result.outcome.value,
        )

    def _generate_task_id(self) -> str:
        return str(uuid.uuid4())
