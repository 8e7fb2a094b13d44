"""
Agent - Tool-Calling Orchestration Loop

Implements the iterative model-call / tool-execution loop:
1. Send system instructions, history, the task and all tool exchanges so
   far to the model together with the tool catalog
2. If the model signals end_turn -> capture its text, done
3. If the model signals tool_use -> execute every requested tool in order,
   sequentially, feed all results back in one turn, loop
4. Any other signal -> degraded completion with the text gathered so far

The loop is bounded by ``max_iterations``. Reaching the cap is reported as
a successful execution with outcome MAX_ITERATIONS and whatever text was
accumulated. Wall-clock timeout and result packaging are handled by
``questforce.application.executor.AgentExecutor``.
"""

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from questforce.core.config import AgentConfiguration
from questforce.core.domain.errors import AgentCancelledError, AgentDeadlineExceededError
from questforce.core.domain.events import AgentStreamEvent, ProgressStage, StreamEventType
from questforce.core.domain.models import (
    AgentTaskResult,
    ConversationMessage,
    ExecutionOutcome,
    TaskMetadata,
    ToolResult,
)
from questforce.core.interfaces.llm import (
    LLMProviderProtocol,
    ModelMessage,
    ModelRequest,
    StopReason,
    ToolResultBlock,
    ToolUseBlock,
)
from questforce.core.tools.registry import ToolRegistry

T = TypeVar("T")

EventSink = Callable[[AgentStreamEvent], Awaitable[None]]


class Agent:
    """
    Tool-calling agent bound to one provider, registry and configuration.

    An Agent holds no per-execution state: message lists and counters live
    inside ``run`` so one instance can serve concurrent executions.
    """

    def __init__(
        self,
        llm_provider: LLMProviderProtocol,
        tool_registry: ToolRegistry,
        config: AgentConfiguration,
    ):
        """
        Initialize Agent with injected dependencies.

        Args:
            llm_provider: Model provider boundary
            tool_registry: Catalog of tools the model may invoke
            config: Loop configuration (system prompt, sampling, iteration cap)
        """
        self.llm_provider = llm_provider
        self.tool_registry = tool_registry
        self.config = config
        self.logger = structlog.get_logger().bind(component="agent")

    async def run(
        self,
        task_id: str,
        task: str,
        user_id: str,
        conversation_history: list[ConversationMessage] | None = None,
        cancel_event: asyncio.Event | None = None,
        emit: EventSink | None = None,
        metadata: TaskMetadata | None = None,
        deadline: float | None = None,
    ) -> AgentTaskResult:
        """
        Run the loop until the model finishes or the iteration cap is hit.

        Args:
            task_id: Identifier of this execution (used in events and logs)
            task: Task description, sent as the newest user turn
            user_id: Authenticated user; passed to every tool
            conversation_history: Prior user/assistant turns
            cancel_event: Cancellation signal raced against the model call
                and every tool call
            emit: Optional sink for progress events
            metadata: Statistics object updated in place while running
            deadline: ``time.monotonic()`` value after which no further
                iteration starts

        Returns:
            AgentTaskResult with outcome COMPLETED or MAX_ITERATIONS

        Raises:
            AgentCancelledError: ``cancel_event`` was set
            AgentDeadlineExceededError: ``deadline`` passed between iterations
            Exception: Model provider errors propagate unchanged
        """
        metadata = metadata if metadata is not None else TaskMetadata()
        definitions = self.tool_registry.get_definitions()
        messages = self._build_initial_messages(task, conversation_history)
        segments: list[str] = []
        outcome = ExecutionOutcome.COMPLETED
        iteration = 0

        self.logger.info(
            "agent_run_start",
            task_id=task_id,
            user_id=user_id,
            tools=len(definitions),
            history_length=len(conversation_history or []),
        )

        while iteration < self.config.max_iterations:
            # Tools may swallow task cancellation, so stop signals are re-checked here
            self._check_stop(task_id, iteration, cancel_event, deadline)
            iteration += 1
            metadata.iterations = iteration
            self.logger.debug(
                "agent_iteration",
                task_id=task_id,
                iteration=iteration,
                max_iterations=self.config.max_iterations,
            )
            await self._emit(
                emit,
                AgentStreamEvent(
                    type=StreamEventType.PROGRESS,
                    task_id=task_id,
                    stage=ProgressStage.ITERATION,
                    iteration=iteration,
                    message=f"Iteration {iteration}/{self.config.max_iterations}",
                ),
            )

            request = ModelRequest(
                system=self.config.system_prompt,
                messages=list(messages),
                tools=definitions,
                model=self.config.model,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
            response = await self._race_cancel(
                self.llm_provider.complete(request), cancel_event
            )
            metadata.token_usage.add(response.usage)

            if response.stop_reason == StopReason.END_TURN:
                segments.extend(response.texts)
                self.logger.info(
                    "agent_end_turn", task_id=task_id, iterations=iteration
                )
                break

            if response.stop_reason == StopReason.TOOL_USE:
                tool_uses = response.tool_uses
                if not tool_uses:
                    self.logger.warning(
                        "tool_use_without_requests", task_id=task_id, iteration=iteration
                    )
                    segments.extend(response.texts)
                    break

                segments.extend(response.texts)
                messages.append(
                    ModelMessage(role="assistant", content=list(response.content))
                )
                results = await self._execute_tools(
                    task_id, iteration, tool_uses, user_id, cancel_event, emit, metadata
                )
                messages.append(ModelMessage(role="user", content=list(results)))
                continue

            self.logger.warning(
                "unexpected_stop_reason",
                task_id=task_id,
                stop_reason=str(response.stop_reason),
                iteration=iteration,
            )
            segments.extend(response.texts)
            break
        else:
            outcome = ExecutionOutcome.MAX_ITERATIONS
            self.logger.warning(
                "max_iterations_reached",
                task_id=task_id,
                max_iterations=self.config.max_iterations,
            )

        return AgentTaskResult(
            task_id=task_id,
            success=True,
            result="\n".join(segments),
            outcome=outcome,
            metadata=metadata,
        )

    def _build_initial_messages(
        self,
        task: str,
        conversation_history: list[ConversationMessage] | None,
    ) -> list[ModelMessage]:
        """
        Build the message list: prior turns followed by the task.

        The system prompt is not a message; it travels in
        ModelRequest.system on every call.
        """
        messages: list[ModelMessage] = []

        for msg in conversation_history or []:
            if not msg.content:
                continue
            role = "user" if msg.role.lower() == "user" else "assistant"
            messages.append(ModelMessage.text(role, msg.content))

        messages.append(ModelMessage.text("user", task))
        return messages

    async def _execute_tools(
        self,
        task_id: str,
        iteration: int,
        tool_uses: list[ToolUseBlock],
        user_id: str,
        cancel_event: asyncio.Event | None,
        emit: EventSink | None,
        metadata: TaskMetadata,
    ) -> list[ToolResultBlock]:
        """Execute tool-use requests one after another, in request order."""
        results: list[ToolResultBlock] = []

        for tool_use in tool_uses:
            metadata.tools_used += 1
            self.logger.info(
                "tool_execute",
                task_id=task_id,
                tool=tool_use.name,
                tool_use_id=tool_use.id,
            )
            await self._emit(
                emit,
                AgentStreamEvent(
                    type=StreamEventType.PROGRESS,
                    task_id=task_id,
                    stage=ProgressStage.TOOL_INVOKED,
                    iteration=iteration,
                    tool_name=tool_use.name,
                    input=tool_use.input,
                    message=f"Invoking tool {tool_use.name}",
                ),
            )

            tool_result = await self._execute_tool(tool_use, user_id, cancel_event)

            self.logger.info(
                "tool_complete",
                task_id=task_id,
                tool=tool_use.name,
                success=tool_result.success,
            )
            results.append(
                ToolResultBlock(
                    tool_use_id=tool_use.id,
                    content=tool_result.to_model_content(),
                    is_error=not tool_result.success,
                )
            )
            await self._emit(
                emit,
                AgentStreamEvent(
                    type=StreamEventType.PROGRESS,
                    task_id=task_id,
                    stage=ProgressStage.TOOL_COMPLETED,
                    iteration=iteration,
                    tool_name=tool_use.name,
                    output=self._truncate_output(
                        tool_result.content if tool_result.success else tool_result.error or ""
                    ),
                    message=f"Tool {tool_use.name} "
                    + ("succeeded" if tool_result.success else "failed"),
                ),
            )

        return results

    async def _execute_tool(
        self,
        tool_use: ToolUseBlock,
        user_id: str,
        cancel_event: asyncio.Event | None,
    ) -> ToolResult:
        """Resolve and run one tool; every failure becomes an error result."""
        tool = self.tool_registry.get_tool(tool_use.name)
        if tool is None:
            error = f"Tool '{tool_use.name}' not found in registry"
            self.logger.error("tool_not_found", tool=tool_use.name, tool_use_id=tool_use.id)
            return ToolResult.fail(error)

        try:
            return await self._race_cancel(
                tool.execute(tool_use.input, user_id, cancel_event), cancel_event
            )
        except AgentCancelledError:
            raise
        except Exception as e:
            self.logger.error(
                "tool_exception",
                tool=tool_use.name,
                tool_use_id=tool_use.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ToolResult.fail(e)

    def _check_stop(
        self,
        task_id: str,
        iteration: int,
        cancel_event: asyncio.Event | None,
        deadline: float | None,
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise AgentCancelledError("Agent task was cancelled")
        if deadline is not None and time.monotonic() >= deadline:
            self.logger.warning(
                "agent_deadline_exceeded", task_id=task_id, iterations=iteration
            )
            raise AgentDeadlineExceededError(
                f"Deadline passed after {iteration} iteration(s)"
            )

    async def _race_cancel(
        self, awaitable: Awaitable[T], cancel_event: asyncio.Event | None
    ) -> T:
        """Await ``awaitable`` unless ``cancel_event`` fires first.

        Raises:
            AgentCancelledError: The event was set before the work finished
        """
        if cancel_event is None:
            return await awaitable

        if cancel_event.is_set():
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise AgentCancelledError("Agent task was cancelled")

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
                await asyncio.wait({work})

        if work in done:
            return work.result()
        raise AgentCancelledError("Agent task was cancelled")

    async def _emit(self, emit: EventSink | None, event: AgentStreamEvent) -> None:
        if emit is not None:
            await emit(event)

    def _truncate_output(self, output: str, max_length: int = 200) -> str:
        if len(output) <= max_length:
            return output
        return output[:max_length] + "..."
