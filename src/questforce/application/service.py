"""
Application Layer - Conversational Agent Service

Streams an agent execution to the caller while keeping the conversation
record: prior messages become the execution history, the task is stored as
a user message before the run and the final answer as an assistant message
once the terminal ``completed`` event arrives.
"""

import asyncio
from collections.abc import AsyncIterator

import structlog

from questforce.application.conversations import ConversationStore
from questforce.application.executor import AgentExecutor
from questforce.core.domain.events import AgentStreamEvent, StreamEventType
from questforce.core.domain.models import ConversationMessage

logger = structlog.get_logger()


class AgentService:
    """Streaming agent execution with conversation persistence."""

    def __init__(self, executor: AgentExecutor, conversations: ConversationStore):
        self.executor = executor
        self.conversations = conversations
        self.logger = logger.bind(component="agent_service")

    async def execute_task_streaming(
        self,
        task: str,
        user_id: str,
        conversation_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[AgentStreamEvent]:
        """Execute ``task`` inside a conversation and yield its events.

        Args:
            task: Task description
            user_id: Authenticated user
            conversation_id: Existing conversation to continue; a new one is
                created when omitted
            cancel_event: Optional cancellation signal

        Yields:
            The executor's stream events, unchanged

        Raises:
            ConversationNotFoundError: ``conversation_id`` is unknown or
                belongs to another user
        """
        history: list[ConversationMessage] | None = None

        if conversation_id:
            await self.conversations.require(conversation_id, user_id)
            history = await self.conversations.load_history(conversation_id)
            active_conversation_id = conversation_id
            self.logger.info(
                "conversation_history_loaded",
                conversation_id=conversation_id,
                messages=len(history),
            )
        else:
            conversation = await self.conversations.create_conversation(user_id, task)
            active_conversation_id = conversation.conversation_id

        await self.conversations.append_user_message(active_conversation_id, task)

        self.logger.info(
            "streaming_execution_started",
            user_id=user_id,
            conversation_id=active_conversation_id,
        )

        stream = self.executor.execute_task_streaming(
            task, user_id, conversation_history=history, cancel_event=cancel_event
        )
        try:
            async for event in stream:
                # Reply is persisted before the terminal event is yielded
                if event.type == StreamEventType.COMPLETED:
                    await self.conversations.record_reply(
                        active_conversation_id, user_id, event.content or ""
                    )
                yield event
        finally:
            await stream.aclose()

        self.logger.info(
            "streaming_execution_finished",
            user_id=user_id,
            conversation_id=active_conversation_id,
        )
