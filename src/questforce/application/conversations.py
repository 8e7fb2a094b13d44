"""
Conversation persistence helpers shared by the streaming service and the
background processor.
"""

import structlog

from questforce.core.domain.errors import ConversationNotFoundError
from questforce.core.domain.models import (
    Conversation,
    ConversationMessage,
    StoredMessage,
)
from questforce.core.interfaces.repositories import (
    ConversationRepositoryProtocol,
    MessageRepositoryProtocol,
)

TITLE_LIMIT = 50


def conversation_title(description: str) -> str:
    """Derive a conversation title from the first task description.

    Descriptions longer than 50 characters are cut to 47 characters
    followed by "...".
    """
    if len(description) > TITLE_LIMIT:
        return description[: TITLE_LIMIT - 3] + "..."
    return description


class ConversationStore:
    """Conversation and message repositories used together."""

    def __init__(
        self,
        conversation_repository: ConversationRepositoryProtocol,
        message_repository: MessageRepositoryProtocol,
    ):
        self.conversation_repository = conversation_repository
        self.message_repository = message_repository
        self.logger = structlog.get_logger().bind(component="conversation_store")

    async def create_conversation(self, user_id: str, description: str) -> Conversation:
        return await self.conversation_repository.create(
            user_id, conversation_title(description)
        )

    async def require(self, conversation_id: str, user_id: str) -> Conversation:
        """Return the conversation if ``user_id`` owns it.

        Raises:
            ConversationNotFoundError: Unknown id or owned by another user
        """
        conversation = await self.conversation_repository.get(conversation_id, user_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def load_history(
        self, conversation_id: str, before_message_id: int | None = None
    ) -> list[ConversationMessage]:
        """Load prior turns in insertion order.

        Args:
            conversation_id: Conversation to read
            before_message_id: When given, only messages stored before this
                one are returned
        """
        messages = await self.message_repository.list_by_conversation(conversation_id)
        return [
            ConversationMessage(role=m.role, content=m.content)
            for m in messages
            if before_message_id is None or m.message_id < before_message_id
        ]

    async def append_user_message(
        self, conversation_id: str, content: str
    ) -> StoredMessage:
        return await self.message_repository.create(conversation_id, "user", content)

    async def record_reply(
        self, conversation_id: str, user_id: str, content: str
    ) -> None:
        """Persist the assistant reply and touch the conversation timestamp.

        An empty reply is stored as well, so every successful turn leaves an
        assistant message. History loading for the model skips empty turns.
        """
        await self.message_repository.create(conversation_id, "assistant", content)
        await self.conversation_repository.update_timestamp(conversation_id, user_id)
        self.logger.debug(
            "conversation_reply_recorded",
            conversation_id=conversation_id,
            has_content=bool(content),
        )
