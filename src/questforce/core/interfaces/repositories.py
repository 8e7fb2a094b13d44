"""
Repository Protocols

Persistence of tasks, conversations and messages is an external concern.
Every task operation is scoped by ``(task_id, user_id)``.
"""

from datetime import datetime
from typing import Protocol

from questforce.core.domain.models import (
    AgentTask,
    Conversation,
    Question,
    StoredMessage,
    TaskMetadata,
    TaskStatus,
)


class TaskRepositoryProtocol(Protocol):
    """Storage for background agent tasks."""

    async def create(self, task: AgentTask) -> AgentTask:
        ...

    async def get(self, task_id: str, user_id: str) -> AgentTask | None:
        ...

    async def list_by_user(self, user_id: str, limit: int = 50) -> list[AgentTask]:
        ...

    async def list_by_status(self, status: TaskStatus) -> list[AgentTask]:
        ...

    async def update_status(
        self, task_id: str, user_id: str, status: TaskStatus
    ) -> None:
        """Move a task to ``status``.

        Raises:
            TaskNotFoundError: Unknown task for this user
            InvalidStatusTransitionError: Transition breaks the lifecycle
        """
        ...

    async def claim(
        self,
        task_id: str,
        user_id: str,
        owner: str,
        lease_seconds: float,
    ) -> AgentTask | None:
        """Atomically take the processing lease for ``owner``.

        Succeeds when the task is QUEUED, when ``owner`` already holds the
        lease, or when another owner's lease has expired. Returns the
        claimed task, or None when the task is terminal or leased elsewhere.
        """
        ...

    async def set_conversation(
        self,
        task_id: str,
        user_id: str,
        conversation_id: str,
        user_message_id: int | None = None,
    ) -> None:
        ...

    async def set_result(
        self,
        task_id: str,
        user_id: str,
        result: str,
        metadata: TaskMetadata | None = None,
    ) -> None:
        """Store the result and mark the task COMPLETED."""
        ...

    async def set_error(
        self,
        task_id: str,
        user_id: str,
        error: str,
        terminal: bool = True,
    ) -> None:
        """Store the error; mark the task FAILED when ``terminal``."""
        ...


class ConversationRepositoryProtocol(Protocol):
    """Storage for conversations."""

    async def create(self, user_id: str, title: str) -> Conversation:
        ...

    async def get(self, conversation_id: str, user_id: str) -> Conversation | None:
        ...

    async def update_timestamp(
        self, conversation_id: str, user_id: str, when: datetime | None = None
    ) -> None:
        ...


class MessageRepositoryProtocol(Protocol):
    """Storage for conversation messages."""

    async def create(
        self, conversation_id: str, role: str, content: str
    ) -> StoredMessage:
        ...

    async def list_by_conversation(self, conversation_id: str) -> list[StoredMessage]:
        """Messages in insertion order."""
        ...


class QuestionRepositoryProtocol(Protocol):
    """Storage for the question bank; every operation is owner-scoped."""

    async def list_for_user(
        self,
        user_id: str,
        category: str | None = None,
        include_inactive: bool = False,
    ) -> list[Question]:
        """Questions in creation order."""
        ...

    async def get(self, question_id: str, user_id: str) -> Question | None:
        ...

    async def create(
        self,
        user_id: str,
        question_text: str,
        answer: str = "",
        category: str | None = None,
        tags: list[str] | None = None,
    ) -> Question:
        ...

    async def deactivate(self, question_id: str, user_id: str) -> Question | None:
        """Soft-delete a question; None when ``user_id`` does not own it."""
        ...
