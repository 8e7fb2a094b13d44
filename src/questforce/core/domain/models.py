"""
Core Domain Models

This module defines the core data models used throughout the agent domain:
background tasks and their lifecycle, conversation turns, tool definitions
and results, and the outcome of a single agent execution.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Lifecycle status of a queued agent task.

    Transitions are one-directional: QUEUED -> PROCESSING ->
    {COMPLETED | FAILED}. A retry of the same job re-claims a task that is
    already PROCESSING, which is the only self-transition allowed.
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    def can_transition_to(self, target: "TaskStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.QUEUED: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.PROCESSING: frozenset(
        {TaskStatus.PROCESSING, TaskStatus.COMPLETED, TaskStatus.FAILED}
    ),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


class ExecutionOutcome(str, Enum):
    """How a single agent execution ended."""

    COMPLETED = "completed"
    MAX_ITERATIONS = "max_iterations"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class TokenUsage:
    """Token counts summed over every model call of one execution."""

    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output

    def add(self, other: "TokenUsage | None") -> None:
        if other is None:
            return
        self.input += other.input
        self.output += other.output

    def to_dict(self) -> dict[str, int]:
        return {"input": self.input, "output": self.output, "total": self.total}


@dataclass
class TaskMetadata:
    """
    Execution statistics attached to a task result.

    Attributes:
        tools_used: Number of tool invocations (including failed ones)
        iterations: Number of model calls made by the loop
        duration_ms: Wall-clock duration of the execution
        token_usage: Token counts reported by the model provider
    """

    tools_used: int = 0
    iterations: int = 0
    duration_ms: int = 0
    token_usage: TokenUsage = field(default_factory=TokenUsage)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tools_used": self.tools_used,
            "iterations": self.iterations,
            "duration_ms": self.duration_ms,
            "token_usage": self.token_usage.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TaskMetadata":
        if not data:
            return cls()
        usage = data.get("token_usage") or {}
        return cls(
            tools_used=data.get("tools_used", 0),
            iterations=data.get("iterations", 0),
            duration_ms=data.get("duration_ms", 0),
            token_usage=TokenUsage(
                input=usage.get("input", 0), output=usage.get("output", 0)
            ),
        )


@dataclass
class AgentTask:
    """
    A user-submitted natural-language request tracked through the queue.

    Created by TaskQueue on submission and mutated only by the
    BackgroundProcessor. Tasks are never deleted by the runtime.

    Attributes:
        task_id: Unique task identifier
        user_id: Owner of the task; every lookup is scoped by it
        description: The task text handed to the agent
        status: Current lifecycle status
        conversation_id: Conversation the task belongs to (set once resolved)
        result: Final assistant text when completed
        error: Last error message recorded for the task
        attempts: How many times a worker claimed the task
        user_message_id: Id of the persisted user message for this task
        lease_owner: Job currently holding the processing lease
        lease_expires_at: When the processing lease lapses
        metadata: Execution statistics of the successful run
    """

    task_id: str
    user_id: str
    description: str
    status: TaskStatus = TaskStatus.QUEUED
    conversation_id: str | None = None
    result: str | None = None
    error: str | None = None
    attempts: int = 0
    user_message_id: int | None = None
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    metadata: TaskMetadata = field(default_factory=TaskMetadata)


@dataclass
class ConversationMessage:
    """A single prior turn of a conversation (user or assistant)."""

    role: str
    content: str


@dataclass
class Conversation:
    """A persisted conversation owned by one user."""

    conversation_id: str
    user_id: str
    title: str
    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class StoredMessage:
    """A message row as persisted by the message repository."""

    message_id: int
    conversation_id: str
    role: str
    content: str
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class ToolDefinition:
    """Name/description/schema triple shown to the model for one tool."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class ToolResult:
    """
    Outcome of one tool invocation.

    Attributes:
        success: Whether the tool completed its domain logic
        content: JSON-serialized payload (success only)
        error: Error message (failure only)
    """

    success: bool
    content: str = ""
    error: str | None = None

    @classmethod
    def ok(cls, payload: Any) -> "ToolResult":
        return cls(
            success=True,
            content=json.dumps(payload, ensure_ascii=False, default=str),
        )

    @classmethod
    def fail(cls, error: "str | BaseException") -> "ToolResult":
        if isinstance(error, BaseException):
            error = f"{type(error).__name__}: {error}"
        return cls(success=False, error=error)

    def to_model_content(self) -> str:
        """Text handed back to the model for this result."""
        if self.success:
            return self.content
        return json.dumps({"error": self.error}, ensure_ascii=False)


@dataclass
class AgentTaskResult:
    """
    Result of one agent execution.

    Attributes:
        task_id: Identifier of this execution
        success: True for COMPLETED and MAX_ITERATIONS outcomes
        result: Accumulated assistant text
        error: Error message for unsuccessful outcomes
        outcome: How the execution ended
        metadata: Execution statistics
    """

    task_id: str
    success: bool
    result: str = ""
    error: str | None = None
    outcome: ExecutionOutcome = ExecutionOutcome.COMPLETED
    metadata: TaskMetadata = field(default_factory=TaskMetadata)


@dataclass
class Question:
    """An interview question in a user's question bank."""

    question_id: str
    user_id: str
    question_text: str
    answer: str = ""
    category: str | None = None
    tags: list[str] = field(default_factory=list)
    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.question_id,
            "question_text": self.question_text,
            "answer": self.answer,
            "category": self.category,
            "tags": list(self.tags),
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
