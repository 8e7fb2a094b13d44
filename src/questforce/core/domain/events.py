"""
Domain Events for Agent Execution

Stream events are written by the agent loop into the streaming channel as
they happen: one ``started`` event, any number of ``progress`` events
(iteration start, tool invoked, tool completed) and exactly one terminal
event (``completed`` or ``error``).
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from questforce.core.domain.models import utc_now


class StreamEventType(str, Enum):
    """Type of a streaming event."""

    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (StreamEventType.COMPLETED, StreamEventType.ERROR)


class ProgressStage(str, Enum):
    """What a ``progress`` event reports."""

    ITERATION = "iteration"
    TOOL_INVOKED = "tool_invoked"
    TOOL_COMPLETED = "tool_completed"


@dataclass
class AgentStreamEvent:
    """
    A transient event emitted during agent execution.

    Attributes:
        type: Event type
        task_id: Identifier of the execution emitting the event
        message: Human-readable description
        stage: Progress stage (progress events only)
        iteration: Loop iteration the event belongs to
        tool_name: Tool involved (tool progress events only)
        input: Tool input (tool_invoked only)
        output: Tool output or error text
        content: Final assistant text (completed only)
        outcome: Execution outcome (terminal events only)
        timestamp: When the event was created
    """

    type: StreamEventType
    task_id: str
    message: str = ""
    stage: ProgressStage | None = None
    iteration: int | None = None
    tool_name: str | None = None
    input: dict[str, Any] | None = None
    output: str | None = None
    content: str | None = None
    outcome: str | None = None
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.type.is_terminal

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type.value,
            "task_id": self.task_id,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        optional = {
            "stage": self.stage.value if self.stage else None,
            "iteration": self.iteration,
            "tool_name": self.tool_name,
            "input": self.input,
            "output": self.output,
            "content": self.content,
            "outcome": self.outcome,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data
