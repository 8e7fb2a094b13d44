"""
LLM Provider Protocol

The model provider is an opaque request/response boundary. The agent loop
builds a ModelRequest (system instructions, message list, tool catalog,
sampling parameters) and receives a ModelResponse carrying a termination
signal, text blocks and tool-use requests.

Messages use content blocks so that one assistant turn can carry both text
and several tool-use requests, and one user turn can carry the results of
all of them keyed by request id.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, Union

from questforce.core.domain.models import ToolDefinition, TokenUsage


class StopReason(str, Enum):
    """Termination signal reported by the model."""

    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"


@dataclass
class TextBlock:
    text: str


@dataclass
class ToolUseBlock:
    """A tool invocation requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResultBlock:
    """Result of one tool invocation, keyed to its request id."""

    tool_use_id: str
    content: str
    is_error: bool = False


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass
class ModelMessage:
    role: str
    content: list[ContentBlock] = field(default_factory=list)

    @classmethod
    def text(cls, role: str, text: str) -> "ModelMessage":
        return cls(role=role, content=[TextBlock(text=text)])


@dataclass
class ModelRequest:
    """Everything the provider needs for one model call."""

    system: str
    messages: list[ModelMessage]
    tools: list[ToolDefinition]
    model: str
    temperature: float = 0.0
    max_tokens: int = 4096


@dataclass
class ModelResponse:
    """
    Response of one model call.

    Attributes:
        stop_reason: Termination signal; compare against StopReason values.
            Providers pass through signals they cannot map.
        content: Text and tool-use blocks in the order produced
        usage: Token counts for this call, if reported
    """

    stop_reason: str
    content: list[ContentBlock] = field(default_factory=list)
    usage: TokenUsage | None = None

    @property
    def texts(self) -> list[str]:
        return [b.text for b in self.content if isinstance(b, TextBlock) and b.text]

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]


class LLMProviderProtocol(Protocol):
    """Contract for model providers used by the agent loop."""

    async def complete(self, request: ModelRequest) -> ModelResponse:
        """
        Perform one model call.

        Raises:
            Exception: Provider or network errors propagate to the caller,
                which converts them into a failed execution result.
        """
        ...
