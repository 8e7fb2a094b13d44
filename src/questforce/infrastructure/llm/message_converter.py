"""
Message Converter - OpenAI function calling format conversion.

The agent loop speaks in content blocks (text, tool use, tool result).
LiteLLM speaks the OpenAI chat format. This module converts requests into
that format and parses responses back into blocks.

Large tool outputs are truncated before they are sent back to the model to
prevent token overflow errors.
"""

import json
from typing import Any

import structlog

from questforce.core.domain.models import TokenUsage, ToolDefinition
from questforce.core.interfaces.llm import (
    ModelMessage,
    ModelResponse,
    StopReason,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)

logger = structlog.get_logger().bind(component="message_converter")

DEFAULT_MAX_OUTPUT_CHARS = 20000

_FINISH_REASONS = {
    "stop": StopReason.END_TURN,
    "end_turn": StopReason.END_TURN,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "tool_use": StopReason.TOOL_USE,
    "length": StopReason.MAX_TOKENS,
    "max_tokens": StopReason.MAX_TOKENS,
}


def tools_to_openai_format(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
    """
    Convert tool definitions to OpenAI function calling format.

    Returns:
        List of tool definitions:
        [
            {
                "type": "function",
                "function": {
                    "name": "tool_name",
                    "description": "Tool description",
                    "parameters": { JSON Schema }
                }
            },
            ...
        ]
    """
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
            },
        }
        for tool in tools
    ]


def truncate_output(content: str, max_chars: int = DEFAULT_MAX_OUTPUT_CHARS) -> str:
    if len(content) <= max_chars:
        return content
    overflow = len(content) - max_chars
    return content[:max_chars] + f"\n\n[... TRUNCATED - {overflow} more chars ...]"


def messages_to_openai_format(
    system: str,
    messages: list[ModelMessage],
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
) -> list[dict[str, Any]]:
    """
    Convert the system prompt and block messages to OpenAI chat messages.

    An assistant turn becomes one message with optional text and
    ``tool_calls``. A user turn carrying tool results expands into one
    ``tool`` message per result, in order; any text in the same turn follows
    as a regular user message.
    """
    converted: list[dict[str, Any]] = [{"role": "system", "content": system}]

    for message in messages:
        texts = [b.text for b in message.content if isinstance(b, TextBlock)]

        if message.role == "assistant":
            tool_uses = [b for b in message.content if isinstance(b, ToolUseBlock)]
            entry: dict[str, Any] = {
                "role": "assistant",
                "content": "\n".join(texts) if texts else None,
            }
            if tool_uses:
                entry["tool_calls"] = [
                    {
                        "id": use.id,
                        "type": "function",
                        "function": {
                            "name": use.name,
                            "arguments": json.dumps(use.input, ensure_ascii=False),
                        },
                    }
                    for use in tool_uses
                ]
            converted.append(entry)
            continue

        for block in message.content:
            if isinstance(block, ToolResultBlock):
                converted.append(
                    {
                        "role": "tool",
                        "tool_call_id": block.tool_use_id,
                        "content": truncate_output(block.content, max_output_chars),
                    }
                )
        if texts:
            converted.append({"role": message.role, "content": "\n".join(texts)})

    return converted


def _get(obj: Any, key: str, default: Any = None) -> Any:
    # LiteLLM returns objects; tests and some providers hand back dicts
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _parse_arguments(raw: Any, tool_name: str) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("tool_arguments_invalid_json", tool=tool_name, error=str(e))
        return {}
    return parsed if isinstance(parsed, dict) else {}


def map_finish_reason(finish_reason: str | None) -> str:
    """Map an OpenAI finish reason to a StopReason value.

    Unknown reasons pass through unchanged so the loop can log them.
    """
    if finish_reason is None:
        return StopReason.END_TURN.value
    mapped = _FINISH_REASONS.get(finish_reason)
    return mapped.value if mapped else finish_reason


def extract_usage(response: Any) -> TokenUsage | None:
    usage = _get(response, "usage")
    if usage is None:
        return None
    return TokenUsage(
        input=_get(usage, "prompt_tokens", 0) or 0,
        output=_get(usage, "completion_tokens", 0) or 0,
    )


def response_from_openai(response: Any) -> ModelResponse:
    """Parse a chat completion response into a ModelResponse."""
    choice = _get(response, "choices")[0]
    message = _get(choice, "message")
    content: list[Any] = []

    text = _get(message, "content")
    if text:
        content.append(TextBlock(text=text))

    for call in _get(message, "tool_calls") or []:
        function = _get(call, "function")
        name = _get(function, "name")
        content.append(
            ToolUseBlock(
                id=_get(call, "id"),
                name=name,
                input=_parse_arguments(_get(function, "arguments"), name),
            )
        )

    stop_reason = map_finish_reason(_get(choice, "finish_reason"))
    if stop_reason == StopReason.END_TURN.value and any(
        isinstance(b, ToolUseBlock) for b in content
    ):
        # Some providers report "stop" alongside tool calls
        stop_reason = StopReason.TOOL_USE.value

    return ModelResponse(
        stop_reason=stop_reason,
        content=content,
        usage=extract_usage(response),
    )
