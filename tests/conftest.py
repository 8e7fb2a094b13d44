"""Shared fixtures for questforce tests."""

import asyncio
from typing import Any

import pytest

from questforce.core.config import AgentConfiguration
from questforce.core.domain.models import TokenUsage, ToolResult
from questforce.core.interfaces.llm import (
    ModelResponse,
    StopReason,
    TextBlock,
    ToolUseBlock,
)
from questforce.infrastructure.persistence.sqlite import SqliteStore


class FakeTool:
    """Tool double that records calls and returns a fixed result."""

    def __init__(
        self,
        name: str,
        result: ToolResult | None = None,
        error: Exception | None = None,
        delay: float = 0,
    ):
        self.name = name
        self.description = f"{name} description"
        self.input_schema = {"type": "object", "properties": {}}
        self.result = result or ToolResult.ok({"tool": name})
        self.error = error
        self.delay = delay
        self.calls: list[tuple[dict[str, Any], str]] = []
        self.cancelled = False

    async def execute(self, tool_input, user_id, cancel_event=None):
        self.calls.append((tool_input, user_id))
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if self.error is not None:
            raise self.error
        return self.result


class ScriptedProvider:
    """Model provider double replaying a list of responses in order.

    Each script entry is a ModelResponse, an exception to raise, or a
    coroutine function called with the request.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.requests = []

    async def complete(self, request):
        self.requests.append(request)
        if not self.script:
            raise AssertionError("provider called more often than scripted")
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return await step(request)
        return step


def text_response(*texts: str, usage: TokenUsage | None = None) -> ModelResponse:
    return ModelResponse(
        stop_reason=StopReason.END_TURN.value,
        content=[TextBlock(text=t) for t in texts],
        usage=usage,
    )


def tool_use_response(
    *uses: tuple[str, str, dict], text: str | None = None
) -> ModelResponse:
    content: list = [TextBlock(text=text)] if text else []
    content.extend(ToolUseBlock(id=i, name=n, input=inp) for i, n, inp in uses)
    return ModelResponse(stop_reason=StopReason.TOOL_USE.value, content=content)


@pytest.fixture
def fake_tool():
    return FakeTool


@pytest.fixture
def scripted_provider():
    return ScriptedProvider


@pytest.fixture
def responses():
    """Builders for model responses: ``responses.text`` and ``responses.tool_use``."""

    class _Responses:
        text = staticmethod(text_response)
        tool_use = staticmethod(tool_use_response)

    return _Responses


@pytest.fixture
def agent_config():
    return AgentConfiguration(
        system_prompt="You are a test assistant.",
        max_iterations=5,
        timeout_seconds=10,
    )


@pytest.fixture
def sqlite_store(tmp_path):
    return SqliteStore(str(tmp_path / "questforce.db"))
