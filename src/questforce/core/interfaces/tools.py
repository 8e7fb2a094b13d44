"""
Tool Protocol

Defines the capability interface every tool implements. Tools are
independent units of domain logic invoked by the model through a
structured-argument call; they share validation behaviour by composition
(see ``questforce.core.tools.template``), never by inheritance.
"""

import asyncio
from typing import Any, Protocol, runtime_checkable

from questforce.core.domain.models import ToolResult


@runtime_checkable
class ToolProtocol(Protocol):
    """
    Contract for tools exposed to the agent.

    Implementations must never raise from ``execute``: domain failures
    (missing records, foreign ownership, malformed input) are returned as
    an error ToolResult. ``user_id`` scopes every data access performed by
    the tool.
    """

    @property
    def name(self) -> str:
        """Stable identifier used for registry lookup and shown to the model."""
        ...

    @property
    def description(self) -> str:
        """Capability summary included verbatim in the tool catalog."""
        ...

    @property
    def input_schema(self) -> dict[str, Any]:
        """JSON schema describing accepted parameters."""
        ...

    async def execute(
        self,
        tool_input: dict[str, Any],
        user_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> ToolResult:
        """Run the tool for ``user_id`` and wrap the outcome."""
        ...
