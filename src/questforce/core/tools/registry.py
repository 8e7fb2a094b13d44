"""
Tool Registry

Name-indexed catalog of the tools available to the agent. Built once and
read-only afterwards, so concurrent lookups from several in-flight tasks
need no locking.
"""

from collections.abc import Iterable

import structlog

from questforce.core.domain.models import ToolDefinition
from questforce.core.interfaces.tools import ToolProtocol


class ToolRegistry:
    """
    Catalog of tools indexed by name.

    When two tools share a name the last one registered wins; a warning is
    logged for the shadowed tool.
    """

    def __init__(self, tools: Iterable[ToolProtocol] = ()):
        self.logger = structlog.get_logger().bind(component="tool_registry")
        self._tools: dict[str, ToolProtocol] = {}

        for tool in tools:
            if tool.name in self._tools:
                self.logger.warning("tool_name_shadowed", tool=tool.name)
            self._tools[tool.name] = tool

        self.logger.debug("tool_registry_built", count=len(self._tools))

    def get_tool(self, name: str) -> ToolProtocol | None:
        """Return the tool registered under ``name``, or None."""
        return self._tools.get(name)

    def get_all_tools(self) -> list[ToolProtocol]:
        """Return all tools in registration order."""
        return list(self._tools.values())

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    @property
    def count(self) -> int:
        return len(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def get_definitions(self) -> list[ToolDefinition]:
        """Build the tool catalog presented to the model."""
        return [
            ToolDefinition(
                name=tool.name,
                description=tool.description,
                input_schema=tool.input_schema,
            )
            for tool in self._tools.values()
        ]
