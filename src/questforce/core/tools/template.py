"""
Tool Execution Template

Shared validate -> execute -> wrap behaviour for tools. Tools hold a
ToolExecutionTemplate instead of inheriting from a base class:

    class GetQuestionsTool:
        def __init__(self, questions):
            self.questions = questions
            self._template = ToolExecutionTemplate("get_questions", GetQuestionsInput)

        async def execute(self, tool_input, user_id, cancel_event=None):
            return await self._template.run(tool_input, user_id, self._handle, cancel_event)

The template guarantees the tool contract: ``run`` never raises for
ordinary exceptions, it always returns a ToolResult.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from questforce.core.domain.errors import ToolValidationError
from questforce.core.domain.models import ToolResult

InputT = TypeVar("InputT", bound=BaseModel)

ToolHandler = Callable[[InputT, str, "asyncio.Event | None"], Awaitable[Any]]


class ToolExecutionTemplate(Generic[InputT]):
    """
    Validation and result wrapping for one tool.

    Args:
        tool_name: Name of the owning tool (used for logging)
        input_model: Pydantic model describing the tool input; its JSON
            schema doubles as the tool's input schema.
    """

    def __init__(self, tool_name: str, input_model: type[InputT]):
        self.tool_name = tool_name
        self.input_model = input_model
        self.logger = structlog.get_logger().bind(component="tool", tool=tool_name)

    @property
    def input_schema(self) -> dict[str, Any]:
        return self.input_model.model_json_schema()

    def validate(self, raw_input: Any) -> InputT:
        """Parse raw input into the input model.

        Raises:
            ToolValidationError: Input does not match the schema
        """
        if raw_input is None:
            raw_input = {}
        try:
            return self.input_model.model_validate(raw_input)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
                for err in e.errors()
            ]
            raise ToolValidationError("; ".join(errors), errors=errors) from e

    async def run(
        self,
        raw_input: Any,
        user_id: str,
        handler: ToolHandler,
        cancel_event: asyncio.Event | None = None,
    ) -> ToolResult:
        """Validate input, run ``handler`` and wrap the outcome."""
        if cancel_event is not None and cancel_event.is_set():
            return ToolResult.fail("Tool execution cancelled")

        try:
            self.logger.info("tool_execute", user_id=user_id)
            params = self.validate(raw_input)
            payload = await handler(params, user_id, cancel_event)
            self.logger.info("tool_complete", user_id=user_id)
            return ToolResult.ok(payload)

        except ToolValidationError as e:
            self.logger.warning("tool_validation_failed", errors=e.errors)
            return ToolResult.fail(f"Validation error: {e}")

        except Exception as e:
            self.logger.error(
                "tool_exception",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ToolResult.fail(e)
