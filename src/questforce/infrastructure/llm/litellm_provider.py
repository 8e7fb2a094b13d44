"""
LiteLLM model provider.

Implements LLMProviderProtocol on top of ``litellm.acompletion`` with
native tool calling. Transient errors (rate limits, timeouts, connection
problems) are retried with exponential backoff; anything else, and the last
transient failure, propagates to the executor.
"""

import asyncio
import time
from dataclasses import dataclass, field

import litellm
import structlog

from questforce.core.interfaces.llm import ModelRequest, ModelResponse
from questforce.infrastructure.llm.message_converter import (
    messages_to_openai_format,
    response_from_openai,
    tools_to_openai_format,
)


@dataclass
class ProviderRetryPolicy:
    """Retry policy for transient provider errors."""

    max_attempts: int = 3
    backoff_multiplier: float = 2.0
    timeout: int = 60
    retry_on_errors: list[str] = field(
        default_factory=lambda: [
            "RateLimitError",
            "APIConnectionError",
            "Timeout",
            "ServiceUnavailableError",
        ]
    )


class LiteLLMProvider:
    """Model provider backed by LiteLLM."""

    def __init__(
        self,
        api_key: str | None = None,
        retry_policy: ProviderRetryPolicy | None = None,
    ):
        self.api_key = api_key
        self.retry_policy = retry_policy or ProviderRetryPolicy()
        self.logger = structlog.get_logger().bind(component="litellm_provider")

    async def complete(self, request: ModelRequest) -> ModelResponse:
        """Perform one model call.

        Raises:
            Exception: The provider error after retries are exhausted
        """
        params = {
            "model": request.model,
            "messages": messages_to_openai_format(request.system, request.messages),
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "timeout": self.retry_policy.timeout,
        }
        if request.tools:
            params["tools"] = tools_to_openai_format(request.tools)
            params["tool_choice"] = "auto"
        if self.api_key:
            params["api_key"] = self.api_key

        for attempt in range(self.retry_policy.max_attempts):
            start_time = time.time()
            self.logger.info(
                "llm_completion_started",
                model=request.model,
                attempt=attempt + 1,
                message_count=len(params["messages"]),
                tools=len(request.tools),
            )
            try:
                response = await litellm.acompletion(**params)
            except Exception as e:
                error_type = type(e).__name__
                error_msg = str(e)
                should_retry = attempt < self.retry_policy.max_attempts - 1 and any(
                    err in error_type or err in error_msg
                    for err in self.retry_policy.retry_on_errors
                )
                if not should_retry:
                    self.logger.error(
                        "llm_completion_failed",
                        model=request.model,
                        error_type=error_type,
                        error=error_msg[:200],
                        attempts=attempt + 1,
                    )
                    raise

                backoff_time = self.retry_policy.backoff_multiplier**attempt
                self.logger.warning(
                    "llm_completion_retry",
                    model=request.model,
                    error_type=error_type,
                    attempt=attempt + 1,
                    backoff_seconds=backoff_time,
                )
                await asyncio.sleep(backoff_time)
                continue

            result = response_from_openai(response)
            self.logger.info(
                "llm_completion_success",
                model=request.model,
                stop_reason=result.stop_reason,
                tool_calls=len(result.tool_uses),
                tokens=result.usage.total if result.usage else 0,
                latency_ms=int((time.time() - start_time) * 1000),
            )
            return result

        raise RuntimeError("LLM retries exhausted")
