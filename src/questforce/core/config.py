"""
Configuration for the agent runtime.

Settings are read from keyword arguments, environment variables
(``QUESTFORCE_`` prefix, optional ``.env`` file) or a YAML file. The system
prompt is an explicit field so callers and tests can substitute their own
instructions.
"""

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from questforce.core.prompts.agent_prompt import QUESTION_BANK_PROMPT


def _load_yaml(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


class AgentConfiguration(BaseSettings):
    """Settings for the agent loop and executor."""

    model: str = Field(
        default="anthropic/claude-sonnet-4-5-20250929",
        description="Model identifier passed to the provider",
    )
    max_iterations: int = Field(default=20, ge=1, description="Loop iteration cap")
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=1)
    timeout_seconds: float = Field(
        default=120, gt=0, description="Wall-clock budget for one execution"
    )
    system_prompt: str = Field(default=QUESTION_BANK_PROMPT)
    api_key: Optional[str] = Field(default=None, description="Provider API key")

    model_config = SettingsConfigDict(
        env_prefix="QUESTFORCE_",
        env_file=".env",
        extra="ignore",
    )

    @classmethod
    def load_from_file(cls, config_path: Path, **overrides: Any) -> "AgentConfiguration":
        """Load settings from the ``agent`` section of a YAML file."""
        data = _load_yaml(config_path).get("agent", {})
        return cls(**{**data, **overrides})


class QueueConfiguration(BaseSettings):
    """Settings for background task processing."""

    db_path: str = Field(
        default=str(Path.cwd().joinpath("data", "questforce.db")),
        description="SQLite database for tasks, conversations and messages",
    )
    worker_count: int = Field(default=1, ge=1)
    retry_attempts: int = Field(default=3, ge=0, description="Retries after the first run")
    retry_delays: tuple[float, ...] = Field(default=(5, 15, 30))
    lease_seconds: float = Field(
        default=300, gt=0, description="How long a claimed task stays leased"
    )

    model_config = SettingsConfigDict(
        env_prefix="QUESTFORCE_QUEUE_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("retry_delays")
    @classmethod
    def _non_negative_delays(cls, value: tuple[float, ...]) -> tuple[float, ...]:
        if any(delay < 0 for delay in value):
            raise ValueError("retry delays must be non-negative")
        return value

    @classmethod
    def load_from_file(cls, config_path: Path, **overrides: Any) -> "QueueConfiguration":
        """Load settings from the ``queue`` section of a YAML file."""
        data = _load_yaml(config_path).get("queue", {})
        return cls(**{**data, **overrides})
