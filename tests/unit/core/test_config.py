"""Unit tests for configuration loading."""

import os

import pytest
import yaml
from pydantic import ValidationError

from questforce.core.config import AgentConfiguration, QueueConfiguration
from questforce.core.prompts.agent_prompt import QUESTION_BANK_PROMPT


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep stray QUESTFORCE_* variables and .env files out of the tests."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("QUESTFORCE_"):
            monkeypatch.delenv(name)


class TestAgentConfiguration:
    def test_defaults(self):
        config = AgentConfiguration()

        assert config.model == "anthropic/claude-sonnet-4-5-20250929"
        assert config.max_iterations == 20
        assert config.temperature == 0.0
        assert config.max_tokens == 4096
        assert config.timeout_seconds == 120
        assert config.system_prompt == QUESTION_BANK_PROMPT
        assert config.api_key is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("QUESTFORCE_MAX_ITERATIONS", "7")
        monkeypatch.setenv("QUESTFORCE_MODEL", "openai/gpt-4o-mini")

        config = AgentConfiguration()

        assert config.max_iterations == 7
        assert config.model == "openai/gpt-4o-mini"

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "questforce.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "agent": {"max_iterations": 3, "system_prompt": "Be brief."},
                    "queue": {"worker_count": 2, "retry_delays": [0, 0]},
                }
            )
        )

        agent = AgentConfiguration.load_from_file(path, temperature=0.5)
        queue = QueueConfiguration.load_from_file(path)

        assert agent.max_iterations == 3
        assert agent.system_prompt == "Be brief."
        assert agent.temperature == 0.5
        assert queue.worker_count == 2
        assert queue.retry_delays == (0, 0)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="Config not found"):
            AgentConfiguration.load_from_file(tmp_path / "nope.yaml")

    @pytest.mark.parametrize(
        "field,value",
        [("max_iterations", 0), ("timeout_seconds", 0), ("temperature", 3)],
    )
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            AgentConfiguration(**{field: value})


class TestQueueConfiguration:
    def test_defaults(self):
        config = QueueConfiguration()

        assert config.worker_count == 1
        assert config.retry_attempts == 3
        assert config.retry_delays == (5, 15, 30)
        assert config.lease_seconds == 300
        assert config.db_path.endswith("questforce.db")

    def test_negative_delay_rejected(self):
        with pytest.raises(ValidationError):
            QueueConfiguration(retry_delays=(5, -1))
