"""
Agent Factory - Dependency Injection

Wires configuration into concrete components: model provider, tool
registry, executor, conversation service and the background queue stack.
Configuration comes from an optional YAML file (``agent`` and ``queue``
sections) layered over environment variables and defaults.
"""

from dataclasses import dataclass
from pathlib import Path

import structlog

from questforce.application.conversations import ConversationStore
from questforce.application.executor import AgentExecutor
from questforce.application.queue import (
    BackgroundProcessor,
    RetryPolicy,
    TaskQueue,
    TaskWorker,
)
from questforce.application.service import AgentService
from questforce.core.config import AgentConfiguration, QueueConfiguration
from questforce.core.interfaces.llm import LLMProviderProtocol
from questforce.core.interfaces.repositories import QuestionRepositoryProtocol
from questforce.core.tools.registry import ToolRegistry
from questforce.infrastructure.llm.litellm_provider import LiteLLMProvider
from questforce.infrastructure.persistence.sqlite import SqliteStore
from questforce.infrastructure.tools.questions import create_question_tools


@dataclass
class BackgroundStack:
    """Components needed to submit and process background tasks."""

    store: SqliteStore
    processor: BackgroundProcessor
    worker: TaskWorker
    queue: TaskQueue


class AgentFactory:
    """Builds executors, services and the background stack from configuration."""

    def __init__(
        self,
        agent_config: AgentConfiguration | None = None,
        queue_config: QueueConfiguration | None = None,
        llm_provider: LLMProviderProtocol | None = None,
        question_repository: QuestionRepositoryProtocol | None = None,
    ):
        """
        Args:
            agent_config: Agent settings; read from the environment when omitted
            queue_config: Queue settings; read from the environment when omitted
            llm_provider: Provider override (tests inject fakes here)
            question_repository: Question bank backing the tools; the
                SQLite store's question table when omitted
        """
        self.agent_config = agent_config or AgentConfiguration()
        self.queue_config = queue_config or QueueConfiguration()
        self._llm_provider = llm_provider
        self.question_repository = question_repository
        self._store: SqliteStore | None = None
        self.logger = structlog.get_logger().bind(component="agent_factory")

    @classmethod
    def from_file(cls, config_path: Path, **kwargs) -> "AgentFactory":
        """Create a factory from a YAML configuration file."""
        return cls(
            agent_config=AgentConfiguration.load_from_file(config_path),
            queue_config=QueueConfiguration.load_from_file(config_path),
            **kwargs,
        )

    def create_llm_provider(self) -> LLMProviderProtocol:
        if self._llm_provider is None:
            self._llm_provider = LiteLLMProvider(api_key=self.agent_config.api_key)
        return self._llm_provider

    def create_tool_registry(self) -> ToolRegistry:
        questions = self.question_repository or self.create_store().questions
        return ToolRegistry(create_question_tools(questions))

    def create_executor(self) -> AgentExecutor:
        registry = self.create_tool_registry()
        self.logger.info(
            "executor_created",
            model=self.agent_config.model,
            tools=registry.count,
            max_iterations=self.agent_config.max_iterations,
        )
        return AgentExecutor(self.create_llm_provider(), registry, self.agent_config)

    def create_store(self) -> SqliteStore:
        """The SQLite store at ``queue.db_path``, opened once per factory."""
        if self._store is None:
            self._store = SqliteStore(self.queue_config.db_path)
        return self._store

    def create_agent_service(self, store: SqliteStore | None = None) -> AgentService:
        store = store or self.create_store()
        return AgentService(
            self.create_executor(),
            ConversationStore(store.conversations, store.messages),
        )

    def create_background_stack(self) -> BackgroundStack:
        store = self.create_store()
        processor = BackgroundProcessor(
            self.create_executor(),
            store.tasks,
            ConversationStore(store.conversations, store.messages),
            lease_seconds=self.queue_config.lease_seconds,
        )
        worker = TaskWorker(
            processor,
            store.tasks,
            retry_policy=RetryPolicy(
                attempts=self.queue_config.retry_attempts,
                delays=self.queue_config.retry_delays,
            ),
            worker_count=self.queue_config.worker_count,
        )
        self.logger.info(
            "background_stack_created",
            db_path=self.queue_config.db_path,
            workers=self.queue_config.worker_count,
        )
        return BackgroundStack(
            store=store,
            processor=processor,
            worker=worker,
            queue=TaskQueue(store.tasks, worker),
        )
