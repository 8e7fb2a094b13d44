"""Unit tests for AgentService and conversation helpers."""

import sqlite3
from contextlib import closing

import pytest

from questforce.application.conversations import ConversationStore, conversation_title
from questforce.application.executor import AgentExecutor
from questforce.application.service import AgentService
from questforce.core.domain.errors import ConversationNotFoundError
from questforce.core.domain.events import StreamEventType
from questforce.core.tools.registry import ToolRegistry


@pytest.fixture
def conversations(sqlite_store):
    return ConversationStore(sqlite_store.conversations, sqlite_store.messages)


def make_service(provider, conversations, agent_config):
    return AgentService(AgentExecutor(provider, ToolRegistry(), agent_config), conversations)


class TestConversationTitle:
    @pytest.mark.parametrize(
        "description,title",
        [
            ("Short task", "Short task"),
            ("y" * 50, "y" * 50),
            ("y" * 51, "y" * 47 + "..."),
        ],
    )
    def test_title(self, description, title):
        assert conversation_title(description) == title


class TestAgentService:
    @pytest.mark.asyncio
    async def test_new_conversation_records_both_turns(
        self, scripted_provider, responses, conversations, sqlite_store, agent_config
    ):
        service = make_service(
            scripted_provider(responses.text("Here you go")), conversations, agent_config
        )

        events = [e async for e in service.execute_task_streaming("Show questions", "user-a")]

        assert events[-1].type == StreamEventType.COMPLETED
        conversation_id = _only_conversation(sqlite_store)
        messages = await sqlite_store.messages.list_by_conversation(conversation_id)
        assert [(m.role, m.content) for m in messages] == [
            ("user", "Show questions"),
            ("assistant", "Here you go"),
        ]

    @pytest.mark.asyncio
    async def test_existing_conversation_history_is_sent(
        self, scripted_provider, responses, conversations, sqlite_store, agent_config
    ):
        conversation = await sqlite_store.conversations.create("user-a", "Chat")
        await sqlite_store.messages.create(conversation.conversation_id, "user", "Before")
        await sqlite_store.messages.create(conversation.conversation_id, "assistant", "Reply")
        provider = scripted_provider(responses.text("Next"))
        service = make_service(provider, conversations, agent_config)

        async for _ in service.execute_task_streaming(
            "Follow-up", "user-a", conversation.conversation_id
        ):
            pass

        sent = [(m.role, m.content[0].text) for m in provider.requests[0].messages]
        assert sent == [("user", "Before"), ("assistant", "Reply"), ("user", "Follow-up")]
        stored = await sqlite_store.messages.list_by_conversation(conversation.conversation_id)
        assert [m.content for m in stored] == ["Before", "Reply", "Follow-up", "Next"]

    @pytest.mark.asyncio
    async def test_failed_run_stores_no_reply(
        self, scripted_provider, conversations, sqlite_store, agent_config
    ):
        conversation = await sqlite_store.conversations.create("user-a", "Chat")
        service = make_service(
            scripted_provider(RuntimeError("down")), conversations, agent_config
        )

        events = [
            e
            async for e in service.execute_task_streaming(
                "Task", "user-a", conversation.conversation_id
            )
        ]

        assert events[-1].type == StreamEventType.ERROR
        stored = await sqlite_store.messages.list_by_conversation(conversation.conversation_id)
        assert [m.role for m in stored] == ["user"]

    @pytest.mark.asyncio
    async def test_empty_reply_is_stored_and_left_out_of_history(
        self, scripted_provider, responses, conversations, sqlite_store, agent_config
    ):
        agent_config.max_iterations = 1
        conversation = await sqlite_store.conversations.create("user-a", "Chat")
        provider = scripted_provider(
            responses.tool_use(("x", "missing", {})), responses.text("Second answer")
        )
        service = make_service(provider, conversations, agent_config)

        for task in ("First", "Second"):
            async for _ in service.execute_task_streaming(
                task, "user-a", conversation.conversation_id
            ):
                pass

        stored = await sqlite_store.messages.list_by_conversation(conversation.conversation_id)
        assert [(m.role, m.content) for m in stored] == [
            ("user", "First"),
            ("assistant", ""),
            ("user", "Second"),
            ("assistant", "Second answer"),
        ]
        sent = [(m.role, m.content[0].text) for m in provider.requests[1].messages]
        assert sent == [("user", "First"), ("user", "Second")]

    @pytest.mark.asyncio
    async def test_reply_persisted_when_consumer_stops_at_completion(
        self, scripted_provider, responses, conversations, sqlite_store, agent_config
    ):
        conversation = await sqlite_store.conversations.create("user-a", "Chat")
        service = make_service(
            scripted_provider(responses.text("Answer")), conversations, agent_config
        )

        stream = service.execute_task_streaming("Task", "user-a", conversation.conversation_id)
        async for event in stream:
            if event.type == StreamEventType.COMPLETED:
                break
        await stream.aclose()

        stored = await sqlite_store.messages.list_by_conversation(conversation.conversation_id)
        assert [m.content for m in stored] == ["Task", "Answer"]

    @pytest.mark.asyncio
    async def test_foreign_conversation_rejected(
        self, scripted_provider, responses, conversations, sqlite_store, agent_config
    ):
        conversation = await sqlite_store.conversations.create("user-b", "Private")
        service = make_service(
            scripted_provider(responses.text("x")), conversations, agent_config
        )

        with pytest.raises(ConversationNotFoundError):
            async for _ in service.execute_task_streaming(
                "Peek", "user-a", conversation.conversation_id
            ):
                pass


def _only_conversation(sqlite_store) -> str:
    """Return the id of the single conversation in the database."""
    with closing(sqlite3.connect(sqlite_store.db_path)) as conn:
        rows = conn.execute("SELECT id FROM conversations").fetchall()
    assert len(rows) == 1
    return rows[0][0]
