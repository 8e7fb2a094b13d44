"""
SQLite persistence for tasks, conversations, messages and the question bank.

A short-lived connection per operation keeps things simple and safe for
asyncio. Timestamps are stored as epoch seconds (REAL) and returned as
timezone-aware UTC datetimes. Every task query is scoped by user id.
"""

import json
import sqlite3
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from questforce.core.domain.errors import (
    InvalidStatusTransitionError,
    TaskNotFoundError,
)
from questforce.core.domain.models import (
    AgentTask,
    Conversation,
    Question,
    StoredMessage,
    TaskMetadata,
    TaskStatus,
)

logger = structlog.get_logger().bind(component="sqlite_store")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    ts REAL NOT NULL,
    FOREIGN KEY(conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    description TEXT NOT NULL,
    status TEXT NOT NULL,
    conversation_id TEXT,
    result TEXT,
    error TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    user_message_id INTEGER,
    lease_owner TEXT,
    lease_expires_at REAL,
    created_at REAL NOT NULL,
    started_at REAL,
    completed_at REAL,
    metadata TEXT
);

CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, id);

CREATE TABLE IF NOT EXISTS questions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    question_text TEXT NOT NULL,
    answer TEXT NOT NULL DEFAULT '',
    category TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_questions_user ON questions(user_id, created_at);
"""

_TASK_COLUMNS = (
    "id, user_id, description, status, conversation_id, result, error, attempts, "
    "user_message_id, lease_owner, lease_expires_at, created_at, started_at, "
    "completed_at, metadata"
)


def _to_ts(value: datetime | None) -> float | None:
    return value.timestamp() if value is not None else None


def _from_ts(value: float | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


@contextmanager
def _connection(db_path: str) -> Iterator[sqlite3.Connection]:
    """Open a connection, commit on success and always close it."""
    conn = _connect(db_path)
    try:
        with conn:
            yield conn
    finally:
        conn.close()


def init_db(db_path: str) -> None:
    """Initialize database schema if it does not exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    with _connection(db_path) as conn:
        conn.executescript(_SCHEMA)
    logger.debug("database_initialized", db_path=db_path)


def _row_to_task(row: tuple[Any, ...]) -> AgentTask:
    return AgentTask(
        task_id=row[0],
        user_id=row[1],
        description=row[2],
        status=TaskStatus(row[3]),
        conversation_id=row[4],
        result=row[5],
        error=row[6],
        attempts=row[7],
        user_message_id=row[8],
        lease_owner=row[9],
        lease_expires_at=_from_ts(row[10]),
        created_at=_from_ts(row[11]),
        started_at=_from_ts(row[12]),
        completed_at=_from_ts(row[13]),
        metadata=TaskMetadata.from_dict(json.loads(row[14]) if row[14] else None),
    )


class SqliteTaskRepository:
    """Task storage with monotonic status transitions and processing leases."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    async def create(self, task: AgentTask) -> AgentTask:
        with _connection(self.db_path) as conn:
            conn.execute(
                f"INSERT INTO tasks({_TASK_COLUMNS}) "
                "VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
                (
                    task.task_id,
                    task.user_id,
                    task.description,
                    task.status.value,
                    task.conversation_id,
                    task.result,
                    task.error,
                    task.attempts,
                    task.user_message_id,
                    task.lease_owner,
                    _to_ts(task.lease_expires_at),
                    _to_ts(task.created_at),
                    _to_ts(task.started_at),
                    _to_ts(task.completed_at),
                    json.dumps(task.metadata.to_dict()),
                ),
            )
        logger.info("task_created", task_id=task.task_id, user_id=task.user_id)
        return task

    async def get(self, task_id: str, user_id: str) -> AgentTask | None:
        with _connection(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ? AND user_id = ?",
                (task_id, user_id),
            ).fetchone()
        return _row_to_task(row) if row else None

    async def list_by_user(self, user_id: str, limit: int = 50) -> list[AgentTask]:
        with _connection(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE user_id = ? "
                "ORDER BY created_at DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    async def list_by_status(self, status: TaskStatus) -> list[AgentTask]:
        with _connection(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE status = ? ORDER BY created_at ASC",
                (status.value,),
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    async def _require(self, task_id: str, user_id: str) -> AgentTask:
        task = await self.get(task_id, user_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _check_transition(self, task: AgentTask, target: TaskStatus) -> None:
        if not task.status.can_transition_to(target):
            raise InvalidStatusTransitionError(
                task.task_id, task.status.value, target.value
            )

    async def update_status(
        self, task_id: str, user_id: str, status: TaskStatus
    ) -> None:
        task = await self._require(task_id, user_id)
        self._check_transition(task, status)
        now = time.time()

        with _connection(self.db_path) as conn:
            cur = conn.execute(
                "UPDATE tasks SET status = ?, "
                "started_at = CASE WHEN ? THEN COALESCE(started_at, ?) ELSE started_at END, "
                "completed_at = CASE WHEN ? THEN ? ELSE completed_at END "
                "WHERE id = ? AND user_id = ? AND status = ?",
                (
                    status.value,
                    status == TaskStatus.PROCESSING,
                    now,
                    status.is_terminal,
                    now,
                    task_id,
                    user_id,
                    task.status.value,
                ),
            )
        if cur.rowcount == 0:
            # Status changed between read and write
            current = await self._require(task_id, user_id)
            raise InvalidStatusTransitionError(
                task_id, current.status.value, status.value
            )
        logger.info(
            "task_status_updated",
            task_id=task_id,
            previous=task.status.value,
            status=status.value,
        )

    async def claim(
        self,
        task_id: str,
        user_id: str,
        owner: str,
        lease_seconds: float,
    ) -> AgentTask | None:
        now = time.time()
        with _connection(self.db_path) as conn:
            cur = conn.execute(
                "UPDATE tasks SET status = ?, attempts = attempts + 1, "
                "lease_owner = ?, lease_expires_at = ?, "
                "started_at = COALESCE(started_at, ?) "
                "WHERE id = ? AND user_id = ? AND ("
                "  status = ? OR (status = ? AND ("
                "    lease_owner = ? OR lease_expires_at IS NULL OR lease_expires_at < ?)))",
                (
                    TaskStatus.PROCESSING.value,
                    owner,
                    now + lease_seconds,
                    now,
                    task_id,
                    user_id,
                    TaskStatus.QUEUED.value,
                    TaskStatus.PROCESSING.value,
                    owner,
                    now,
                ),
            )
        if cur.rowcount == 0:
            logger.info("task_claim_rejected", task_id=task_id, owner=owner)
            return None

        logger.info("task_claimed", task_id=task_id, owner=owner)
        return await self.get(task_id, user_id)

    async def set_conversation(
        self,
        task_id: str,
        user_id: str,
        conversation_id: str,
        user_message_id: int | None = None,
    ) -> None:
        await self._require(task_id, user_id)
        with _connection(self.db_path) as conn:
            conn.execute(
                "UPDATE tasks SET conversation_id = ?, "
                "user_message_id = COALESCE(?, user_message_id) "
                "WHERE id = ? AND user_id = ?",
                (conversation_id, user_message_id, task_id, user_id),
            )

    async def set_result(
        self,
        task_id: str,
        user_id: str,
        result: str,
        metadata: TaskMetadata | None = None,
    ) -> None:
        task = await self._require(task_id, user_id)
        self._check_transition(task, TaskStatus.COMPLETED)
        with _connection(self.db_path) as conn:
            conn.execute(
                "UPDATE tasks SET status = ?, result = ?, error = NULL, metadata = ?, "
                "completed_at = ?, lease_owner = NULL, lease_expires_at = NULL "
                "WHERE id = ? AND user_id = ?",
                (
                    TaskStatus.COMPLETED.value,
                    result,
                    json.dumps((metadata or TaskMetadata()).to_dict()),
                    time.time(),
                    task_id,
                    user_id,
                ),
            )
        logger.info("task_completed", task_id=task_id)

    async def set_error(
        self,
        task_id: str,
        user_id: str,
        error: str,
        terminal: bool = True,
    ) -> None:
        task = await self._require(task_id, user_id)
        if not terminal:
            with _connection(self.db_path) as conn:
                conn.execute(
                    "UPDATE tasks SET error = ? WHERE id = ? AND user_id = ?",
                    (error, task_id, user_id),
                )
            logger.info("task_error_recorded", task_id=task_id, error=error)
            return

        self._check_transition(task, TaskStatus.FAILED)
        with _connection(self.db_path) as conn:
            conn.execute(
                "UPDATE tasks SET status = ?, error = ?, completed_at = ?, "
                "lease_owner = NULL, lease_expires_at = NULL "
                "WHERE id = ? AND user_id = ?",
                (TaskStatus.FAILED.value, error, time.time(), task_id, user_id),
            )
        logger.warning("task_failed", task_id=task_id, error=error)


class SqliteConversationRepository:
    def __init__(self, db_path: str):
        self.db_path = db_path

    async def create(self, user_id: str, title: str) -> Conversation:
        now = time.time()
        conversation = Conversation(
            conversation_id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            created_at=_from_ts(now),
            updated_at=_from_ts(now),
        )
        with _connection(self.db_path) as conn:
            conn.execute(
                "INSERT INTO conversations(id, user_id, title, is_active, created_at, updated_at) "
                "VALUES (?,?,?,1,?,?)",
                (conversation.conversation_id, user_id, title, now, now),
            )
        logger.info(
            "conversation_created",
            conversation_id=conversation.conversation_id,
            user_id=user_id,
        )
        return conversation

    async def get(self, conversation_id: str, user_id: str) -> Conversation | None:
        with _connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT id, user_id, title, is_active, created_at, updated_at "
                "FROM conversations WHERE id = ? AND user_id = ?",
                (conversation_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return Conversation(
            conversation_id=row[0],
            user_id=row[1],
            title=row[2],
            is_active=bool(row[3]),
            created_at=_from_ts(row[4]),
            updated_at=_from_ts(row[5]),
        )

    async def update_timestamp(
        self, conversation_id: str, user_id: str, when: datetime | None = None
    ) -> None:
        with _connection(self.db_path) as conn:
            conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ? AND user_id = ?",
                (_to_ts(when) if when else time.time(), conversation_id, user_id),
            )


class SqliteMessageRepository:
    def __init__(self, db_path: str):
        self.db_path = db_path

    async def create(
        self, conversation_id: str, role: str, content: str
    ) -> StoredMessage:
        now = time.time()
        with _connection(self.db_path) as conn:
            cur = conn.execute(
                "INSERT INTO messages(conversation_id, role, content, ts) VALUES (?,?,?,?)",
                (conversation_id, role, content, now),
            )
            message_id = cur.lastrowid
        return StoredMessage(
            message_id=message_id,
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=_from_ts(now),
        )

    async def list_by_conversation(self, conversation_id: str) -> list[StoredMessage]:
        with _connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT id, conversation_id, role, content, ts FROM messages "
                "WHERE conversation_id = ? ORDER BY id ASC",
                (conversation_id,),
            ).fetchall()
        return [
            StoredMessage(
                message_id=r[0],
                conversation_id=r[1],
                role=r[2],
                content=r[3],
                created_at=_from_ts(r[4]),
            )
            for r in rows
        ]


_QUESTION_COLUMNS = (
    "id, user_id, question_text, answer, category, tags, is_active, "
    "created_at, updated_at"
)


def _row_to_question(row: tuple[Any, ...]) -> Question:
    return Question(
        question_id=row[0],
        user_id=row[1],
        question_text=row[2],
        answer=row[3],
        category=row[4],
        tags=json.loads(row[5]) if row[5] else [],
        is_active=bool(row[6]),
        created_at=_from_ts(row[7]),
        updated_at=_from_ts(row[8]),
    )


class SqliteQuestionRepository:
    """Question bank backing the reference tools; rows never leave their owner."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    async def list_for_user(
        self,
        user_id: str,
        category: str | None = None,
        include_inactive: bool = False,
    ) -> list[Question]:
        query = f"SELECT {_QUESTION_COLUMNS} FROM questions WHERE user_id = ?"
        params: list[Any] = [user_id]
        if not include_inactive:
            query += " AND is_active = 1"
        if category is not None:
            query += " AND category = ?"
            params.append(category)
        query += " ORDER BY created_at ASC, rowid ASC"

        with _connection(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_question(r) for r in rows]

    async def get(self, question_id: str, user_id: str) -> Question | None:
        with _connection(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_QUESTION_COLUMNS} FROM questions WHERE id = ? AND user_id = ?",
                (question_id, user_id),
            ).fetchone()
        return _row_to_question(row) if row else None

    async def create(
        self,
        user_id: str,
        question_text: str,
        answer: str = "",
        category: str | None = None,
        tags: list[str] | None = None,
    ) -> Question:
        now = time.time()
        question = Question(
            question_id=str(uuid.uuid4()),
            user_id=user_id,
            question_text=question_text,
            answer=answer,
            category=category,
            tags=list(tags or []),
            created_at=_from_ts(now),
            updated_at=_from_ts(now),
        )
        with _connection(self.db_path) as conn:
            conn.execute(
                f"INSERT INTO questions({_QUESTION_COLUMNS}) VALUES (?,?,?,?,?,?,1,?,?)",
                (
                    question.question_id,
                    user_id,
                    question_text,
                    answer,
                    category,
                    json.dumps(question.tags),
                    now,
                    now,
                ),
            )
        logger.info("question_created", question_id=question.question_id, user_id=user_id)
        return question

    async def deactivate(self, question_id: str, user_id: str) -> Question | None:
        with _connection(self.db_path) as conn:
            cur = conn.execute(
                "UPDATE questions SET is_active = 0, updated_at = ? "
                "WHERE id = ? AND user_id = ?",
                (time.time(), question_id, user_id),
            )
        if cur.rowcount == 0:
            return None
        logger.info("question_deactivated", question_id=question_id, user_id=user_id)
        return await self.get(question_id, user_id)


class SqliteStore:
    """Bundle of the repositories sharing one database file."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_db(db_path)
        self.tasks = SqliteTaskRepository(db_path)
        self.conversations = SqliteConversationRepository(db_path)
        self.messages = SqliteMessageRepository(db_path)
        self.questions = SqliteQuestionRepository(db_path)
