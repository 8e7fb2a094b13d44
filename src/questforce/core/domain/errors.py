"""Exception hierarchy for the agent runtime."""


class QuestforceError(Exception):
    """Base class for all runtime errors."""


class ToolValidationError(QuestforceError):
    """Tool input failed schema validation."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


class TaskNotFoundError(QuestforceError):
    """No task with the given id exists for the given user."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class InvalidStatusTransitionError(QuestforceError):
    """A task status change would break the monotonic lifecycle."""

    def __init__(self, task_id: str, current: str, target: str):
        super().__init__(
            f"Task {task_id} cannot move from '{current}' to '{target}'"
        )
        self.task_id = task_id
        self.current = current
        self.target = target


class TaskExecutionError(QuestforceError):
    """A background task run failed; raised so the retry policy engages."""

    def __init__(self, task_id: str, message: str):
        super().__init__(f"Agent task failed: {message}")
        self.task_id = task_id


class AgentCancelledError(QuestforceError):
    """The caller's cancel signal was observed during execution."""


class ConversationNotFoundError(QuestforceError):
    """No conversation with the given id exists for the given user."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class AgentDeadlineExceededError(QuestforceError):
    """The execution deadline passed before the loop finished."""
