"""
Question Bank Tools

Reference tools the agent uses to manage a user's interview questions:
retrieval, search, creation, deletion and duplicate analysis. Every tool
reads and writes only the questions owned by the ``user_id`` it is called
with.

Each tool is a standalone class satisfying ToolProtocol. Validation and
result wrapping come from the ToolExecutionTemplate it holds; the tool
passes its own ``_handle`` coroutine as the handler.
"""

import asyncio
import re
from typing import Any

from pydantic import BaseModel, Field, field_validator

from questforce.core.domain.errors import QuestforceError
from questforce.core.domain.models import ToolResult
from questforce.core.interfaces.repositories import QuestionRepositoryProtocol
from questforce.core.interfaces.tools import ToolProtocol
from questforce.core.tools.template import ToolExecutionTemplate

_WORD_SPLIT = re.compile(r"[\s,.?!;:]+")


class QuestionNotFoundError(QuestforceError):
    def __init__(self, question_id: str):
        super().__init__(f"Question not found: {question_id}")
        self.question_id = question_id


def jaccard_similarity(text1: str, text2: str) -> float:
    """Word-set Jaccard similarity of two texts (case-insensitive)."""
    words1 = {w for w in _WORD_SPLIT.split(text1.lower()) if w}
    words2 = {w for w in _WORD_SPLIT.split(text2.lower()) if w}
    if not words1 and not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


class GetQuestionsInput(BaseModel):
    category: str | None = Field(default=None, description="Only questions in this category")
    limit: int = Field(default=50, ge=1, le=1000, description="Maximum number of questions")
    include_inactive: bool = Field(default=False, description="Include deleted questions")


class GetQuestionsTool:
    name = "get_questions"
    description = (
        "Retrieves interview questions for the user with optional filters. "
        "Use it to list questions, filter by category or limit the number of "
        "results. Returns question text, answer, category and tags."
    )

    def __init__(self, questions: QuestionRepositoryProtocol):
        self.questions = questions
        self._template = ToolExecutionTemplate(self.name, GetQuestionsInput)

    @property
    def input_schema(self) -> dict[str, Any]:
        return self._template.input_schema

    async def execute(
        self,
        tool_input: dict[str, Any],
        user_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> ToolResult:
        return await self._template.run(tool_input, user_id, self._handle, cancel_event)

    async def _handle(self, params: GetQuestionsInput, user_id, cancel_event):
        found = await self.questions.list_for_user(
            user_id, category=params.category, include_inactive=params.include_inactive
        )
        found = found[: params.limit]
        return {"count": len(found), "questions": [q.to_dict() for q in found]}


class GetQuestionByIdInput(BaseModel):
    question_id: str = Field(min_length=1, description="Question identifier")


class GetQuestionByIdTool:
    name = "get_question_by_id"
    description = "Retrieves a single question by its id."

    def __init__(self, questions: QuestionRepositoryProtocol):
        self.questions = questions
        self._template = ToolExecutionTemplate(self.name, GetQuestionByIdInput)

    @property
    def input_schema(self) -> dict[str, Any]:
        return self._template.input_schema

    async def execute(
        self,
        tool_input: dict[str, Any],
        user_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> ToolResult:
        return await self._template.run(tool_input, user_id, self._handle, cancel_event)

    async def _handle(self, params: GetQuestionByIdInput, user_id, cancel_event):
        question = await self.questions.get(params.question_id, user_id)
        if question is None:
            raise QuestionNotFoundError(params.question_id)
        return {"question": question.to_dict()}


class SearchQuestionsInput(BaseModel):
    query: str = Field(min_length=1, description="Text to look for in questions and answers")
    limit: int = Field(default=20, ge=1, le=100)


class SearchQuestionsTool:
    name = "search_questions"
    description = (
        "Searches the user's active questions for a text fragment "
        "(case-insensitive, matched against question text and answer)."
    )

    def __init__(self, questions: QuestionRepositoryProtocol):
        self.questions = questions
        self._template = ToolExecutionTemplate(self.name, SearchQuestionsInput)

    @property
    def input_schema(self) -> dict[str, Any]:
        return self._template.input_schema

    async def execute(
        self,
        tool_input: dict[str, Any],
        user_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> ToolResult:
        return await self._template.run(tool_input, user_id, self._handle, cancel_event)

    async def _handle(self, params: SearchQuestionsInput, user_id, cancel_event):
        needle = params.query.lower()
        matches = [
            q
            for q in await self.questions.list_for_user(user_id)
            if needle in q.question_text.lower() or needle in q.answer.lower()
        ]
        matches = matches[: params.limit]
        return {
            "query": params.query,
            "count": len(matches),
            "questions": [q.to_dict() for q in matches],
        }


class CreateQuestionInput(BaseModel):
    question_text: str = Field(min_length=1, max_length=1000)
    answer: str = Field(default="", max_length=5000)
    category: str | None = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("question_text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Question text must not be blank")
        return value.strip()


class CreateQuestionTool:
    name = "create_question"
    description = (
        "Creates a new interview question for the user. Requires the question "
        "text; answer, category and tags are optional."
    )

    def __init__(self, questions: QuestionRepositoryProtocol):
        self.questions = questions
        self._template = ToolExecutionTemplate(self.name, CreateQuestionInput)

    @property
    def input_schema(self) -> dict[str, Any]:
        return self._template.input_schema

    async def execute(
        self,
        tool_input: dict[str, Any],
        user_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> ToolResult:
        return await self._template.run(tool_input, user_id, self._handle, cancel_event)

    async def _handle(self, params: CreateQuestionInput, user_id, cancel_event):
        question = await self.questions.create(
            user_id,
            params.question_text,
            answer=params.answer,
            category=params.category,
            tags=params.tags,
        )
        return {"created": True, "question": question.to_dict()}


class DeleteQuestionInput(BaseModel):
    question_id: str = Field(min_length=1)


class DeleteQuestionTool:
    name = "delete_question"
    description = "Deletes (deactivates) one of the user's questions by id."

    def __init__(self, questions: QuestionRepositoryProtocol):
        self.questions = questions
        self._template = ToolExecutionTemplate(self.name, DeleteQuestionInput)

    @property
    def input_schema(self) -> dict[str, Any]:
        return self._template.input_schema

    async def execute(
        self,
        tool_input: dict[str, Any],
        user_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> ToolResult:
        return await self._template.run(tool_input, user_id, self._handle, cancel_event)

    async def _handle(self, params: DeleteQuestionInput, user_id, cancel_event):
        question = await self.questions.deactivate(params.question_id, user_id)
        if question is None:
            raise QuestionNotFoundError(params.question_id)
        return {"deleted": True, "question_id": question.question_id}


class FindDuplicateQuestionsInput(BaseModel):
    threshold: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Similarity threshold (0.0-1.0)"
    )
    limit: int = Field(default=20, ge=1, le=100, description="Maximum number of pairs")


class FindDuplicateQuestionsTool:
    name = "find_duplicate_questions"
    description = (
        "Finds potential duplicate questions using text similarity. "
        "Uses Jaccard similarity on question words and returns pairs of "
        "similar questions with their similarity scores."
    )

    def __init__(self, questions: QuestionRepositoryProtocol):
        self.questions = questions
        self._template = ToolExecutionTemplate(self.name, FindDuplicateQuestionsInput)

    @property
    def input_schema(self) -> dict[str, Any]:
        return self._template.input_schema

    async def execute(
        self,
        tool_input: dict[str, Any],
        user_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> ToolResult:
        return await self._template.run(tool_input, user_id, self._handle, cancel_event)

    async def _handle(self, params: FindDuplicateQuestionsInput, user_id, cancel_event):
        found = await self.questions.list_for_user(user_id)
        pairs: list[dict[str, Any]] = []

        for i, first in enumerate(found):
            if cancel_event is not None and cancel_event.is_set():
                break
            for second in found[i + 1 :]:
                similarity = jaccard_similarity(first.question_text, second.question_text)
                if similarity >= params.threshold:
                    pairs.append(
                        {
                            "question1": {"id": first.question_id, "text": first.question_text},
                            "question2": {"id": second.question_id, "text": second.question_text},
                            "similarity": round(similarity, 3),
                        }
                    )

        pairs.sort(key=lambda p: p["similarity"], reverse=True)
        return {
            "threshold": params.threshold,
            "total_questions": len(found),
            "count": min(len(pairs), params.limit),
            "duplicates": pairs[: params.limit],
        }


def create_question_tools(questions: QuestionRepositoryProtocol) -> list[ToolProtocol]:
    """All question bank tools bound to one repository."""
    return [
        GetQuestionsTool(questions),
        GetQuestionByIdTool(questions),
        SearchQuestionsTool(questions),
        CreateQuestionTool(questions),
        DeleteQuestionTool(questions),
        FindDuplicateQuestionsTool(questions),
    ]
