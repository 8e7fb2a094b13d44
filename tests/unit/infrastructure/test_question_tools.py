"""Unit tests for the question bank tools."""

import asyncio
import json

import pytest

from questforce.infrastructure.persistence.sqlite import SqliteStore
from questforce.infrastructure.tools.questions import (
    CreateQuestionTool,
    DeleteQuestionTool,
    FindDuplicateQuestionsTool,
    GetQuestionByIdTool,
    GetQuestionsTool,
    SearchQuestionsTool,
    create_question_tools,
    jaccard_similarity,
)


@pytest.fixture
def questions(sqlite_store):
    return sqlite_store.questions


def payload(result):
    assert result.success, result.error
    return json.loads(result.content)


async def seed(questions, user_id, *texts, category=None):
    return [await questions.create(user_id, text, category=category) for text in texts]


class TestJaccardSimilarity:
    def test_identical_ignoring_case_and_punctuation(self):
        assert jaccard_similarity("What is Python?", "what is python") == 1.0

    def test_partial_overlap(self):
        similarity = jaccard_similarity(
            "What is a Python decorator", "What is a Python generator"
        )
        assert similarity == pytest.approx(4 / 6)

    def test_empty_texts(self):
        assert jaccard_similarity("", "") == 0.0


class TestQuestionTools:
    def test_catalog_names(self, questions):
        names = [tool.name for tool in create_question_tools(questions)]

        assert names == [
            "get_questions",
            "get_question_by_id",
            "search_questions",
            "create_question",
            "delete_question",
            "find_duplicate_questions",
        ]

    def test_input_schema_is_json_schema(self, questions):
        schema = CreateQuestionTool(questions).input_schema

        assert schema["type"] == "object"
        assert "question_text" in schema["required"]

    @pytest.mark.asyncio
    async def test_create_then_get(self, questions):
        created = payload(
            await CreateQuestionTool(questions).execute(
                {"question_text": "  Explain closures  ", "category": "python", "tags": ["fp"]},
                "user-a",
            )
        )
        question_id = created["question"]["id"]

        fetched = payload(
            await GetQuestionByIdTool(questions).execute({"question_id": question_id}, "user-a")
        )

        assert fetched["question"]["question_text"] == "Explain closures"
        assert fetched["question"]["tags"] == ["fp"]

    @pytest.mark.asyncio
    async def test_create_rejects_blank_text(self, questions):
        result = await CreateQuestionTool(questions).execute({"question_text": "   "}, "user-a")

        assert not result.success
        assert result.error.startswith("Validation error:")
        assert await questions.list_for_user("user-a") == []

    @pytest.mark.asyncio
    async def test_missing_required_field(self, questions):
        result = await GetQuestionByIdTool(questions).execute({}, "user-a")

        assert not result.success
        assert "question_id" in result.error

    @pytest.mark.asyncio
    async def test_other_users_question_not_found(self, questions):
        [question] = await seed(questions, "user-b", "Private question")

        result = await GetQuestionByIdTool(questions).execute(
            {"question_id": question.question_id}, "user-a"
        )

        assert not result.success
        assert result.error == f"QuestionNotFoundError: Question not found: {question.question_id}"

    @pytest.mark.asyncio
    async def test_get_questions_filters(self, questions):
        await seed(questions, "user-a", "One", "Two", category="python")
        await seed(questions, "user-a", "Three", category="sql")
        await seed(questions, "user-b", "Four", category="python")

        result = payload(
            await GetQuestionsTool(questions).execute({"category": "python", "limit": 1}, "user-a")
        )

        assert result["count"] == 1
        assert result["questions"][0]["question_text"] == "One"

    @pytest.mark.asyncio
    async def test_get_questions_limit_bounds(self, questions):
        result = await GetQuestionsTool(questions).execute({"limit": 0}, "user-a")

        assert not result.success

    @pytest.mark.asyncio
    async def test_search_matches_text_and_answer(self, questions):
        await questions.create("user-a", "What is a generator?", answer="A lazy iterator")
        await questions.create("user-a", "Explain iterators")
        await questions.create("user-a", "Unrelated")

        result = payload(await SearchQuestionsTool(questions).execute({"query": "ITERATOR"}, "user-a"))

        assert result["count"] == 2

    @pytest.mark.asyncio
    async def test_delete_is_soft(self, questions):
        [question] = await seed(questions, "user-a", "Remove me")

        deleted = payload(
            await DeleteQuestionTool(questions).execute(
                {"question_id": question.question_id}, "user-a"
            )
        )
        active = payload(await GetQuestionsTool(questions).execute({}, "user-a"))
        everything = payload(
            await GetQuestionsTool(questions).execute({"include_inactive": True}, "user-a")
        )

        assert deleted == {"deleted": True, "question_id": question.question_id}
        assert active["count"] == 0
        assert everything["questions"][0]["is_active"] is False

    @pytest.mark.asyncio
    async def test_delete_other_users_question_fails(self, questions):
        [question] = await seed(questions, "user-b", "Not yours")

        result = await DeleteQuestionTool(questions).execute(
            {"question_id": question.question_id}, "user-a"
        )

        assert not result.success
        stored = await questions.get(question.question_id, "user-b")
        assert stored.is_active is True


class TestFindDuplicateQuestions:
    @pytest.mark.asyncio
    async def test_finds_pairs_above_threshold(self, questions):
        await seed(
            questions,
            "user-a",
            "What is Python?",
            "What is python",
            "What is a Python decorator",
            "What is a Python generator",
            "How do joins work in SQL",
        )

        result = payload(await FindDuplicateQuestionsTool(questions).execute({}, "user-a"))

        assert result["threshold"] == 0.7
        assert result["total_questions"] == 5
        assert result["count"] == 1
        pair = result["duplicates"][0]
        assert pair["similarity"] == 1.0
        assert {pair["question1"]["text"], pair["question2"]["text"]} == {
            "What is Python?",
            "What is python",
        }

    @pytest.mark.asyncio
    async def test_sorted_by_similarity_and_limited(self, questions):
        await seed(
            questions,
            "user-a",
            "What is a Python decorator",
            "What is a Python generator",
            "What is Python",
            "what is python",
        )

        result = payload(
            await FindDuplicateQuestionsTool(questions).execute(
                {"threshold": 0.5, "limit": 2}, "user-a"
            )
        )

        similarities = [p["similarity"] for p in result["duplicates"]]
        assert similarities == sorted(similarities, reverse=True)
        assert similarities[0] == 1.0
        assert result["count"] == 2

    @pytest.mark.asyncio
    async def test_ignores_other_users(self, questions):
        await seed(questions, "user-a", "What is Python")
        await seed(questions, "user-b", "What is Python")

        result = payload(await FindDuplicateQuestionsTool(questions).execute({}, "user-a"))

        assert result["count"] == 0

    @pytest.mark.asyncio
    async def test_threshold_out_of_range(self, questions):
        result = await FindDuplicateQuestionsTool(questions).execute({"threshold": 1.5}, "user-a")

        assert not result.success

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, questions):
        cancel = asyncio.Event()
        cancel.set()

        result = await FindDuplicateQuestionsTool(questions).execute({}, "user-a", cancel)

        assert not result.success
        assert result.error == "Tool execution cancelled"


class TestQuestionPersistence:
    @pytest.mark.asyncio
    async def test_questions_survive_reopening_the_database(self, sqlite_store):
        created = payload(
            await CreateQuestionTool(sqlite_store.questions).execute(
                {"question_text": "What is a context manager?", "tags": ["python"]},
                "user-a",
            )
        )

        reopened = SqliteStore(sqlite_store.db_path)
        listed = payload(await GetQuestionsTool(reopened.questions).execute({}, "user-a"))

        assert listed["count"] == 1
        assert listed["questions"][0]["id"] == created["question"]["id"]
        assert listed["questions"][0]["tags"] == ["python"]

    @pytest.mark.asyncio
    async def test_reopened_database_stays_owner_scoped(self, sqlite_store):
        [question] = await seed(sqlite_store.questions, "user-b", "Private question")

        reopened = SqliteStore(sqlite_store.db_path)
        others = payload(await GetQuestionsTool(reopened.questions).execute({}, "user-a"))
        fetched = await GetQuestionByIdTool(reopened.questions).execute(
            {"question_id": question.question_id}, "user-a"
        )

        assert others["count"] == 0
        assert not fetched.success

    @pytest.mark.asyncio
    async def test_deletion_is_persisted(self, sqlite_store):
        [question] = await seed(sqlite_store.questions, "user-a", "Remove me")
        await DeleteQuestionTool(sqlite_store.questions).execute(
            {"question_id": question.question_id}, "user-a"
        )

        reopened = SqliteStore(sqlite_store.db_path)
        stored = await reopened.questions.get(question.question_id, "user-a")

        assert stored.is_active is False
        assert await reopened.questions.list_for_user("user-a") == []
