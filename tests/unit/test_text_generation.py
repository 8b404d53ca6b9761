"""
Unit Tests for Structured Text Generation

Covers prompt construction, validation of generated quiz and flashcard
payloads, and the Gemini adapter with a mocked client.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from studyhub.core.errors import GenerationError
from studyhub.services.text_generation import (
    QUIZ_SCHEMA,
    GeminiTextGenerator,
    build_flashcards_prompt,
    build_quiz_prompt,
    generate_flashcard_drafts,
    generate_quiz,
    parse_flashcards,
    parse_quiz,
)
from tests.conftest import StubGenerator

VALID_QUIZ = {
    "topic": "Biology",
    "question": "What is the powerhouse of the cell?",
    "options": ["Nucleus", "Mitochondria", "Ribosome", "Golgi"],
    "correctOptionIndex": 1,
}


class TestPrompts:
    def test_context_is_clipped(self) -> None:
        context = "x" * 5000

        prompt = build_quiz_prompt(context)

        assert "x" * 4000 in prompt
        assert "x" * 4001 not in prompt

    def test_flashcard_prompt_mentions_front_and_back(self) -> None:
        prompt = build_flashcards_prompt("Photosynthesis")

        assert "'front'" in prompt and "'back'" in prompt
        assert "Photosynthesis" in prompt


class TestParseQuiz:
    def test_valid_quiz(self) -> None:
        quiz = parse_quiz(json.dumps(VALID_QUIZ))

        assert quiz.correctOptionIndex == 1
        assert quiz.options[1] == "Mitochondria"

    @pytest.mark.parametrize(
        "override",
        [
            {"correctOptionIndex": 4},
            {"correctOptionIndex": -1},
            {"options": ["Only one"], "correctOptionIndex": 0},
            {"question": "   "},
        ],
    )
    def test_rejects_invalid_quiz(self, override) -> None:
        with pytest.raises(GenerationError):
            parse_quiz(json.dumps({**VALID_QUIZ, **override}))

    def test_rejects_missing_fields(self) -> None:
        with pytest.raises(GenerationError):
            parse_quiz(json.dumps({"question": "q"}))

    def test_rejects_non_json(self) -> None:
        with pytest.raises(GenerationError):
            parse_quiz("Here is your quiz!")


class TestParseFlashcards:
    def test_strips_text(self) -> None:
        drafts = parse_flashcards(json.dumps([{"front": " ATP ", "back": " Energy currency "}]))

        assert drafts[0].front == "ATP"
        assert drafts[0].back == "Energy currency"

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"front": "a", "back": "b"},
            [{"front": "a"}],
            [{"front": "a", "back": "  "}],
            [{"front": "a", "back": "b"}, "oops"],
        ],
    )
    def test_rejects_invalid_payloads(self, payload) -> None:
        with pytest.raises(GenerationError):
            parse_flashcards(json.dumps(payload))


class TestGenerate:
    @pytest.mark.asyncio
    async def test_generate_quiz(self) -> None:
        generator = StubGenerator(json.dumps(VALID_QUIZ))

        quiz = await generate_quiz(generator, "Cells have mitochondria")

        assert quiz.topic == "Biology"
        assert "Cells have mitochondria" in generator.prompts[0]

    @pytest.mark.asyncio
    async def test_unexpected_generator_errors_are_wrapped(self) -> None:
        generator = StubGenerator(RuntimeError("socket closed"))

        with pytest.raises(GenerationError) as exc_info:
            await generate_flashcard_drafts(generator, "text")

        assert isinstance(exc_info.value.cause, RuntimeError)


class TestGeminiTextGenerator:
    @pytest.fixture
    def client(self) -> MagicMock:
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_requests_json_with_schema(self, client) -> None:
        client.aio.models.generate_content.return_value = SimpleNamespace(text=json.dumps(VALID_QUIZ))

        raw = await GeminiTextGenerator(client, model="test-model").generate_structured("prompt", QUIZ_SCHEMA)

        assert json.loads(raw) == VALID_QUIZ
        kwargs = client.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["config"]["response_mime_type"] == "application/json"
        assert kwargs["config"]["response_schema"] == QUIZ_SCHEMA

    @pytest.mark.asyncio
    async def test_empty_response_is_an_error(self, client) -> None:
        client.aio.models.generate_content.return_value = SimpleNamespace(text="")

        with pytest.raises(GenerationError):
            await GeminiTextGenerator(client).generate_structured("prompt", QUIZ_SCHEMA)

    @pytest.mark.asyncio
    async def test_sdk_errors_are_wrapped(self, client) -> None:
        client.aio.models.generate_content.side_effect = RuntimeError("quota exceeded")

        with pytest.raises(GenerationError):
            await GeminiTextGenerator(client).generate_structured("prompt", QUIZ_SCHEMA)
