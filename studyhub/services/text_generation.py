import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from google import genai
from pydantic import ValidationError

from studyhub.core.config import GEMINI_API_KEY, GEMINI_MODEL, GENERATION_CONTEXT_LIMIT
from studyhub.core.errors import GenerationError
from studyhub.models.flashcard import FlashcardDraft
from studyhub.models.room import QuizPayload

logger = logging.getLogger(__name__)

QUIZ_SCHEMA = {
    "type": "object",
    "properties": {
        "topic": {
            "type": "string",
            "description": "A brief, one or two-word topic for the question (e.g., 'Photosynthesis', 'Calculus').",
        },
        "question": {"type": "string"},
        "options": {"type": "array", "items": {"type": "string"}},
        "correctOptionIndex": {"type": "integer"},
    },
    "required": ["topic", "question", "options", "correctOptionIndex"],
}

FLASHCARDS_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "front": {"type": "string"},
            "back": {"type": "string"},
        },
        "required": ["front", "back"],
    },
}


class TextGenerator(ABC):
    """Produces JSON text matching a response schema"""

    @abstractmethod
    async def generate_structured(self, prompt: str, schema: Dict[str, Any]) -> str:
        ...


class GeminiTextGenerator(TextGenerator):
    def __init__(self, client: Optional[genai.Client] = None, model: str = GEMINI_MODEL):
        self.client = client or genai.Client(api_key=GEMINI_API_KEY)
        self.model = model

    async def generate_structured(self, prompt: str, schema: Dict[str, Any]) -> str:
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config={
                    "response_mime_type": "application/json",
                    "response_schema": schema,
                },
            )
        except Exception as e:
            logger.error(f"Gemini request failed: {e}", exc_info=True)
            raise GenerationError("Text generation request failed", cause=e) from e

        text = (getattr(response, "text", None) or "").strip()
        if not text:
            raise GenerationError("Text generation returned an empty response")
        return text


def _clip(context: str) -> str:
    return context[:GENERATION_CONTEXT_LIMIT]


def build_quiz_prompt(context: str) -> str:
    return (
        "Based on the following context, generate a single multiple-choice quiz question "
        "to test understanding. The question should focus on a key concept from the text. "
        f'Context: "{_clip(context)}"'
    )


def build_flashcards_prompt(context: str) -> str:
    return (
        "Based on the following context, generate a list of flashcards. Each flashcard should "
        "have a 'front' (a question or term) and a 'back' (the answer or definition). "
        f'Context: "{_clip(context)}"'
    )


def _load_json(raw: str) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise GenerationError("Generated content is not valid JSON", cause=e) from e


def parse_quiz(raw: str) -> QuizPayload:
    data = _load_json(raw)
    if not isinstance(data, dict):
        raise GenerationError("Generated quiz is not an object")
    try:
        quiz = QuizPayload(**data)
    except ValidationError as e:
        raise GenerationError("Generated quiz is missing required fields", cause=e) from e

    if not quiz.question.strip():
        raise GenerationError("Generated quiz has an empty question")
    if len(quiz.options) < 2:
        raise GenerationError("Generated quiz needs at least two options")
    if not 0 <= quiz.correctOptionIndex < len(quiz.options):
        raise GenerationError(
            f"Generated quiz answer index {quiz.correctOptionIndex} is out of range"
        )
    return quiz


def parse_flashcards(raw: str) -> List[FlashcardDraft]:
    data = _load_json(raw)
    if not isinstance(data, list) or not data:
        raise GenerationError("Generated flashcards are not a non-empty list")

    drafts = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise GenerationError(f"Generated flashcard {index} is not an object")
        front, back = item.get("front"), item.get("back")
        if not isinstance(front, str) or not isinstance(back, str) or not front.strip() or not back.strip():
            raise GenerationError(f"Generated flashcard {index} needs a non-empty front and back")
        drafts.append(FlashcardDraft(front=front.strip(), back=back.strip()))
    return drafts


async def _request(generator: TextGenerator, prompt: str, schema: Dict[str, Any]) -> str:
    try:
        return await generator.generate_structured(prompt, schema)
    except GenerationError:
        raise
    except Exception as e:
        raise GenerationError("Text generation failed", cause=e) from e


async def generate_quiz(generator: TextGenerator, context: str) -> QuizPayload:
    raw = await _request(generator, build_quiz_prompt(context), QUIZ_SCHEMA)
    return parse_quiz(raw)


async def generate_flashcard_drafts(generator: TextGenerator, text: str) -> List[FlashcardDraft]:
    raw = await _request(generator, build_flashcards_prompt(text), FLASHCARDS_SCHEMA)
    return parse_flashcards(raw)
