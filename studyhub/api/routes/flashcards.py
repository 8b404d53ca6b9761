from fastapi import APIRouter, Depends, HTTPException
import logging

from studyhub.api.dependencies import get_flashcard_service
from studyhub.api.http_errors import to_http_exception
from studyhub.models.flashcard import (
    FlashcardDeckResponse,
    FlashcardReviewResponse,
    GenerateFlashcardsRequest,
    ReviewRequest,
)
from studyhub.services.flashcard_service import FlashcardService

router = APIRouter(prefix="/flashcards", tags=["flashcards"])
logger = logging.getLogger(__name__)


@router.get("/{course_id}", response_model=FlashcardDeckResponse, summary="Get every flashcard in a course deck")
async def get_deck(course_id: str, service: FlashcardService = Depends(get_flashcard_service)):
    try:
        cards = await service.deck(course_id)
        return FlashcardDeckResponse(success=True, data=cards, count=len(cards))
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "fetching flashcards")


@router.get("/{course_id}/due", response_model=FlashcardDeckResponse, summary="Get the cards due for review now")
async def get_due_cards(course_id: str, service: FlashcardService = Depends(get_flashcard_service)):
    try:
        cards = await service.due(course_id)
        return FlashcardDeckResponse(success=True, data=cards, count=len(cards))
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "fetching due flashcards")


@router.post("/{course_id}/generate", response_model=FlashcardDeckResponse, summary="Generate flashcards from study text")
async def generate_flashcards(
    course_id: str,
    request: GenerateFlashcardsRequest,
    service: FlashcardService = Depends(get_flashcard_service),
):
    try:
        if not request.text or not request.text.strip():
            raise HTTPException(status_code=400, detail="Text cannot be empty")

        cards = await service.generate(course_id, request.text)
        return FlashcardDeckResponse(success=True, data=cards, count=len(cards))
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "generating flashcards")


@router.post("/{course_id}/{card_id}/review", response_model=FlashcardReviewResponse, summary="Record a review outcome")
async def review_flashcard(
    course_id: str,
    card_id: str,
    request: ReviewRequest,
    service: FlashcardService = Depends(get_flashcard_service),
):
    try:
        card = await service.review(course_id, card_id, request.correct)
        return FlashcardReviewResponse(success=True, data=card)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "reviewing flashcard")


@router.delete("/{course_id}/{card_id}", summary="Delete a flashcard")
async def delete_flashcard(course_id: str, card_id: str, service: FlashcardService = Depends(get_flashcard_service)):
    try:
        await service.delete(course_id, card_id)
        return {"success": True, "message": "Flashcard deleted successfully"}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "deleting flashcard")
