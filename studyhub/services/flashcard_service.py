import logging
from typing import List, Optional

from pymongo.errors import PyMongoError

from studyhub.core.clock import now_ms
from studyhub.core.errors import FlashcardNotFoundError, GenerationError, PersistenceError
from studyhub.models.flashcard import Flashcard
from studyhub.services import spaced_repetition
from studyhub.services.text_generation import TextGenerator, generate_flashcard_drafts

logger = logging.getLogger(__name__)


def _stored_bucket(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    # Some drivers and imports write whole numbers as doubles
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


class FlashcardRepository:
    """Flashcard documents in MongoDB, one document per card keyed by card id"""

    def __init__(self, collection):
        self.collection = collection

    @staticmethod
    def _to_card(doc: dict) -> Flashcard:
        # Unusable scheduling fields become None so the card reads as due
        bucket = doc.get("bucket")
        last_review = doc.get("lastReview")
        return Flashcard(
            id=str(doc["_id"]),
            front=doc.get("front", ""),
            back=doc.get("back", ""),
            bucket=_stored_bucket(bucket),
            lastReview=last_review if isinstance(last_review, (int, float)) and not isinstance(last_review, bool) else None,
        )

    async def list_deck(self, course_id: str) -> List[Flashcard]:
        try:
            cursor = self.collection.find({"courseId": course_id}).sort("_id", 1)
            docs = await cursor.to_list(length=None)
        except PyMongoError as e:
            raise PersistenceError("list_deck", e) from e
        return [self._to_card(doc) for doc in docs]

    async def get(self, course_id: str, card_id: str) -> Optional[Flashcard]:
        try:
            doc = await self.collection.find_one({"_id": card_id, "courseId": course_id})
        except PyMongoError as e:
            raise PersistenceError("get_flashcard", e) from e
        return self._to_card(doc) if doc else None

    async def insert_many(self, course_id: str, cards: List[Flashcard]) -> None:
        """Insert every card or none of them"""
        docs = [
            {
                "_id": card.id,
                "courseId": course_id,
                "front": card.front,
                "back": card.back,
                "bucket": card.bucket,
                "lastReview": card.lastReview,
            }
            for card in cards
        ]
        try:
            await self.collection.insert_many(docs, ordered=True)
        except PyMongoError as e:
            logger.error(f"Bulk flashcard insert failed for course {course_id}, rolling back: {e}")
            try:
                await self.collection.delete_many({"_id": {"$in": [doc["_id"] for doc in docs]}})
            except PyMongoError as rollback_error:
                logger.error(f"Rollback of flashcard insert failed: {rollback_error}", exc_info=True)
            raise PersistenceError("add_flashcards", e) from e

    async def update_review(self, course_id: str, card: Flashcard) -> None:
        try:
            result = await self.collection.update_one(
                {"_id": card.id, "courseId": course_id},
                {"$set": {"bucket": card.bucket, "lastReview": card.lastReview}},
            )
        except PyMongoError as e:
            raise PersistenceError("update_flashcard", e) from e
        if result.matched_count == 0:
            raise FlashcardNotFoundError(card.id)

    async def delete(self, course_id: str, card_id: str) -> None:
        try:
            result = await self.collection.delete_one({"_id": card_id, "courseId": course_id})
        except PyMongoError as e:
            raise PersistenceError("delete_flashcard", e) from e
        if result.deleted_count == 0:
            raise FlashcardNotFoundError(card_id)


class FlashcardService:
    def __init__(self, repository: FlashcardRepository, generator: Optional[TextGenerator] = None):
        self.repository = repository
        self.generator = generator

    async def deck(self, course_id: str) -> List[Flashcard]:
        return await self.repository.list_deck(course_id)

    async def due(self, course_id: str, now: Optional[int] = None) -> List[Flashcard]:
        deck = await self.repository.list_deck(course_id)
        return spaced_repetition.due_cards(deck, now if now is not None else now_ms())

    async def generate(self, course_id: str, text: str) -> List[Flashcard]:
        """Generate cards from ``text`` and add them to the deck.

        The generated payload is validated in full before anything is written,
        so a malformed response adds zero cards.
        """
        if self.generator is None:
            raise GenerationError("No text generator configured")
        if not text or not text.strip():
            raise GenerationError("Cannot generate flashcards from empty text")

        drafts = await generate_flashcard_drafts(self.generator, text)
        created_at = now_ms()
        cards = [spaced_repetition.new_card(d.front, d.back, created_at) for d in drafts]
        await self.repository.insert_many(course_id, cards)

        logger.info(f"Generated {len(cards)} flashcards for course {course_id}")
        return cards

    async def review(self, course_id: str, card_id: str, correct: bool) -> Flashcard:
        card = await self.repository.get(course_id, card_id)
        if card is None:
            raise FlashcardNotFoundError(card_id)

        updated = spaced_repetition.apply_review(card, correct)
        await self.repository.update_review(course_id, updated)
        logger.info(f"Reviewed flashcard {card_id}: correct={correct}, bucket {card.bucket} -> {updated.bucket}")
        return updated

    async def delete(self, course_id: str, card_id: str) -> None:
        await self.repository.delete(course_id, card_id)
