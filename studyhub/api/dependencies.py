"""
FastAPI Dependencies

Shared service instances for the routers. Each provider is cached so the
whole process shares one document store, one Gemini client and one set of
services; tests swap them out through ``app.dependency_overrides``.
"""
import logging
from functools import lru_cache
from typing import Optional

from google import genai

from studyhub.core.config import (
    DOCUMENT_STORE_BACKEND,
    GEMINI_API_KEY,
    MAX_RESOURCE_BYTES,
    RESOURCES_BASE_URL,
    RESOURCES_DIR,
)
from studyhub.core.database import flashcards_collection, redis_client
from studyhub.services.document_store import DocumentStore, MemoryDocumentStore, RedisDocumentStore
from studyhub.services.flashcard_service import FlashcardRepository, FlashcardService
from studyhub.services.resources import LocalBlobStore, ResourceService
from studyhub.services.room_sync import RoomSynchronizer
from studyhub.services.text_generation import GeminiTextGenerator, TextGenerator

logger = logging.getLogger(__name__)


@lru_cache
def get_document_store() -> DocumentStore:
    if DOCUMENT_STORE_BACKEND == "memory":
        logger.warning("Using the in-memory document store; room state is not shared between processes")
        return MemoryDocumentStore()
    return RedisDocumentStore(redis_client)


@lru_cache
def get_room_synchronizer() -> RoomSynchronizer:
    return RoomSynchronizer(get_document_store())


@lru_cache
def get_genai_client() -> Optional[genai.Client]:
    """Gemini client, or None when no API key is configured"""
    if not GEMINI_API_KEY:
        logger.warning("GEMINI_API_KEY is not set; quiz, flashcard and study buddy generation are disabled")
        return None
    return genai.Client(api_key=GEMINI_API_KEY)


@lru_cache
def get_text_generator() -> Optional[TextGenerator]:
    client = get_genai_client()
    return GeminiTextGenerator(client) if client is not None else None


@lru_cache
def get_flashcard_service() -> FlashcardService:
    return FlashcardService(FlashcardRepository(flashcards_collection), get_text_generator())


@lru_cache
def get_resource_service() -> ResourceService:
    return ResourceService(LocalBlobStore(RESOURCES_DIR, RESOURCES_BASE_URL), MAX_RESOURCE_BYTES)
