"""
Shared Test Fixtures and Configuration

Room tests run against the in-memory document store with a controllable
clock; MongoDB, Redis and Gemini are replaced with mocks.
"""

import os
import tempfile
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

# Keep configuration predictable regardless of any local .env
os.environ.setdefault("DOCUMENT_STORE_BACKEND", "memory")
os.environ["GEMINI_API_KEY"] = ""
os.environ.setdefault("RESOURCES_DIR", tempfile.mkdtemp(prefix="studyhub-resources-"))

from studyhub.models.room import RoomUser, QuizPayload  # noqa: E402
from studyhub.services.document_store import MemoryDocumentStore  # noqa: E402
from studyhub.services.room_sync import RoomSynchronizer  # noqa: E402
from studyhub.services.text_generation import TextGenerator  # noqa: E402

START_MS = 1_700_000_000_000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to"""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


class StubGenerator(TextGenerator):
    """Text generator returning canned responses in order"""

    def __init__(self, *responses: str):
        self.responses: List[str] = list(responses)
        self.prompts: List[str] = []

    async def generate_structured(self, prompt, schema):
        self.prompts.append(prompt)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def sync(store, clock) -> RoomSynchronizer:
    return RoomSynchronizer(store, clock=clock)


@pytest.fixture
def owner() -> RoomUser:
    return RoomUser(email="ada@example.com", displayName="Ada")


@pytest.fixture
def guest() -> RoomUser:
    return RoomUser(email="grace@example.com", displayName="Grace")


@pytest.fixture
async def room(sync, owner):
    """A freshly created room owned by ``owner``"""
    return await sync.create_room("Algorithms", "cs101", 4, owner)


@pytest.fixture
def quiz_payload() -> QuizPayload:
    return QuizPayload(
        topic="Sorting",
        question="Which sort is stable?",
        options=["Quicksort", "Heapsort", "Merge sort"],
        correctOptionIndex=2,
    )


@pytest.fixture
def mock_collection() -> MagicMock:
    """Motor collection mock; cursor chains are configured per test"""
    collection = MagicMock()
    collection.find_one = AsyncMock()
    collection.insert_many = AsyncMock()
    collection.delete_many = AsyncMock()
    collection.update_one = AsyncMock()
    collection.delete_one = AsyncMock()
    return collection
