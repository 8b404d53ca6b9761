"""
Unit Tests for the HTTP and WebSocket Routes

The app runs under FastAPI's TestClient with every service dependency
overridden: rooms use the in-memory document store, flashcards a mocked
service, resources a blob store under tmp_path.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from studyhub.api.dependencies import (
    get_flashcard_service,
    get_genai_client,
    get_resource_service,
    get_room_synchronizer,
    get_text_generator,
)
from studyhub.api.routes import rooms
from studyhub.core.errors import FlashcardNotFoundError, GenerationError, PersistenceError
from studyhub.main import app
from studyhub.models.flashcard import Flashcard
from studyhub.services.resources import LocalBlobStore, ResourceService
from tests.conftest import StubGenerator

ADA = {"email": "ada@example.com", "displayName": "Ada"}
GRACE = {"email": "grace@example.com", "displayName": "Grace"}


@pytest.fixture
def flashcard_service() -> MagicMock:
    service = MagicMock()
    service.deck = AsyncMock(return_value=[])
    service.due = AsyncMock(return_value=[])
    service.generate = AsyncMock(return_value=[])
    service.review = AsyncMock()
    service.delete = AsyncMock()
    return service


@pytest.fixture
def generator_holder():
    """Mutable slot so a test can swap the text generator after startup"""
    return {"generator": None}


@pytest.fixture
def api(sync, flashcard_service, generator_holder, tmp_path):
    resources = ResourceService(LocalBlobStore(str(tmp_path), "/files"), max_bytes=64)
    app.dependency_overrides[get_room_synchronizer] = lambda: sync
    app.dependency_overrides[get_flashcard_service] = lambda: flashcard_service
    app.dependency_overrides[get_text_generator] = lambda: generator_holder["generator"]
    app.dependency_overrides[get_genai_client] = lambda: None
    app.dependency_overrides[get_resource_service] = lambda: resources
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def create_room(api, creator=ADA, name="Algorithms") -> str:
    response = api.post("/api/rooms", json={"name": name, "courseId": "cs101", "maxUsers": 2, "creator": creator})
    assert response.status_code == 200
    return response.json()["room"]["id"]


def receive_until(ws, event_type: str, predicate=lambda payload: True, limit: int = 50):
    """Read websocket events until one of ``event_type`` matches ``predicate``"""
    for _ in range(limit):
        message = ws.receive_json()
        if message["type"] == event_type and predicate(message["payload"]):
            return message["payload"]
    raise AssertionError(f"No {event_type} event received")


class TestRoot:
    def test_root(self, api) -> None:
        response = api.get("/")

        assert response.status_code == 200
        assert response.json()["success"] is True


class TestRoomRoutes:
    def test_create_and_get_room(self, api) -> None:
        room_id = create_room(api)

        response = api.get(f"/api/rooms/{room_id}")

        assert response.status_code == 200
        assert response.json()["room"]["createdBy"] == ADA["email"]
        assert [r["id"] for r in api.get("/api/rooms").json()["rooms"]] == [room_id]

    def test_create_room_requires_name(self, api) -> None:
        response = api.post("/api/rooms", json={"name": "  ", "courseId": "c", "creator": ADA})

        assert response.status_code == 400

    def test_missing_room(self, api) -> None:
        assert api.get("/api/rooms/NOPE00").status_code == 404
        assert api.post("/api/rooms/NOPE00/join", json=GRACE).status_code == 404

    def test_join_reports_capacity(self, api) -> None:
        room_id = create_room(api)

        first = api.post(f"/api/rooms/{room_id}/join", json=GRACE).json()
        again = api.post(f"/api/rooms/{room_id}/join", json=GRACE).json()
        third = api.post(f"/api/rooms/{room_id}/join", json={"email": "alan@example.com", "displayName": "Alan"}).json()

        assert first["isFull"] is False
        assert again["isFull"] is False
        assert third["isFull"] is True
        users = api.get(f"/api/rooms/{room_id}").json()["room"]["users"]
        assert len(users) == 3

    def test_leave(self, api) -> None:
        room_id = create_room(api)
        api.post(f"/api/rooms/{room_id}/join", json=GRACE)

        response = api.post(f"/api/rooms/{room_id}/leave", json=GRACE)

        assert response.status_code == 200
        assert api.get(f"/api/rooms/{room_id}").json()["room"]["users"] == [ADA]


class TestTimerRoutes:
    def test_owner_starts_timer(self, api) -> None:
        room_id = create_room(api)

        response = api.post(f"/api/rooms/{room_id}/timer/start", json={"email": ADA["email"]})

        assert response.status_code == 200
        assert response.json()["pomodoro"]["state"] == "running"

    def test_non_owner_is_forbidden(self, api) -> None:
        room_id = create_room(api)

        response = api.post(f"/api/rooms/{room_id}/timer/reset", json={"email": GRACE["email"]})

        assert response.status_code == 403

    def test_unknown_action(self, api) -> None:
        room_id = create_room(api)

        response = api.post(f"/api/rooms/{room_id}/timer/pause", json={"email": ADA["email"]})

        assert response.status_code == 400


class TestQuizRoutes:
    QUIZ = {"topic": "Sorting", "question": "Stable?", "options": ["Quick", "Merge"], "correctOptionIndex": 1}

    def test_post_answer_and_clear(self, api) -> None:
        room_id = create_room(api)
        quiz = api.post(f"/api/rooms/{room_id}/quiz", json=self.QUIZ).json()["quiz"]

        answer = api.post(
            f"/api/rooms/{room_id}/quiz/answers",
            json={"userId": ADA["email"], "displayName": "Ada", "answerIndex": 1},
        )
        current = api.get(f"/api/rooms/{room_id}/quiz").json()["quiz"]

        assert answer.status_code == 200
        assert current["id"] == quiz["id"]
        assert [a["answerIndex"] for a in current["answers"]] == [1]

        assert api.delete(f"/api/rooms/{room_id}/quiz").status_code == 200
        assert api.get(f"/api/rooms/{room_id}/quiz").json()["quiz"] is None

    def test_invalid_quiz_rejected(self, api) -> None:
        room_id = create_room(api)

        response = api.post(f"/api/rooms/{room_id}/quiz", json={**self.QUIZ, "correctOptionIndex": 5})

        assert response.status_code == 400

    def test_answer_out_of_range(self, api) -> None:
        room_id = create_room(api)
        api.post(f"/api/rooms/{room_id}/quiz", json=self.QUIZ)

        response = api.post(
            f"/api/rooms/{room_id}/quiz/answers",
            json={"userId": ADA["email"], "displayName": "Ada", "answerIndex": 7},
        )

        assert response.status_code == 400

    def test_answer_without_quiz(self, api) -> None:
        room_id = create_room(api)

        response = api.post(
            f"/api/rooms/{room_id}/quiz/answers",
            json={"userId": ADA["email"], "displayName": "Ada", "answerIndex": 0},
        )

        assert response.status_code == 404

    def test_generate_without_generator(self, api) -> None:
        room_id = create_room(api)

        response = api.post(f"/api/rooms/{room_id}/quiz/generate", json={"requestedBy": ADA})

        assert response.status_code == 502

    def test_generate_quiz(self, api, generator_holder) -> None:
        generator_holder["generator"] = StubGenerator(json.dumps(self.QUIZ))
        room_id = create_room(api)
        api.put(f"/api/rooms/{room_id}/context", json={"content": "Merge sort is stable"})

        response = api.post(f"/api/rooms/{room_id}/quiz/generate", json={"requestedBy": ADA})

        assert response.status_code == 200
        assert response.json()["quiz"]["question"] == "Stable?"

        again = api.post(f"/api/rooms/{room_id}/quiz/generate", json={"requestedBy": ADA})
        assert again.status_code == 409


class TestChatRoutes:
    def test_post_and_list_messages(self, api) -> None:
        room_id = create_room(api)

        api.post(f"/api/rooms/{room_id}/messages", json={"text": "hello", "user": ADA})
        messages = api.get(f"/api/rooms/{room_id}/messages").json()["messages"]

        assert [m["parts"][0]["text"] for m in messages] == ["hello"]

    def test_empty_message_rejected(self, api) -> None:
        room_id = create_room(api)

        response = api.post(f"/api/rooms/{room_id}/messages", json={"text": " ", "user": ADA})

        assert response.status_code == 400


class TestResourceRoutes:
    def test_upload_list_delete(self, api) -> None:
        room_id = create_room(api)

        uploaded = api.post(
            f"/api/rooms/{room_id}/resources",
            files={"file": ("notes.txt", b"short notes", "text/plain")},
            data={"uploader": "Ada"},
        )
        listing = api.get(f"/api/rooms/{room_id}/resources").json()

        assert uploaded.status_code == 200
        assert uploaded.json()["resource"]["uploader"] == "Ada"
        assert [r["name"] for r in listing["resources"]] == ["notes.txt"]

        assert api.delete(f"/api/rooms/{room_id}/resources/notes.txt").status_code == 200
        assert api.get(f"/api/rooms/{room_id}/resources").json()["count"] == 0

    def test_upload_too_large(self, api) -> None:
        room_id = create_room(api)

        response = api.post(
            f"/api/rooms/{room_id}/resources",
            files={"file": ("big.bin", b"x" * 65, "application/octet-stream")},
        )

        assert response.status_code == 413

    @pytest.mark.asyncio
    async def test_declared_size_rejected_before_reading(self, sync, room, tmp_path) -> None:
        resources = ResourceService(LocalBlobStore(str(tmp_path), "/files"), max_bytes=64)
        file = MagicMock(filename="big.bin", size=10_000)
        file.read = AsyncMock()

        with pytest.raises(HTTPException) as exc_info:
            await rooms.upload_resource(room.id, file=file, uploader=None, sync=sync, resources=resources)

        assert exc_info.value.status_code == 413
        file.read.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_undeclared_size_reads_at_most_one_past_limit(self, sync, room, tmp_path) -> None:
        resources = ResourceService(LocalBlobStore(str(tmp_path), "/files"), max_bytes=64)
        file = MagicMock(filename="big.bin", size=None)
        file.read = AsyncMock(return_value=b"x" * 65)

        with pytest.raises(HTTPException) as exc_info:
            await rooms.upload_resource(room.id, file=file, uploader=None, sync=sync, resources=resources)

        assert exc_info.value.status_code == 413
        file.read.assert_awaited_once_with(65)


class TestFlashcardRoutes:
    def test_deck(self, api, flashcard_service) -> None:
        flashcard_service.deck.return_value = [Flashcard(id="c1", front="Q", back="A")]

        response = api.get("/flashcards/bio")

        assert response.status_code == 200
        assert response.json()["count"] == 1
        flashcard_service.deck.assert_awaited_once_with("bio")

    def test_review(self, api, flashcard_service) -> None:
        flashcard_service.review.return_value = Flashcard(id="c1", front="Q", back="A", bucket=2, lastReview=5)

        response = api.post("/flashcards/bio/c1/review", json={"correct": True})

        assert response.json()["data"]["bucket"] == 2
        flashcard_service.review.assert_awaited_once_with("bio", "c1", True)

    def test_review_missing_card(self, api, flashcard_service) -> None:
        flashcard_service.review.side_effect = FlashcardNotFoundError("c1")

        assert api.post("/flashcards/bio/c1/review", json={"correct": False}).status_code == 404

    def test_store_unavailable(self, api, flashcard_service) -> None:
        flashcard_service.due.side_effect = PersistenceError("list_deck")

        assert api.get("/flashcards/bio/due").status_code == 503

    def test_generate_validation(self, api, flashcard_service) -> None:
        assert api.post("/flashcards/bio/generate", json={"text": "  "}).status_code == 400

        flashcard_service.generate.side_effect = GenerationError("bad output")
        assert api.post("/flashcards/bio/generate", json={"text": "notes"}).status_code == 502

    def test_delete(self, api, flashcard_service) -> None:
        assert api.delete("/flashcards/bio/c1").status_code == 200
        flashcard_service.delete.assert_awaited_once_with("bio", "c1")


class TestRoomWebSocket:
    def test_chat_over_websocket(self, api) -> None:
        room_id = create_room(api)

        with api.websocket_connect(f"/api/ws/rooms/{room_id}?email={ADA['email']}&display_name=Ada") as ws:
            receive_until(ws, "room")
            ws.send_json({"type": "chat", "payload": {"text": "hello room"}})

            messages = receive_until(ws, "messages", lambda payload: len(payload) > 0)

        assert messages[-1]["parts"] == [{"text": "hello room"}]

    def test_unknown_message_type(self, api) -> None:
        room_id = create_room(api)

        with api.websocket_connect(f"/api/ws/rooms/{room_id}?email={ADA['email']}&display_name=Ada") as ws:
            ws.send_json({"type": "dance"})

            error = receive_until(ws, "error")

        assert "Unknown message type" in error["message"]

    def test_reaction_reaches_other_participants(self, api) -> None:
        room_id = create_room(api)
        ada_url = f"/api/ws/rooms/{room_id}?email={ADA['email']}&display_name=Ada"
        grace_url = f"/api/ws/rooms/{room_id}?email={GRACE['email']}&display_name=Grace"

        with api.websocket_connect(ada_url) as ada, api.websocket_connect(grace_url) as grace:
            receive_until(grace, "room")
            receive_until(ada, "roster", lambda payload: payload["arrived"] == [GRACE])
            ada.send_json({"type": "reaction", "payload": {"emoji": "🎉"}})

            reaction = receive_until(grace, "reaction")

        assert reaction == {"emoji": "🎉", "user": ADA}

    def test_missing_room_closes_socket(self, api) -> None:
        with api.websocket_connect(f"/api/ws/rooms/NOPE00?email={ADA['email']}&display_name=Ada") as ws:
            error = ws.receive_json()

        assert error["type"] == "error"
