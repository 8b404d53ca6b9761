import logging
import random
import string
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, List, Optional, Sequence

from bson import ObjectId

from studyhub.core.clock import now_ms
from studyhub.core.config import CHAT_HISTORY_LIMIT, ROOM_CODE_LENGTH, SYSTEM_SENDER_EMAIL, SYSTEM_SENDER_NAME
from studyhub.core.errors import (
    DocumentNotFoundError,
    GenerationError,
    NotRoomOwnerError,
    PersistenceError,
    QuizActiveError,
    RoomNotFoundError,
)
from studyhub.models.room import (
    ChatMessage,
    MessagePart,
    PomodoroState,
    Quiz,
    QuizAnswer,
    QuizPayload,
    RosterDelta,
    RoomUser,
    StudyRoom,
)
from studyhub.services import pomodoro
from studyhub.services.document_store import ArrayRemove, ArrayUnion, DocumentStore, Subscription
from studyhub.services.text_generation import TextGenerator, generate_quiz

logger = logging.getLogger(__name__)

SYSTEM_USER = RoomUser(email=SYSTEM_SENDER_EMAIL, displayName=SYSTEM_SENDER_NAME)

ROOMS = "rooms"


def room_path(room_id: str) -> str:
    return f"{ROOMS}/{room_id}"


def quiz_path(room_id: str) -> str:
    return f"{ROOMS}/{room_id}/quiz/current_quiz"


def ai_context_path(room_id: str) -> str:
    return f"{ROOMS}/{room_id}/notes/shared_notes"


def user_notes_path(room_id: str) -> str:
    return f"{ROOMS}/{room_id}/notes/user_notes"


def chat_path(room_id: str) -> str:
    return f"{ROOMS}/{room_id}/chat/log"


def roster_delta(previous: Sequence[RoomUser], current: Sequence[RoomUser]) -> RosterDelta:
    """Who arrived and who departed between two roster snapshots, keyed by email"""
    previous_emails = {user.email for user in previous}
    current_emails = {user.email for user in current}
    return RosterDelta(
        arrived=[user for user in current if user.email not in previous_emails],
        departed=[user for user in previous if user.email not in current_emails],
    )


def messages_from(document: Optional[dict]) -> List[ChatMessage]:
    if not document:
        return []
    messages = [ChatMessage(**message) for message in document.get("messages", [])]
    messages.sort(key=lambda message: message.timestamp)
    return messages[-CHAT_HISTORY_LIMIT:]


def welcome_message(technique: str, topic: str) -> str:
    return (
        f'Welcome! This room is set up for a "Targeted Learning" session using the '
        f'{technique} technique on the topic: "{topic}". Let\'s get started!'
    )


class RoomSynchronizer:
    """
    Mutations and subscriptions for the shared state of study rooms.

    All state lives in the document store; every mutation is a single
    field-level write (last writer wins per field, array union/remove for
    lists), and every client recomputes derived values from the snapshots
    it receives.
    """

    def __init__(self, store: DocumentStore, clock: Callable[[], int] = now_ms):
        self.store = store
        self.clock = clock

    @asynccontextmanager
    async def _operation(self, name: str):
        try:
            yield
        except PersistenceError as e:
            logger.error(f"Room operation '{name}' failed: {e}")
            raise PersistenceError(name, e) from e

    # --- Rooms ---

    async def _generate_unique_code(self) -> str:
        """Generate a unique alphanumeric join code"""
        chars = string.ascii_uppercase + string.digits
        while True:
            code = ''.join(random.choices(chars, k=ROOM_CODE_LENGTH))
            if await self.store.get(room_path(code)) is None:
                return code

    async def create_room(
        self,
        name: str,
        course_id: str,
        max_users: int,
        creator: RoomUser,
        technique: Optional[str] = None,
        topic: Optional[str] = None,
        university: Optional[str] = None,
    ) -> StudyRoom:
        async with self._operation("create_room"):
            room_id = await self._generate_unique_code()
            room = StudyRoom(
                id=room_id,
                name=name,
                courseId=course_id,
                maxUsers=max_users,
                createdBy=creator.email,
                users=[creator],
                pomodoro=pomodoro.reset(),
                technique=technique,
                topic=topic,
                university=university,
            )
            await self.store.set(room_path(room_id), room.model_dump())
            messages = []
            if technique and topic:
                messages.append(self._system_message(welcome_message(technique, topic)).model_dump())
            await self.store.set(chat_path(room_id), {"messages": messages})

        logger.info(f"Created room {room_id} ({name}) for {creator.email}")
        return room

    async def get_room(self, room_id: str) -> Optional[StudyRoom]:
        async with self._operation("get_room"):
            document = await self.store.get(room_path(room_id))
        return StudyRoom(**document) if document else None

    async def require_room(self, room_id: str) -> StudyRoom:
        room = await self.get_room(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        return room

    async def list_rooms(self) -> List[StudyRoom]:
        async with self._operation("list_rooms"):
            documents = await self.store.list(ROOMS)
        return [StudyRoom(**document) for document in documents]

    # --- Roster ---

    async def join(self, room_id: str, user: RoomUser) -> None:
        # Keyed union: joining twice, even under another display name, keeps one entry
        async with self._operation("join"):
            await self.store.update(room_path(room_id), {"users": ArrayUnion(user.model_dump(), key="email")})
        logger.info(f"{user.email} joined room {room_id}")

    async def leave(self, room_id: str, user: RoomUser) -> None:
        async with self._operation("leave"):
            await self.store.update(room_path(room_id), {"users": ArrayRemove(user.model_dump())})
        logger.info(f"{user.email} left room {room_id}")

    # --- Pomodoro ---

    async def _owned_room(self, room_id: str, actor_email: str) -> StudyRoom:
        room = await self.require_room(room_id)
        if room.createdBy != actor_email:
            raise NotRoomOwnerError(room_id, actor_email)
        return room

    async def _write_pomodoro(self, room_id: str, state: PomodoroState) -> None:
        await self.store.update(room_path(room_id), {"pomodoro": state.model_dump()})

    async def start_timer(self, room_id: str, actor_email: str) -> PomodoroState:
        room = await self._owned_room(room_id, actor_email)
        state = pomodoro.start(room.pomodoro, self.clock())
        if state is not room.pomodoro:
            async with self._operation("start_timer"):
                await self._write_pomodoro(room_id, state)
        return state

    async def stop_timer(self, room_id: str, actor_email: str) -> PomodoroState:
        room = await self._owned_room(room_id, actor_email)
        state = pomodoro.stop(room.pomodoro)
        async with self._operation("stop_timer"):
            await self._write_pomodoro(room_id, state)
        return state

    async def reset_timer(self, room_id: str, actor_email: str) -> PomodoroState:
        await self._owned_room(room_id, actor_email)
        state = pomodoro.reset()
        async with self._operation("reset_timer"):
            await self._write_pomodoro(room_id, state)
        await self.post_system_message(room_id, "Timer has been reset to a new focus session.")
        return state

    async def expire_timer(self, room_id: str, actor_email: str, observed_start: Optional[int] = None) -> Optional[PomodoroState]:
        """
        Advance a finished period to the next mode.
        Returns None when there is nothing to do: the timer is not running, has not
        elapsed yet, or was restarted since the caller observed ``observed_start``
        """
        room = await self._owned_room(room_id, actor_email)
        current = room.pomodoro
        if not pomodoro.is_expired(current, self.clock()):
            return None
        if observed_start is not None and current.startTime != observed_start:
            return None

        state = pomodoro.expire(current)
        async with self._operation("expire_timer"):
            await self._write_pomodoro(room_id, state)
        await self.post_system_message(room_id, pomodoro.expiry_announcement(current.mode))
        logger.info(f"Room {room_id} timer: {current.mode} finished, next {state.mode}")
        return state

    # --- Shared quiz ---

    async def get_quiz(self, room_id: str) -> Optional[Quiz]:
        async with self._operation("get_quiz"):
            document = await self.store.get(quiz_path(room_id))
        return Quiz(**document) if document else None

    async def post_quiz(self, room_id: str, payload: QuizPayload) -> Quiz:
        """Replace the room's active quiz with a fresh one with no answers"""
        quiz = Quiz(**payload.model_dump(), id=f"quiz_{ObjectId()}", answers=[])
        async with self._operation("post_quiz"):
            await self.store.set(quiz_path(room_id), quiz.model_dump())
        logger.info(f"Posted quiz {quiz.id} to room {room_id}: {quiz.topic}")
        return quiz

    async def generate_quiz(self, room_id: str, generator: TextGenerator, requested_by: RoomUser) -> Quiz:
        # Best-effort guard; two clients generating at the same moment can still race
        if await self.get_quiz(room_id) is not None:
            raise QuizActiveError(room_id)

        context = await self.get_ai_context(room_id)
        if not context.strip():
            raise GenerationError("The room has no study notes to build a quiz from")

        await self.post_system_message(room_id, f"{requested_by.displayName} is generating a quiz for the group!")
        try:
            payload = await generate_quiz(generator, context)
        except GenerationError:
            await self.post_system_message(room_id, "Sorry, I couldn't generate a quiz. Please try again.")
            raise
        return await self.post_quiz(room_id, payload)

    async def submit_answer(self, room_id: str, user_id: str, display_name: str, answer_index: int) -> QuizAnswer:
        answer = QuizAnswer(
            userId=user_id,
            displayName=display_name,
            answerIndex=answer_index,
            timestamp=self.clock(),
        )
        # Keyed union: a second answer from the same user is dropped
        async with self._operation("submit_answer"):
            await self.store.update(quiz_path(room_id), {"answers": ArrayUnion(answer.model_dump(), key="userId")})
        return answer

    async def clear_quiz(self, room_id: str) -> None:
        async with self._operation("clear_quiz"):
            await self.store.delete(quiz_path(room_id))
        logger.info(f"Cleared quiz in room {room_id}")

    # --- Chat ---

    async def _append_message(self, room_id: str, message: ChatMessage) -> None:
        path = chat_path(room_id)
        try:
            await self.store.update(path, {"messages": ArrayUnion(message.model_dump())})
        except DocumentNotFoundError:
            await self.store.set(path, {"messages": [message.model_dump()]})

    async def post_message(self, room_id: str, text: str, user: RoomUser) -> ChatMessage:
        message = ChatMessage(
            id=str(ObjectId()),
            role="user",
            parts=[MessagePart(text=text)],
            user=user,
            timestamp=self.clock(),
        )
        async with self._operation("post_message"):
            await self._append_message(room_id, message)
        return message

    def _system_message(self, text: str) -> ChatMessage:
        return ChatMessage(
            id=str(ObjectId()),
            role="system",
            parts=[MessagePart(text=text)],
            user=SYSTEM_USER,
            timestamp=self.clock(),
        )

    async def post_system_message(self, room_id: str, text: str) -> ChatMessage:
        message = self._system_message(text)
        async with self._operation("post_system_message"):
            await self._append_message(room_id, message)
        return message

    async def get_messages(self, room_id: str) -> List[ChatMessage]:
        async with self._operation("get_messages"):
            document = await self.store.get(chat_path(room_id))
        return messages_from(document)

    # --- Notes ---

    async def set_ai_context(self, room_id: str, content: str) -> None:
        async with self._operation("set_ai_context"):
            await self.store.set(ai_context_path(room_id), {"content": content, "lastUpdated": self.clock()})

    async def get_ai_context(self, room_id: str) -> str:
        async with self._operation("get_ai_context"):
            document = await self.store.get(ai_context_path(room_id))
        return (document or {}).get("content", "")

    async def set_user_notes(self, room_id: str, content: str) -> None:
        async with self._operation("set_user_notes"):
            await self.store.set(user_notes_path(room_id), {"content": content, "lastUpdated": self.clock()})

    # --- Subscriptions ---

    async def _subscribe(self, name: str, path: str, callback: Callable[[Optional[dict]], Awaitable[None]]) -> Subscription:
        async with self._operation(name):
            return await self.store.subscribe(path, callback)

    async def subscribe_room(self, room_id: str, callback: Callable[[Optional[StudyRoom]], Awaitable[None]]) -> Subscription:
        async def on_change(document):
            await callback(StudyRoom(**document) if document else None)
        return await self._subscribe("subscribe_room", room_path(room_id), on_change)

    async def subscribe_quiz(self, room_id: str, callback: Callable[[Optional[Quiz]], Awaitable[None]]) -> Subscription:
        async def on_change(document):
            await callback(Quiz(**document) if document else None)
        return await self._subscribe("subscribe_quiz", quiz_path(room_id), on_change)

    async def subscribe_messages(self, room_id: str, callback: Callable[[List[ChatMessage]], Awaitable[None]]) -> Subscription:
        async def on_change(document):
            await callback(messages_from(document))
        return await self._subscribe("subscribe_messages", chat_path(room_id), on_change)

    async def subscribe_ai_context(self, room_id: str, callback: Callable[[str], Awaitable[None]]) -> Subscription:
        async def on_change(document):
            await callback((document or {}).get("content", ""))
        return await self._subscribe("subscribe_ai_context", ai_context_path(room_id), on_change)

    async def subscribe_user_notes(self, room_id: str, callback: Callable[[str], Awaitable[None]]) -> Subscription:
        async def on_change(document):
            await callback((document or {}).get("content", ""))
        return await self._subscribe("subscribe_user_notes", user_notes_path(room_id), on_change)
