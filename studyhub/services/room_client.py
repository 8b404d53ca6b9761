"""
Per-connection view of a study room.

``RoomView`` is the derived state a single participant sees. It keeps the
latest confirmed snapshot of every shared document plus a small amount of
optimistic local state (an answer or timer change that has been sent but not
yet echoed back). The reconcile rule is:

* an authoritative snapshot always replaces the matching optimistic value;
* a mutation that fails drops its optimistic value straight away, so the view
  falls back to the last confirmed snapshot.

Everything shown (countdown, leaderboard, answered flag) is recomputed from
that state, never accumulated from deltas.

``RoomClient`` drives a view for one connected user: it joins the room,
subscribes to the room documents, runs the local countdown tick and forwards
events to an ``emit`` callback (the websocket route sends them to the browser).
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

from studyhub.core.clock import now_ms
from studyhub.core.config import TIMER_TICK_SECONDS
from studyhub.core.errors import StudyHubError
from studyhub.models.room import (
    ChatMessage,
    LeaderboardEntry,
    PomodoroState,
    Quiz,
    RosterDelta,
    RoomUser,
    StudyRoom,
)
from studyhub.services import pomodoro
from studyhub.services.leaderboard import answers_by_user, is_quiz_complete, score_quiz
from studyhub.services.resources import ResourcePoller, ResourceService
from studyhub.services.room_sync import RoomSynchronizer, roster_delta
from studyhub.services.study_buddy import StudyBuddySession, refresh_session
from studyhub.services.text_generation import TextGenerator

logger = logging.getLogger(__name__)

Emit = Callable[[str, Any], Awaitable[None]]


class RoomView:
    def __init__(self, user: RoomUser):
        self.user = user
        self.room: Optional[StudyRoom] = None
        self.quiz: Optional[Quiz] = None
        self.messages: List[ChatMessage] = []
        self.ai_context = ""
        self.user_notes = ""
        self.pending_answer: Optional[int] = None
        self.pending_pomodoro: Optional[PomodoroState] = None

    # Authoritative snapshots

    def apply_room(self, room: Optional[StudyRoom]) -> RosterDelta:
        previous = self.room.users if self.room else []
        self.room = room
        self.pending_pomodoro = None
        current = room.users if room else []
        delta = roster_delta(previous, current)
        # Our own arrival is not news to us
        delta.arrived = [user for user in delta.arrived if user.email != self.user.email]
        return delta

    def apply_quiz(self, quiz: Optional[Quiz]) -> None:
        self.quiz = quiz
        self.pending_answer = None

    # Optimistic state

    def mark_answer(self, answer_index: int) -> None:
        self.pending_answer = answer_index

    def drop_pending_answer(self) -> None:
        self.pending_answer = None

    def mark_pomodoro(self, state: PomodoroState) -> None:
        self.pending_pomodoro = state

    def drop_pending_pomodoro(self) -> None:
        self.pending_pomodoro = None

    # Derived values

    @property
    def roster(self) -> List[RoomUser]:
        return list(self.room.users) if self.room else []

    @property
    def is_owner(self) -> bool:
        return self.room is not None and self.room.createdBy == self.user.email

    @property
    def pomodoro(self) -> Optional[PomodoroState]:
        if self.pending_pomodoro is not None:
            return self.pending_pomodoro
        return self.room.pomodoro if self.room else None

    def time_left(self, now: int) -> Optional[int]:
        state = self.pomodoro
        return pomodoro.time_left(state, now) if state else None

    def has_answered(self) -> bool:
        if self.quiz is None:
            return False
        return self.pending_answer is not None or self.user.email in answers_by_user(self.quiz)

    @property
    def show_leaderboard(self) -> bool:
        return self.quiz is not None and is_quiz_complete(self.quiz, self.roster)

    def leaderboard(self) -> List[LeaderboardEntry]:
        return score_quiz(self.quiz, self.roster) if self.quiz else []


class RoomClient:
    def __init__(
        self,
        synchronizer: RoomSynchronizer,
        room_id: str,
        user: RoomUser,
        emit: Emit,
        generator: Optional[TextGenerator] = None,
        genai_client=None,
        resource_service: Optional[ResourceService] = None,
        tick_seconds: float = TIMER_TICK_SECONDS,
        clock: Callable[[], int] = now_ms,
    ):
        self.synchronizer = synchronizer
        self.room_id = room_id
        self.user = user
        self.emit = emit
        self.generator = generator
        self.genai_client = genai_client
        self.tick_seconds = tick_seconds
        self.clock = clock
        self.view = RoomView(user)

        self._subscriptions = []
        self._tick_task: Optional[asyncio.Task] = None
        self._buddy: Optional[StudyBuddySession] = None
        self._leaderboard_quiz_id: Optional[str] = None
        self._expiring = False
        self._poller: Optional[ResourcePoller] = None
        if resource_service is not None:
            self._poller = ResourcePoller(
                lambda: resource_service.list_resources(room_id),
                self._on_resources,
            )

    # --- Lifecycle ---

    async def connect(self) -> None:
        await self.synchronizer.require_room(self.room_id)
        await self.synchronizer.join(self.room_id, self.user)

        sync = self.synchronizer
        subscribers = (
            (sync.subscribe_room, self._on_room),
            (sync.subscribe_quiz, self._on_quiz),
            (sync.subscribe_messages, self._on_messages),
            (sync.subscribe_ai_context, self._on_ai_context),
            (sync.subscribe_user_notes, self._on_user_notes),
        )
        try:
            for subscribe, handler in subscribers:
                self._subscriptions.append(await subscribe(self.room_id, handler))
        except Exception as e:
            logger.error(f"{self.user.email} failed to connect to room {self.room_id}: {e}")
            try:
                await self.close()
            except Exception as cleanup_error:
                logger.error(f"Cleanup after failed connect to {self.room_id} failed: {cleanup_error}")
            raise

        if self._poller is not None:
            self._poller.start()
        self._tick_task = asyncio.create_task(self._run_timer())
        logger.info(f"{self.user.email} connected to room {self.room_id}")

    async def close(self) -> None:
        """Leave the room, then stop listening.

        The leave goes out first so the roster reflects the departure even
        though nobody is left to watch this client's subscriptions.
        """
        try:
            await self.synchronizer.leave(self.room_id, self.user)
        finally:
            for subscription in self._subscriptions:
                await subscription.unsubscribe()
            self._subscriptions = []
            if self._poller is not None:
                await self._poller.stop()
            if self._tick_task is not None:
                self._tick_task.cancel()
                try:
                    await self._tick_task
                except asyncio.CancelledError:
                    pass
                self._tick_task = None
            logger.info(f"{self.user.email} disconnected from room {self.room_id}")

    # --- Snapshot handlers ---

    async def _on_room(self, room: Optional[StudyRoom]) -> None:
        delta = self.view.apply_room(room)
        if room is None:
            await self.emit("room_closed", {"roomId": self.room_id})
            return

        await self.emit("room", room.model_dump())
        if not delta.is_empty:
            await self.emit("roster", delta.model_dump())
        if self.view.is_owner:
            for user in delta.departed:
                await self.synchronizer.post_system_message(self.room_id, f"{user.displayName} has left the room.")
        # Roster changes move the completion threshold of an active quiz
        await self._check_leaderboard()

    async def _on_quiz(self, quiz: Optional[Quiz]) -> None:
        self.view.apply_quiz(quiz)
        await self.emit("quiz", quiz.model_dump() if quiz else None)
        await self._check_leaderboard()

    async def _check_leaderboard(self) -> None:
        quiz = self.view.quiz
        if quiz is None:
            self._leaderboard_quiz_id = None
            return
        if self.view.show_leaderboard and self._leaderboard_quiz_id != quiz.id:
            self._leaderboard_quiz_id = quiz.id
            await self.emit("leaderboard", {
                "quizId": quiz.id,
                "entries": [entry.model_dump() for entry in self.view.leaderboard()],
            })

    async def _on_messages(self, messages: List[ChatMessage]) -> None:
        self.view.messages = messages
        await self.emit("messages", [message.model_dump() for message in messages])

    async def _on_ai_context(self, content: str) -> None:
        self.view.ai_context = content
        await self.emit("context", {"content": content})

    async def _on_user_notes(self, content: str) -> None:
        self.view.user_notes = content
        await self.emit("notes", {"content": content})

    async def _on_resources(self, resources) -> None:
        await self.emit("resources", [resource.model_dump() for resource in resources])

    # --- Countdown ---

    async def _run_timer(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Timer tick failed in room {self.room_id}: {e}", exc_info=True)
            await asyncio.sleep(self.tick_seconds)

    async def tick(self) -> None:
        state = self.view.pomodoro
        if state is None:
            return
        now = self.clock()
        await self.emit("timer", {**state.model_dump(), "timeLeft": pomodoro.time_left(state, now)})

        # Only the owner advances an expired period so clients don't race each other
        if self.view.is_owner and pomodoro.is_expired(state, now) and not self._expiring:
            self._expiring = True
            try:
                await self.synchronizer.expire_timer(self.room_id, self.user.email, observed_start=state.startTime)
            finally:
                self._expiring = False

    # --- Mutations ---

    async def _timer_action(self, action: Callable[[str, str], Awaitable[PomodoroState]], optimistic: Optional[PomodoroState]) -> PomodoroState:
        if optimistic is not None:
            self.view.mark_pomodoro(optimistic)
        try:
            return await action(self.room_id, self.user.email)
        except StudyHubError:
            self.view.drop_pending_pomodoro()
            raise

    async def start_timer(self) -> PomodoroState:
        current = self.view.pomodoro
        optimistic = pomodoro.start(current, self.clock()) if current else None
        return await self._timer_action(self.synchronizer.start_timer, optimistic)

    async def stop_timer(self) -> PomodoroState:
        current = self.view.pomodoro
        optimistic = pomodoro.stop(current) if current else None
        return await self._timer_action(self.synchronizer.stop_timer, optimistic)

    async def reset_timer(self) -> PomodoroState:
        return await self._timer_action(self.synchronizer.reset_timer, pomodoro.reset())

    async def submit_answer(self, answer_index: int) -> bool:
        """Answer the active quiz; False when there is no quiz or we already answered"""
        if self.view.quiz is None or self.view.has_answered():
            return False
        self.view.mark_answer(answer_index)
        try:
            await self.synchronizer.submit_answer(self.room_id, self.user.email, self.user.displayName, answer_index)
        except StudyHubError:
            self.view.drop_pending_answer()
            raise
        return True

    async def clear_quiz(self) -> None:
        await self.synchronizer.clear_quiz(self.room_id)

    async def generate_quiz(self) -> Quiz:
        if self.generator is None:
            raise StudyHubError("Quiz generation is not configured")
        return await self.synchronizer.generate_quiz(self.room_id, self.generator, self.user)

    async def send_chat(self, text: str) -> ChatMessage:
        return await self.synchronizer.post_message(self.room_id, text, self.user)

    async def save_notes(self, content: str) -> None:
        await self.synchronizer.set_user_notes(self.room_id, content)

    async def ask_buddy(self, message: str) -> str:
        """Stream a study buddy reply to this client only and return the full text"""
        if self.genai_client is None:
            raise StudyHubError("Study buddy is not configured")
        self._buddy = refresh_session(self._buddy, self.genai_client, self.view.ai_context)

        reply = ""
        async for reply in self._buddy.stream_reply(message):
            await self.emit("buddy", {"role": "model", "parts": [{"text": reply}], "done": False})
        await self.emit("buddy", {"role": "model", "parts": [{"text": reply}], "done": True})
        return reply

