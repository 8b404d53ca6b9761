from pydantic import BaseModel, Field
from typing import List, Literal, Optional

PomodoroRunState = Literal["running", "stopped"]
PomodoroMode = Literal["focus", "break"]
MessageRole = Literal["user", "model", "system"]


class RoomUser(BaseModel):
    email: str
    displayName: str


class PomodoroState(BaseModel):
    state: PomodoroRunState = "stopped"
    mode: PomodoroMode = "focus"
    # Epoch milliseconds when the running period started, 0 while stopped
    startTime: int = 0


class StudyRoom(BaseModel):
    id: str
    name: str
    courseId: str
    maxUsers: int
    createdBy: str
    users: List[RoomUser] = Field(default_factory=list)
    pomodoro: PomodoroState = Field(default_factory=PomodoroState)
    technique: Optional[str] = None
    topic: Optional[str] = None
    university: Optional[str] = None


class QuizPayload(BaseModel):
    topic: str
    question: str
    options: List[str]
    correctOptionIndex: int


class QuizAnswer(BaseModel):
    userId: str
    displayName: str
    answerIndex: int
    timestamp: int


class Quiz(QuizPayload):
    id: str
    answers: List[QuizAnswer] = Field(default_factory=list)


class MessagePart(BaseModel):
    text: str


class ChatMessage(BaseModel):
    id: str
    role: MessageRole
    parts: List[MessagePart]
    user: Optional[RoomUser] = None
    timestamp: int

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.parts)


class RoomResource(BaseModel):
    name: str
    url: str
    uploader: Optional[str] = None
    timeCreated: Optional[str] = None


class LeaderboardEntry(BaseModel):
    email: str
    displayName: str
    answered: bool
    answerIndex: Optional[int] = None
    isCorrect: bool
    position: int = 0


class RosterDelta(BaseModel):
    arrived: List[RoomUser] = Field(default_factory=list)
    departed: List[RoomUser] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.arrived and not self.departed


# Request bodies

class CreateRoomRequest(BaseModel):
    name: str
    courseId: str
    maxUsers: int = 8
    creator: RoomUser
    technique: Optional[str] = None
    topic: Optional[str] = None
    university: Optional[str] = None


class TimerActionRequest(BaseModel):
    email: str


class SubmitAnswerRequest(BaseModel):
    userId: str
    displayName: str
    answerIndex: int


class GenerateQuizRequest(BaseModel):
    requestedBy: RoomUser


class ChatMessageRequest(BaseModel):
    text: str
    user: RoomUser


class TextBlobRequest(BaseModel):
    content: str
