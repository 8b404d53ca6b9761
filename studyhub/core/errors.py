from typing import Optional


class StudyHubError(Exception):
    """Base class for errors raised by the study services"""


class PersistenceError(StudyHubError):
    """A read, write or subscribe against a backing store failed.

    ``operation`` names the failed operation (``join``, ``update rooms/ABC123``...)
    so callers can decide whether to retry, discard or alert.
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None, message: Optional[str] = None):
        self.operation = operation
        self.cause = cause
        detail = message or (str(cause) if cause else "store operation failed")
        super().__init__(f"{operation}: {detail}")


class DocumentNotFoundError(PersistenceError):
    def __init__(self, operation: str, path: str):
        self.path = path
        super().__init__(operation, message=f"document {path} does not exist")


class GenerationError(StudyHubError):
    """The text-generation collaborator failed or returned unusable output"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class RoomNotFoundError(StudyHubError):
    def __init__(self, room_id: str):
        self.room_id = room_id
        super().__init__(f"Room {room_id} not found")


class NotRoomOwnerError(StudyHubError):
    def __init__(self, room_id: str, email: str):
        self.room_id = room_id
        self.email = email
        super().__init__(f"{email} is not the owner of room {room_id}")


class FlashcardNotFoundError(StudyHubError):
    def __init__(self, card_id: str):
        self.card_id = card_id
        super().__init__(f"Flashcard {card_id} not found")


class ResourceTooLargeError(StudyHubError):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Resource is {size} bytes, limit is {limit} bytes")


class QuizActiveError(StudyHubError):
    def __init__(self, room_id: str):
        self.room_id = room_id
        super().__init__(f"Room {room_id} already has an active quiz")
