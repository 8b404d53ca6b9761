import logging

from fastapi import HTTPException

from studyhub.core.errors import (
    FlashcardNotFoundError,
    GenerationError,
    NotRoomOwnerError,
    PersistenceError,
    QuizActiveError,
    ResourceTooLargeError,
    RoomNotFoundError,
    StudyHubError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = [
    (RoomNotFoundError, 404),
    (FlashcardNotFoundError, 404),
    (NotRoomOwnerError, 403),
    (QuizActiveError, 409),
    (ResourceTooLargeError, 413),
    (GenerationError, 502),
    (PersistenceError, 503),
    (ValueError, 400),
]


def to_http_exception(error: Exception, action: str) -> HTTPException:
    """Translate a service error into the HTTPException the routers raise"""
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            if status_code >= 500:
                logger.error(f"Error {action}: {error}", exc_info=True)
            else:
                logger.info(f"Rejected {action}: {error}")
            return HTTPException(status_code=status_code, detail=str(error))

    if isinstance(error, StudyHubError):
        logger.error(f"Error {action}: {error}", exc_info=True)
        return HTTPException(status_code=500, detail=str(error))

    logger.error(f"Unexpected error {action}: {error}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Error {action}: {str(error)}")
