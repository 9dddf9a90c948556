from fastapi import HTTPException

from support_chat.logging_config import get_logger
from support_chat.services.errors import (
    AuthenticationRequired,
    ChatError,
    ConcurrentUpdateError,
    ConversationClosed,
    ConversationNotFound,
    QueueFull,
    UpstreamError,
    ValidationError,
)
from support_chat.services.state_machine import InvalidTransitionError

logger = get_logger("routers")

STATUS_BY_ERROR = [
    (ConversationNotFound, 404),
    (ValidationError, 400),
    (AuthenticationRequired, 401),
    (ConversationClosed, 409),
    (ConcurrentUpdateError, 409),
    (QueueFull, 503),
    (UpstreamError, 502),
]


def to_http_error(exc: Exception) -> HTTPException:
    """Map a domain error onto the HTTP status the widget expects."""
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(exc))
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            if status_code >= 500:
                logger.warning(
                    "Request failed with server error",
                    extra={"context": {"error": str(exc), "status_code": status_code}},
                )
            return HTTPException(status_code=status_code, detail=exc.message)
    if isinstance(exc, ChatError):
        return HTTPException(status_code=400, detail=exc.message)
    raise exc
