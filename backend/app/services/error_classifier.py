"""
NoteMind Backend — AI Error Classifier
========================================

What:  Reduces any failure (exception, message string, arbitrary value) to a
       ClassifiedError: one of nine kinds, a fixed user message, and the
       retryable flag for that kind.
Why:   Retry decisions, API responses and monitoring all key off the kind.
       Users only ever see the fixed message for it.
How:   Structured first: NoteMindError subclasses carry their kind, and a few
       well-known exception types map directly. Anything else falls through
       an ordered list of message rules where the first match wins; the order
       matters because one message can match several rules.
Who:   Used by NoteAIService at every failure boundary and by the retry
       predicate to decide whether another attempt is worthwhile.
"""

import asyncio
import logging
import re
from typing import Any, Optional, Pattern, Tuple

from sqlalchemy.exc import SQLAlchemyError

from app.exceptions import NoteMindError
from app.schemas.ai import ClassifiedError, ErrorKind
from app.services.error_monitor import ErrorMonitor, error_monitor

logger = logging.getLogger(__name__)


USER_MESSAGES = {
    ErrorKind.AUTHENTICATION_ERROR: "Login required, please sign in again.",
    ErrorKind.AUTHORIZATION_ERROR: "Note not found.",
    ErrorKind.TOKEN_LIMIT_EXCEEDED: (
        "This note is too long for AI processing. "
        "Shorten it or split it into several notes."
    ),
    ErrorKind.NETWORK_ERROR: (
        "There was a problem with the network connection. Please try again shortly."
    ),
    ErrorKind.API_ERROR: "The AI service request failed. Please try again shortly.",
    ErrorKind.PARSING_ERROR: "The AI could not produce a usable result. Please try again.",
    ErrorKind.DATABASE_ERROR: (
        "Something went wrong while saving your data. Please try again shortly."
    ),
    ErrorKind.VALIDATION_ERROR: "There is a problem with the input. Please check the content.",
    ErrorKind.UNKNOWN_ERROR: "An unexpected error occurred. Please try again shortly.",
}


def _rule(kind: ErrorKind, pattern: str) -> Tuple[ErrorKind, Pattern[str]]:
    return kind, re.compile(pattern, re.IGNORECASE | re.DOTALL)


# Order is significant: "Invalid API key" must land on API_ERROR, not
# VALIDATION_ERROR, and "authentication token too long" on AUTHENTICATION_ERROR.
MESSAGE_RULES = (
    _rule(ErrorKind.AUTHENTICATION_ERROR, r"login required|authentication|not authenticated|unauthenticated"),
    _rule(ErrorKind.AUTHORIZATION_ERROR, r"no permission|permission denied|access denied|note not found"),
    _rule(ErrorKind.TOKEN_LIMIT_EXCEEDED, r"(?=.*token)(?=.*too long)"),
    _rule(ErrorKind.NETWORK_ERROR, r"network|connection|timeout|timed out|econnrefused|econnreset"),
    _rule(ErrorKind.API_ERROR, r"\bapi\b|gemini|provider|quota|model call"),
    _rule(ErrorKind.PARSING_ERROR, r"pars(e|ing)|no output produced|no text found|malformed"),
    _rule(ErrorKind.DATABASE_ERROR, r"database|\bdb\b|storage|\bsql|save failed"),
    _rule(ErrorKind.VALIDATION_ERROR, r"validation|invalid|must not be empty"),
)


def _message_of(error: Any) -> str:
    if error is None:
        return ""
    if isinstance(error, NoteMindError):
        return error.message
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    if isinstance(error, str):
        return error
    message = getattr(error, "message", None)
    if isinstance(message, str):
        return message
    try:
        return str(error)
    except Exception:
        return ""


def _kind_of(error: Any, message: str) -> ErrorKind:
    if isinstance(error, NoteMindError):
        return error.kind
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return ErrorKind.NETWORK_ERROR
    if isinstance(error, SQLAlchemyError):
        return ErrorKind.DATABASE_ERROR

    for kind, pattern in MESSAGE_RULES:
        if pattern.search(message):
            return kind
    return ErrorKind.UNKNOWN_ERROR


def classify_error(error: Any) -> ClassifiedError:
    """
    Classify any failure. Total: never raises, defaults to UNKNOWN_ERROR.

    >>> classify_error("Connection refused").kind
    <ErrorKind.NETWORK_ERROR: 'NETWORK_ERROR'>
    """
    message = _message_of(error)
    kind = _kind_of(error, message)
    return ClassifiedError.of(kind, message, USER_MESSAGES[kind])


class ErrorClassifier:
    """
    classify_error plus fire-and-forget forwarding to an ErrorMonitor.

    The monitor is injected so tests get an isolated log.
    """

    def __init__(self, monitor: Optional[ErrorMonitor] = None):
        self.monitor = monitor if monitor is not None else error_monitor

    def classify(self, error: Any, action: Optional[str] = None, **context: Any) -> ClassifiedError:
        classified = classify_error(error)
        if action is not None:
            self.record(classified, action, **context)
        return classified

    def record(
        self,
        classified: ClassifiedError,
        action: str,
        *,
        retry_count: Optional[int] = None,
        success: bool = False,
        user_id: Optional[str] = None,
        note_id: Optional[str] = None,
        **context: Any,
    ) -> None:
        """Forward to the monitor; a monitor failure is logged, never raised."""
        try:
            self.monitor.log_error(
                classified,
                action,
                retry_count=retry_count,
                success=success,
                user_id=user_id,
                note_id=note_id,
                context=context,
            )
        except Exception:
            logger.warning("Failed to record %s for action %s", classified.kind, action, exc_info=True)


error_classifier = ErrorClassifier()
