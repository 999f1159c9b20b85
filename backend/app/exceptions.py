"""
NoteMind Backend — Custom Exception Hierarchy
===============================================

What:  Application exceptions, each tied to one of the nine AI error kinds.
Why:   Raising code knows exactly what went wrong, so the kind travels with
       the exception instead of being guessed later from message text.
How:   Every class declares `kind` and `status_code`. The error classifier
       reads `kind` directly; the global handler in main.py reads
       `status_code` for endpoints that raise instead of returning a result.
Who:   Raised by services and the Gemini/store boundaries.

Exception Hierarchy:
    NoteMindError (base)            UNKNOWN_ERROR          → 500
    ├── AuthenticationError         AUTHENTICATION_ERROR   → 401
    ├── AuthorizationError          AUTHORIZATION_ERROR    → 404
    ├── TokenLimitExceededError     TOKEN_LIMIT_EXCEEDED   → 413
    ├── NetworkError                NETWORK_ERROR          → 503
    ├── LLMServiceError             API_ERROR              → 503
    ├── ParsingError                PARSING_ERROR          → 502
    ├── DatabaseError               DATABASE_ERROR         → 500
    └── ValidationError             VALIDATION_ERROR       → 400

AuthorizationError maps to 404 on purpose: a note owned by someone else is
reported exactly like a note that does not exist.
"""

from typing import Any, Dict, Optional

from app.schemas.ai import ErrorKind


class NoteMindError(Exception):
    """
    Base exception for all NoteMind application errors.

    Attributes:
        message:  Internal description (logged and recorded, NOT shown to users;
                  the user sees the fixed message for `kind`)
        context:  Additional debug info
    """

    kind: ErrorKind = ErrorKind.UNKNOWN_ERROR
    status_code: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class AuthenticationError(NoteMindError):
    """No authenticated caller (missing header, provider failure)."""

    kind = ErrorKind.AUTHENTICATION_ERROR
    status_code = 401

    def __init__(
        self,
        message: str = "Login required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AuthorizationError(NoteMindError):
    """The note does not exist or is not owned by the caller."""

    kind = ErrorKind.AUTHORIZATION_ERROR
    status_code = 404

    def __init__(
        self,
        message: str = "Note not found or access denied",
        note_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if note_id:
            ctx["note_id"] = note_id
        super().__init__(message=message, context=ctx)


class TokenLimitExceededError(NoteMindError):
    """
    Raised before calling Gemini when the note's estimated prompt size is over
    the configured limit. Retrying cannot help; the user must shorten the note.
    """

    kind = ErrorKind.TOKEN_LIMIT_EXCEEDED
    status_code = 413

    def __init__(
        self,
        estimated_tokens: int,
        max_tokens: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.estimated_tokens = estimated_tokens
        self.max_tokens = max_tokens
        ctx = context or {}
        ctx.update({"estimated_tokens": estimated_tokens, "max_tokens": max_tokens})
        super().__init__(
            message=(
                f"Text is too long: estimated {estimated_tokens} tokens, "
                f"maximum allowed is {max_tokens}"
            ),
            context=ctx,
        )


class NetworkError(NoteMindError):
    """Connection failure or timeout while talking to an upstream service."""

    kind = ErrorKind.NETWORK_ERROR
    status_code = 503

    def __init__(
        self,
        message: str = "Network connection failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class LLMServiceError(NoteMindError):
    """
    The Gemini API rejected or failed a call.

    The upstream error type is kept in `context["error_type"]`; backoff
    between attempts is owned by RetryController, not by the caller.
    """

    kind = ErrorKind.API_ERROR
    status_code = 503

    def __init__(
        self,
        message: str = "AI API call failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ParsingError(NoteMindError):
    """Gemini answered, but the answer is not usable (empty text, no tags)."""

    kind = ErrorKind.PARSING_ERROR
    status_code = 502

    def __init__(
        self,
        message: str = "No output produced by the AI model",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(NoteMindError):
    """Reading or writing notes, summaries or tags failed."""

    kind = ErrorKind.DATABASE_ERROR
    status_code = 500

    def __init__(
        self,
        message: str = "Database operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ValidationError(NoteMindError):
    """Caller input is unusable as given (blank note id, empty edit, etc.)."""

    kind = ErrorKind.VALIDATION_ERROR
    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field
