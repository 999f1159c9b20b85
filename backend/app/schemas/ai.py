"""
NoteMind Backend — Pydantic Schemas for AI Operations
=======================================================

What:  Pydantic models for the AI operation contract: error taxonomy,
       structured operation results, backups and monitoring responses.
Why:   Route handlers, services and the UI all speak the same result shapes.
       Results are serialized with `exclude_none`, so a key that does not
       apply (e.g. the failed half of a partial success) is absent, not null.
Who:   Used by the orchestrator, the classifier, the backup manager and routes.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ══════════════════════════════════════════════════════════════════════════
# Error Taxonomy
# ══════════════════════════════════════════════════════════════════════════


class ErrorKind(str, Enum):
    """The nine failure kinds every AI operation error is reduced to."""

    NETWORK_ERROR = "NETWORK_ERROR"
    TOKEN_LIMIT_EXCEEDED = "TOKEN_LIMIT_EXCEEDED"
    API_ERROR = "API_ERROR"
    PARSING_ERROR = "PARSING_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

    def __str__(self) -> str:
        return self.value


NON_RETRYABLE_KINDS = frozenset({
    ErrorKind.AUTHENTICATION_ERROR,
    ErrorKind.AUTHORIZATION_ERROR,
    ErrorKind.TOKEN_LIMIT_EXCEEDED,
    ErrorKind.VALIDATION_ERROR,
})


def is_retryable(kind: ErrorKind) -> bool:
    return kind not in NON_RETRYABLE_KINDS


class ClassifiedError(BaseModel):
    """
    A raw failure reduced to its kind.

    `retryable` is always derived from `kind`; build instances through
    `ClassifiedError.of()` so the two can never disagree.
    """

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind = Field(description="One of the nine error kinds")
    raw_message: str = Field(description="Original error text (logged, never shown)")
    user_message: str = Field(description="Fixed user-facing message for this kind")
    retryable: bool = Field(description="Whether retrying the same input can succeed")

    @classmethod
    def of(cls, kind: ErrorKind, raw_message: str, user_message: str) -> "ClassifiedError":
        return cls(
            kind=kind,
            raw_message=raw_message,
            user_message=user_message,
            retryable=is_retryable(kind),
        )


# ══════════════════════════════════════════════════════════════════════════
# Operation Results
# ══════════════════════════════════════════════════════════════════════════


class AIResultData(BaseModel):
    summary: Optional[str] = Field(default=None, description="Generated or edited summary")
    tags: Optional[List[str]] = Field(default=None, description="Generated or edited tags")


class AIOperationResult(BaseModel):
    """
    Structured outcome of an AI action.

    Only the combined summary+tags action ever sets `partial_success` and
    `partial_data`; `partial_data` then holds the successful side only.

    Example (tags failed, summary saved):
        {
            "success": false,
            "error": "AI processing had partial errors",
            "error_kind": "PARSING_ERROR",
            "retryable": true,
            "partial_success": true,
            "partial_data": {"summary": "- point one\\n- point two"}
        }
    """

    success: bool = Field(description="True only when every requested step succeeded")
    data: Optional[AIResultData] = Field(default=None)
    error: Optional[str] = Field(default=None, description="User-facing error message")
    error_kind: Optional[ErrorKind] = Field(default=None)
    retryable: Optional[bool] = Field(default=None)
    partial_success: Optional[bool] = Field(default=None)
    partial_data: Optional[AIResultData] = Field(default=None)

    @classmethod
    def failure(cls, classified: ClassifiedError) -> "AIOperationResult":
        return cls(
            success=False,
            error=classified.user_message,
            error_kind=classified.kind,
            retryable=classified.retryable,
        )


class EditResult(BaseModel):
    """Outcome of a manual summary/tag edit."""

    success: bool
    data: Optional[AIResultData] = None
    error: Optional[str] = None


class SummaryUpdateRequest(BaseModel):
    content: str = Field(description="New summary text (trimmed, 1-2000 characters)")


class TagsUpdateRequest(BaseModel):
    tags: List[str] = Field(description="New tag list (trimmed, 1-50 characters each, max 10)")


# ══════════════════════════════════════════════════════════════════════════
# Backups
# ══════════════════════════════════════════════════════════════════════════


class BackupKind(str, Enum):
    SUMMARY = "summary"
    TAGS = "tags"
    BOTH = "both"

    def __str__(self) -> str:
        return self.value


class BackupData(BaseModel):
    summary: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class DataBackup(BaseModel):
    id: str = Field(description="{note_id}_{kind}_{epoch_millis}")
    timestamp: datetime = Field(description="When the snapshot was taken (UTC)")
    data: BackupData
    kind: BackupKind


class BackupCreatedResponse(BaseModel):
    backup_id: str


class RollbackResponse(BaseModel):
    restored: bool = Field(description="False when the backup was missing, expired or could not be applied")


# ══════════════════════════════════════════════════════════════════════════
# Monitoring
# ══════════════════════════════════════════════════════════════════════════


class ErrorLogEntry(BaseModel):
    id: str
    timestamp: datetime
    kind: ErrorKind
    action: str
    raw_message: str
    user_message: str
    retryable: bool
    retry_count: Optional[int] = Field(default=None, description="Set only on the outcome entry of a retried operation")
    success: bool = False
    user_id: Optional[str] = None
    note_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class ErrorStats(BaseModel):
    total_errors: int
    errors_by_kind: Dict[str, int]
    errors_by_action: Dict[str, int]
    recent_errors: List[ErrorLogEntry]
    retry_success_rate: float = Field(description="Percentage of retried operations that eventually succeeded")
    average_retry_count: float


class ErrorPatterns(BaseModel):
    most_common_kind: Optional[ErrorKind] = None
    most_common_action: Optional[str] = None
    error_trend: str = Field(description="increasing, decreasing or stable (last hour vs previous hour)")
    recommendations: List[str]


# ══════════════════════════════════════════════════════════════════════════
# Error / Health Responses
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    Error body for endpoints that raise instead of returning a result.

    `error` is the ErrorKind value, `message` the fixed user message.
    """
    error: str = Field(description="Machine-readable error kind")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    gemini: str = Field(description="Gemini API status: available, unavailable")
    active_backups: int = Field(description="Unexpired backups held in memory")
    logged_errors: int = Field(description="Error log entries held in memory")
    uptime_seconds: float = Field(description="Seconds since service started")
