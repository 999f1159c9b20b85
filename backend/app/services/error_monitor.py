"""
NoteMind Backend — AI Error Monitor
=====================================

What:  In-memory log of classified AI errors with aggregate statistics and
       simple pattern analysis for the admin dashboard.
Why:   Raw error text never reaches users, so this log is where operators
       see what actually failed, in which action, and whether retries help.
How:   Entries are appended under a lock, pruned by age (retention days) and
       capped by count (max entries, newest kept).
Who:   Fed by ErrorClassifier; read by the /api/admin/ai-errors routes.

Retry accounting:
    A retried LLM call leaves one entry per failed attempt (attempt number
    in `context`) plus one outcome entry carrying `retry_count`:
        fail, fail, ok   → 2 attempt entries + outcome(success=True)
        fail, fail, fail → 2 attempt entries + outcome(success=False)
    Retry success rate and average retry count are computed over outcome
    entries only, i.e. per operation.
    Alternative: Counting attempt entries too. A call that failed once and
    then recovered would then report 50% instead of 100%.

Production upgrade:
    The log lives in process memory, so each worker has its own view and
    everything is lost on restart. Ship entries to a log pipeline for
    cross-worker history.
"""

import logging
import threading
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.config import settings
from app.schemas.ai import (
    ClassifiedError,
    ErrorKind,
    ErrorLogEntry,
    ErrorPatterns,
    ErrorStats,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

RECENT_ERRORS_LIMIT = 10
LOW_RETRY_SUCCESS_RATE = 50.0
HIGH_AVERAGE_RETRIES = 2.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _retry_outcomes(entries: List[ErrorLogEntry]) -> Tuple[float, float]:
    """(success rate in percent, average retry count) over retried-operation outcomes."""
    outcomes = [e for e in entries if e.retry_count is not None]
    if not outcomes:
        return 0.0, 0.0
    recovered = sum(1 for e in outcomes if e.success)
    average = sum(e.retry_count for e in outcomes) / len(outcomes)
    return recovered / len(outcomes) * 100, average


class ErrorMonitor:
    """Thread-safe rolling log of classified errors."""

    def __init__(
        self,
        max_log_entries: Optional[int] = None,
        retention_days: Optional[int] = None,
        detailed_logging: Optional[bool] = None,
        clock: Clock = _utcnow,
    ):
        self.max_log_entries = max_log_entries or settings.monitor_max_log_entries
        self.retention = timedelta(days=retention_days or settings.monitor_retention_days)
        self.detailed_logging = (
            settings.monitor_detailed_logging if detailed_logging is None else detailed_logging
        )
        self._clock = clock
        self._entries: List[ErrorLogEntry] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def log_error(
        self,
        classified: ClassifiedError,
        action: str,
        *,
        retry_count: Optional[int] = None,
        success: bool = False,
        user_id: Optional[str] = None,
        note_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorLogEntry:
        """
        Record one classified error.

        `retry_count` is set only on the outcome entry of an operation that
        was retried: one entry per retried operation, with `success=True`
        when a later attempt recovered and `success=False` when it gave up.
        Those outcome entries, and nothing else, feed the retry success rate
        and the average retry count. Per-attempt entries leave it None.
        """
        now = self._clock()
        entry = ErrorLogEntry(
            id=f"error_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}",
            timestamp=now,
            kind=classified.kind,
            action=action,
            raw_message=classified.raw_message,
            user_message=classified.user_message,
            retryable=classified.retryable,
            retry_count=retry_count,
            success=success,
            user_id=user_id,
            note_id=note_id,
            context=dict(context or {}),
        )

        with self._lock:
            self._entries.append(entry)
            self._prune(now)

        if self.detailed_logging:
            logger.info(
                "AI error recorded: action=%s kind=%s retryable=%s retry_count=%s success=%s message=%s",
                action,
                classified.kind,
                classified.retryable,
                retry_count,
                success,
                classified.raw_message,
            )
        return entry

    def _prune(self, now: datetime) -> None:
        # Caller holds the lock
        cutoff = now - self.retention
        self._entries = [e for e in self._entries if e.timestamp >= cutoff]
        if len(self._entries) > self.max_log_entries:
            self._entries = self._entries[-self.max_log_entries:]

    def _snapshot(self) -> List[ErrorLogEntry]:
        with self._lock:
            self._prune(self._clock())
            return list(self._entries)

    # ── Queries ───────────────────────────────────────────────────────────

    def get_stats(self) -> ErrorStats:
        entries = self._snapshot()

        by_kind = Counter(str(e.kind) for e in entries)
        by_action = Counter(e.action for e in entries)
        recent = sorted(entries, key=lambda e: e.timestamp, reverse=True)[:RECENT_ERRORS_LIMIT]
        success_rate, average_retries = _retry_outcomes(entries)

        return ErrorStats(
            total_errors=len(entries),
            errors_by_kind=dict(by_kind),
            errors_by_action=dict(by_action),
            recent_errors=recent,
            retry_success_rate=round(success_rate, 2),
            average_retry_count=round(average_retries, 2),
        )

    def get_error_logs(
        self,
        kind: Optional[ErrorKind] = None,
        action: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[ErrorLogEntry]:
        """Filtered entries, newest first. A naive `since` is read as UTC."""
        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        entries = self._snapshot()
        if kind is not None:
            entries = [e for e in entries if e.kind == kind]
        if action is not None:
            entries = [e for e in entries if e.action == action]
        if since is not None:
            entries = [e for e in entries if e.timestamp >= since]
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        if limit is not None:
            entries = entries[:limit]
        return entries

    def analyze_error_patterns(self) -> ErrorPatterns:
        entries = self._snapshot()
        now = self._clock()

        by_kind = Counter(e.kind for e in entries)
        by_action = Counter(e.action for e in entries)
        most_common_kind = by_kind.most_common(1)[0][0] if by_kind else None
        most_common_action = by_action.most_common(1)[0][0] if by_action else None

        last_hour = sum(1 for e in entries if e.timestamp > now - timedelta(hours=1))
        previous_hour = sum(
            1 for e in entries
            if now - timedelta(hours=2) < e.timestamp <= now - timedelta(hours=1)
        )
        if last_hour > previous_hour * 1.2:
            trend = "increasing"
        elif last_hour < previous_hour * 0.8:
            trend = "decreasing"
        else:
            trend = "stable"

        recommendations: List[str] = []
        if any(e.retry_count is not None for e in entries):
            success_rate, average_retries = _retry_outcomes(entries)
            if success_rate < LOW_RETRY_SUCCESS_RATE:
                recommendations.append(
                    "Most retried operations still fail; review which error kinds are retried."
                )
            if average_retries > HIGH_AVERAGE_RETRIES:
                recommendations.append(
                    "Operations need many retries on average; check network stability."
                )
        if by_kind[ErrorKind.NETWORK_ERROR] > 5:
            recommendations.append(
                "Network errors are frequent; check upstream connectivity and consider longer timeouts."
            )
        if by_kind[ErrorKind.TOKEN_LIMIT_EXCEEDED] > 3:
            recommendations.append(
                "Token limit errors are frequent; consider chunking long notes before processing."
            )
        if by_kind[ErrorKind.API_ERROR] > 5:
            recommendations.append(
                "Gemini API errors are frequent; check the API key, quota and service status."
            )
        if by_kind[ErrorKind.PARSING_ERROR] > 3:
            recommendations.append(
                "Parsing errors are frequent; review the summary and tag prompts."
            )
        if trend == "increasing":
            recommendations.append("Error volume is rising; investigate recent changes.")

        return ErrorPatterns(
            most_common_kind=most_common_kind,
            most_common_action=most_common_action,
            error_trend=trend,
            recommendations=recommendations,
        )

    def reset_stats(self) -> None:
        with self._lock:
            self._entries = []
        logger.info("AI error monitor reset")


error_monitor = ErrorMonitor()
