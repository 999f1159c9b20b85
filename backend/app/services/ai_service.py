"""
NoteMind Backend — AI Operation Orchestrator
==============================================

What:  The AI actions on a note: generate summary, generate tags, both at
       once, manual edits of either, and backup/rollback of the stored values.
Why:   Every action has the same skeleton (who is calling, is it their note,
       is the note small enough, call Gemini with retries, parse, save) and
       the same failure contract: a structured AIOperationResult, never an
       exception.
How:   Steps raise NoteMindError subclasses; the public action methods catch
       at the boundary, classify once, record in the error monitor and turn
       the classification into a result.

Flow (single operation):
    identity ──► note lookup (owner-scoped) ──► token pre-flight
        ──► Gemini via RetryController (3 attempts, backoff + jitter)
        ──► parse ──► persist ──► AIOperationResult

Combined processing runs the summary and tag operations concurrently and
reports success, partial success (which half survived) or failure. A partial
success is never collapsed into a plain failure.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Union

from app.exceptions import (
    AuthenticationError,
    AuthorizationError,
    DatabaseError,
    NoteMindError,
    ParsingError,
    ValidationError,
)
from app.schemas.ai import (
    AIOperationResult,
    AIResultData,
    BackupKind,
    ClassifiedError,
    EditResult,
    ErrorKind,
)
from app.services.backup_service import (
    BackupManager,
    backup_before_ai_processing,
    backup_manager,
    rollback_on_failure,
)
from app.services.error_classifier import ErrorClassifier, classify_error, error_classifier
from app.services.gemini_service import gemini_service
from app.services.identity import CurrentUser, IdentityProvider
from app.services.llm_base import LLMResponse, LLMService
from app.services.note_store import NoteStore, note_store
from app.services.retry import RetryController, RetryObserver
from app.services.token_estimator import check_token_limit

logger = logging.getLogger(__name__)


class _RetriedCallFailed(Exception):
    """
    An LLM call that failed after at least one retry.

    Carries the retry count to the failure boundary, which unwraps it so the
    final error is classified and recorded once, as the operation's outcome.
    """

    def __init__(self, error: BaseException, retries: int):
        super().__init__(str(error))
        self.error = error
        self.retries = retries


class _MonitoredRetryObserver(RetryObserver):
    """
    Records every failed attempt that leads to a retry.

    Attempt entries carry the attempt number in their context only; the
    monitor's retry_count field is reserved for one outcome entry per
    retried operation.
    """

    def __init__(
        self,
        classifier: ErrorClassifier,
        action: str,
        user_id: Optional[str],
        note_id: Optional[str],
    ):
        self.classifier = classifier
        self.action = action
        self.user_id = user_id
        self.note_id = note_id
        self.retries = 0
        self.last_error: Optional[BaseException] = None

    def on_retry(self, attempt: int, error: BaseException, delay: float) -> None:
        self.retries = attempt
        self.last_error = error
        self.classifier.classify(
            error,
            action=self.action,
            user_id=self.user_id,
            note_id=self.note_id,
            attempt=attempt,
            delay_seconds=round(delay, 3),
        )

    def on_max_retries_reached(self, error: BaseException) -> None:
        logger.error(
            "%s for note %s gave up after %d retries: %s",
            self.action,
            self.note_id,
            self.retries,
            error,
        )


class NoteAIService:
    """
    Orchestrates AI summary/tag generation for a user's note.

    Every collaborator is injectable; the module-level `note_ai_service` uses
    the process-wide Gemini client, store, classifier and backup manager.
    """

    SUMMARY_PROMPT = """Summarize the following note as 3 to 6 short bullet points.
Start every line with "- ". Write in the same language as the note.
Return only the bullet points, with no introduction or closing remarks.

Title: {title}

Content:
{content}"""

    TAGS_PROMPT = """Suggest up to 6 short tags that describe the following note.
Return the tags on a single line separated by commas, with no numbering,
hashtags or extra text. Write in the same language as the note.

Title: {title}

Content:
{content}"""

    CONNECTION_TEST_PROMPT = "Reply with the single word: OK"

    PARTIAL_ERROR_MESSAGE = "AI processing had partial errors"
    MANUAL_EDIT_MODEL = "manual-edit"
    RESTORED_MODEL = "backup-restore"

    MAX_AI_TAGS = 6
    MAX_AI_TAG_LENGTH = 100
    MAX_SUMMARY_LENGTH = 2000
    MAX_MANUAL_TAGS = 10
    MAX_MANUAL_TAG_LENGTH = 50

    def __init__(
        self,
        llm: Optional[LLMService] = None,
        store: Optional[NoteStore] = None,
        classifier: Optional[ErrorClassifier] = None,
        backups: Optional[BackupManager] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        retry_base_delay_ms: Optional[int] = None,
        retry_max_jitter_ms: Optional[int] = None,
    ):
        self.llm = llm or gemini_service
        self.store = store or note_store
        self.classifier = classifier or error_classifier
        self.backups = backups or backup_manager
        self._sleep = sleep
        self._retry_base_delay_ms = retry_base_delay_ms
        self._retry_max_jitter_ms = retry_max_jitter_ms

    # ══════════════════════════════════════════════════════════════════════
    # AI Actions
    # ══════════════════════════════════════════════════════════════════════

    async def generate_summary(self, note_id: str, identity: IdentityProvider) -> AIOperationResult:
        action = "generate_summary"
        user_id = None
        try:
            user = await self._authenticate(identity)
            user_id = user.id
            note = await self._load_owned_note(note_id, user)
            self._check_tokens(note)

            prompt = self.SUMMARY_PROMPT.format(title=note.title, content=note.content)
            response = await self._call_llm(prompt, action, user.id, note_id)
            summary = self._parse_summary(response.text)

            await self._persist(self.store.upsert_summary(note_id, self.llm.model_name, summary))
        except Exception as e:
            return self._failure(e, action, user_id=user_id, note_id=note_id)

        logger.info("Summary generated for note %s (%d chars)", note_id, len(summary))
        return AIOperationResult(success=True, data=AIResultData(summary=summary))

    async def generate_tags(self, note_id: str, identity: IdentityProvider) -> AIOperationResult:
        action = "generate_tags"
        user_id = None
        try:
            user = await self._authenticate(identity)
            user_id = user.id
            note = await self._load_owned_note(note_id, user)
            self._check_tokens(note)

            prompt = self.TAGS_PROMPT.format(title=note.title, content=note.content)
            response = await self._call_llm(prompt, action, user.id, note_id)
            tags = self._parse_tags(response.text)

            await self._persist(self.store.replace_tags(note_id, tags))
        except Exception as e:
            return self._failure(e, action, user_id=user_id, note_id=note_id)

        logger.info("Tags generated for note %s: %s", note_id, tags)
        return AIOperationResult(success=True, data=AIResultData(tags=tags))

    async def generate_both(self, note_id: str, identity: IdentityProvider) -> AIOperationResult:
        """
        Summary and tags concurrently, aggregated:

            summary  tags   → result
            ok       ok     → success, data={summary, tags}
            ok       fail   → partial_success, partial_data={summary}
            fail     ok     → partial_success, partial_data={tags}
            fail     fail   → failure with the summary side's error
        """
        action = "generate_both"
        user_id = None
        try:
            # Pre-flight once so a doomed request does not fail twice
            user = await self._authenticate(identity)
            user_id = user.id
            note = await self._load_owned_note(note_id, user)
            self._check_tokens(note)
        except Exception as e:
            return self._failure(e, action, user_id=user_id, note_id=note_id)

        summary_result, tags_result = await asyncio.gather(
            self.generate_summary(note_id, identity),
            self.generate_tags(note_id, identity),
            return_exceptions=True,
        )
        summary_ok = _succeeded(summary_result)
        tags_ok = _succeeded(tags_result)

        if summary_ok and tags_ok:
            return AIOperationResult(
                success=True,
                data=AIResultData(
                    summary=summary_result.data.summary,
                    tags=tags_result.data.tags,
                ),
            )

        if summary_ok or tags_ok:
            if summary_ok:
                partial = AIResultData(summary=summary_result.data.summary)
                failed_side = "tags"
            else:
                partial = AIResultData(tags=tags_result.data.tags)
                failed_side = "summary"
            logger.warning("Partial AI processing for note %s: %s failed", note_id, failed_side)
            return AIOperationResult(
                success=False,
                error=self.PARTIAL_ERROR_MESSAGE,
                error_kind=ErrorKind.PARSING_ERROR,
                retryable=True,
                partial_success=True,
                partial_data=partial,
            )

        # Both failed: the summary side decides; its kind is reused as is
        if isinstance(summary_result, AIOperationResult):
            return AIOperationResult(
                success=False,
                error=summary_result.error,
                error_kind=summary_result.error_kind,
                retryable=summary_result.retryable,
            )
        return self._failure(summary_result, action, user_id=user_id, note_id=note_id)

    async def test_connection(self, identity: IdentityProvider) -> AIOperationResult:
        """One un-retried round trip to Gemini with a trivial prompt."""
        action = "test_connection"
        user_id = None
        try:
            user = await self._authenticate(identity)
            user_id = user.id
            response = await self.llm.generate(self.CONNECTION_TEST_PROMPT)
            if not response.text.strip():
                raise ParsingError("No text found in the connection test response")
        except Exception as e:
            return self._failure(e, action, user_id=user_id)

        logger.info("Gemini connection test succeeded for user %s", user_id)
        return AIOperationResult(success=True)

    # ══════════════════════════════════════════════════════════════════════
    # Manual Edits
    # ══════════════════════════════════════════════════════════════════════

    async def update_summary(
        self, note_id: str, content: str, identity: IdentityProvider
    ) -> EditResult:
        action = "update_summary"
        user_id = None
        try:
            user = await self._authenticate(identity)
            user_id = user.id
            summary = self._validate_summary(content)
            await self._load_owned_note(note_id, user)
            await self._persist(self.store.upsert_summary(note_id, self.MANUAL_EDIT_MODEL, summary))
        except Exception as e:
            return self._edit_failure(e, action, user_id=user_id, note_id=note_id)

        logger.info("Summary manually updated for note %s", note_id)
        return EditResult(success=True, data=AIResultData(summary=summary))

    async def update_tags(
        self, note_id: str, tags: List[str], identity: IdentityProvider
    ) -> EditResult:
        action = "update_tags"
        user_id = None
        try:
            user = await self._authenticate(identity)
            user_id = user.id
            cleaned = self._clean_manual_tags(tags)
            await self._load_owned_note(note_id, user)
            await self._persist(self.store.replace_tags(note_id, cleaned))
        except Exception as e:
            return self._edit_failure(e, action, user_id=user_id, note_id=note_id)

        logger.info("Tags manually updated for note %s: %s", note_id, cleaned)
        return EditResult(success=True, data=AIResultData(tags=cleaned))

    # ══════════════════════════════════════════════════════════════════════
    # Backups
    # ══════════════════════════════════════════════════════════════════════

    async def create_backup(
        self,
        note_id: str,
        identity: IdentityProvider,
        kind: BackupKind = BackupKind.BOTH,
    ) -> str:
        """
        Snapshot the stored summary/tags of an owned note.

        Raises NoteMindError subclasses (handled globally by the API layer).
        """
        user = await self._authenticate(identity)
        await self._load_owned_note(note_id, user)
        summary = await self.store.get_summary(note_id)
        tags = await self.store.get_tags(note_id)

        if kind == BackupKind.BOTH:
            return backup_before_ai_processing(note_id, summary, tags, manager=self.backups)
        return self.backups.create_backup(note_id, {"summary": summary, "tags": tags}, kind)

    async def rollback(self, note_id: str, backup_id: str, identity: IdentityProvider) -> bool:
        """
        Write a backup back to the store, then drop it.

        False when the backup is missing, expired, belongs to another note, or
        could not be applied.
        """
        user = await self._authenticate(identity)
        await self._load_owned_note(note_id, user)
        if not _belongs_to(backup_id, note_id):
            logger.warning("Backup %s does not belong to note %s", backup_id, note_id)
            return False

        restored = await rollback_on_failure(
            backup_id,
            apply_summary=lambda summary: self._restore_summary(note_id, summary),
            apply_tags=lambda tags: self.store.replace_tags(note_id, tags),
            manager=self.backups,
        )
        if restored:
            self.backups.clear_backup(backup_id)
        return restored

    async def discard_backup(self, note_id: str, backup_id: str, identity: IdentityProvider) -> None:
        user = await self._authenticate(identity)
        await self._load_owned_note(note_id, user)
        if _belongs_to(backup_id, note_id):
            self.backups.clear_backup(backup_id)

    async def _restore_summary(self, note_id: str, summary: Optional[str]) -> None:
        if summary is None:
            await self.store.delete_summary(note_id)
        else:
            await self.store.upsert_summary(note_id, self.RESTORED_MODEL, summary)

    # ══════════════════════════════════════════════════════════════════════
    # Steps
    # ══════════════════════════════════════════════════════════════════════

    async def _authenticate(self, identity: IdentityProvider) -> CurrentUser:
        try:
            user = await identity.get_current_user()
        except Exception as e:
            raise AuthenticationError(message=f"Authentication failed: {e}") from e
        if user is None:
            raise AuthenticationError()
        return user

    async def _load_owned_note(self, note_id: str, user: CurrentUser):
        if not note_id or not note_id.strip():
            raise ValidationError("note_id must not be empty", field="note_id")
        note = await self.store.find_note_by_id_for_owner(user.id, note_id)
        if note is None:
            raise AuthorizationError(note_id=note_id)
        return note

    @staticmethod
    def _check_tokens(note) -> int:
        return check_token_limit(f"{note.title}\n\n{note.content}")

    async def _call_llm(
        self, prompt: str, action: str, user_id: str, note_id: str
    ) -> LLMResponse:
        observer = _MonitoredRetryObserver(self.classifier, action, user_id, note_id)
        controller = RetryController(
            base_delay_ms=self._retry_base_delay_ms,
            max_jitter_ms=self._retry_max_jitter_ms,
            observer=observer,
            sleep=self._sleep,
        )
        try:
            response = await controller.execute_with_retry(
                lambda: self.llm.generate(prompt),
                retryable=True,
                should_retry=lambda exc: classify_error(exc).retryable,
            )
        except Exception as e:
            if observer.retries:
                raise _RetriedCallFailed(e, observer.retries) from e
            raise
        if observer.retries:
            self.classifier.record(
                classify_error(observer.last_error),
                action,
                retry_count=observer.retries,
                success=True,
                user_id=user_id,
                note_id=note_id,
            )
        return response

    @staticmethod
    def _parse_summary(text: str) -> str:
        summary = (text or "").strip()
        if not summary:
            raise ParsingError("No output produced for the summary")
        return summary

    def _parse_tags(self, text: str) -> List[str]:
        tags: List[str] = []
        for raw in (text or "").split(","):
            tag = raw.strip()
            if 0 < len(tag) <= self.MAX_AI_TAG_LENGTH and tag not in tags:
                tags.append(tag)
        tags = tags[: self.MAX_AI_TAGS]
        if not tags:
            raise ParsingError("No usable tags could be parsed from the AI output")
        return tags

    def _validate_summary(self, content: str) -> str:
        summary = (content or "").strip()
        if not summary:
            raise ValidationError("Summary content must not be empty", field="content")
        if len(summary) > self.MAX_SUMMARY_LENGTH:
            raise ValidationError(
                f"Summary is too long (maximum {self.MAX_SUMMARY_LENGTH} characters)",
                field="content",
            )
        return summary

    def _clean_manual_tags(self, tags: List[str]) -> List[str]:
        cleaned: List[str] = []
        for raw in tags or []:
            tag = str(raw).strip()
            if 0 < len(tag) <= self.MAX_MANUAL_TAG_LENGTH and tag not in cleaned:
                cleaned.append(tag)
        cleaned = cleaned[: self.MAX_MANUAL_TAGS]
        if not cleaned:
            raise ValidationError(
                f"At least one tag of 1-{self.MAX_MANUAL_TAG_LENGTH} characters is required",
                field="tags",
            )
        return cleaned

    @staticmethod
    async def _persist(write: Awaitable[None]) -> None:
        try:
            await write
        except NoteMindError:
            raise
        except Exception as e:
            raise DatabaseError(message=f"Failed to save AI result: {e}") from e

    # ══════════════════════════════════════════════════════════════════════
    # Failure Boundary
    # ══════════════════════════════════════════════════════════════════════

    def _classify_failure(
        self,
        error: BaseException,
        action: str,
        user_id: Optional[str] = None,
        note_id: Optional[str] = None,
    ) -> ClassifiedError:
        retry_count = None
        if isinstance(error, _RetriedCallFailed):
            retry_count = error.retries
            error = error.error
        classified = self.classifier.classify(
            error,
            action=action,
            retry_count=retry_count,
            user_id=user_id,
            note_id=note_id,
        )
        if classified.retryable:
            logger.error(
                "%s failed for note %s: %s (%s)",
                action,
                note_id,
                classified.raw_message,
                classified.kind,
                exc_info=None if isinstance(error, NoteMindError) else error,
            )
        else:
            logger.warning(
                "%s rejected for note %s: %s (%s)",
                action,
                note_id,
                classified.raw_message,
                classified.kind,
            )
        return classified

    def _failure(
        self,
        error: BaseException,
        action: str,
        user_id: Optional[str] = None,
        note_id: Optional[str] = None,
    ) -> AIOperationResult:
        return AIOperationResult.failure(self._classify_failure(error, action, user_id, note_id))

    def _edit_failure(
        self,
        error: BaseException,
        action: str,
        user_id: Optional[str] = None,
        note_id: Optional[str] = None,
    ) -> EditResult:
        classified = self._classify_failure(error, action, user_id, note_id)
        # Edit validation messages are written for the user
        if isinstance(error, ValidationError):
            return EditResult(success=False, error=error.message)
        return EditResult(success=False, error=classified.user_message)


def _succeeded(result: Union[AIOperationResult, BaseException]) -> bool:
    return isinstance(result, AIOperationResult) and result.success and result.data is not None


def _belongs_to(backup_id: str, note_id: str) -> bool:
    return backup_id.startswith(f"{note_id}_")


note_ai_service = NoteAIService()


def get_ai_service() -> NoteAIService:
    """FastAPI dependency; overridden in tests."""
    return note_ai_service
