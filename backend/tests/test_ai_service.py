"""
NoteMind Backend — AI Orchestrator Unit Tests
===============================================

What:  Tests for NoteAIService with a mocked LLM and a mocked NoteStore.
How:   The service is built in conftest with isolated monitor/backup stores
       and a no-op sleep, so retries run instantly.

What we test:
    ✅ Summary and tag generation, parsing and persistence
    ✅ Retries: transient failures retried, parse failures not, exhaustion
    ✅ Pre-flight failures (identity, ownership, blank id, token limit) make no LLM call
    ✅ Combined processing in all four success/failure combinations
    ✅ Manual edits and their validation messages
    ✅ Backup creation, rollback and discard through the store
    ❌ Real Gemini calls (see test_gemini_service.py for the SDK boundary)
"""

from unittest.mock import AsyncMock

import pytest

from app.exceptions import (
    AuthenticationError,
    AuthorizationError,
    DatabaseError,
    LLMServiceError,
    NetworkError,
    TokenLimitExceededError,
)
from app.schemas.ai import BackupKind, ErrorKind
from app.services.error_classifier import USER_MESSAGES
from app.services.identity import IdentityProvider
from app.services.llm_base import LLMResponse


def _by_prompt(summary=None, tags=None):
    """
    LLM side effect that answers summary and tag prompts differently.

    Each argument is the text to return, or an exception to raise.
    """

    async def generate(prompt):
        outcome = summary if prompt.startswith("Summarize") else tags
        if isinstance(outcome, BaseException):
            raise outcome
        return LLMResponse(text=outcome)

    return generate


class _BrokenIdentity(IdentityProvider):
    async def get_current_user(self):
        raise RuntimeError("session store unavailable")


class TestGenerateSummary:
    @pytest.mark.asyncio
    async def test_success_persists_summary(self, ai_service, mock_llm, mock_store, identity, note_id):
        mock_llm.generate.return_value = LLMResponse(text="  - point one\n- point two\n")

        result = await ai_service.generate_summary(note_id, identity)

        assert result.success is True
        assert result.data.summary == "- point one\n- point two"
        assert result.error is None
        mock_store.upsert_summary.assert_awaited_once_with(
            note_id, "gemini-test", "- point one\n- point two"
        )

    @pytest.mark.asyncio
    async def test_prompt_contains_note(self, ai_service, mock_llm, identity, note_id, sample_note):
        await ai_service.generate_summary(note_id, identity)

        prompt = mock_llm.generate.await_args.args[0]
        assert sample_note.title in prompt
        assert sample_note.content in prompt

    @pytest.mark.asyncio
    async def test_looks_up_note_for_caller(self, ai_service, mock_store, identity, note_id, user_id):
        await ai_service.generate_summary(note_id, identity)
        mock_store.find_note_by_id_for_owner.assert_awaited_once_with(user_id, note_id)

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self, ai_service, mock_llm, identity, note_id, monitor):
        mock_llm.generate.side_effect = [
            NetworkError("connection reset"),
            LLMServiceError("Gemini API call failed: 503"),
            LLMResponse(text="- recovered"),
        ]

        result = await ai_service.generate_summary(note_id, identity)

        assert result.success is True
        assert result.data.summary == "- recovered"
        assert mock_llm.generate.await_count == 3

        logs = monitor.get_error_logs(action="generate_summary")
        attempts = [e for e in logs if e.retry_count is None]
        assert sorted(e.context["attempt"] for e in attempts) == [1, 2]
        [recovered] = [e for e in logs if e.retry_count is not None]
        assert recovered.success is True
        assert recovered.retry_count == 2

    @pytest.mark.asyncio
    async def test_recovered_operation_counts_as_full_retry_success(
        self, ai_service, mock_llm, identity, note_id, monitor
    ):
        mock_llm.generate.side_effect = [NetworkError("connection reset"), LLMResponse(text="- ok")]

        result = await ai_service.generate_summary(note_id, identity)

        assert result.success is True
        stats = monitor.get_stats()
        assert stats.retry_success_rate == 100.0
        assert stats.average_retry_count == 1.0

    @pytest.mark.asyncio
    async def test_exhausted_operation_is_one_failed_outcome(
        self, ai_service, mock_llm, identity, note_id, monitor
    ):
        mock_llm.generate.side_effect = NetworkError("connection refused")

        await ai_service.generate_summary(note_id, identity)

        logs = monitor.get_error_logs(action="generate_summary")
        assert len(logs) == 3
        [outcome] = [e for e in logs if e.retry_count is not None]
        assert outcome.success is False
        assert outcome.retry_count == 2
        assert outcome.kind == ErrorKind.NETWORK_ERROR
        assert monitor.get_stats().retry_success_rate == 0.0

    @pytest.mark.asyncio
    async def test_mixed_outcomes_rate_per_operation(self, ai_service, mock_llm, identity, note_id, monitor):
        mock_llm.generate.side_effect = [
            NetworkError(),
            NetworkError(),
            LLMResponse(text="- ok"),
            NetworkError(),
            NetworkError(),
            NetworkError(),
        ]

        await ai_service.generate_summary(note_id, identity)
        await ai_service.generate_summary(note_id, identity)

        assert monitor.get_stats().retry_success_rate == 50.0

    @pytest.mark.asyncio
    async def test_unretried_failure_has_no_outcome_entry(
        self, ai_service, mock_llm, identity, note_id, monitor
    ):
        mock_llm.generate.return_value = LLMResponse(text="")

        await ai_service.generate_summary(note_id, identity)

        [entry] = monitor.get_error_logs()
        assert entry.retry_count is None

    @pytest.mark.asyncio
    async def test_waits_between_attempts(self, ai_service, mock_llm, identity, note_id, no_sleep):
        mock_llm.generate.side_effect = [NetworkError(), NetworkError(), LLMResponse(text="- ok")]

        await ai_service.generate_summary(note_id, identity)

        first, second = (call.args[0] for call in no_sleep.await_args_list)
        assert 1.0 <= first <= 2.0
        assert 2.0 <= second <= 3.0

    @pytest.mark.asyncio
    async def test_exhausted_retries_return_network_error(
        self, ai_service, mock_llm, mock_store, identity, note_id
    ):
        mock_llm.generate.side_effect = NetworkError("connection refused")

        result = await ai_service.generate_summary(note_id, identity)

        assert result.success is False
        assert result.error_kind == ErrorKind.NETWORK_ERROR
        assert result.retryable is True
        assert result.error == USER_MESSAGES[ErrorKind.NETWORK_ERROR]
        assert mock_llm.generate.await_count == 3
        mock_store.upsert_summary.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_raw_error_text_is_not_returned(self, ai_service, mock_llm, identity, note_id):
        mock_llm.generate.side_effect = LLMServiceError("Gemini API call failed: key AIza-secret rejected")

        result = await ai_service.generate_summary(note_id, identity)

        assert "AIza-secret" not in result.error
        assert result.error_kind == ErrorKind.API_ERROR

    @pytest.mark.asyncio
    async def test_empty_response_is_parsing_error(self, ai_service, mock_llm, identity, note_id):
        mock_llm.generate.return_value = LLMResponse(text="   \n")

        result = await ai_service.generate_summary(note_id, identity)

        assert result.success is False
        assert result.error_kind == ErrorKind.PARSING_ERROR
        assert result.retryable is True
        assert mock_llm.generate.await_count == 1

    @pytest.mark.asyncio
    async def test_non_retryable_llm_error_is_not_retried(self, ai_service, mock_llm, identity, note_id):
        mock_llm.generate.side_effect = TokenLimitExceededError(20000, 8192)

        result = await ai_service.generate_summary(note_id, identity)

        assert result.error_kind == ErrorKind.TOKEN_LIMIT_EXCEEDED
        assert result.retryable is False
        assert mock_llm.generate.await_count == 1

    @pytest.mark.asyncio
    async def test_failure_is_recorded_in_monitor(self, ai_service, mock_llm, identity, note_id, user_id, monitor):
        mock_llm.generate.return_value = LLMResponse(text="")

        await ai_service.generate_summary(note_id, identity)

        [entry] = monitor.get_error_logs(kind=ErrorKind.PARSING_ERROR)
        assert entry.action == "generate_summary"
        assert entry.user_id == user_id
        assert entry.note_id == note_id

    @pytest.mark.asyncio
    async def test_store_failure_is_database_error(self, ai_service, mock_store, identity, note_id):
        mock_store.upsert_summary.side_effect = DatabaseError("Database error while saving the summary")

        result = await ai_service.generate_summary(note_id, identity)

        assert result.error_kind == ErrorKind.DATABASE_ERROR
        assert result.retryable is True

    @pytest.mark.asyncio
    async def test_unexpected_store_failure_is_database_error(self, ai_service, mock_store, identity, note_id):
        mock_store.upsert_summary.side_effect = RuntimeError("boom")

        result = await ai_service.generate_summary(note_id, identity)

        assert result.error_kind == ErrorKind.DATABASE_ERROR


class TestPreflight:
    """Failures detected before any LLM call."""

    @pytest.mark.asyncio
    async def test_no_user(self, ai_service, mock_llm, mock_store, anonymous, note_id):
        result = await ai_service.generate_summary(note_id, anonymous)

        assert result.error_kind == ErrorKind.AUTHENTICATION_ERROR
        assert result.retryable is False
        mock_store.find_note_by_id_for_owner.assert_not_awaited()
        mock_llm.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_identity_provider_failure(self, ai_service, mock_llm, note_id):
        result = await ai_service.generate_tags(note_id, _BrokenIdentity())

        assert result.error_kind == ErrorKind.AUTHENTICATION_ERROR
        mock_llm.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_note_not_owned(self, ai_service, mock_llm, mock_store, identity, note_id):
        mock_store.find_note_by_id_for_owner.return_value = None

        result = await ai_service.generate_summary(note_id, identity)

        assert result.error_kind == ErrorKind.AUTHORIZATION_ERROR
        assert result.retryable is False
        mock_llm.generate.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("blank", ["", "   "])
    async def test_blank_note_id(self, ai_service, mock_llm, identity, blank):
        result = await ai_service.generate_tags(blank, identity)

        assert result.error_kind == ErrorKind.VALIDATION_ERROR
        mock_llm.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_token_limit_makes_no_llm_call(self, ai_service, mock_llm, identity, note_id, sample_note):
        sample_note.content = "x" * 40_000

        result = await ai_service.generate_summary(note_id, identity)

        assert result.success is False
        assert result.error_kind == ErrorKind.TOKEN_LIMIT_EXCEEDED
        assert result.retryable is False
        assert result.error == USER_MESSAGES[ErrorKind.TOKEN_LIMIT_EXCEEDED]
        mock_llm.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dense_script_counts_toward_limit(self, ai_service, mock_llm, identity, note_id, sample_note):
        # 6000 Hangul characters estimate to 9000 tokens
        sample_note.content = "가" * 6000

        result = await ai_service.generate_tags(note_id, identity)

        assert result.error_kind == ErrorKind.TOKEN_LIMIT_EXCEEDED
        mock_llm.generate.assert_not_awaited()


class TestGenerateTags:
    @pytest.mark.asyncio
    async def test_success_replaces_tags(self, ai_service, mock_llm, mock_store, identity, note_id):
        mock_llm.generate.return_value = LLMResponse(text="planning, work,  team ")

        result = await ai_service.generate_tags(note_id, identity)

        assert result.success is True
        assert result.data.tags == ["planning", "work", "team"]
        mock_store.replace_tags.assert_awaited_once_with(note_id, ["planning", "work", "team"])

    @pytest.mark.asyncio
    async def test_eight_tags_are_capped_at_six(self, ai_service, mock_llm, identity, note_id):
        mock_llm.generate.return_value = LLMResponse(text="a, b, c, d, e, f, g, h")

        result = await ai_service.generate_tags(note_id, identity)

        assert result.data.tags == ["a", "b", "c", "d", "e", "f"]

    @pytest.mark.asyncio
    async def test_blank_duplicate_and_oversized_tags_dropped(self, ai_service, mock_llm, identity, note_id):
        mock_llm.generate.return_value = LLMResponse(text=f"work, , work, {'x' * 101}, travel")

        result = await ai_service.generate_tags(note_id, identity)

        assert result.data.tags == ["work", "travel"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", " , ,, "])
    async def test_no_usable_tags_is_parsing_error(self, ai_service, mock_llm, mock_store, identity, note_id, text):
        mock_llm.generate.return_value = LLMResponse(text=text)

        result = await ai_service.generate_tags(note_id, identity)

        assert result.success is False
        assert result.error_kind == ErrorKind.PARSING_ERROR
        assert result.retryable is True
        mock_store.replace_tags.assert_not_awaited()


class TestGenerateBoth:
    @pytest.mark.asyncio
    async def test_both_succeed(self, ai_service, mock_llm, identity, note_id):
        mock_llm.generate.side_effect = _by_prompt(summary="- s", tags="a, b")

        result = await ai_service.generate_both(note_id, identity)

        assert result.success is True
        assert result.data.summary == "- s"
        assert result.data.tags == ["a", "b"]
        assert result.partial_success is None

    @pytest.mark.asyncio
    async def test_tags_fail_keeps_summary(self, ai_service, mock_llm, mock_store, identity, note_id):
        mock_llm.generate.side_effect = _by_prompt(summary="- s", tags="")

        result = await ai_service.generate_both(note_id, identity)

        assert result.success is False
        assert result.partial_success is True
        assert result.error == "AI processing had partial errors"
        assert result.error_kind == ErrorKind.PARSING_ERROR
        assert result.retryable is True
        assert result.partial_data.model_dump(exclude_none=True) == {"summary": "- s"}
        mock_store.upsert_summary.assert_awaited_once()
        mock_store.replace_tags.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_summary_fail_keeps_tags(self, ai_service, mock_llm, mock_store, identity, note_id):
        mock_llm.generate.side_effect = _by_prompt(summary=NetworkError("connection reset"), tags="a, b")

        result = await ai_service.generate_both(note_id, identity)

        assert result.success is False
        assert result.partial_success is True
        assert result.error_kind == ErrorKind.PARSING_ERROR
        assert result.partial_data.model_dump(exclude_none=True) == {"tags": ["a", "b"]}
        mock_store.upsert_summary.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_both_fail_reports_summary_side(self, ai_service, mock_llm, identity, note_id):
        mock_llm.generate.side_effect = _by_prompt(summary=NetworkError("connection reset"), tags="")

        result = await ai_service.generate_both(note_id, identity)

        assert result.success is False
        assert result.partial_success is None
        assert result.partial_data is None
        assert result.error_kind == ErrorKind.NETWORK_ERROR
        assert result.error == USER_MESSAGES[ErrorKind.NETWORK_ERROR]
        assert result.retryable is True

    @pytest.mark.asyncio
    async def test_preflight_failure_runs_nothing(self, ai_service, mock_llm, anonymous, note_id):
        result = await ai_service.generate_both(note_id, anonymous)

        assert result.error_kind == ErrorKind.AUTHENTICATION_ERROR
        assert result.partial_success is None
        mock_llm.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_token_limit_checked_once_before_both(self, ai_service, mock_llm, identity, note_id, sample_note):
        sample_note.content = "x" * 40_000

        result = await ai_service.generate_both(note_id, identity)

        assert result.error_kind == ErrorKind.TOKEN_LIMIT_EXCEEDED
        mock_llm.generate.assert_not_awaited()


class TestConnectionTest:
    @pytest.mark.asyncio
    async def test_success(self, ai_service, mock_llm, identity):
        mock_llm.generate.return_value = LLMResponse(text="OK")

        result = await ai_service.test_connection(identity)

        assert result.success is True
        assert mock_llm.generate.await_count == 1

    @pytest.mark.asyncio
    async def test_empty_answer_is_parsing_error(self, ai_service, mock_llm, identity):
        mock_llm.generate.return_value = LLMResponse(text="")

        result = await ai_service.test_connection(identity)

        assert result.error_kind == ErrorKind.PARSING_ERROR

    @pytest.mark.asyncio
    async def test_not_retried(self, ai_service, mock_llm, identity):
        mock_llm.generate.side_effect = NetworkError("connection refused")

        result = await ai_service.test_connection(identity)

        assert result.error_kind == ErrorKind.NETWORK_ERROR
        assert mock_llm.generate.await_count == 1


class TestManualEdits:
    @pytest.mark.asyncio
    async def test_update_summary(self, ai_service, mock_store, mock_llm, identity, note_id):
        result = await ai_service.update_summary(note_id, "  My own summary  ", identity)

        assert result.success is True
        assert result.data.summary == "My own summary"
        mock_store.upsert_summary.assert_awaited_once_with(note_id, "manual-edit", "My own summary")
        mock_llm.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_summary_rejected(self, ai_service, mock_store, identity, note_id):
        result = await ai_service.update_summary(note_id, "   ", identity)

        assert result.success is False
        assert result.error == "Summary content must not be empty"
        mock_store.upsert_summary.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_summary_length_limit(self, ai_service, identity, note_id):
        assert (await ai_service.update_summary(note_id, "x" * 2000, identity)).success is True

        result = await ai_service.update_summary(note_id, "x" * 2001, identity)
        assert result.success is False
        assert "2000" in result.error

    @pytest.mark.asyncio
    async def test_update_summary_on_foreign_note(self, ai_service, mock_store, identity, note_id):
        mock_store.find_note_by_id_for_owner.return_value = None

        result = await ai_service.update_summary(note_id, "text", identity)

        assert result.success is False
        assert result.error == USER_MESSAGES[ErrorKind.AUTHORIZATION_ERROR]
        mock_store.upsert_summary.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_summary_requires_user(self, ai_service, anonymous, note_id):
        result = await ai_service.update_summary(note_id, "text", anonymous)

        assert result.error == USER_MESSAGES[ErrorKind.AUTHENTICATION_ERROR]

    @pytest.mark.asyncio
    async def test_update_tags_cleans_list(self, ai_service, mock_store, identity, note_id):
        result = await ai_service.update_tags(note_id, [" work ", "", "work", "y" * 51, "home"], identity)

        assert result.success is True
        assert result.data.tags == ["work", "home"]
        mock_store.replace_tags.assert_awaited_once_with(note_id, ["work", "home"])

    @pytest.mark.asyncio
    async def test_update_tags_caps_at_ten(self, ai_service, identity, note_id):
        result = await ai_service.update_tags(note_id, [f"tag{i}" for i in range(15)], identity)

        assert result.data.tags == [f"tag{i}" for i in range(10)]

    @pytest.mark.asyncio
    async def test_update_tags_needs_one_valid_tag(self, ai_service, mock_store, identity, note_id):
        result = await ai_service.update_tags(note_id, ["  ", "z" * 60], identity)

        assert result.success is False
        assert "At least one tag" in result.error
        mock_store.replace_tags.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_failure(self, ai_service, mock_store, identity, note_id):
        mock_store.replace_tags.side_effect = DatabaseError()

        result = await ai_service.update_tags(note_id, ["work"], identity)

        assert result.success is False
        assert result.error == USER_MESSAGES[ErrorKind.DATABASE_ERROR]


class TestBackups:
    @pytest.mark.asyncio
    async def test_create_backup_snapshots_store(self, ai_service, backups, identity, note_id):
        backup_id = await ai_service.create_backup(note_id, identity)

        backup = backups.get_backup(backup_id)
        assert backup_id.startswith(f"{note_id}_both_")
        assert backup.data.summary == "- old summary"
        assert backup.data.tags == ["old", "tags"]

    @pytest.mark.asyncio
    async def test_create_summary_backup(self, ai_service, backups, identity, note_id):
        backup_id = await ai_service.create_backup(note_id, identity, BackupKind.SUMMARY)
        assert backups.get_backup(backup_id).kind == BackupKind.SUMMARY

    @pytest.mark.asyncio
    async def test_create_backup_requires_user(self, ai_service, anonymous, note_id):
        with pytest.raises(AuthenticationError):
            await ai_service.create_backup(note_id, anonymous)

    @pytest.mark.asyncio
    async def test_create_backup_requires_ownership(self, ai_service, mock_store, identity, note_id):
        mock_store.find_note_by_id_for_owner.return_value = None
        with pytest.raises(AuthorizationError):
            await ai_service.create_backup(note_id, identity)

    @pytest.mark.asyncio
    async def test_rollback_after_failed_ai_run(self, ai_service, mock_llm, mock_store, backups, identity, note_id):
        backup_id = await ai_service.create_backup(note_id, identity)
        mock_llm.generate.side_effect = _by_prompt(summary="- new", tags="")
        await ai_service.generate_both(note_id, identity)
        mock_store.upsert_summary.reset_mock()

        restored = await ai_service.rollback(note_id, backup_id, identity)

        assert restored is True
        mock_store.upsert_summary.assert_awaited_once_with(note_id, "backup-restore", "- old summary")
        mock_store.replace_tags.assert_awaited_once_with(note_id, ["old", "tags"])
        assert backup_id not in backups

    @pytest.mark.asyncio
    async def test_rollback_of_missing_summary_deletes_it(self, ai_service, mock_store, identity, note_id):
        mock_store.get_summary.return_value = None
        backup_id = await ai_service.create_backup(note_id, identity)

        assert await ai_service.rollback(note_id, backup_id, identity) is True
        mock_store.delete_summary.assert_awaited_once_with(note_id)

    @pytest.mark.asyncio
    async def test_rollback_rejects_other_notes_backup(self, ai_service, backups, mock_store, identity, note_id):
        other_backup = backups.create_backup("other-note", {"summary": "theirs", "tags": []})

        assert await ai_service.rollback(note_id, other_backup, identity) is False
        mock_store.upsert_summary.assert_not_awaited()
        assert other_backup in backups

    @pytest.mark.asyncio
    async def test_rollback_unknown_backup(self, ai_service, identity, note_id):
        assert await ai_service.rollback(note_id, f"{note_id}_both_1", identity) is False

    @pytest.mark.asyncio
    async def test_failed_rollback_keeps_backup(self, ai_service, mock_store, backups, identity, note_id):
        backup_id = await ai_service.create_backup(note_id, identity)
        mock_store.replace_tags = AsyncMock(side_effect=DatabaseError())

        assert await ai_service.rollback(note_id, backup_id, identity) is False
        assert backup_id in backups

    @pytest.mark.asyncio
    async def test_discard_backup(self, ai_service, backups, identity, note_id):
        backup_id = await ai_service.create_backup(note_id, identity)

        await ai_service.discard_backup(note_id, backup_id, identity)

        assert backup_id not in backups
