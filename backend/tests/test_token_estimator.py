"""
NoteMind Backend — Token Estimator Unit Tests
"""

import pytest

from app.exceptions import TokenLimitExceededError
from app.services.token_estimator import check_token_limit, estimate_token_count


class TestEstimateTokenCount:
    def test_empty_text(self):
        assert estimate_token_count("") == 0

    def test_latin_text_is_four_chars_per_token(self):
        assert estimate_token_count("abcd" * 10) == 10

    def test_rounds_up(self):
        assert estimate_token_count("abcde") == 2

    def test_hangul_weighs_one_and_a_half(self):
        assert estimate_token_count("안녕하세요") == 8  # ceil(5 * 1.5)

    def test_cjk_and_kana_are_dense(self):
        assert estimate_token_count("日本語") == 5  # ceil(4.5)
        assert estimate_token_count("ひらがな") == 6

    def test_mixed_text(self):
        # 2 Hangul (3.0) + 4 latin (1.0)
        assert estimate_token_count("노트 abc") == 4


class TestCheckTokenLimit:
    def test_returns_estimate_at_limit(self):
        assert check_token_limit("abcd" * 100, max_tokens=100) == 100

    def test_over_limit_raises(self):
        with pytest.raises(TokenLimitExceededError) as exc_info:
            check_token_limit("abcd" * 101, max_tokens=100)

        assert exc_info.value.estimated_tokens == 101
        assert exc_info.value.max_tokens == 100
        assert "101" in exc_info.value.message

    def test_default_limit_from_settings(self):
        check_token_limit("a" * 8192 * 4)
        with pytest.raises(TokenLimitExceededError):
            check_token_limit("a" * (8192 * 4 + 1))
