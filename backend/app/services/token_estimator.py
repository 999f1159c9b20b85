"""
NoteMind Backend — Prompt Token Estimation
============================================

A cheap, language-aware estimate of how many tokens a note will cost, used to
reject oversized notes before paying for a Gemini call that would be refused
or truncated anyway.

Heuristic: Hangul, CJK ideographs and kana weigh about 1.5 tokens per
character; everything else about 0.25 (four characters per token).
"""

import math
import re
from typing import Optional

from app.config import settings
from app.exceptions import TokenLimitExceededError

_DENSE_SCRIPT = re.compile(
    "["
    "ᄀ-ᇿ"   # Hangul Jamo
    "぀-ヿ"   # Hiragana, Katakana
    "㄰-㆏"   # Hangul Compatibility Jamo
    "一-鿿"   # CJK Unified Ideographs
    "가-힣"   # Hangul Syllables
    "]"
)

DENSE_TOKENS_PER_CHAR = 1.5
CHARS_PER_TOKEN = 4


def estimate_token_count(text: str) -> int:
    if not text:
        return 0
    dense = len(_DENSE_SCRIPT.findall(text))
    other = len(text) - dense
    return math.ceil(dense * DENSE_TOKENS_PER_CHAR + other / CHARS_PER_TOKEN)


def check_token_limit(text: str, max_tokens: Optional[int] = None) -> int:
    """
    Return the estimate, or raise TokenLimitExceededError if it is over
    `max_tokens` (default: settings.ai_token_limit).
    """
    limit = max_tokens if max_tokens is not None else settings.ai_token_limit
    estimated = estimate_token_count(text)
    if estimated > limit:
        raise TokenLimitExceededError(estimated_tokens=estimated, max_tokens=limit)
    return estimated
