from __future__ import annotations

import math
from typing import Iterable

_CHARS_PER_TOKEN = 4
_WORD_TOKEN_RATIO = 1.33


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    words = len(text.split())
    return max(1, math.ceil(max(words * _WORD_TOKEN_RATIO, len(text) / _CHARS_PER_TOKEN)))


def estimate_messages_tokens(messages: Iterable[dict]) -> int:
    total = 0
    for message in messages:
        total += 4  # per-message structural overhead heuristic
        total += estimate_tokens(str(message.get("content", "")))
    return total + 2  # assistant priming per OpenAI guideline
