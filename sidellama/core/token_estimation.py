from __future__ import annotations

import math

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    if not text:
        return 0

    return max(1, math.ceil(len(text) / CHARS_PER_TOKEN))


def char_budget_for(context_tokens: int) -> int:
    return max(0, context_tokens) * CHARS_PER_TOKEN
