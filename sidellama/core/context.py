from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .types import Message

# The newest user/assistant exchange is never trimmed away.
PROTECTED_TAIL = 2


@dataclass(frozen=True, slots=True)
class TrimResult:
    messages: list[Message]
    trimmed_count: int


def trim_history(
    history: Sequence[Message],
    max_messages: int,
    max_chars: int | None = None,
) -> TrimResult:
    """Bound ``history`` by message count, then by approximate size.

    The first system message is always retained at position 0. Trimming works
    on whole messages, so a single message larger than ``max_chars`` is still
    returned intact.
    """

    messages = list(history)
    if len(messages) <= max_messages:
        return TrimResult(messages=messages, trimmed_count=0)

    system = next((message for message in messages if message.role == "system"), None)
    non_system = [message for message in messages if message.role != "system"]

    keep_count = max(0, max_messages - 1) if system is not None else max(0, max_messages)
    recent = non_system[-keep_count:] if keep_count else []

    if max_chars is not None:
        budget = max_chars - (system.char_size() if system is not None else 0)
        total = sum(message.char_size() for message in recent)
        while total > budget and len(recent) > PROTECTED_TAIL:
            total -= recent.pop(0).char_size()

    result = [system, *recent] if system is not None else recent
    return TrimResult(messages=result, trimmed_count=len(messages) - len(result))
