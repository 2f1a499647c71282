"""Incremental parser for newline-delimited JSON chat streams.

Chunks may split records anywhere, including inside a multi-byte UTF-8
sequence, so the buffer is kept as bytes and only complete lines are decoded.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, AsyncIterator, Callable, Iterable

from .token_estimation import estimate_tokens
from .types import (
    ContentDelta,
    Done,
    GenerationStats,
    ParseWarning,
    StreamEvent,
    StreamFailure,
    ThinkingDelta,
    ToolCall,
    ToolCallsDelta,
)

logger = logging.getLogger(__name__)

RECORD_DELIMITER = b"\n"


class LineBuffer:
    def __init__(self) -> None:
        self._buffer = b""

    def feed(self, chunk: bytes) -> list[bytes]:
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(RECORD_DELIMITER)
        return [line for line in lines if line.strip()]

    def flush(self) -> list[bytes]:
        remainder, self._buffer = self._buffer, b""
        return [remainder] if remainder.strip() else []


class ToolCallAccumulator:
    """Merges tool-call fragments received across records.

    Fragments carrying an ``index`` extend the call at that index, the way
    OpenAI-style deltas do. Fragments without one are complete calls.
    """

    def __init__(self, first_index: int = 0) -> None:
        self.first_index = first_index
        self._calls: list[dict[str, Any]] = []
        self._by_index: dict[int, dict[str, Any]] = {}

    def add(self, fragment: dict[str, Any]) -> None:
        function = fragment.get("function") or {}
        index = fragment.get("index")
        entry = self._by_index.get(index) if isinstance(index, int) else None

        if entry is None:
            entry = {"id": None, "name": "", "arguments": None}
            self._calls.append(entry)
            if isinstance(index, int):
                self._by_index[index] = entry

        if fragment.get("id"):
            entry["id"] = fragment["id"]
        if function.get("name"):
            entry["name"] = entry["name"] or function["name"]

        arguments = function.get("arguments")
        if isinstance(arguments, str):
            previous = entry["arguments"]
            entry["arguments"] = (previous if isinstance(previous, str) else "") + arguments
        elif isinstance(arguments, dict):
            previous = entry["arguments"]
            entry["arguments"] = {**(previous if isinstance(previous, dict) else {}), **arguments}

    def build(self) -> tuple[ToolCall, ...]:
        calls = []
        for position, entry in enumerate(self._calls):
            calls.append(
                ToolCall(
                    id=entry["id"] or f"call_{self.first_index + position}",
                    name=entry["name"],
                    arguments=_decode_arguments(entry["arguments"]),
                )
            )
        return tuple(calls)


class NdjsonStreamParser:
    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        first_call_index: int = 0,
    ) -> None:
        self._clock = clock
        self._lines = LineBuffer()
        self._tool_calls = ToolCallAccumulator(first_index=first_call_index)
        self._started_at = clock()
        self._first_token_at: float | None = None
        self._content_parts: list[str] = []
        self.done = False

    @property
    def content(self) -> str:
        return "".join(self._content_parts)

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for line in self._lines.feed(chunk):
            events.extend(self._parse_line(line))
        return events

    def finish(self) -> list[StreamEvent]:
        """Flush the buffer at end of stream.

        A stream closed before a terminal record still completes, flagged as
        truncated.
        """

        events: list[StreamEvent] = []
        for line in self._lines.flush():
            events.extend(self._parse_line(line))
        if not self.done:
            logger.warning("Stream ended without a terminal record")
            events.append(self._complete(truncated=True))
        return events

    def _parse_line(self, line: bytes) -> list[StreamEvent]:
        if self.done:
            return []

        text = line.decode("utf-8", "replace").strip()
        try:
            record = json.loads(text)
        except ValueError:
            logger.warning("Failed to parse streaming chunk: %s", text[:200])
            return [ParseWarning(raw_line=text)]
        if not isinstance(record, dict):
            logger.warning("Ignoring non-object streaming chunk: %s", text[:200])
            return [ParseWarning(raw_line=text)]

        return self.feed_record(record)

    def feed_record(self, record: dict[str, Any]) -> list[StreamEvent]:
        """Parse one already-decoded record, e.g. a non-streaming response."""

        if self.done:
            return []

        events: list[StreamEvent] = []
        if record.get("error"):
            events.append(StreamFailure(message=str(record["error"])))
            return events

        message = record.get("message")
        if isinstance(message, dict):
            thinking = message.get("thinking")
            if isinstance(thinking, str) and thinking:
                events.append(ThinkingDelta(text=thinking))

            content = message.get("content")
            if isinstance(content, str) and content:
                if self._first_token_at is None:
                    self._first_token_at = self._clock()
                self._content_parts.append(content)
                events.append(ContentDelta(text=content))

            fragments = message.get("tool_calls")
            if isinstance(fragments, list) and fragments:
                valid = tuple(fragment for fragment in fragments if isinstance(fragment, dict))
                for fragment in valid:
                    self._tool_calls.add(fragment)
                events.append(ToolCallsDelta(fragments=valid))

        if record.get("done"):
            events.append(self._complete())

        return events

    def _complete(self, truncated: bool = False) -> Done:
        self.done = True
        finished_at = self._clock()
        total = max(0.0, finished_at - self._started_at)
        first = self._first_token_at if self._first_token_at is not None else finished_at
        tokens = estimate_tokens(self.content)
        stats = GenerationStats(
            total_time_ms=int(total * 1000),
            time_to_first_token_ms=int(max(0.0, first - self._started_at) * 1000),
            token_count=tokens,
            tokens_per_second=tokens / total if total > 0 else 0.0,
        )
        return Done(tool_calls=self._tool_calls.build(), stats=stats, truncated=truncated)


async def iter_ndjson_records(chunks: AsyncIterator[bytes]) -> AsyncIterator[dict[str, Any]]:
    """Yield each JSON object from a byte stream, skipping malformed lines."""

    lines = LineBuffer()
    async for chunk in chunks:
        for record in _decode_records(lines.feed(chunk)):
            yield record
    for record in _decode_records(lines.flush()):
        yield record


def _decode_records(lines: Iterable[bytes]) -> Iterable[dict[str, Any]]:
    for line in lines:
        try:
            record = json.loads(line)
        except ValueError:
            logger.warning("Failed to parse progress line: %r", line[:200])
            continue
        if isinstance(record, dict):
            yield record


def _decode_arguments(raw: Any) -> dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        decoded = json.loads(raw) if raw.strip() else {}
    except ValueError:
        logger.warning("Tool call arguments are not valid JSON: %s", raw[:200])
        return {"_raw": raw}
    return decoded if isinstance(decoded, dict) else {"value": decoded}
