from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Union

Role = Literal["system", "user", "assistant", "tool"]


@dataclass(frozen=True, slots=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(frozen=True, slots=True)
class Message:
    role: Role
    content: str | None = None
    images: tuple[str, ...] = ()
    tool_call_id: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.images:
            payload["images"] = list(self.images)
        if self.role == "tool" and self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.role == "assistant" and self.tool_calls:
            payload["tool_calls"] = [call.to_payload() for call in self.tool_calls]
        return payload

    def char_size(self) -> int:
        size = len(self.content or "")
        if self.tool_calls:
            size += len(json.dumps([call.to_payload() for call in self.tool_calls]))
        return size


@dataclass(frozen=True, slots=True)
class ToolSpec:
    name: str
    description: str
    parameter_schema: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameter_schema,
            },
        }


@dataclass(frozen=True, slots=True)
class ToolResult:
    tool_call_id: str
    name: str
    success: bool
    payload: Any = None
    error: str | None = None

    def to_content(self) -> str:
        if self.success:
            return json.dumps(self.payload, ensure_ascii=False)
        return json.dumps({"error": self.error}, ensure_ascii=False)


@dataclass(slots=True)
class GenerationRequest:
    id: str
    model: str
    messages: list[Message]
    streaming: bool = True
    options: dict[str, Any] | None = None
    tools: list[ToolSpec] | None = None
    think: bool | None = None
    format: str | dict[str, Any] | None = None
    keep_alive: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [message.to_payload() for message in self.messages],
            "stream": self.streaming,
        }
        if self.tools:
            payload["tools"] = [spec.to_payload() for spec in self.tools]
        if self.think is not None:
            payload["think"] = self.think
        if self.options:
            payload["options"] = dict(self.options)
        if self.format is not None:
            payload["format"] = self.format
        if self.keep_alive:
            payload["keep_alive"] = self.keep_alive
        return payload


@dataclass(frozen=True, slots=True)
class GenerationStats:
    total_time_ms: int
    time_to_first_token_ms: int
    token_count: int
    tokens_per_second: float

    def to_payload(self) -> dict[str, Any]:
        return {
            "totalTime": self.total_time_ms,
            "timeToFirstToken": self.time_to_first_token_ms,
            "tokenCount": self.token_count,
            "tokensPerSecond": round(self.tokens_per_second, 2),
        }


# Stream events


@dataclass(frozen=True, slots=True)
class ContentDelta:
    text: str


@dataclass(frozen=True, slots=True)
class ThinkingDelta:
    text: str


@dataclass(frozen=True, slots=True)
class ToolCallsDelta:
    fragments: tuple[dict[str, Any], ...]


@dataclass(frozen=True, slots=True)
class Done:
    tool_calls: tuple[ToolCall, ...] = ()
    stats: GenerationStats | None = None
    truncated: bool = False


@dataclass(frozen=True, slots=True)
class ParseWarning:
    raw_line: str


@dataclass(frozen=True, slots=True)
class StreamFailure:
    message: str


StreamEvent = Union[ContentDelta, ThinkingDelta, ToolCallsDelta, Done, ParseWarning, StreamFailure]


class RequestState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in {RequestState.COMPLETED, RequestState.FAILED, RequestState.CANCELLED}


@dataclass(frozen=True, slots=True)
class GenerationOutcome:
    request_id: str
    state: RequestState
    content: str = ""
    error: str | None = None


class NotificationType(str, Enum):
    STREAMING_RESPONSE = "STREAMING_RESPONSE"
    THINKING_RESPONSE = "THINKING_RESPONSE"
    FINAL_RESPONSE = "FINAL_RESPONSE"
    SYSTEM_MESSAGE = "SYSTEM_MESSAGE"
    CONTEXT_INFO = "CONTEXT_INFO"
    PERFORMANCE_STATS = "PERFORMANCE_STATS"
    WARNING = "WARNING"
    MODEL_PULL_PROGRESS = "MODEL_PULL_PROGRESS"


@dataclass(frozen=True, slots=True)
class Notification:
    type: NotificationType
    data: Any
    request_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type.value, "requestId": self.request_id, "data": self.data}
