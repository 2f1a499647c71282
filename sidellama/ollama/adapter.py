from __future__ import annotations

import asyncio
import json
import logging
import math
from typing import Any, AsyncIterator

from sidellama.core.capabilities import capability_labels
from sidellama.core.errors import GatewayError
from sidellama.core.orchestrator import ChatOrchestrator, ChatTurn
from sidellama.core.types import Message, Notification, NotificationType, ToolCall

from .schemas import ChatSubmitRequest, HistoryMessage

logger = logging.getLogger(__name__)

_BYTE_UNITS = ("B", "KB", "MB", "GB", "TB")


def to_chat_turn(payload: ChatSubmitRequest) -> ChatTurn:
    if payload.image_attachments:
        images = [attachment.data_url for attachment in payload.image_attachments]
    elif payload.images:
        images = list(payload.images)
    elif payload.image:
        images = [payload.image]
    else:
        images = []

    return ChatTurn(
        message=payload.message,
        model=payload.model,
        history=[_to_message(message) for message in payload.messages],
        images=images,
        tab_ref=payload.tab_ref,
        page_context=payload.context.model_dump() if payload.context is not None else None,
    )


def model_card(entry: dict[str, Any]) -> dict[str, Any]:
    name = str(entry.get("name") or entry.get("model") or "")
    details = entry.get("details") if isinstance(entry.get("details"), dict) else {}
    size = entry.get("size")
    return {
        **entry,
        "displayName": name,
        "size": format_bytes(size) if isinstance(size, (int, float)) else size,
        "capabilities": capability_labels(name),
        "family": details.get("family") or "unknown",
        "parameterSize": details.get("parameter_size") or "unknown",
    }


def format_bytes(size: float) -> str:
    if size <= 0:
        return "0 B"
    exponent = max(0, min(int(math.log(size, 1024)), len(_BYTE_UNITS) - 1))
    value = round(size / (1024**exponent), 1)
    return f"{value:g} {_BYTE_UNITS[exponent]}"


async def stream_notifications(
    orchestrator: ChatOrchestrator,
    request_id: str,
    queue: asyncio.Queue[Notification],
) -> AsyncIterator[bytes]:
    """Relay one generation's notifications as SSE until its final response.

    If the client goes away first, the generation is cancelled.
    """

    try:
        while True:
            notification = await queue.get()
            yield sse_data(notification.to_payload())
            if notification.type == NotificationType.FINAL_RESPONSE:
                break
    finally:
        if orchestrator.cancel(request_id):
            logger.info("Client disconnected, cancelled %s", request_id)
    yield b"data: [DONE]\n\n"


async def stream_pull_progress(
    orchestrator: ChatOrchestrator,
    model: str,
) -> AsyncIterator[bytes]:
    try:
        async for progress in orchestrator.client.pull_model(model):
            yield sse_data(
                Notification(NotificationType.MODEL_PULL_PROGRESS, progress).to_payload()
            )
        yield sse_data({"success": True, "model": model})
    except GatewayError as exc:
        logger.warning("Pull of %s failed: %s", model, exc)
        yield sse_data(exc.to_error())
    yield b"data: [DONE]\n\n"


def sse_data(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def _to_message(message: HistoryMessage) -> Message:
    return Message(
        role=message.role,
        content=message.content,
        images=tuple(message.images or ()),
        tool_call_id=message.tool_call_id if message.role == "tool" else None,
        tool_calls=tuple(_to_tool_call(raw, index) for index, raw in enumerate(message.tool_calls or ()))
        if message.role == "assistant"
        else (),
    )


def _to_tool_call(raw: dict[str, Any], index: int) -> ToolCall:
    function = raw.get("function") if isinstance(raw.get("function"), dict) else {}
    arguments = function.get("arguments")
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except ValueError:
            arguments = {"_raw": arguments}
    return ToolCall(
        id=str(raw.get("id") or f"call_{index}"),
        name=str(function.get("name") or ""),
        arguments=arguments if isinstance(arguments, dict) else {},
    )
