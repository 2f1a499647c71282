from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Sequence

from sidellama.storage.settings import DEFAULT_SYSTEM_PROMPT, ChatSettings

from .capabilities import Capability, classify
from .context import trim_history
from .errors import ValidationError
from .token_estimation import char_budget_for
from .types import GenerationRequest, Message, ToolSpec

logger = logging.getLogger(__name__)

PAGE_CONTEXT_PREVIEW_CHARS = 4000

_OPTION_FIELDS = (
    ("temperature", "temperature"),
    ("top_p", "top_p"),
    ("top_k", "top_k"),
    ("repeat_penalty", "repeat_penalty"),
    ("seed", "seed"),
)


@dataclass
class PreparedConversation:
    messages: list[Message]
    trimmed_count: int
    total_messages: int


@dataclass
class AssembledRequest:
    request: GenerationRequest
    warnings: list[str] = field(default_factory=list)


def prepare_conversation(
    history: Sequence[Message],
    user_message: str,
    settings: ChatSettings,
    images: Sequence[str] = (),
    page_context: dict[str, Any] | None = None,
) -> PreparedConversation:
    trimmed = trim_history(
        history,
        max_messages=settings.max_api_messages,
        max_chars=char_budget_for(settings.context_length),
    )
    messages = list(trimmed.messages)

    system_prompt = settings.system_prompt or DEFAULT_SYSTEM_PROMPT
    pinned = next((index for index, message in enumerate(messages) if message.role == "system"), None)
    if pinned is not None:
        del messages[pinned]
    messages.insert(0, Message(role="system", content=system_prompt))

    last = messages[-1]
    if last.role != "user" or last.content != user_message:
        messages.append(Message(role="user", content=user_message))

    if images:
        encoded = tuple(_image_payload(image, index) for index, image in enumerate(images))
        messages[-1] = replace(messages[-1], images=encoded)

    if page_context:
        title = page_context.get("title") or "Untitled Page"
        content = str(page_context.get("content") or "")[:PAGE_CONTEXT_PREVIEW_CHARS]
        messages.insert(
            len(messages) - 1,
            Message(role="system", content=f"Context: {title} - {content}..."),
        )

    return PreparedConversation(
        messages=messages,
        trimmed_count=trimmed.trimmed_count,
        total_messages=len(history),
    )


def assemble_request(
    request_id: str,
    model: str,
    messages: Sequence[Message],
    settings: ChatSettings,
    tool_specs: Sequence[ToolSpec] = (),
    include_tools: bool = True,
) -> AssembledRequest:
    capabilities = classify(model)
    warnings: list[str] = []

    request = GenerationRequest(
        id=request_id,
        model=model,
        messages=list(messages),
        streaming=settings.streaming_enabled,
        keep_alive=settings.keep_alive or None,
    )

    has_images = any(message.images for message in messages)
    if (
        include_tools
        and tool_specs
        and settings.enable_tool_calls
        and Capability.TOOLS in capabilities
        and not has_images
    ):
        request.tools = list(tool_specs)

    if Capability.THINKING in capabilities and settings.enable_thinking is not False:
        request.think = True

    if settings.enable_advanced_params:
        options = {
            wire_name: getattr(settings, field_name)
            for field_name, wire_name in _OPTION_FIELDS
            if getattr(settings, field_name) is not None
        }
        request.options = options or None

    request.format = _output_format(settings, warnings)

    return AssembledRequest(request=request, warnings=warnings)


def _output_format(settings: ChatSettings, warnings: list[str]) -> str | dict[str, Any] | None:
    if not settings.enable_structured_output or settings.output_format == "auto":
        return None

    if settings.output_format == "json":
        return "json"

    if not settings.json_schema.strip():
        return None

    try:
        schema = json.loads(settings.json_schema)
    except ValueError as exc:
        message = f"Invalid JSON schema, falling back to normal format: {exc}"
        logger.warning(message)
        warnings.append(message)
        return None

    if not isinstance(schema, dict):
        message = "Invalid JSON schema, falling back to normal format: schema must be an object"
        logger.warning(message)
        warnings.append(message)
        return None

    return schema


def _image_payload(image: str, index: int) -> str:
    """Accept raw base64 or a ``data:`` URL and return the base64 payload."""

    if not image.startswith("data:"):
        if not image:
            raise ValidationError(f"Image processing failed: image {index} is empty")
        return image

    if "," not in image:
        raise ValidationError(
            f"Image processing failed: invalid image data URL format for image {index}"
        )
    payload = image.split(",", 1)[1]
    if not payload:
        raise ValidationError(f"Image processing failed: no base64 data found for image {index}")
    return payload
