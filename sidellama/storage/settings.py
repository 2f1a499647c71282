from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from sidellama.core.errors import ValidationError

from .store import KeyValueStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "sideLlamaSettings"
DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant named SideLlama."


class ChatSettings(BaseModel):
    """User settings as stored by the chat surface (camelCase on the wire)."""

    default_model: str = "qwen2.5:7b"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    streaming_enabled: bool = True
    enable_tool_calls: bool = True
    enable_thinking: bool = True
    show_thinking_process: bool = True
    context_length: int = 128000
    max_api_messages: int = 5

    search_engine: Literal["serper"] = "serper"
    serper_api_key: str = ""
    max_search_results: int = 5
    auto_page_context: bool = False

    enable_advanced_params: bool = False
    temperature: float | None = 0.8
    top_p: float | None = 0.9
    top_k: int | None = 20
    repeat_penalty: float | None = 1.1
    seed: int | None = None

    enable_structured_output: bool = False
    output_format: Literal["auto", "json", "schema"] = "auto"
    json_schema: str = ""

    keep_alive: str | None = "5m"
    show_performance_stats: bool = False

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class SettingsRepository:
    """Reads settings from the key-value store, merged over the defaults."""

    def __init__(self, store: KeyValueStore, key: str = SETTINGS_KEY) -> None:
        self.store = store
        self.key = key

    async def load(self) -> ChatSettings:
        stored = await self.store.get(self.key)
        if not isinstance(stored, dict):
            return ChatSettings()
        try:
            return ChatSettings.model_validate(stored)
        except PydanticValidationError as exc:
            logger.warning("Stored settings are invalid, using defaults: %s", exc)
            return ChatSettings()

    async def update(self, changes: dict[str, Any]) -> ChatSettings:
        current = (await self.load()).to_storage()
        current.update({to_camel(key) if "_" in key else key: value for key, value in changes.items()})
        try:
            merged = ChatSettings.model_validate(current)
        except PydanticValidationError as exc:
            first_error = exc.errors()[0]["msg"] if exc.errors() else "Invalid settings"
            raise ValidationError(first_error, code="invalid_settings") from exc
        await self.store.set(self.key, merged.to_storage())
        return merged
