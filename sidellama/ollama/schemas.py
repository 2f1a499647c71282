from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class HistoryMessage(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: str | None = None
    images: list[str] | None = None
    tool_call_id: str | None = None
    tool_calls: list[dict[str, Any]] | None = None

    model_config = ConfigDict(extra="allow")


class ImageAttachment(BaseModel):
    data_url: str = Field(alias="dataUrl")
    filename: str | None = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class PageContextPayload(BaseModel):
    title: str = ""
    url: str = ""
    content: str = ""

    model_config = ConfigDict(extra="allow")


class ChatSubmitRequest(BaseModel):
    message: str
    model: str | None = None
    messages: list[HistoryMessage] = Field(default_factory=list)
    image: str | None = None
    images: list[str] | None = None
    image_attachments: list[ImageAttachment] | None = Field(default=None, alias="imageAttachments")
    context: PageContextPayload | None = None
    tab_ref: str | None = Field(default=None, alias="tabRef")

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ModelRequest(BaseModel):
    model: str = Field(min_length=1)

    model_config = ConfigDict(extra="allow")


class ToolExecuteRequest(BaseModel):
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    tab_ref: str | None = Field(default=None, alias="tabRef")

    model_config = ConfigDict(extra="allow", populate_by_name=True)
