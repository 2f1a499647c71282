from __future__ import annotations

import time
from typing import Any, Protocol

from sidellama.core.errors import ToolExecutionError
from sidellama.core.types import ToolSpec

from .registry import ToolContext

MAX_PAGE_CONTENT_CHARS = 8000

PAGE_CONTEXT_SPEC = ToolSpec(
    name="get_page_context",
    description="Get the context and content of the current webpage",
    parameter_schema={"type": "object", "properties": {}},
)


class PageContextProvider(Protocol):
    async def get_page_context(self, tab_ref: str) -> dict[str, Any] | None: ...


class InMemoryPageContextProvider:
    """Holds the page context the chat surface extracted for each tab."""

    def __init__(self) -> None:
        self._pages: dict[str, dict[str, Any]] = {}

    def publish(self, tab_ref: str, title: str, url: str, content: str) -> dict[str, Any]:
        page = {
            "title": title or "Untitled Page",
            "url": url,
            "content": content[:MAX_PAGE_CONTENT_CHARS],
            "timestamp": int(time.time() * 1000),
        }
        self._pages[tab_ref] = page
        return page

    async def get_page_context(self, tab_ref: str) -> dict[str, Any] | None:
        return self._pages.get(tab_ref)


async def get_page_context(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    if not context.tab_ref:
        raise ToolExecutionError("Tab ID not available")

    page = await context.pages.get_page_context(context.tab_ref)
    if not page:
        raise ToolExecutionError("No content extracted from page")

    return {
        "title": page.get("title") or "Untitled Page",
        "url": page.get("url") or "",
        "content": str(page.get("content") or "")[:MAX_PAGE_CONTENT_CHARS],
    }
