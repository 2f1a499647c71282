from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from sidellama.core.types import ToolSpec
from sidellama.storage.settings import ChatSettings

if TYPE_CHECKING:
    import httpx

    from sidellama.core.lifecycle import CancellationToken

    from .page_context import PageContextProvider


@dataclass
class ToolContext:
    """What a tool handler may use while running on behalf of a request."""

    settings: ChatSettings
    http: "httpx.AsyncClient"
    pages: "PageContextProvider"
    tab_ref: str | None = None
    token: "CancellationToken | None" = None


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[Any]]


@dataclass(frozen=True)
class RegisteredTool:
    spec: ToolSpec
    handler: ToolHandler


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def register(self, spec: ToolSpec, handler: ToolHandler) -> None:
        self._tools[spec.name] = RegisteredTool(spec=spec, handler=handler)

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def specs(self) -> list[ToolSpec]:
        return [tool.spec for tool in self._tools.values()]


def build_default_registry(search_url: str | None = None) -> ToolRegistry:
    from .page_context import PAGE_CONTEXT_SPEC, get_page_context
    from .web_search import SERPER_SEARCH_URL, WEB_SEARCH_SPEC, make_web_search

    registry = ToolRegistry()
    registry.register(WEB_SEARCH_SPEC, make_web_search(search_url or SERPER_SEARCH_URL))
    registry.register(PAGE_CONTEXT_SPEC, get_page_context)
    return registry
