from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from sidellama.core.errors import ConfigurationError, ToolExecutionError
from sidellama.core.types import ToolSpec

from .registry import ToolContext, ToolHandler

logger = logging.getLogger(__name__)

SERPER_SEARCH_URL = "https://google.serper.dev/search"
MAX_QUERY_LENGTH = 500

_UNSAFE_CHARS = re.compile(r"[<>'\"&\x00-\x1F\x7F]")
_WHITESPACE = re.compile(r"\s+")

WEB_SEARCH_SPEC = ToolSpec(
    name="web_search",
    description="Search the web for current information",
    parameter_schema={
        "type": "object",
        "properties": {"query": {"type": "string", "description": "The search query"}},
        "required": ["query"],
    },
)


def sanitize_search_query(query: Any) -> str | None:
    if not isinstance(query, str):
        return None
    trimmed = query.strip()
    if not trimmed or len(trimmed) > MAX_QUERY_LENGTH:
        return None
    sanitized = _WHITESPACE.sub(" ", _UNSAFE_CHARS.sub("", trimmed)).strip()
    return sanitized or None


def make_web_search(search_url: str = SERPER_SEARCH_URL) -> ToolHandler:
    async def web_search(arguments: dict[str, Any], context: ToolContext) -> list[dict[str, str]]:
        api_key = context.settings.serper_api_key
        if not api_key:
            raise ConfigurationError(
                "Serper API key not configured. Please add your API key in settings."
            )

        query = sanitize_search_query(arguments.get("query"))
        if query is None:
            raise ToolExecutionError("Invalid search query provided.")

        try:
            response = await context.http.post(
                search_url,
                json={"q": query},
                headers={"X-API-KEY": api_key},
            )
        except httpx.HTTPError as exc:
            raise ToolExecutionError(f"Search request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ToolExecutionError(f"Serper API error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise ToolExecutionError("Serper API returned invalid JSON") from exc

        organic = data.get("organic") if isinstance(data, dict) else None
        results = [
            {
                "title": str(entry.get("title") or ""),
                "snippet": str(entry.get("snippet") or ""),
                "url": str(entry.get("link") or entry.get("url") or ""),
            }
            for entry in organic or []
            if isinstance(entry, dict)
        ]
        logger.info("web_search %r returned %d result(s)", query, len(results))
        return results[: context.settings.max_search_results]

    return web_search
