"""Async HTTP client for the Ollama REST API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from sidellama.core.errors import ParseError, TransportError
from sidellama.core.streaming import iter_ndjson_records

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


class OllamaClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        # Streamed reads have no overall deadline; only connect/write are bounded.
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, read=None),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def stream_chat(self, payload: dict[str, Any]) -> AsyncIterator[AsyncIterator[bytes]]:
        """Open a chat exchange and yield the raw response body chunks.

        The response is closed when the context exits, whichever way it exits.
        """

        try:
            async with self._client.stream("POST", "/api/chat", json=payload) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise _status_error(response, body)
                yield response.aiter_bytes()
        except httpx.HTTPError as exc:
            raise TransportError(f"Backend request failed: {exc}") from exc

    async def chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = await self._request_json("POST", "/api/chat", json={**payload, "stream": False})
        if not isinstance(data, dict):
            raise TransportError("Unexpected chat response payload")
        return data

    async def preload(self, model: str) -> None:
        """Load ``model`` into server memory with an empty chat."""

        await self._request_json("POST", "/api/chat", json={"model": model, "messages": [], "stream": False})

    # ------------------------------------------------------------------
    # Model management
    # ------------------------------------------------------------------
    async def check_connection(self) -> dict[str, str]:
        try:
            await self._request_json("GET", "/api/tags")
        except (TransportError, ParseError) as exc:
            return {"status": "error", "error": exc.message}
        return {"status": "connected"}

    async def list_models(self) -> list[dict[str, Any]]:
        data = await self._request_json("GET", "/api/tags")
        models = data.get("models") if isinstance(data, dict) else None
        return [entry for entry in models or [] if isinstance(entry, dict)]

    async def show_model(self, model: str) -> dict[str, Any]:
        data = await self._request_json("POST", "/api/show", json={"model": model})
        return data if isinstance(data, dict) else {}

    async def running_models(self) -> list[dict[str, Any]]:
        data = await self._request_json("GET", "/api/ps")
        models = data.get("models") if isinstance(data, dict) else None
        return [entry for entry in models or [] if isinstance(entry, dict)]

    async def delete_model(self, model: str) -> None:
        await self._request_json("DELETE", "/api/delete", json={"model": model})

    async def pull_model(self, model: str) -> AsyncIterator[dict[str, Any]]:
        """Yield progress records until the server reports ``success``."""

        try:
            async with self._client.stream(
                "POST", "/api/pull", json={"model": model, "stream": True}
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise _status_error(response, body)
                async for record in iter_ndjson_records(response.aiter_bytes()):
                    if record.get("error"):
                        raise TransportError(f"Pull failed: {record['error']}")
                    yield record
                    if record.get("status") == "success":
                        return
        except httpx.HTTPError as exc:
            raise TransportError(f"Backend request failed: {exc}") from exc

    async def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"Backend request failed: {exc}") from exc

        if response.status_code >= 400:
            raise _status_error(response, response.content)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError("Invalid JSON response from Ollama", raw=response.text[:200]) from exc


def _status_error(response: httpx.Response, body: bytes) -> TransportError:
    detail = f"HTTP {response.status_code}: {response.reason_phrase}"
    text = body.decode("utf-8", "ignore").strip()
    if text:
        detail += f" - {text}"
    return TransportError(detail, code="upstream_error")
