from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator

import httpx
import pytest


def ndjson(*records: dict[str, Any]) -> bytes:
    return b"".join(json.dumps(record).encode("utf-8") + b"\n" for record in records)


class FakeOllama:
    """Scripted stand-in for the Ollama HTTP API behind ``httpx.MockTransport``.

    Each queued chat reply is a list of body chunks. A reply may end with
    ``HANG`` to keep the stream open until the reader is cancelled.
    """

    HANG = object()

    def __init__(self) -> None:
        self.chat_replies: list[list[Any] | httpx.Response] = []
        self.chat_payloads: list[dict[str, Any]] = []
        self.search_payloads: list[dict[str, Any]] = []
        self.search_reply: httpx.Response | None = None
        self.models: list[dict[str, Any]] = []
        self.pull_chunks: list[bytes] = []
        self.deleted: list[str] = []
        self.preloaded: list[str] = []
        self.stream_started = asyncio.Event()
        self.stream_closed = False

    def reply(self, *chunks: Any) -> None:
        self.chat_replies.append(list(chunks))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else {}

        if request.url.host == "google.serper.dev":
            self.search_payloads.append({"body": body, "headers": dict(request.headers)})
            return self.search_reply or httpx.Response(200, json={"organic": []})

        if path == "/api/chat":
            if not body.get("messages"):
                self.preloaded.append(body.get("model"))
                return httpx.Response(200, json={"done": True})
            self.chat_payloads.append(body)
            reply = self.chat_replies.pop(0)
            if isinstance(reply, httpx.Response):
                return reply
            if not body.get("stream", True):
                return httpx.Response(200, content=b"".join(reply))
            return httpx.Response(200, content=self._stream(reply))

        if path == "/api/tags":
            return httpx.Response(200, json={"models": self.models})
        if path == "/api/ps":
            return httpx.Response(200, json={"models": self.models[:1]})
        if path == "/api/show":
            return httpx.Response(200, json={"model": body.get("model"), "details": {}})
        if path == "/api/delete":
            self.deleted.append(body.get("model"))
            return httpx.Response(200)
        if path == "/api/pull":
            return httpx.Response(200, content=self._stream(self.pull_chunks))

        return httpx.Response(404, text="not found")

    async def _stream(self, chunks: list[Any]) -> AsyncIterator[bytes]:
        self.stream_started.set()
        try:
            for chunk in chunks:
                if chunk is self.HANG:
                    await asyncio.Event().wait()
                yield chunk
        finally:
            self.stream_closed = True


@pytest.fixture()
def fake_ollama() -> FakeOllama:
    return FakeOllama()
