from __future__ import annotations

import json
import time

import httpx
import pytest
from conftest import ndjson
from fastapi.testclient import TestClient

from sidellama.config import ServiceConfig
from sidellama.core.types import ToolSpec
from sidellama.main import create_app
from sidellama.storage.store import InMemoryStore


@pytest.fixture()
def client(fake_ollama) -> TestClient:
    config = ServiceConfig(ollama_url="http://ollama.test", preload_on_startup=False)
    app = create_app(config=config, store=InMemoryStore(), transport=fake_ollama.transport)
    with TestClient(app) as test_client:
        yield test_client


def _sse_events(text: str) -> list:
    events = []
    for block in text.split("\n\n"):
        if not block.startswith("data: "):
            continue
        data = block[len("data: ") :]
        events.append(data if data == "[DONE]" else json.loads(data))
    return events


def _wait_for_state(client: TestClient, request_id: str, expected: str) -> dict:
    for _ in range(100):
        body = client.get(f"/v1/chat/{request_id}").json()
        if body["state"] == expected:
            return body
        time.sleep(0.01)
    raise AssertionError(f"{request_id} never reached {expected}: {body}")


def test_healthz(client: TestClient):
    response = client.get("/internal/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "activeRequests": 0, "recentModels": []}


def test_chat_streams_notifications_as_sse(client: TestClient, fake_ollama):
    fake_ollama.reply(
        ndjson(
            {"message": {"content": "Hel"}, "done": False},
            {"message": {"content": "lo"}, "done": True},
        )
    )
    payload = {
        "message": "hi",
        "messages": [
            {"role": "user", "content": "earlier"},
            {"role": "assistant", "content": "ok"},
        ],
    }

    response = client.post("/v1/chat", json=payload)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = _sse_events(response.text)
    assert events[-1] == "[DONE]"
    assert [event["type"] for event in events[:-1]] == [
        "STREAMING_RESPONSE",
        "STREAMING_RESPONSE",
        "STREAMING_RESPONSE",
        "FINAL_RESPONSE",
    ]
    assert events[-2]["data"] == {"success": True, "message": "Hello"}
    assert events[0]["requestId"] == response.headers["x-request-id"]

    sent = fake_ollama.chat_payloads[0]["messages"]
    assert [message["content"] for message in sent[1:]] == ["earlier", "ok", "hi"]

    health = client.get("/internal/healthz").json()
    assert health["recentModels"] == ["qwen2.5:7b"]


def test_chat_with_image_attachment_skips_tools(client: TestClient, fake_ollama):
    fake_ollama.reply(ndjson({"message": {"content": "a cat"}, "done": True}))
    payload = {
        "message": "what is this?",
        "model": "llama3.2-vision:11b",
        "imageAttachments": [{"dataUrl": "data:image/png;base64,AAAA", "filename": "cat.png"}],
    }

    response = client.post("/v1/chat", json=payload)

    assert response.status_code == 200
    sent = fake_ollama.chat_payloads[0]
    assert sent["messages"][-1]["images"] == ["AAAA"]
    assert "tools" not in sent


def test_chat_rejects_malformed_image(client: TestClient):
    response = client.post("/v1/chat", json={"message": "look", "image": "data:image/png;base64"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "invalid_request"
    assert "invalid image data URL format" in body["error"]


def test_chat_requires_message(client: TestClient):
    response = client.post("/v1/chat", json={"model": "qwen2.5:7b"})

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_request"


def test_chat_runs_web_search_with_configured_key(client: TestClient, fake_ollama):
    client.put("/v1/settings", json={"serperApiKey": "secret"})
    fake_ollama.search_reply = httpx.Response(
        200,
        json={"organic": [{"title": "Result", "snippet": "text", "link": "https://r.example"}]},
    )
    fake_ollama.reply(
        ndjson(
            {
                "message": {
                    "tool_calls": [{"function": {"name": "web_search", "arguments": {"query": "news"}}}]
                },
                "done": True,
            }
        )
    )
    fake_ollama.reply(ndjson({"message": {"content": "Here is the news."}, "done": True}))

    events = _sse_events(client.post("/v1/chat", json={"message": "news?"}).text)

    assert {"type": "SYSTEM_MESSAGE", "requestId": events[0]["requestId"], "data": "Using 1 tool(s)..."} in events
    assert events[-2]["data"] == {"success": True, "message": "Here is the news."}
    assert fake_ollama.search_payloads[0]["headers"]["x-api-key"] == "secret"
    tool_message = fake_ollama.chat_payloads[1]["messages"][-1]
    assert json.loads(tool_message["content"]) == [
        {"title": "Result", "snippet": "text", "url": "https://r.example"}
    ]


def test_submit_then_stop(client: TestClient, fake_ollama):
    fake_ollama.reply(ndjson({"message": {"content": "thinking..."}}), fake_ollama.HANG)

    submitted = client.post("/v1/chat/submit", json={"message": "long"}).json()
    request_id = submitted["requestId"]
    assert submitted["success"] is True
    assert request_id.startswith("gen-")

    stopped = client.post("/v1/chat/stop").json()
    assert stopped == {"success": True, "cancelled": 1, "message": "Stopped 1 active generation(s)"}
    assert client.post("/v1/chat/stop").json()["cancelled"] == 0

    assert _wait_for_state(client, request_id, "cancelled")["success"] is True
    assert client.get("/internal/healthz").json()["activeRequests"] == 0


def test_stop_without_active_generation(client: TestClient):
    response = client.post("/v1/chat/stop")

    assert response.json() == {
        "success": True,
        "cancelled": 0,
        "message": "No active generation to stop",
    }


def test_cancel_single_generation(client: TestClient, fake_ollama):
    fake_ollama.reply(fake_ollama.HANG)
    request_id = client.post("/v1/chat/submit", json={"message": "long"}).json()["requestId"]

    assert client.delete(f"/v1/chat/{request_id}").json() == {"success": True, "cancelled": True}
    _wait_for_state(client, request_id, "cancelled")
    assert client.delete(f"/v1/chat/{request_id}").json() == {"success": True, "cancelled": False}


def test_unknown_generation_is_404(client: TestClient):
    response = client.get("/v1/chat/gen-missing")

    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": "Unknown request 'gen-missing'",
        "code": "not_found",
    }


def test_settings_round_trip(client: TestClient):
    defaults = client.get("/v1/settings").json()["settings"]
    assert defaults["defaultModel"] == "qwen2.5:7b"
    assert defaults["maxApiMessages"] == 5

    updated = client.put("/v1/settings", json={"serperApiKey": "k", "max_search_results": 3})
    assert updated.status_code == 200
    assert updated.json()["settings"]["maxSearchResults"] == 3

    settings = client.get("/v1/settings").json()["settings"]
    assert settings["serperApiKey"] == "k"
    assert settings["maxSearchResults"] == 3
    assert settings["defaultModel"] == "qwen2.5:7b"


def test_invalid_settings_are_rejected(client: TestClient):
    response = client.put("/v1/settings", json={"contextLength": "lots"})

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_settings"
    assert client.get("/v1/settings").json()["settings"]["contextLength"] == 128000


def test_models_are_listed_with_capabilities(client: TestClient, fake_ollama):
    fake_ollama.models = [
        {
            "name": "llama3.2-vision:11b",
            "size": 1536,
            "details": {"family": "mllama", "parameter_size": "11B"},
        },
        {"name": "mystery:1b", "size": 0},
    ]

    models = client.get("/v1/models").json()["models"]

    assert models[0]["displayName"] == "llama3.2-vision:11b"
    assert models[0]["size"] == "1.5 KB"
    assert models[0]["capabilities"] == ["Tools", "Vision"]
    assert models[0]["parameterSize"] == "11B"
    assert models[1]["capabilities"] == ["Chat"]
    assert models[1]["family"] == "unknown"
    assert models[1]["size"] == "0 B"


def test_status_and_running_models(client: TestClient, fake_ollama):
    fake_ollama.models = [{"name": "qwen2.5:7b"}]

    assert client.get("/v1/status").json() == {"status": "connected", "activeRequests": 0}
    assert client.get("/v1/models/running").json()["models"] == [{"name": "qwen2.5:7b"}]


def test_model_info_and_delete(client: TestClient, fake_ollama):
    info = client.get("/v1/models/library/llama3:8b").json()
    assert info["modelInfo"]["model"] == "library/llama3:8b"

    assert client.delete("/v1/models/llama3:8b").json() == {"success": True}
    assert fake_ollama.deleted == ["llama3:8b"]


def test_pull_streams_progress(client: TestClient, fake_ollama):
    fake_ollama.pull_chunks = [
        ndjson({"status": "pulling manifest"}),
        ndjson({"status": "downloading", "completed": 5, "total": 10}),
        ndjson({"status": "success"}),
    ]

    events = _sse_events(client.post("/v1/models/pull", json={"model": "llama3:8b"}).text)

    assert [event["type"] for event in events[:3]] == ["MODEL_PULL_PROGRESS"] * 3
    assert events[1]["data"]["completed"] == 5
    assert events[3] == {"success": True, "model": "llama3:8b"}
    assert events[4] == "[DONE]"


def test_pull_error_is_reported_in_stream(client: TestClient, fake_ollama):
    fake_ollama.pull_chunks = [ndjson({"status": "pulling manifest"}, {"error": "file does not exist"})]

    events = _sse_events(client.post("/v1/models/pull", json={"model": "nope"}).text)

    assert events[1]["success"] is False
    assert events[1]["error"] == "Pull failed: file does not exist"
    assert events[-1] == "[DONE]"


def test_pull_requires_model_name(client: TestClient):
    assert client.post("/v1/models/pull", json={"model": ""}).status_code == 400


def test_tool_error_envelope_is_not_reported_as_success(client: TestClient):
    async def no_key(arguments, context):
        return {"success": False, "error": "no api key"}

    client.app.state.orchestrator.registry.register(ToolSpec("no_key", "", {}), no_key)

    response = client.post("/v1/tools/execute", json={"name": "no_key"})

    assert response.json() == {"success": False, "error": "no api key"}


def test_tools_listing_and_execution(client: TestClient):
    names = [tool["function"]["name"] for tool in client.get("/v1/tools").json()["tools"]]
    assert names == ["web_search", "get_page_context"]

    missing_key = client.post("/v1/tools/execute", json={"name": "web_search", "arguments": {"query": "x"}})
    assert missing_key.json() == {
        "success": False,
        "error": "Serper API key not configured. Please add your API key in settings.",
    }

    published = client.put(
        "/v1/page-context/tab-7",
        json={"title": "Docs", "url": "https://docs.example", "content": "page body"},
    )
    assert published.json()["context"]["title"] == "Docs"

    result = client.post("/v1/tools/execute", json={"name": "get_page_context", "tabRef": "tab-7"})
    assert result.json() == {
        "success": True,
        "result": {"title": "Docs", "url": "https://docs.example", "content": "page body"},
    }
