from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from sidellama.core.errors import GenerationCancelled, ToolExecutionError
from sidellama.core.lifecycle import CancellationToken
from sidellama.core.tool_loop import ToolOrchestrator
from sidellama.core.types import Message, ToolCall, ToolResult, ToolSpec
from sidellama.storage.settings import ChatSettings
from sidellama.tools.page_context import InMemoryPageContextProvider
from sidellama.tools.registry import ToolContext, ToolRegistry, build_default_registry
from sidellama.tools.web_search import sanitize_search_query


def _run_tools(calls, settings=None, transport=None, tab_ref=None, pages=None, registry=None):
    async def scenario():
        async with httpx.AsyncClient(transport=transport or httpx.MockTransport(_no_network)) as http:
            context = ToolContext(
                settings=settings or ChatSettings(),
                http=http,
                pages=pages or InMemoryPageContextProvider(),
                tab_ref=tab_ref,
            )
            orchestrator = ToolOrchestrator(registry or build_default_registry())
            return await orchestrator.execute_all(calls, context)

    return asyncio.run(scenario())


def _no_network(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")


def test_unknown_tool_yields_error_result():
    (result,) = _run_tools([ToolCall(id="call_0", name="launch_rockets", arguments={})])

    assert result.success is False
    assert result.error == "Unknown tool: launch_rockets"
    assert json.loads(result.to_content()) == {"error": "Unknown tool: launch_rockets"}


def test_web_search_without_api_key_is_an_error_result():
    (result,) = _run_tools([ToolCall(id="call_0", name="web_search", arguments={"query": "news"})])

    assert result.success is False
    assert "Serper API key not configured" in result.error


def test_web_search_maps_organic_results():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "organic": [
                    {"title": "One", "snippet": "first", "link": "https://one.example"},
                    {"title": "Two", "snippet": "second", "link": "https://two.example"},
                    {"title": "Three", "snippet": "third", "link": "https://three.example"},
                ]
            },
        )

    settings = ChatSettings(serper_api_key="secret", max_search_results=2)
    (result,) = _run_tools(
        [ToolCall(id="call_0", name="web_search", arguments={"query": "  python <news>  "})],
        settings=settings,
        transport=httpx.MockTransport(handler),
    )

    assert result.success is True
    assert result.payload == [
        {"title": "One", "snippet": "first", "url": "https://one.example"},
        {"title": "Two", "snippet": "second", "url": "https://two.example"},
    ]
    assert seen[0].headers["X-API-KEY"] == "secret"
    assert json.loads(seen[0].content) == {"q": "python news"}


def test_web_search_http_error_is_an_error_result():
    settings = ChatSettings(serper_api_key="secret")
    transport = httpx.MockTransport(lambda request: httpx.Response(403, json={}))

    (result,) = _run_tools(
        [ToolCall(id="call_0", name="web_search", arguments={"query": "x"})],
        settings=settings,
        transport=transport,
    )

    assert result.error == "Serper API error: 403"


@pytest.mark.parametrize(
    ("query", "expected"),
    [
        ("  what's <new> & cool  ", "whats new cool"),
        ("a\tb", "ab"),
        ("", None),
        ("   ", None),
        ("x" * 501, None),
        (42, None),
        ("<>", None),
    ],
)
def test_sanitize_search_query(query, expected):
    assert sanitize_search_query(query) == expected


def test_page_context_tool_reads_published_page():
    pages = InMemoryPageContextProvider()
    pages.publish("tab-1", "Docs", "https://docs.example", "body " * 3000)

    (result,) = _run_tools(
        [ToolCall(id="call_0", name="get_page_context", arguments={})],
        tab_ref="tab-1",
        pages=pages,
    )

    assert result.success is True
    assert result.payload["title"] == "Docs"
    assert len(result.payload["content"]) == 8000


def test_page_context_tool_requires_tab_and_content():
    missing_tab, missing_page = (
        _run_tools([ToolCall(id="call_0", name="get_page_context", arguments={})]),
        _run_tools([ToolCall(id="call_0", name="get_page_context", arguments={})], tab_ref="tab-9"),
    )

    assert missing_tab[0].error == "Tab ID not available"
    assert missing_page[0].error == "No content extracted from page"


def test_every_call_gets_a_result_even_when_handlers_fail():
    registry = ToolRegistry()

    async def explode(arguments, context):
        raise RuntimeError("handler crashed")

    async def refuse(arguments, context):
        raise ToolExecutionError("refused")

    registry.register(ToolSpec("explode", "", {}), explode)
    registry.register(ToolSpec("refuse", "", {}), refuse)
    calls = [
        ToolCall(id="call_0", name="explode"),
        ToolCall(id="call_1", name="refuse"),
        ToolCall(id="call_2", name="missing"),
    ]

    results = _run_tools(calls, registry=registry)

    assert [result.tool_call_id for result in results] == ["call_0", "call_1", "call_2"]
    assert [result.error for result in results] == ["handler crashed", "refused", "Unknown tool: missing"]


def test_handler_error_envelope_becomes_error_result():
    registry = ToolRegistry()

    async def no_key(arguments, context):
        return {"success": False, "error": "no api key"}

    async def wrapped(arguments, context):
        return {"success": True, "result": {"answer": 42}}

    registry.register(ToolSpec("no_key", "", {}), no_key)
    registry.register(ToolSpec("wrapped", "", {}), wrapped)

    failed, succeeded = _run_tools(
        [ToolCall(id="call_0", name="no_key"), ToolCall(id="call_1", name="wrapped")],
        registry=registry,
    )

    assert failed.success is False
    assert failed.error == "no api key"
    assert json.loads(failed.to_content()) == {"error": "no api key"}
    assert succeeded.success is True
    assert succeeded.payload == {"answer": 42}


def test_cancelled_token_stops_tool_execution():
    async def scenario():
        token = CancellationToken("gen-1")
        token.cancel()
        async with httpx.AsyncClient(transport=httpx.MockTransport(_no_network)) as http:
            context = ToolContext(
                settings=ChatSettings(),
                http=http,
                pages=InMemoryPageContextProvider(),
                token=token,
            )
            await ToolOrchestrator(build_default_registry()).execute(
                ToolCall(id="call_0", name="web_search", arguments={"query": "x"}), context
            )

    with pytest.raises(GenerationCancelled):
        asyncio.run(scenario())


def test_extend_conversation_appends_assistant_and_tool_messages():
    calls = [ToolCall(id="call_0", name="web_search", arguments={"query": "x"})]
    results = [ToolResult(tool_call_id="call_0", name="web_search", success=True, payload=[])]
    history = [Message(role="user", content="search x")]

    extended = ToolOrchestrator.extend_conversation(history, calls, results)

    assert extended[0] is history[0]
    assert extended[1] == Message(role="assistant", content=None, tool_calls=tuple(calls))
    assert extended[2] == Message(role="tool", content="[]", tool_call_id="call_0")
    assert extended[1].to_payload()["tool_calls"][0]["function"]["name"] == "web_search"


def test_extend_conversation_rejects_mismatched_results():
    calls = [ToolCall(id="call_0", name="a"), ToolCall(id="call_1", name="b")]

    with pytest.raises(ValueError):
        ToolOrchestrator.extend_conversation([], calls, [])
