"""Chat orchestration: one object owning all per-process generation state."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import httpx

from sidellama.ollama.client import OllamaClient
from sidellama.storage.settings import ChatSettings, SettingsRepository
from sidellama.storage.store import KeyValueStore
from sidellama.tools.page_context import PageContextProvider
from sidellama.tools.registry import ToolContext, ToolRegistry

from .assembly import assemble_request, prepare_conversation
from .errors import GatewayError, TransportError
from .lifecycle import CancellationToken, RequestLifecycleManager
from .streaming import NdjsonStreamParser
from .tool_loop import ToolOrchestrator
from .types import (
    ContentDelta,
    Done,
    GenerationOutcome,
    GenerationRequest,
    Message,
    Notification,
    NotificationType,
    RequestState,
    StreamEvent,
    StreamFailure,
    ThinkingDelta,
    ToolCall,
    ToolResult,
)
from .usage import UsageTracker

logger = logging.getLogger(__name__)

USAGE_KEY = "modelUsageStats"
DEFAULT_MAX_TOOL_HOPS = 5

NotificationSink = Callable[[Notification], None]


@dataclass
class ChatTurn:
    message: str
    model: str | None = None
    history: Sequence[Message] = ()
    images: Sequence[str] = ()
    tab_ref: str | None = None
    page_context: dict[str, Any] | None = None


@dataclass
class _TurnState:
    settings: ChatSettings
    notify: NotificationSink
    tab_ref: str | None = None
    hops: int = 0
    # Fallback tool-call ids continue across hops so they stay unique per turn.
    calls_seen: int = 0


class ChatOrchestrator:
    def __init__(
        self,
        client: OllamaClient,
        store: KeyValueStore,
        registry: ToolRegistry,
        pages: PageContextProvider,
        http: httpx.AsyncClient,
        max_tool_hops: int = DEFAULT_MAX_TOOL_HOPS,
    ) -> None:
        self.client = client
        self.store = store
        self.settings = SettingsRepository(store)
        self.registry = registry
        self.tools = ToolOrchestrator(registry)
        self.pages = pages
        self.http = http
        self.max_tool_hops = max(1, max_tool_hops)
        self.lifecycle = RequestLifecycleManager()
        self.usage = UsageTracker()
        self._background: set[asyncio.Task] = set()

    async def start(self, preload: bool = True) -> None:
        self.usage.restore(await self.store.get(USAGE_KEY))
        logger.info("SideLlama orchestrator initialized")
        if preload:
            self.preload_frequent_model()

    async def aclose(self) -> None:
        self.lifecycle.cancel_all()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ------------------------------------------------------------------
    # Generations
    # ------------------------------------------------------------------
    async def submit(self, turn: ChatTurn, sink: NotificationSink | None = None) -> str:
        notify = sink or _discard
        settings = await self.settings.load()
        model = turn.model or settings.default_model

        page_context = turn.page_context
        if page_context is None and settings.auto_page_context and turn.tab_ref:
            page_context = await self.pages.get_page_context(turn.tab_ref)

        prepared = prepare_conversation(
            turn.history,
            turn.message,
            settings,
            images=turn.images,
            page_context=page_context,
        )
        request_id = self.lifecycle.new_request_id()

        if prepared.trimmed_count > 0:
            logger.info(
                "Context trimmed: %d -> %d messages",
                prepared.total_messages,
                prepared.total_messages - prepared.trimmed_count,
            )
            notify(
                Notification(
                    NotificationType.CONTEXT_INFO,
                    {
                        "messageCount": len(prepared.messages),
                        "trimmedCount": prepared.trimmed_count,
                        "totalMessages": prepared.total_messages,
                    },
                    request_id,
                )
            )

        assembled = assemble_request(
            request_id, model, prepared.messages, settings, self.registry.specs()
        )
        for warning in assembled.warnings:
            notify(Notification(NotificationType.WARNING, {"message": warning}, request_id))

        self.usage.record_use(model)
        await self._save_usage()

        state = _TurnState(settings=settings, notify=notify, tab_ref=turn.tab_ref)

        async def runner(request: GenerationRequest, token: CancellationToken) -> str:
            return await self._run(request, token, state)

        return self.lifecycle.submit(
            assembled.request,
            runner,
            on_terminal=lambda outcome: notify(_final_response(outcome)),
        )

    async def generate(self, turn: ChatTurn, sink: NotificationSink | None = None) -> GenerationOutcome:
        request_id = await self.submit(turn, sink)
        return await self.lifecycle.wait(request_id)

    def cancel(self, request_id: str) -> bool:
        return self.lifecycle.cancel(request_id)

    def cancel_all(self) -> int:
        return self.lifecycle.cancel_all()

    async def _run(
        self,
        request: GenerationRequest,
        token: CancellationToken,
        state: _TurnState,
    ) -> str:
        while True:
            done, content = await self._exchange(request, token, state)
            if not done.tool_calls:
                return content

            if state.hops >= self.max_tool_hops:
                logger.warning(
                    "Generation %s reached the tool call limit (%d), ignoring %d call(s)",
                    request.id,
                    self.max_tool_hops,
                    len(done.tool_calls),
                )
                return content

            state.hops += 1
            calls = done.tool_calls
            state.calls_seen += len(calls)
            state.notify(
                Notification(
                    NotificationType.SYSTEM_MESSAGE,
                    f"Using {len(calls)} tool(s)...",
                    request.id,
                )
            )
            context = ToolContext(
                settings=state.settings,
                http=self.http,
                pages=self.pages,
                tab_ref=state.tab_ref,
                token=token,
            )
            results = await self.tools.execute_all(calls, context)
            messages = self.tools.extend_conversation(request.messages, calls, results)

            # The last permitted hop goes out without tools so the model answers.
            request = assemble_request(
                request.id,
                request.model,
                messages,
                state.settings,
                self.registry.specs(),
                include_tools=state.hops < self.max_tool_hops,
            ).request

    async def _exchange(
        self,
        request: GenerationRequest,
        token: CancellationToken,
        state: _TurnState,
    ) -> tuple[Done, str]:
        token.raise_if_cancelled()
        parser = NdjsonStreamParser(first_call_index=state.calls_seen)
        payload = request.to_payload()
        self.lifecycle.mark_streaming(request.id)

        done: Done | None = None
        if request.streaming:
            async with self.client.stream_chat(payload) as chunks:
                async for chunk in chunks:
                    done = self._dispatch(parser.feed(chunk), request, token, state)
                    if done is not None:
                        break
        else:
            data = await self.client.chat(payload)
            done = self._dispatch(parser.feed_record(data), request, token, state)

        if done is None:
            done = self._dispatch(parser.finish(), request, token, state)
        return done, parser.content

    def _dispatch(
        self,
        events: list[StreamEvent],
        request: GenerationRequest,
        token: CancellationToken,
        state: _TurnState,
    ) -> Done | None:
        for event in events:
            token.raise_if_cancelled()

            if isinstance(event, ContentDelta):
                state.notify(
                    Notification(
                        NotificationType.STREAMING_RESPONSE,
                        {"content": event.text, "done": False},
                        request.id,
                    )
                )
            elif isinstance(event, ThinkingDelta):
                if state.settings.show_thinking_process:
                    state.notify(
                        Notification(
                            NotificationType.THINKING_RESPONSE,
                            {"content": event.text},
                            request.id,
                        )
                    )
            elif isinstance(event, StreamFailure):
                raise TransportError(event.message, code="upstream_error")
            elif isinstance(event, Done):
                state.notify(
                    Notification(
                        NotificationType.STREAMING_RESPONSE,
                        {"content": "", "done": True, "truncated": event.truncated},
                        request.id,
                    )
                )
                stats = event.stats
                if state.settings.show_performance_stats and stats is not None and stats.token_count > 0:
                    state.notify(
                        Notification(
                            NotificationType.PERFORMANCE_STATS,
                            {**stats.to_payload(), "model": request.model},
                            request.id,
                        )
                    )
                return event
        return None

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------
    async def execute_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        tab_ref: str | None = None,
    ) -> ToolResult:
        context = ToolContext(
            settings=await self.settings.load(),
            http=self.http,
            pages=self.pages,
            tab_ref=tab_ref,
        )
        return await self.tools.execute(ToolCall(id="adhoc", name=name, arguments=arguments or {}), context)

    # ------------------------------------------------------------------
    # Usage & preloading
    # ------------------------------------------------------------------
    def preload_frequent_model(self) -> str | None:
        model = self.usage.suggest_preload()
        if model is None:
            return None
        logger.info("Preloading frequently used model: %s", model)
        task = asyncio.create_task(self._preload(model), name=f"preload-{model}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return model

    async def _preload(self, model: str) -> None:
        try:
            await self.client.preload(model)
        except GatewayError as exc:
            logger.warning("Failed to preload model %s: %s", model, exc)
            return
        logger.info("Model preloaded: %s", model)

    async def _save_usage(self) -> None:
        try:
            await self.store.set(USAGE_KEY, self.usage.snapshot())
        except OSError as exc:
            logger.error("Failed to save model usage stats: %s", exc)


def _final_response(outcome: GenerationOutcome) -> Notification:
    if outcome.state == RequestState.COMPLETED:
        data: dict[str, Any] = {"success": True, "message": outcome.content}
    elif outcome.state == RequestState.CANCELLED:
        data = {"success": False, "cancelled": True, "error": outcome.error}
    else:
        data = {"success": False, "error": outcome.error}
    return Notification(NotificationType.FINAL_RESPONSE, data, outcome.request_id)


def _discard(_notification: Notification) -> None:
    return None
