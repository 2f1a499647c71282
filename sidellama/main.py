from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
from fastapi import FastAPI

from sidellama.config import ServiceConfig, get_config
from sidellama.core.orchestrator import ChatOrchestrator
from sidellama.dependencies import register_exception_handlers
from sidellama.internal import admin
from sidellama.logging_config import configure_logging
from sidellama.ollama.client import OllamaClient
from sidellama.routers import chat, models, settings, tools
from sidellama.storage.store import InMemoryStore, JsonFileStore, KeyValueStore
from sidellama.tools.page_context import InMemoryPageContextProvider
from sidellama.tools.registry import build_default_registry


def create_app(
    config: ServiceConfig | None = None,
    store: KeyValueStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    config = config or get_config()
    configure_logging(config.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        kv_store = store
        if kv_store is None:
            kv_store = JsonFileStore(config.settings_path) if config.settings_path else InMemoryStore()

        client = OllamaClient(
            config.ollama_url,
            timeout=config.request_timeout_sec,
            transport=transport,
        )
        http = httpx.AsyncClient(timeout=config.request_timeout_sec, transport=transport)
        pages = InMemoryPageContextProvider()
        orchestrator = ChatOrchestrator(
            client=client,
            store=kv_store,
            registry=build_default_registry(config.serper_url),
            pages=pages,
            http=http,
            max_tool_hops=config.max_tool_hops,
        )

        app.state.orchestrator = orchestrator
        app.state.pages = pages
        await orchestrator.start(preload=config.preload_on_startup)
        try:
            yield
        finally:
            await orchestrator.aclose()
            await http.aclose()
            await client.aclose()

    app = FastAPI(
        title="sidellama",
        version="0.1.0",
        docs_url="/docs",
        redoc_url=None,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(chat.router)
    app.include_router(models.router)
    app.include_router(settings.router)
    app.include_router(tools.router)
    app.include_router(admin.router)

    return app


app = create_app()
