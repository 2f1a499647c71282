from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sidellama.core.errors import GatewayError, ValidationError
from sidellama.core.orchestrator import ChatOrchestrator
from sidellama.tools.page_context import InMemoryPageContextProvider


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.orchestrator


def get_pages(request: Request) -> InMemoryPageContextProvider:
    return request.app.state.pages


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(GatewayError)
    async def handle_gateway_error(
        _request: Request,
        exc: GatewayError,
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_error(),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        first_error = exc.errors()[0]["msg"] if exc.errors() else "Invalid request"
        compat_error = ValidationError(first_error)
        return JSONResponse(
            status_code=compat_error.status_code,
            content=compat_error.to_error(),
        )
