"""Tracks in-flight generations and their cancellation handles."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import OrderedDict
from typing import Awaitable, Callable

from .errors import GatewayError, GenerationCancelled
from .types import GenerationOutcome, GenerationRequest, RequestState

logger = logging.getLogger(__name__)

Runner = Callable[[GenerationRequest, "CancellationToken"], Awaitable[str]]
TerminalCallback = Callable[[GenerationOutcome], None]

MAX_TRACKED_OUTCOMES = 256


class CancellationToken:
    """Cooperative cancellation handle for one request.

    ``cancel`` also cancels the task driving the request, so an awaiting
    network read or tool handler is interrupted instead of running to its next
    check.
    """

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        self._event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def bind(self, task: asyncio.Task) -> None:
        self._task = task

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled()

    async def wait(self) -> None:
        await self._event.wait()


class RequestLifecycleManager:
    def __init__(self) -> None:
        self._handles: dict[str, CancellationToken] = {}
        self._states: OrderedDict[str, RequestState] = OrderedDict()
        self._outcomes: OrderedDict[str, asyncio.Future[GenerationOutcome]] = OrderedDict()

    @property
    def active_count(self) -> int:
        return len(self._handles)

    def active_ids(self) -> list[str]:
        return list(self._handles)

    @staticmethod
    def new_request_id() -> str:
        return f"gen-{uuid.uuid4().hex}"

    def submit(
        self,
        request: GenerationRequest,
        runner: Runner,
        on_terminal: TerminalCallback | None = None,
    ) -> str:
        request_id = request.id
        if request_id in self._states:
            raise ValueError(f"request id already used: {request_id}")

        token = CancellationToken(request_id)
        self._handles[request_id] = token
        self._set_state(request_id, RequestState.PENDING)
        self._outcomes[request_id] = asyncio.get_running_loop().create_future()
        self._prune()

        task = asyncio.create_task(runner(request, token), name=f"generation-{request_id}")
        token.bind(task)
        task.add_done_callback(lambda done: self._finalize(request_id, done, on_terminal))
        logger.info("Generation %s submitted (model=%s)", request_id, request.model)
        return request_id

    def mark_streaming(self, request_id: str) -> None:
        if self._states.get(request_id) == RequestState.PENDING:
            self._set_state(request_id, RequestState.STREAMING)

    def state(self, request_id: str) -> RequestState | None:
        return self._states.get(request_id)

    def token(self, request_id: str) -> CancellationToken | None:
        return self._handles.get(request_id)

    def cancel(self, request_id: str) -> bool:
        # Released here rather than in the done-callback, which runs a loop
        # iteration later.
        token = self._handles.pop(request_id, None)
        if token is None:
            return False
        token.cancel()
        return True

    def cancel_all(self) -> int:
        tokens = list(self._handles.values())
        self._handles.clear()
        for token in tokens:
            token.cancel()
        if tokens:
            logger.info("Stopped %d active generation(s)", len(tokens))
        return len(tokens)

    async def wait(self, request_id: str) -> GenerationOutcome:
        future = self._outcomes.get(request_id)
        if future is None:
            raise KeyError(request_id)
        return await asyncio.shield(future)

    def _finalize(
        self,
        request_id: str,
        task: asyncio.Task,
        on_terminal: TerminalCallback | None,
    ) -> None:
        self._handles.pop(request_id, None)

        if task.cancelled():
            outcome = GenerationOutcome(
                request_id=request_id,
                state=RequestState.CANCELLED,
                error=GenerationCancelled().message,
            )
        else:
            exc = task.exception()
            if exc is None:
                outcome = GenerationOutcome(
                    request_id=request_id,
                    state=RequestState.COMPLETED,
                    content=task.result(),
                )
            elif isinstance(exc, GenerationCancelled):
                outcome = GenerationOutcome(
                    request_id=request_id,
                    state=RequestState.CANCELLED,
                    error=exc.message,
                )
            elif isinstance(exc, GatewayError):
                logger.warning("Generation %s failed: %s", request_id, exc)
                outcome = GenerationOutcome(
                    request_id=request_id,
                    state=RequestState.FAILED,
                    error=exc.message,
                )
            else:
                logger.error(
                    "Generation %s failed unexpectedly",
                    request_id,
                    exc_info=(type(exc), exc, exc.__traceback__),
                )
                outcome = GenerationOutcome(
                    request_id=request_id,
                    state=RequestState.FAILED,
                    error=f"Unexpected error: {exc.__class__.__name__}: {exc}",
                )

        self._set_state(request_id, outcome.state)
        logger.info("Generation %s %s", request_id, outcome.state.value)

        future = self._outcomes.get(request_id)
        if future is not None and not future.done():
            future.set_result(outcome)

        if on_terminal is not None:
            try:
                on_terminal(outcome)
            except Exception:
                logger.exception("Terminal callback for %s failed", request_id)

    def _set_state(self, request_id: str, state: RequestState) -> None:
        self._states[request_id] = state
        self._states.move_to_end(request_id)

    def _prune(self) -> None:
        while len(self._states) > MAX_TRACKED_OUTCOMES:
            oldest = next(iter(self._states))
            if oldest in self._handles:
                break
            del self._states[oldest]
            self._outcomes.pop(oldest, None)
