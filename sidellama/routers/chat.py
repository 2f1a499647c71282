from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from sidellama.core.errors import GatewayError
from sidellama.core.orchestrator import ChatOrchestrator
from sidellama.core.types import Notification
from sidellama.dependencies import get_orchestrator
from sidellama.ollama.adapter import stream_notifications, to_chat_turn
from sidellama.ollama.schemas import ChatSubmitRequest

router = APIRouter(prefix="/v1/chat", tags=["chat"])


@router.post("")
async def chat(
    payload: ChatSubmitRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    queue: asyncio.Queue[Notification] = asyncio.Queue()
    request_id = await orchestrator.submit(to_chat_turn(payload), queue.put_nowait)

    return StreamingResponse(
        stream_notifications(orchestrator, request_id, queue),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Request-Id": request_id},
    )


@router.post("/submit")
async def submit_chat(
    payload: ChatSubmitRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict:
    request_id = await orchestrator.submit(to_chat_turn(payload))
    return {"success": True, "requestId": request_id}


@router.post("/stop")
async def stop_generation(
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict:
    count = orchestrator.cancel_all()
    message = (
        f"Stopped {count} active generation(s)" if count else "No active generation to stop"
    )
    return {"success": True, "cancelled": count, "message": message}


@router.get("/{request_id}")
async def generation_state(
    request_id: str,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict:
    state = orchestrator.lifecycle.state(request_id)
    if state is None:
        raise GatewayError(status_code=404, message=f"Unknown request '{request_id}'", code="not_found")
    return {"success": True, "requestId": request_id, "state": state.value}


@router.delete("/{request_id}")
async def cancel_generation(
    request_id: str,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict:
    return {"success": True, "cancelled": orchestrator.cancel(request_id)}
