from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from sidellama.core.orchestrator import ChatOrchestrator
from sidellama.dependencies import get_orchestrator
from sidellama.ollama.adapter import model_card, stream_pull_progress
from sidellama.ollama.schemas import ModelRequest

router = APIRouter(prefix="/v1", tags=["models"])


@router.get("/status")
async def status(orchestrator: ChatOrchestrator = Depends(get_orchestrator)) -> dict:
    connection = await orchestrator.client.check_connection()
    return {**connection, "activeRequests": orchestrator.lifecycle.active_count}


@router.get("/models")
async def list_models(orchestrator: ChatOrchestrator = Depends(get_orchestrator)) -> dict:
    models = await orchestrator.client.list_models()
    return {"success": True, "models": [model_card(entry) for entry in models]}


@router.get("/models/running")
async def running_models(orchestrator: ChatOrchestrator = Depends(get_orchestrator)) -> dict:
    return {"success": True, "models": await orchestrator.client.running_models()}


@router.post("/models/pull")
async def pull_model(
    payload: ModelRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    return StreamingResponse(
        stream_pull_progress(orchestrator, payload.model),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/models/{name:path}")
async def model_info(
    name: str,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict:
    return {"success": True, "modelInfo": await orchestrator.client.show_model(name)}


@router.delete("/models/{name:path}")
async def delete_model(
    name: str,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict:
    await orchestrator.client.delete_model(name)
    return {"success": True}
