from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from sidellama.core.orchestrator import ChatOrchestrator
from sidellama.dependencies import get_orchestrator

router = APIRouter(prefix="/v1/settings", tags=["settings"])


@router.get("")
async def get_settings(orchestrator: ChatOrchestrator = Depends(get_orchestrator)) -> dict:
    settings = await orchestrator.settings.load()
    return {"success": True, "settings": settings.to_storage()}


@router.put("")
async def update_settings(
    changes: dict[str, Any] = Body(...),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict:
    settings = await orchestrator.settings.update(changes)
    return {"success": True, "settings": settings.to_storage()}
