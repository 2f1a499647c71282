from __future__ import annotations

from fastapi import APIRouter, Depends

from sidellama.core.orchestrator import ChatOrchestrator
from sidellama.dependencies import get_orchestrator

router = APIRouter(prefix="/internal", tags=["internal"])


@router.get("/healthz")
async def healthz(orchestrator: ChatOrchestrator = Depends(get_orchestrator)) -> dict:
    return {
        "status": "ok",
        "activeRequests": orchestrator.lifecycle.active_count,
        "recentModels": list(orchestrator.usage.recent),
    }
