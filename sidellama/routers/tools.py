from __future__ import annotations

from fastapi import APIRouter, Depends

from sidellama.core.orchestrator import ChatOrchestrator
from sidellama.dependencies import get_orchestrator, get_pages
from sidellama.ollama.schemas import PageContextPayload, ToolExecuteRequest
from sidellama.tools.page_context import InMemoryPageContextProvider

router = APIRouter(prefix="/v1", tags=["tools"])


@router.get("/tools")
async def list_tools(orchestrator: ChatOrchestrator = Depends(get_orchestrator)) -> dict:
    return {"success": True, "tools": [spec.to_payload() for spec in orchestrator.registry.specs()]}


@router.post("/tools/execute")
async def execute_tool(
    payload: ToolExecuteRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict:
    result = await orchestrator.execute_tool(payload.name, payload.arguments, payload.tab_ref)
    if not result.success:
        return {"success": False, "error": result.error}
    return {"success": True, "result": result.payload}


@router.put("/page-context/{tab_ref}")
async def publish_page_context(
    tab_ref: str,
    payload: PageContextPayload,
    pages: InMemoryPageContextProvider = Depends(get_pages),
) -> dict:
    page = pages.publish(tab_ref, payload.title, payload.url, payload.content)
    return {"success": True, "context": page}
