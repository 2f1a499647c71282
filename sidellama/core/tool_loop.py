from __future__ import annotations

import logging
from typing import Sequence

from sidellama.tools.registry import ToolContext, ToolRegistry

from .errors import GatewayError, GenerationCancelled
from .types import Message, ToolCall, ToolResult

logger = logging.getLogger(__name__)


class ToolOrchestrator:
    """Runs model-requested tool calls and extends the conversation.

    Every call produces a result. Handler failures become error results so a
    continuation can still be sent; only cancellation propagates.
    """

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    async def execute(self, call: ToolCall, context: ToolContext) -> ToolResult:
        if context.token is not None:
            context.token.raise_if_cancelled()

        tool = self.registry.get(call.name)
        if tool is None:
            logger.warning("Model requested unknown tool %r", call.name)
            return ToolResult(
                tool_call_id=call.id,
                name=call.name,
                success=False,
                error=f"Unknown tool: {call.name}",
            )

        try:
            payload = await tool.handler(dict(call.arguments), context)
        except GenerationCancelled:
            raise
        except GatewayError as exc:
            logger.warning("Tool %s failed: %s", call.name, exc)
            return ToolResult(tool_call_id=call.id, name=call.name, success=False, error=exc.message)
        except Exception as exc:
            logger.exception("Tool %s raised unexpectedly", call.name)
            return ToolResult(tool_call_id=call.id, name=call.name, success=False, error=str(exc))

        # Handlers may also report through a {"success", "result" | "error"} envelope.
        if isinstance(payload, dict) and "success" in payload:
            if not payload["success"]:
                error = str(payload.get("error") or f"Tool {call.name} failed")
                logger.warning("Tool %s reported failure: %s", call.name, error)
                return ToolResult(tool_call_id=call.id, name=call.name, success=False, error=error)
            payload = payload.get("result", payload)

        logger.info("Tool %s completed", call.name)
        return ToolResult(tool_call_id=call.id, name=call.name, success=True, payload=payload)

    async def execute_all(
        self,
        calls: Sequence[ToolCall],
        context: ToolContext,
    ) -> list[ToolResult]:
        # Sequential, so results line up with calls.
        return [await self.execute(call, context) for call in calls]

    @staticmethod
    def extend_conversation(
        messages: Sequence[Message],
        calls: Sequence[ToolCall],
        results: Sequence[ToolResult],
    ) -> list[Message]:
        if len(calls) != len(results):
            raise ValueError(f"{len(calls)} tool call(s) but {len(results)} result(s)")

        extended = list(messages)
        extended.append(Message(role="assistant", content=None, tool_calls=tuple(calls)))
        for result in results:
            extended.append(
                Message(role="tool", content=result.to_content(), tool_call_id=result.tool_call_id)
            )
        return extended
