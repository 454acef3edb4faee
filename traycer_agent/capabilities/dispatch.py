"""Tool execution dispatcher: every outcome comes back as data, never as a raised fault."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from ..error_handling import ErrorReporter, ErrorType
from ..provider_ir import ToolCall
from .registry import CapabilityRegistry


logger = logging.getLogger(__name__)


def parse_arguments(raw: Optional[str]) -> Dict[str, Any]:
    """Parse a tool-call argument string. Blank input means no arguments."""
    if raw is None or not raw.strip():
        return {}
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError(f"Tool arguments must be a JSON object, got {type(parsed).__name__}")
    return parsed


def serialize_result(result: Any) -> str:
    """Render a tool result as the content of a tool-result message."""
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


class ToolDispatcher:
    def __init__(self, registry: CapabilityRegistry, reporter: Optional[ErrorReporter] = None) -> None:
        self.registry = registry
        self.reporter = reporter or registry.reporter

    def _failure(self, call: ToolCall, message: str, error: Optional[BaseException] = None) -> Dict[str, str]:
        self.reporter.record(
            ErrorType.TOOL_ERROR,
            f"Tool {call.name} failed: {message}",
            error,
            {"tool": call.name, "tool_call_id": call.id},
        )
        return {"error": message}

    async def dispatch(self, call: ToolCall) -> Any:
        try:
            args = parse_arguments(call.arguments)
        except ValueError as exc:
            return self._failure(call, f"Invalid tool arguments: {exc}", exc)

        try:
            return await self.registry.execute_tool(call.name, args)
        except Exception as exc:
            return self._failure(call, str(exc) or exc.__class__.__name__, exc)
