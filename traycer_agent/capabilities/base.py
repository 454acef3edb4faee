"""Provider interface shared by built-in and external capability providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List

from ..provider_ir import ExecutionContext, ToolDefinition


NAMESPACE_SEPARATOR = "__"

ToolExecutor = Callable[[Dict[str, Any]], Awaitable[Any]]


def namespaced(provider_name: str, tool_name: str) -> str:
    return f"{provider_name}{NAMESPACE_SEPARATOR}{tool_name}"


@dataclass
class CapabilityTool:
    """A provider-local tool. ``name`` is the local name, before namespacing."""

    name: str
    description: str
    execute: ToolExecutor
    input_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def definition(self, provider_name: str) -> ToolDefinition:
        return ToolDefinition(
            name=namespaced(provider_name, self.name),
            description=self.description,
            parameters=self.input_schema,
        )


class CapabilityProvider(ABC):
    """Source of ambient context and, optionally, invocable tools.

    Providers that expose no tools keep ``provides_tools = False`` and the
    default ``list_tools``.
    """

    name: str = ""
    provides_tools: bool = False

    @abstractmethod
    async def provide_context(self, ctx: ExecutionContext) -> Dict[str, Any]:  # pragma: no cover - interface
        ...

    def list_tools(self) -> List[CapabilityTool]:
        return []

    @property
    def available(self) -> bool:
        """Whether this provider currently contributes tools to the catalog."""
        return True
