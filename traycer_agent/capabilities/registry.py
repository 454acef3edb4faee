"""
Capability registry: the single source of truth for what context is known and
which tools can be invoked.

Built-in providers are fixed at construction. External providers are keyed by
name and replaced or cleared only through ``register_user_provider`` and
``clear_user_providers``. Those two operations await subprocess teardown, so
they hold ``_mutation_lock``; readers that await (context aggregation and tool
execution) take the same lock and therefore never observe a provider that is
half torn down.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..error_handling import ErrorReporter, ErrorType, ToolNotFoundError
from ..provider_ir import ExecutionContext, ToolDefinition
from .base import CapabilityProvider, CapabilityTool, namespaced
from .external import ExternalProvider, ServerConfig
from .filesystem import FileSystemProvider
from .git import GitProvider


logger = logging.getLogger(__name__)


class CapabilityRegistry:
    def __init__(
        self,
        workspace_root: Optional[str] = None,
        *,
        reporter: Optional[ErrorReporter] = None,
        builtin_providers: Optional[Iterable[CapabilityProvider]] = None,
    ) -> None:
        self.reporter = reporter or ErrorReporter(logger)
        if builtin_providers is None:
            builtin_providers = [GitProvider(workspace_root), FileSystemProvider(workspace_root)]
        self._builtin: List[CapabilityProvider] = []
        self._external: Dict[str, ExternalProvider] = {}
        self._mutation_lock = asyncio.Lock()
        for provider in builtin_providers:
            self.register_builtin(provider)

    # --- provider bookkeeping ---------------------------------------------------
    def register_builtin(self, provider: CapabilityProvider) -> None:
        if not provider.name:
            raise ValueError("providers must have a name")
        if any(p.name == provider.name for p in self._builtin):
            raise ValueError(f"Built-in provider {provider.name} already registered")
        self._builtin.append(provider)

    @property
    def providers(self) -> List[CapabilityProvider]:
        return [*self._builtin, *self._external.values()]

    @property
    def user_providers(self) -> Dict[str, ExternalProvider]:
        return dict(self._external)

    def get_user_provider(self, name: str) -> Optional[ExternalProvider]:
        return self._external.get(name)

    async def register_user_provider(self, name: str, config: ServerConfig) -> ExternalProvider:
        """Replace any provider registered under ``name`` and start the new one.

        Spawn failures leave the provider registered in the ``failed`` state;
        nothing is raised to the caller.
        """
        async with self._mutation_lock:
            existing = self._external.pop(name, None)
            if existing is not None:
                logger.info(f"Replacing external provider {name}")
                await existing.stop()

            provider = ExternalProvider(name, config, reporter=self.reporter)
            await provider.start()
            self._external[name] = provider
            return provider

    async def clear_user_providers(self) -> None:
        async with self._mutation_lock:
            providers = list(self._external.values())
            self._external.clear()
            for provider in providers:
                await provider.stop()

    # --- context --------------------------------------------------------------
    async def aggregate_context(self, ctx: ExecutionContext) -> Dict[str, Any]:
        """Collect every provider's context. A failing provider is logged and omitted."""
        async with self._mutation_lock:
            providers = self.providers
            results = await asyncio.gather(
                *(provider.provide_context(ctx) for provider in providers),
                return_exceptions=True,
            )

        context: Dict[str, Any] = {}
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                self.reporter.record(
                    ErrorType.UNKNOWN,
                    f"Provider {provider.name} failed: {result}",
                    result,
                    {"provider": provider.name},
                )
                continue
            context[provider.name] = result
        return context

    # --- tools ----------------------------------------------------------------
    def _catalog(self) -> List[Tuple[str, CapabilityProvider, CapabilityTool]]:
        catalog: List[Tuple[str, CapabilityProvider, CapabilityTool]] = []
        for provider in self.providers:
            if not provider.provides_tools or not provider.available:
                continue
            for tool in provider.list_tools():
                catalog.append((namespaced(provider.name, tool.name), provider, tool))
        return catalog

    def get_all_tools(self) -> List[ToolDefinition]:
        """Flattened, namespaced catalog built from the current provider set."""
        definitions: Dict[str, ToolDefinition] = {}
        for full_name, provider, tool in self._catalog():
            if full_name in definitions:
                logger.warning(f"Duplicate tool {full_name} from provider {provider.name} ignored")
                continue
            definitions[full_name] = tool.definition(provider.name)
        return list(definitions.values())

    def find_tool(self, name: str) -> Optional[CapabilityTool]:
        for full_name, _, tool in self._catalog():
            if full_name == name:
                return tool
        return None

    async def execute_tool(self, name: str, args: Dict[str, Any]) -> Any:
        """Run a namespaced tool and return the provider's result unchanged."""
        async with self._mutation_lock:
            tool = self.find_tool(name)
            if tool is None:
                raise ToolNotFoundError(name)
            logger.info(f"Executing tool: {name}")
            return await tool.execute(args)
