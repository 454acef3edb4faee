"""
External capability providers spawned as MCP servers over stdio.

Each provider owns one subprocess and one client session. The connection is
held open by a dedicated lifecycle task so that the transport contexts are
entered and exited in the same task, and teardown always runs even when the
handshake fails.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, TextIO

import anyio
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.types import CallToolResult, Implementation, Tool

from ..error_handling import ErrorReporter, ErrorType, ProviderSpawnError, ToolError
from ..provider_ir import ExecutionContext
from .base import CapabilityProvider, CapabilityTool


logger = logging.getLogger(__name__)

_CLIENT_INFO = Implementation(name="traycer-agent", version="0.1.0")

DEFAULT_CALL_TIMEOUT_SECONDS = 60.0


@dataclass
class ServerConfig:
    """Spawn contract for one external provider."""

    command: str
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    disabled: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerConfig":
        return cls(
            command=str(data.get("command", "")),
            args=[str(a) for a in data.get("args") or []],
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
            disabled=bool(data.get("disabled", False)),
        )

    def to_stdio_params(self) -> StdioServerParameters:
        return StdioServerParameters(
            command=self.command,
            args=list(self.args),
            env={**os.environ, **self.env},
        )


class ProviderState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    CONNECTED = "connected"
    FAILED = "failed"


def _root_cause(error: BaseException) -> BaseException:
    while isinstance(error, BaseExceptionGroup) and error.exceptions:
        error = error.exceptions[0]
    return error


def decode_tool_result(result: CallToolResult) -> Any:
    """Textual replies that parse as JSON are returned parsed, else as raw text."""
    texts = [block.text for block in result.content if getattr(block, "type", None) == "text"]
    if result.isError:
        return {"error": "\n".join(texts) or "Tool reported an error"}
    if texts:
        text = "\n".join(texts)
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    structured = getattr(result, "structuredContent", None)
    if structured is not None:
        return structured
    return [block.model_dump(mode="json") for block in result.content]


_TRANSPORT_ERRORS = (anyio.ClosedResourceError, anyio.BrokenResourceError, anyio.EndOfStream)


class _WatchedStream:
    """Read-stream proxy that sets ``closed`` once the server side ends."""

    def __init__(self, stream: Any, closed: asyncio.Event) -> None:
        self._stream = stream
        self.closed = closed

    async def __aenter__(self) -> "_WatchedStream":
        await self._stream.__aenter__()
        return self

    async def __aexit__(self, *exc_info: Any) -> Any:
        self.closed.set()
        return await self._stream.__aexit__(*exc_info)

    def __aiter__(self) -> "_WatchedStream":
        return self

    async def __anext__(self) -> Any:
        try:
            return await self._stream.__anext__()
        except StopAsyncIteration:
            self.closed.set()
            raise

    async def receive(self) -> Any:
        try:
            return await self._stream.receive()
        except _TRANSPORT_ERRORS:
            self.closed.set()
            raise

    def __getattr__(self, name: str) -> Any:
        return getattr(self._stream, name)


class ExternalProvider(CapabilityProvider):
    """Managed MCP server: ``stopped -> starting -> connected -> stopped``.

    ``failed`` is terminal and reachable from ``starting`` or ``connected``.
    Only a connected provider contributes tools.
    """

    provides_tools = True

    def __init__(
        self,
        name: str,
        config: ServerConfig,
        *,
        reporter: Optional[ErrorReporter] = None,
        errlog: Optional[TextIO] = None,
        call_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS,
    ) -> None:
        self.name = name
        self.config = config
        self.reporter = reporter
        self.call_timeout = call_timeout
        self._errlog = errlog if errlog is not None else sys.stderr
        self.state = ProviderState.STOPPED
        self.last_error: Optional[str] = None
        self._session: Optional[ClientSession] = None
        self._tools: List[CapabilityTool] = []
        self._task: Optional[asyncio.Task] = None
        self._ready = asyncio.Event()
        self._stop_requested = asyncio.Event()
        self._transport_closed = asyncio.Event()

    @property
    def available(self) -> bool:
        return self.state == ProviderState.CONNECTED

    # --- lifecycle -----------------------------------------------------------
    async def start(self) -> ProviderState:
        """Spawn, handshake and list tools. Returns once connected or failed."""
        if self.config.disabled:
            logger.info(f"External provider {self.name} is disabled; not spawning")
            return self.state
        if self._task is not None:
            await self._ready.wait()
            return self.state

        self.state = ProviderState.STARTING
        self.last_error = None
        self._ready = asyncio.Event()
        self._stop_requested = asyncio.Event()
        self._transport_closed = asyncio.Event()
        self._task = asyncio.create_task(self._lifecycle(), name=f"external-provider:{self.name}")
        await self._ready.wait()
        return self.state

    async def _lifecycle(self) -> None:
        try:
            async with AsyncExitStack() as stack:
                read, write = await stack.enter_async_context(
                    stdio_client(self.config.to_stdio_params(), errlog=self._errlog)
                )
                session = await stack.enter_async_context(
                    ClientSession(
                        _WatchedStream(read, self._transport_closed),
                        write,
                        read_timeout_seconds=timedelta(seconds=self.call_timeout),
                        client_info=_CLIENT_INFO,
                    )
                )
                await session.initialize()
                listed = await session.list_tools()

                self._session = session
                self._tools = [self._wrap(tool) for tool in listed.tools]
                self.state = ProviderState.CONNECTED
                logger.info(f"External provider {self.name} connected with {len(self._tools)} tool(s)")
                self._ready.set()

                await self._wait_for_shutdown()
                if not self._stop_requested.is_set():
                    raise ConnectionError(f"Server process for {self.name} closed the connection")
        except Exception as exc:
            if self._stop_requested.is_set():
                logger.debug(f"External provider {self.name} raised during shutdown: {exc}")
            else:
                self._fail(exc)
        finally:
            self._session = None
            self._tools = []
            if self.state != ProviderState.FAILED:
                self.state = ProviderState.STOPPED
            self._ready.set()

    async def _wait_for_shutdown(self) -> None:
        waiters = [
            asyncio.ensure_future(self._stop_requested.wait()),
            asyncio.ensure_future(self._transport_closed.wait()),
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    def _fail(self, exc: BaseException) -> None:
        if self.state == ProviderState.FAILED:
            logger.debug(f"External provider {self.name} already failed: {exc!r}")
            return
        cause = _root_cause(exc)
        message = str(cause) or cause.__class__.__name__
        self.state = ProviderState.FAILED
        self.last_error = message
        error = ProviderSpawnError(
            f"External provider {self.name} failed: {message}",
            details={"provider": self.name, "command": self.config.command, "args": self.config.args},
        )
        error.__cause__ = cause
        if self.reporter is not None:
            self.reporter.record(ErrorType.PROVIDER_SPAWN_ERROR, str(error), cause, error.details)
        else:
            logger.error(str(error))

    async def stop(self) -> None:
        """Terminate the subprocess. Safe to call repeatedly."""
        task = self._task
        if task is None:
            return
        self._task = None
        self._stop_requested.set()
        await task
        logger.info(f"External provider {self.name} stopped ({self.state.value})")

    # --- tools ---------------------------------------------------------------
    def _wrap(self, tool: Tool) -> CapabilityTool:
        async def execute(args: Dict[str, Any]) -> Any:
            return await self.call_tool(tool.name, args)

        return CapabilityTool(
            name=tool.name,
            description=tool.description or "",
            input_schema=tool.inputSchema or {"type": "object", "properties": {}},
            execute=execute,
        )

    async def call_tool(self, tool_name: str, args: Dict[str, Any]) -> Any:
        session = self._session
        if session is None or self.state != ProviderState.CONNECTED:
            raise ToolError(f"External provider {self.name} is not connected")
        try:
            result = await session.call_tool(tool_name, args or {})
        except _TRANSPORT_ERRORS as exc:
            self._fail(exc)
            self._transport_closed.set()
            raise ToolError(f"External provider {self.name} lost its connection while calling {tool_name}") from exc
        return decode_tool_result(result)

    def list_tools(self) -> List[CapabilityTool]:
        if self.state != ProviderState.CONNECTED:
            return []
        return list(self._tools)

    async def provide_context(self, ctx: ExecutionContext) -> Dict[str, Any]:
        context: Dict[str, Any] = {
            "connected": self.state == ProviderState.CONNECTED,
            "state": self.state.value,
            "command": self.config.command,
            "tools": [tool.name for tool in self.list_tools()],
        }
        if self.config.disabled:
            context["disabled"] = True
        if self.last_error:
            context["error"] = self.last_error
        return context
