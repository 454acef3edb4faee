"""
Orchestration loop: ask the model, execute the tools it requests, ask again.

Both variants share one loop body and differ only in how a single model turn
is obtained (buffered ``chat`` or streamed ``chat_stream``).
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional

from ..capabilities import CapabilityRegistry, ToolDispatcher, serialize_result
from ..error_handling import ErrorReporter, ErrorType, TraycerError, classify_error, user_friendly_message
from ..monitoring import TelemetryLogger
from ..provider_ir import (
    ChatResponse,
    ExecutionContext,
    LoopStatus,
    Message,
    PhaseResult,
    ToolCall,
    ToolDefinition,
)
from ..provider_runtime import LLMGateway
from .prompts import build_user_turn, system_prompt


logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10

ChunkCallback = Callable[[str], None]
CompleteCallback = Callable[[str], None]
ModelTurn = Callable[[List[Message], List[ToolDefinition]], Awaitable[ChatResponse]]


def max_iterations_notice(limit: int) -> str:
    return f"\n\n[Stopped: reached the maximum of {limit} tool-calling iterations.]"


class PhaseRunner:
    def __init__(
        self,
        registry: CapabilityRegistry,
        gateway: LLMGateway,
        *,
        reporter: Optional[ErrorReporter] = None,
        dispatcher: Optional[ToolDispatcher] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        telemetry: Optional[TelemetryLogger] = None,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.registry = registry
        self.gateway = gateway
        self.reporter = reporter or registry.reporter
        self.dispatcher = dispatcher or ToolDispatcher(registry, self.reporter)
        self.max_iterations = max_iterations
        self.telemetry = telemetry
        self._history: List[PhaseResult] = []

    # --- history -------------------------------------------------------------
    def get_history(self) -> List[PhaseResult]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history = []

    # --- public entry points -------------------------------------------------
    async def execute_phase(
        self,
        mode: str,
        context: ExecutionContext,
        request: Optional[str] = None,
    ) -> PhaseResult:
        async def turn(messages: List[Message], tools: List[ToolDefinition]) -> ChatResponse:
            return await self.gateway.chat(messages, tools)

        return await self._run(mode, context, request, turn)

    async def execute_phase_stream(
        self,
        mode: str,
        context: ExecutionContext,
        on_chunk: ChunkCallback,
        on_complete: Optional[CompleteCallback] = None,
        request: Optional[str] = None,
    ) -> PhaseResult:
        """Streaming variant.

        ``on_chunk`` receives every content fragment in arrival order, and the
        iteration-cap notice when the cap is hit. ``on_complete`` is called
        exactly once, last: with everything streamed so far, or with the
        error output when the invocation ends in ``FATAL``.
        """
        streamed: List[str] = []

        def emit(text: str) -> None:
            streamed.append(text)
            on_chunk(text)

        async def turn(messages: List[Message], tools: List[ToolDefinition]) -> ChatResponse:
            parts: List[str] = []
            tool_calls: Optional[List[ToolCall]] = None
            finish_reason = "stop"
            async for delta in self.gateway.chat_stream(messages, tools):
                if delta.content:
                    parts.append(delta.content)
                    emit(delta.content)
                if delta.done:
                    tool_calls = delta.tool_calls
                    finish_reason = delta.finish_reason or finish_reason
            return ChatResponse(content="".join(parts), tool_calls=tool_calls, finish_reason=finish_reason)

        result = await self._run(mode, context, request, turn, notice_sink=emit)
        if on_complete is not None:
            on_complete(result.output if result.status == LoopStatus.FATAL else "".join(streamed))
        return result

    # --- loop ----------------------------------------------------------------
    async def _run(
        self,
        mode: str,
        context: ExecutionContext,
        request: Optional[str],
        turn: ModelTurn,
        notice_sink: Optional[ChunkCallback] = None,
    ) -> PhaseResult:
        logger.info(f"Executing phase: {mode}")
        messages: List[Message] = []
        accumulated: List[str] = []
        iterations = 0

        try:
            prompt = system_prompt(mode)
            context.provider_context = await self.registry.aggregate_context(context)
            tools = self.registry.get_all_tools()
            logger.debug(f"Available tools: {', '.join(t.name for t in tools)}")

            messages.append(Message.system(prompt))
            messages.append(Message.user(build_user_turn(mode, context.provider_context, request)))

            while True:
                iterations += 1
                response = await turn(messages, tools)
                content = response.content or ""
                if content:
                    accumulated.append(content)
                calls = [call for call in (response.tool_calls or []) if call.name]

                self._log_event("iteration", mode, iterations, tool_calls=[c.name for c in calls])

                if not calls:
                    messages.append(Message(role="assistant", content=content))
                    return self._finish(mode, content, LoopStatus.DONE, iterations, messages)

                if iterations >= self.max_iterations:
                    logger.warning(f"Phase {mode} reached the iteration cap ({self.max_iterations}) with tool calls pending")
                    notice = max_iterations_notice(self.max_iterations)
                    if notice_sink is not None:
                        notice_sink(notice)
                    output = "".join(accumulated) + notice
                    return self._finish(mode, output, LoopStatus.MAX_ITERATIONS, iterations, messages)

                messages.append(Message(role="assistant", content=response.content, tool_calls=calls))
                for call in calls:
                    logger.info(f"Executing tool: {call.name}")
                    result = await self.dispatcher.dispatch(call)
                    messages.append(Message.tool_result(call.id, serialize_result(result)))
        except TraycerError as exc:
            self.reporter.record(exc.error_type, str(exc), exc, {"phase": mode, "iteration": iterations})
            return self._finish(
                mode,
                f"Error: {exc.user_message()}",
                LoopStatus.FATAL,
                iterations,
                messages,
                error_type=exc.error_type,
            )
        except Exception as exc:
            error_type = classify_error(exc)
            self.reporter.record(error_type, str(exc) or exc.__class__.__name__, exc, {"phase": mode, "iteration": iterations})
            return self._finish(
                mode,
                f"Error: {user_friendly_message(error_type, str(exc))}",
                LoopStatus.FATAL,
                iterations,
                messages,
                error_type=error_type,
            )

    def _finish(
        self,
        mode: str,
        output: str,
        status: LoopStatus,
        iterations: int,
        messages: List[Message],
        error_type: Optional[ErrorType] = None,
    ) -> PhaseResult:
        result = PhaseResult(
            phase=mode,
            output=output,
            status=status,
            iterations=iterations,
            error_type=error_type.value if error_type is not None else None,
            messages=list(messages),
        )
        self._history.append(result)
        self._log_event("terminal", mode, iterations, status=status.value, error_type=result.error_type)
        logger.info(f"Phase {mode} finished: {status.value} after {iterations} iteration(s)")
        return result

    def _log_event(self, event: str, mode: str, iteration: int, **payload) -> None:
        if self.telemetry is None:
            return
        self.telemetry.log(event, {"phase": mode, "iteration": iteration, **payload})
