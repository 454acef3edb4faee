"""LLM gateway for OpenAI-compatible chat completion backends."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from openai import AsyncOpenAI

from .error_handling import ConfigError, TraycerError, to_gateway_error
from .provider_ir import ChatResponse, Message, StreamDelta, ToolCall, ToolDefinition
from .provider_routing import LLMClientConfig, ValidationResult, get_provider_defaults, validate_client_config


logger = logging.getLogger(__name__)

MessageLike = Union[Message, Dict[str, Any]]
ToolLike = Union[ToolDefinition, Dict[str, Any]]


def _get_attr(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


# ---------------------------------------------------------------------------
# Streaming tool-call reassembly
# ---------------------------------------------------------------------------


class ToolCallAccumulator:
    """Rebuilds tool calls from positional stream deltas.

    Deltas reference a call by index. Ids and names are adopted when present;
    argument fragments are appended in arrival order. One accumulator lives
    for exactly one streaming call.
    """

    def __init__(self) -> None:
        self._calls: Dict[int, Dict[str, str]] = {}
        self._last_index: Optional[int] = None

    def __len__(self) -> int:
        return len(self._calls)

    def add(
        self,
        index: int,
        *,
        call_id: Optional[str] = None,
        name: Optional[str] = None,
        arguments: Optional[str] = None,
    ) -> None:
        state = self._calls.setdefault(index, {"id": "", "name": "", "arguments": ""})
        self._last_index = index
        if call_id:
            state["id"] = call_id
        if name:
            state["name"] = name
        if arguments:
            state["arguments"] += arguments

    def add_delta(self, raw: Any) -> None:
        """Index-less deltas open a new call when they carry an id or name,
        otherwise they continue the most recent one."""
        index = _get_attr(raw, "index")
        call_id = _get_attr(raw, "id")
        fn = _get_attr(raw, "function") or {}
        name = _get_attr(fn, "name")
        if index is None:
            if self._last_index is not None and not call_id and not name:
                index = self._last_index
            else:
                index = max(self._calls) + 1 if self._calls else 0
        self.add(
            int(index),
            call_id=call_id,
            name=name,
            arguments=_get_attr(fn, "arguments"),
        )

    def finalize(self) -> List[ToolCall]:
        calls = [
            ToolCall(id=state["id"], name=state["name"], arguments=state["arguments"])
            for _, state in sorted(self._calls.items())
        ]
        self._calls = {}
        self._last_index = None
        return calls


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class LLMGateway:
    """Single round-trip (buffered or streamed) against one configured backend."""

    def __init__(self, config: Optional[LLMClientConfig] = None) -> None:
        self._config: Optional[LLMClientConfig] = None
        self._client: Optional[AsyncOpenAI] = None
        if config is not None:
            self.configure(config)

    def configure(self, config: LLMClientConfig) -> None:
        self._config = config
        defaults = get_provider_defaults(config.provider)
        api_key = config.effective_api_key()
        if api_key or not defaults.requires_api_key:
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=config.base_url or defaults.base_url,
                timeout=config.timeout,
            )
        else:
            self._client = None

    @property
    def config(self) -> Optional[LLMClientConfig]:
        return self._config

    def validate_config(self) -> ValidationResult:
        return validate_client_config(self._config)

    def _require_client(self) -> AsyncOpenAI:
        validation = self.validate_config()
        if not validation.valid:
            raise ConfigError("\n".join(validation.errors))
        if self._client is None:
            raise ConfigError("LLM client not initialized. Please configure API key.")
        return self._client

    def _request_kwargs(self, messages: Sequence[MessageLike], tools: Optional[Sequence[ToolLike]]) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self._config.model,
            "messages": [m.to_dict() if isinstance(m, Message) else dict(m) for m in messages],
        }
        if tools:
            kwargs["tools"] = [t.to_openai() if isinstance(t, ToolDefinition) else dict(t) for t in tools]
        return kwargs

    def _classified(self, exc: Exception) -> TraycerError:
        error = to_gateway_error(exc)
        logger.error(f"LLM API error ({error.error_type.value}): {exc}")
        return error

    async def chat(self, messages: Sequence[MessageLike], tools: Optional[Sequence[ToolLike]] = None) -> ChatResponse:
        client = self._require_client()
        try:
            response = await client.chat.completions.create(**self._request_kwargs(messages, tools))
        except TraycerError:
            raise
        except Exception as exc:
            raise self._classified(exc) from exc

        choice = response.choices[0]
        message = choice.message
        tool_calls: Optional[List[ToolCall]] = None
        raw_calls = _get_attr(message, "tool_calls")
        if raw_calls:
            tool_calls = []
            for raw in raw_calls:
                fn = _get_attr(raw, "function")
                if _get_attr(raw, "type", "function") != "function" or fn is None:
                    tool_calls.append(ToolCall(id=_get_attr(raw, "id", ""), name="", arguments=""))
                    continue
                tool_calls.append(
                    ToolCall(
                        id=_get_attr(raw, "id", ""),
                        name=_get_attr(fn, "name", ""),
                        arguments=_get_attr(fn, "arguments", "") or "",
                    )
                )

        return ChatResponse(
            content=_get_attr(message, "content"),
            tool_calls=tool_calls,
            finish_reason=_get_attr(choice, "finish_reason") or "stop",
        )

    async def chat_stream(
        self,
        messages: Sequence[MessageLike],
        tools: Optional[Sequence[ToolLike]] = None,
    ) -> AsyncIterator[StreamDelta]:
        """Yield content fragments as they arrive, then one ``done`` event.

        The returned async generator is single-pass.
        """
        client = self._require_client()
        accumulator = ToolCallAccumulator()
        finalized = False
        try:
            stream = await client.chat.completions.create(stream=True, **self._request_kwargs(messages, tools))
            async for chunk in stream:
                choices = _get_attr(chunk, "choices") or []
                if not choices:
                    continue
                choice = choices[0]
                delta = _get_attr(choice, "delta")

                content = _get_attr(delta, "content") if delta is not None else None
                if content:
                    yield StreamDelta(content=content, done=False)

                for raw in (_get_attr(delta, "tool_calls") or []) if delta is not None else []:
                    accumulator.add_delta(raw)

                finish_reason = _get_attr(choice, "finish_reason")
                if finish_reason and not finalized:
                    finalized = True
                    calls = accumulator.finalize()
                    yield StreamDelta(tool_calls=calls or None, done=True, finish_reason=finish_reason)
        except TraycerError:
            raise
        except Exception as exc:
            raise self._classified(exc) from exc

        if not finalized:
            # Stream closed without a finish_reason.
            calls = accumulator.finalize()
            yield StreamDelta(tool_calls=calls or None, done=True, finish_reason="stop")
