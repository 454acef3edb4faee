"""Provider-agnostic representation of conversations, tool calls and phase results."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional


Role = Literal["system", "user", "assistant", "tool"]
Mode = Literal["phases", "plan", "review"]


@dataclass
class ToolCall:
    """A tool invocation requested by the model.

    ``id`` is assigned by the backend and is echoed back unchanged in the
    matching tool-result message. ``arguments`` stays a raw string until the
    dispatcher parses it.
    """

    id: str
    name: str
    arguments: str = ""
    type: str = "function"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class Message:
    role: Role
    content: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            payload["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        return payload

    @staticmethod
    def system(content: str) -> "Message":
        return Message(role="system", content=content)

    @staticmethod
    def user(content: str) -> "Message":
        return Message(role="user", content=content)

    @staticmethod
    def tool_result(tool_call_id: str, content: str) -> "Message":
        return Message(role="tool", content=content, tool_call_id=tool_call_id)


@dataclass(frozen=True)
class ToolDefinition:
    """Schema advertised to the model for one namespaced tool."""

    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ChatResponse:
    content: Optional[str]
    tool_calls: Optional[List[ToolCall]] = None
    finish_reason: str = "stop"


@dataclass
class StreamDelta:
    """One event of a streamed response.

    Content fragments carry ``done=False``; the single finalization event
    carries ``done=True`` and the reassembled tool calls, if any.
    """

    content: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    done: bool = False
    finish_reason: Optional[str] = None


@dataclass(frozen=True)
class Selection:
    file: str
    start_line: int
    end_line: int


class LoopStatus(str, Enum):
    DONE = "done"
    MAX_ITERATIONS = "max_iterations"
    FATAL = "fatal"


@dataclass
class PhaseResult:
    phase: Mode
    output: str
    timestamp: float = field(default_factory=time.time)
    status: LoopStatus = LoopStatus.DONE
    iterations: int = 0
    error_type: Optional[str] = None
    messages: List[Message] = field(default_factory=list)
    artifacts: List[str] = field(default_factory=list)


@dataclass
class ExecutionContext:
    """Per-invocation bundle handed to providers.

    Built fresh for every call; ``provider_context`` is filled once by the
    registry and is not touched by providers afterwards.
    """

    workspace_root: str
    selection: Optional[Selection] = None
    provider_context: Dict[str, Any] = field(default_factory=dict)
    history: List[PhaseResult] = field(default_factory=list)
