"""
Agent orchestration core: a bounded tool-calling loop over a registry of
context and tool providers, backed by an OpenAI-compatible chat gateway.
"""

from .capabilities import CapabilityRegistry, ServerConfig, ToolDispatcher
from .error_handling import ErrorReporter, ErrorType, TraycerError
from .phases import ChatSession, ModePolicy, PhaseRunner
from .provider_ir import ExecutionContext, LoopStatus, Message, PhaseResult, Selection, ToolCall, ToolDefinition
from .provider_routing import LLMClientConfig, resolve_client_config, validate_client_config
from .provider_runtime import LLMGateway

__version__ = "0.1.0"

__all__ = [
    "CapabilityRegistry",
    "ChatSession",
    "ErrorReporter",
    "ErrorType",
    "ExecutionContext",
    "LLMClientConfig",
    "LLMGateway",
    "LoopStatus",
    "Message",
    "ModePolicy",
    "PhaseResult",
    "PhaseRunner",
    "Selection",
    "ServerConfig",
    "ToolCall",
    "ToolDefinition",
    "ToolDispatcher",
    "TraycerError",
    "__version__",
    "resolve_client_config",
    "validate_client_config",
]
