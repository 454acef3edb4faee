"""
Error taxonomy shared by the gateway, the capability registry and the phase loop
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorType(str, Enum):
    API_ERROR = "API_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    TOOL_ERROR = "TOOL_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    PROVIDER_SPAWN_ERROR = "PROVIDER_SPAWN_ERROR"
    UNKNOWN = "UNKNOWN"


_USER_MESSAGES: Dict[ErrorType, str] = {
    ErrorType.API_ERROR: "An error occurred while communicating with the AI service. Please try again.",
    ErrorType.NETWORK_ERROR: "Network connection failed. Please check your internet connection and API base URL.",
    ErrorType.AUTH_ERROR: "Authentication failed. Please check your API key in settings.",
    ErrorType.RATE_LIMIT: "Rate limit exceeded. Please wait a moment before trying again.",
    ErrorType.TIMEOUT: "Request timed out. Please try again with a simpler request.",
    ErrorType.CONFIG_ERROR: "Configuration error. Please check your settings.",
}


def user_friendly_message(error_type: ErrorType, original_message: Optional[str] = None) -> str:
    """Map an error type to the sentence shown to the user."""
    if error_type == ErrorType.TOOL_ERROR:
        return f"Tool execution failed: {original_message or 'Unknown error'}"
    if error_type == ErrorType.PROVIDER_SPAWN_ERROR:
        return f"External tool provider failed to start: {original_message or 'Unknown error'}"
    if error_type == ErrorType.CONFIG_ERROR and original_message:
        return f"{original_message}\n{_USER_MESSAGES[ErrorType.CONFIG_ERROR]}"
    if error_type in _USER_MESSAGES:
        return _USER_MESSAGES[error_type]
    return original_message or "An unexpected error occurred. Please try again."


class TraycerError(Exception):
    """Base class for every error raised by the orchestration core."""

    error_type: ErrorType = ErrorType.UNKNOWN

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details: Dict[str, Any] = details or {}

    def user_message(self) -> str:
        return user_friendly_message(self.error_type, str(self))


class ConfigError(TraycerError):
    error_type = ErrorType.CONFIG_ERROR


# ---------------------------------------------------------------------------
# Gateway-classified errors (fatal to the current invocation)
# ---------------------------------------------------------------------------


class GatewayError(TraycerError):
    """Raised by the LLM gateway after classifying a transport failure."""


class AuthError(GatewayError):
    error_type = ErrorType.AUTH_ERROR


class RateLimitError(GatewayError):
    error_type = ErrorType.RATE_LIMIT


class NetworkError(GatewayError):
    error_type = ErrorType.NETWORK_ERROR


class RequestTimeoutError(GatewayError):
    error_type = ErrorType.TIMEOUT


class ApiError(GatewayError):
    error_type = ErrorType.API_ERROR


class UnknownGatewayError(GatewayError):
    error_type = ErrorType.UNKNOWN

    def user_message(self) -> str:
        return f"API Error: {self}"


GATEWAY_ERRORS: Dict[ErrorType, type] = {
    ErrorType.AUTH_ERROR: AuthError,
    ErrorType.RATE_LIMIT: RateLimitError,
    ErrorType.NETWORK_ERROR: NetworkError,
    ErrorType.TIMEOUT: RequestTimeoutError,
    ErrorType.API_ERROR: ApiError,
    ErrorType.UNKNOWN: UnknownGatewayError,
}


# ---------------------------------------------------------------------------
# Scoped errors (recovered locally)
# ---------------------------------------------------------------------------


class ToolNotFoundError(TraycerError):
    error_type = ErrorType.TOOL_ERROR

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool {tool_name} not found")
        self.tool_name = tool_name


class ToolError(TraycerError):
    error_type = ErrorType.TOOL_ERROR


class ProviderSpawnError(TraycerError):
    error_type = ErrorType.PROVIDER_SPAWN_ERROR


class SessionBusyError(TraycerError):
    """A request arrived while the session was still processing another one."""
