"""
Error taxonomy, classification and recording for the orchestration core
"""

from .error_handler import ErrorRecord, ErrorReporter, classify_error, to_gateway_error
from .errors import (
    ApiError,
    AuthError,
    ConfigError,
    ErrorType,
    GatewayError,
    NetworkError,
    ProviderSpawnError,
    RateLimitError,
    RequestTimeoutError,
    SessionBusyError,
    ToolError,
    ToolNotFoundError,
    TraycerError,
    UnknownGatewayError,
    user_friendly_message,
)

__all__ = [
    "ApiError",
    "AuthError",
    "ConfigError",
    "ErrorRecord",
    "ErrorReporter",
    "ErrorType",
    "GatewayError",
    "NetworkError",
    "ProviderSpawnError",
    "RateLimitError",
    "RequestTimeoutError",
    "SessionBusyError",
    "ToolError",
    "ToolNotFoundError",
    "TraycerError",
    "UnknownGatewayError",
    "classify_error",
    "to_gateway_error",
    "user_friendly_message",
]
