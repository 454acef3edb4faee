"""
Error recording and classification for the orchestration core
"""

from __future__ import annotations

import errno
import json
import logging
import socket
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

import openai

from .errors import GATEWAY_ERRORS, ErrorType, GatewayError, TraycerError


DEFAULT_HISTORY_CAPACITY = 100

_NETWORK_CODES = {"ECONNREFUSED", "ENOTFOUND", "ENETUNREACH", "EHOSTUNREACH", "ECONNRESET", "EAI_AGAIN"}
_NETWORK_ERRNOS = {errno.ECONNREFUSED, errno.ENETUNREACH, errno.EHOSTUNREACH, errno.ECONNRESET}
_TIMEOUT_CODES = {"ETIMEDOUT", "ESOCKETTIMEDOUT"}

_MESSAGE_HINTS = (
    (("timed out", "timeout"), ErrorType.TIMEOUT),
    (("rate limit", "too many requests"), ErrorType.RATE_LIMIT),
    (("unauthorized", "invalid api key", "incorrect api key"), ErrorType.AUTH_ERROR),
    (("connection refused", "name or service not known", "getaddrinfo", "network is unreachable", "connection error"), ErrorType.NETWORK_ERROR),
)


@dataclass
class ErrorRecord:
    type: ErrorType
    message: str
    error: Optional[BaseException] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: float = field(default_factory=time.time)


class ErrorReporter:
    """Records errors against their scope and keeps a bounded history.

    One instance is built by the caller and shared by the registry, the
    dispatcher and the phase runner.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, capacity: int = DEFAULT_HISTORY_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.logger = logger or logging.getLogger("traycer_agent")
        self.capacity = capacity
        self._history: Deque[ErrorRecord] = deque(maxlen=capacity)

    def record(
        self,
        error_type: ErrorType,
        message: str,
        error: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> ErrorRecord:
        entry = ErrorRecord(type=error_type, message=message, error=error, details=details)
        self._history.append(entry)

        line = f"[{error_type.value}] {message}"
        if details:
            line += f"\nDetails: {json.dumps(details, indent=2, default=str)}"
        self.logger.error(line, exc_info=error if error is not None and error.__traceback__ else None)
        return entry

    def record_exception(self, error: BaseException, *, details: Optional[Dict[str, Any]] = None) -> ErrorRecord:
        return self.record(classify_error(error), str(error) or error.__class__.__name__, error, details)

    def history(self) -> List[ErrorRecord]:
        return list(self._history)

    def clear(self) -> None:
        self._history.clear()


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _status_of(error: Any) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def _iter_chain(error: BaseException):
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _classify_by_code(error: BaseException) -> Optional[ErrorType]:
    for exc in _iter_chain(error):
        if isinstance(exc, openai.APITimeoutError) or isinstance(exc, TimeoutError):
            return ErrorType.TIMEOUT
        code = getattr(exc, "code", None)
        if isinstance(code, str):
            if code in _TIMEOUT_CODES:
                return ErrorType.TIMEOUT
            if code in _NETWORK_CODES:
                return ErrorType.NETWORK_ERROR
        if isinstance(exc, socket.gaierror):
            return ErrorType.NETWORK_ERROR
        if isinstance(exc, OSError) and exc.errno in _NETWORK_ERRNOS:
            return ErrorType.NETWORK_ERROR
        if isinstance(exc, openai.APIConnectionError):
            return ErrorType.NETWORK_ERROR
    return None


def classify_error(error: Any) -> ErrorType:
    """Classify a transport failure.

    Explicit HTTP status wins over error codes, which win over message text.
    """
    if error is None:
        return ErrorType.UNKNOWN
    if isinstance(error, TraycerError):
        return error.error_type

    status = _status_of(error)
    if status is not None:
        if status in (401, 403):
            return ErrorType.AUTH_ERROR
        if status == 429:
            return ErrorType.RATE_LIMIT
        if status >= 500:
            return ErrorType.API_ERROR

    if isinstance(error, BaseException):
        by_code = _classify_by_code(error)
        if by_code is not None:
            return by_code

    message = str(error).lower()
    for needles, error_type in _MESSAGE_HINTS:
        if any(needle in message for needle in needles):
            return error_type

    if status is not None or getattr(error, "response", None) is not None:
        return ErrorType.API_ERROR
    return ErrorType.UNKNOWN


def to_gateway_error(error: BaseException) -> GatewayError:
    """Wrap a raw transport exception in the matching GatewayError subclass."""
    if isinstance(error, GatewayError):
        return error
    error_type = classify_error(error)
    error_cls = GATEWAY_ERRORS.get(error_type, GATEWAY_ERRORS[ErrorType.UNKNOWN])
    details: Dict[str, Any] = {"cause": error.__class__.__name__}
    status = _status_of(error)
    if status is not None:
        details["status_code"] = status
    wrapped = error_cls(str(error) or error.__class__.__name__, details=details)
    wrapped.__cause__ = error
    return wrapped
