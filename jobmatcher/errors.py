"""
Error taxonomy and classification for matcher operations.

Every failure raised while scoring a job is mapped onto a small, closed set
of error kinds. The kind decides whether a retry is worthwhile and which
HTTP status an API layer should report.
"""

import json
import re
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ValidationError as SchemaValidationError


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    JSON_PARSE = "json_parse"
    NO_OBJECT = "no_object"
    CIRCUIT_BREAKER = "circuit_breaker"
    UNKNOWN = "unknown"


NON_RETRYABLE_KINDS = frozenset({
    ErrorKind.VALIDATION,
    ErrorKind.CIRCUIT_BREAKER,
    ErrorKind.JSON_PARSE,
    ErrorKind.NO_OBJECT,
})

HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NO_OBJECT: 422,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.JSON_PARSE: 502,
    ErrorKind.NETWORK: 502,
    ErrorKind.CIRCUIT_BREAKER: 503,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.UNKNOWN: 500,
}

SERVER_ERROR_CODES = {502, 503, 504, 529}
RATE_LIMIT_CODES = {429}

_STATUS_IN_MESSAGE = re.compile(r"(?:status|http|error)[:\s]*(\d{3})\b", re.IGNORECASE)
_SERVER_CODE_IN_MESSAGE = re.compile(r"\b(?:" + "|".join(str(code) for code in sorted(SERVER_ERROR_CODES)) + r")\b")


class MatchError(Exception):
    """
    Classified matcher error.

    Carries the error kind, whether a retry may help, and the original
    exception (also chained as ``__cause__`` when raised with ``from``).
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        retryable: Optional[bool] = None,
        cause: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = ErrorKind(kind)
        self.retryable = is_retryable_kind(self.kind) if retryable is None else retryable
        self.cause = cause
        self.context = context or {}
        self.attempt_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context,
            "cause": str(self.cause) if self.cause is not None else None,
        }


class SessionError(Exception):
    """Raised when a match session cannot be created, found or attached."""
    pass


class ConfigError(ValueError):
    """Raised when matcher configuration is invalid."""
    pass


def is_retryable_kind(kind: ErrorKind) -> bool:
    return kind not in NON_RETRYABLE_KINDS


def _status_code(error: BaseException) -> Optional[int]:
    """Extract an HTTP status code from the error object or its message."""
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status

    match = _STATUS_IN_MESSAGE.search(str(error))
    if match:
        return int(match.group(1))
    return None


def is_server_error(error: BaseException) -> bool:
    """True for overloaded or unavailable provider responses (5xx family)."""
    if _status_code(error) in SERVER_ERROR_CODES:
        return True

    message = str(error).lower()
    if _SERVER_CODE_IN_MESSAGE.search(message):
        return True
    return any(
        phrase in message
        for phrase in (
            "bad gateway",
            "service unavailable",
            "gateway timeout",
            "overloaded",
            "temporarily unavailable",
        )
    )


def is_rate_limit_error(error: BaseException) -> bool:
    """True for quota and throttling responses."""
    if _status_code(error) in RATE_LIMIT_CODES:
        return True

    message = str(error).lower()
    return any(
        phrase in message
        for phrase in (
            "rate limit",
            "too many requests",
            "tokens per",
            "token limit",
            "quota",
            "throttl",
        )
    )


def classify_error(error: BaseException) -> ErrorKind:
    """
    Map any exception onto an ErrorKind.

    Rules are evaluated in priority order; the first match wins.

    Args:
        error: Exception raised by a provider call or by the engine itself

    Returns:
        The ErrorKind describing the failure
    """
    if isinstance(error, MatchError):
        return error.kind
    if isinstance(error, SchemaValidationError):
        return ErrorKind.VALIDATION

    message = str(error).lower()
    name = type(error).__name__

    if "CircuitBreakerOpen" in name or "circuit breaker" in message:
        return ErrorKind.CIRCUIT_BREAKER
    if (
        "NoObjectGenerated" in name
        or "no object generated" in message
        or "did not produce structured output" in message
    ):
        return ErrorKind.NO_OBJECT
    if (
        "GenerateObject" in name
        or "generate object" in message
        or "object generation" in message
    ):
        if "validation" in message or "schema" in message:
            return ErrorKind.VALIDATION
        if is_rate_limit_error(error):
            return ErrorKind.RATE_LIMIT
        return ErrorKind.UNKNOWN
    if isinstance(error, TimeoutError) or "Timeout" in name or "timeout" in message or "timed out" in message:
        return ErrorKind.TIMEOUT
    if isinstance(error, ConnectionError) or any(
        phrase in message
        for phrase in ("network", "econnrefused", "connection refused", "connection reset", "fetch failed")
    ):
        return ErrorKind.NETWORK
    if "ConnectionError" in name:
        return ErrorKind.NETWORK
    if is_server_error(error) or is_rate_limit_error(error):
        return ErrorKind.RATE_LIMIT
    if isinstance(error, json.JSONDecodeError) or any(
        phrase in message for phrase in ("json", "parse", "unexpected token", "syntax")
    ):
        return ErrorKind.JSON_PARSE
    if any(phrase in message for phrase in ("validation", "zod", "invalid", "schema")):
        return ErrorKind.VALIDATION

    return ErrorKind.UNKNOWN


def is_retryable_error(error: BaseException) -> bool:
    """Decide whether another attempt could succeed."""
    if isinstance(error, MatchError):
        return error.retryable
    return is_retryable_kind(classify_error(error))


def create_match_error(
    kind: ErrorKind,
    message: str,
    cause: Optional[BaseException] = None,
    context: Optional[Dict[str, Any]] = None,
) -> MatchError:
    return MatchError(message, kind=kind, cause=cause, context=context)


def http_status_for(error: BaseException) -> int:
    """HTTP status an API boundary should use for this error."""
    return HTTP_STATUS_BY_KIND[classify_error(error)]


def sanitize_error_message(message: str, limit: int = 1000) -> str:
    """Strip secrets and personal data from an error message before storing it."""
    sanitized = re.sub(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", "[EMAIL_REDACTED]", message)
    sanitized = re.sub(r"Bearer\s+\S+", "Bearer [TOKEN_REDACTED]", sanitized, flags=re.IGNORECASE)
    sanitized = re.sub(r"\b[a-fA-F0-9]{32,}\b", "[API_KEY_REDACTED]", sanitized)
    sanitized = re.sub(r"\b[A-Za-z0-9+/]{32,}={0,2}", "[TOKEN_REDACTED]", sanitized)
    sanitized = re.sub(r"\b\d{16,}\b", "[NUMERIC_REDACTED]", sanitized)
    sanitized = re.sub(
        r"\{[^}]*[\"'](api_key|token|key|secret|password|auth)[\"'][^}]*\}",
        "[JSON_PAYLOAD_REDACTED]",
        sanitized,
        flags=re.IGNORECASE,
    )
    return sanitized[:limit]
