"""
Error taxonomy and NetSuite response classification.

NetSuite reuses HTTP status codes ambiguously:
- a 401 whose body mentions a timeout is a request timeout
- a 401 "Invalid Login Attempt" is rate limiting
- a 403 claiming a field "does not exist" is a permission problem

classify_error() walks an ordered rule table, looking at the body text
before falling back to the literal meaning of the status code.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

DEFAULT_RATE_LIMIT_RETRY_MS = 5000


class ErrorCategory(str, Enum):
    RATE_LIMITED = "rate_limited"
    AUTH_EXPIRED = "auth_expired"
    AUTH_INVALID = "auth_invalid"
    PERMISSION_DENIED = "permission_denied"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    NETWORK = "network"
    UNKNOWN = "unknown"


_RETRYABLE = frozenset({
    ErrorCategory.RATE_LIMITED,
    ErrorCategory.TIMEOUT,
    ErrorCategory.SERVER_ERROR,
    ErrorCategory.NETWORK,
    # a fresh token may fix it
    ErrorCategory.AUTH_EXPIRED,
})


def is_retryable(category: ErrorCategory) -> bool:
    """Whether an error of this category may succeed on retry."""
    return ErrorCategory(category) in _RETRYABLE


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class NetSuiteSyncError(Exception):
    """Base exception for the sync engine."""
    pass


class ConfigurationError(NetSuiteSyncError):
    """Raised when required configuration is missing or invalid."""
    pass


class NoTokensError(NetSuiteSyncError):
    """Raised when no OAuth tokens are stored for the account."""
    pass


class OAuthError(NetSuiteSyncError):
    """Raised when a code exchange or token refresh fails."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SyncStateError(NetSuiteSyncError):
    """Raised when a sync metadata row is missing or in the wrong state."""
    pass


class ConflictResolutionError(SyncStateError):
    """Raised when a conflict cannot be resolved as requested."""
    pass


class NetSuiteError(NetSuiteSyncError):
    """A classified upstream failure."""

    circuit_open = False

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        status_code: int | None = None,
        retry_after_ms: int | None = None,
        raw: Any = None,
    ):
        super().__init__(message)
        self.category = ErrorCategory(category)
        self.status_code = status_code
        self.retry_after_ms = retry_after_ms
        self.raw = raw
        self.retryable = is_retryable(self.category)

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code:
            return f"{base} (HTTP {self.status_code})"
        return base


class CircuitOpenError(NetSuiteError):
    """Raised without a network call while the circuit breaker is open."""

    circuit_open = True

    def __init__(self, open_until: float):
        super().__init__(
            "Circuit breaker open - too many consecutive failures",
            ErrorCategory.SERVER_ERROR,
        )
        self.open_until = open_until


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Classification:
    category: ErrorCategory
    message: str
    retry_after_ms: int | None = None


@dataclass(frozen=True)
class _Response:
    status: int
    body: Any
    text: str
    headers: Mapping[str, str]


@dataclass(frozen=True)
class _Rule:
    matches: Callable[[_Response], bool]
    classify: Callable[[_Response], Classification]


def _body_text(body: Any) -> str:
    if isinstance(body, str):
        return body
    if body is None:
        return ""
    try:
        return json.dumps(body)
    except (TypeError, ValueError):
        return str(body)


def _retry_after_ms(resp: _Response) -> int:
    """Provider retry hint in ms, defaulting to 5s."""
    if isinstance(resp.body, dict):
        hint = resp.body.get("Retry-After")
        if isinstance(hint, (int, float)) and not isinstance(hint, bool):
            return int(hint * 1000)
    header = resp.headers.get("Retry-After") or resp.headers.get("retry-after")
    if header:
        try:
            return int(float(header) * 1000)
        except ValueError:
            pass
    return DEFAULT_RATE_LIMIT_RETRY_MS


def _validation_message(body: Any) -> str:
    if isinstance(body, dict):
        if isinstance(body.get("title"), str):
            return body["title"]
        details = body.get("o:errorDetails")
        if isinstance(details, list) and details:
            first = details[0]
            if isinstance(first, dict) and first.get("detail"):
                return str(first["detail"])
        if isinstance(body.get("message"), str):
            return body["message"]
    return "Validation error"


# Evaluated top to bottom; the first match wins.
RULES: tuple[_Rule, ...] = (
    _Rule(
        lambda r: r.status == 429,
        lambda r: Classification(
            ErrorCategory.RATE_LIMITED, "Rate limited by NetSuite", _retry_after_ms(r)
        ),
    ),
    _Rule(
        lambda r: r.status == 401 and ("timeout" in r.text or "ETIMEDOUT" in r.text),
        lambda r: Classification(ErrorCategory.TIMEOUT, "Request timed out (disguised as 401)"),
    ),
    _Rule(
        lambda r: r.status == 401 and "Invalid Login Attempt" in r.text,
        lambda r: Classification(
            ErrorCategory.RATE_LIMITED,
            "Rate limited (disguised as auth error)",
            DEFAULT_RATE_LIMIT_RETRY_MS,
        ),
    ),
    _Rule(
        lambda r: r.status == 401,
        lambda r: Classification(ErrorCategory.AUTH_EXPIRED, "Authentication expired or invalid"),
    ),
    _Rule(
        lambda r: r.status == 403 and "not exist" in r.text,
        lambda r: Classification(
            ErrorCategory.PERMISSION_DENIED, "Permission denied (disguised as missing field)"
        ),
    ),
    _Rule(
        lambda r: r.status == 403,
        lambda r: Classification(ErrorCategory.PERMISSION_DENIED, "Access forbidden"),
    ),
    _Rule(
        lambda r: r.status == 404,
        lambda r: Classification(ErrorCategory.NOT_FOUND, "Record not found"),
    ),
    _Rule(
        lambda r: r.status == 400,
        lambda r: Classification(ErrorCategory.VALIDATION, _validation_message(r.body)),
    ),
    _Rule(
        lambda r: r.status >= 500,
        lambda r: Classification(
            ErrorCategory.SERVER_ERROR, f"NetSuite server error ({r.status})"
        ),
    ),
)


def classify_error(
    status: int,
    body: Any,
    headers: Mapping[str, str] | None = None,
) -> Classification:
    """
    Map a non-2xx NetSuite response to an error category.

    Args:
        status: HTTP status code
        body: Parsed JSON body, or raw text when the body isn't JSON
        headers: Response headers (used for Retry-After)

    Returns:
        Classification with category, message and optional retry hint
    """
    resp = _Response(status=status, body=body, text=_body_text(body), headers=headers or {})

    for rule in RULES:
        if rule.matches(resp):
            return rule.classify(resp)

    return Classification(
        ErrorCategory.UNKNOWN,
        f"Unexpected status {status}: {resp.text[:200]}",
    )
