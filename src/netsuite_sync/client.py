"""
NetSuite transport client - the single chokepoint for upstream HTTP.

Every call made through BaseClient is:
- Failed fast while the circuit breaker is open
- Admitted through the priority request queue (shared concurrency budget)
- Authenticated with a fresh bearer token
- Retried with exponential backoff + jitter on retryable failures
- Classified into a NetSuiteError when it finally fails
"""

import json
import random
import threading
import time
from typing import Any, Callable

import httpx
import structlog
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from netsuite_sync.errors import (
    CircuitOpenError,
    ErrorCategory,
    NetSuiteError,
    NetSuiteSyncError,
    NoTokensError,
    OAuthError,
    classify_error,
)
from netsuite_sync.rate_limiter import ConcurrencyLimiter, RequestPriority, RequestQueue
from netsuite_sync.token_manager import TokenManager

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 30000
JITTER_FRACTION = 0.3

# circuit breaker: after N consecutive failures, pause requests
CIRCUIT_BREAKER_THRESHOLD = 5
CIRCUIT_BREAKER_RESET_SECONDS = 60.0

# consecutive successes before giving back one concurrency slot
RESTORE_AFTER_SUCCESSES = 20

HEALTH_CHECK_QUERY = "SELECT COUNT(*) AS total FROM customer"


def backoff_delay_ms(
    attempt: int,
    retry_after_ms: int | None = None,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
    rng: Callable[[], float] = random.random,
) -> float:
    """
    Delay before retry number `attempt` (0-based).

    A server-supplied retry hint wins outright; otherwise
    base * 2^attempt plus up to 30% jitter, capped at max_delay_ms.
    """
    if retry_after_ms:
        return float(retry_after_ms)

    delay = base_delay_ms * (2 ** attempt)
    jitter = rng() * JITTER_FRACTION * delay
    return min(delay + jitter, max_delay_ms)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, NetSuiteError) and exc.retryable


def _location_id(location: str) -> str:
    return location.rstrip("/").rsplit("/", 1)[-1]


class BaseClient:
    """
    Authenticated, rate-limited, retrying NetSuite HTTP client.

    Example:
        client = BaseClient(token_manager, ConcurrencyLimiter(15))

        with client:
            data = client.request("GET", config.record_url("customer", "42"))
    """

    def __init__(
        self,
        token_manager: TokenManager,
        limiter: ConcurrencyLimiter,
        http_client: httpx.Client | None = None,
        timeout: float = 30.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        """
        Initialize the client.

        Args:
            token_manager: Supplies bearer tokens (refreshing as needed)
            limiter: Shared concurrency limiter for this account
            http_client: Pre-built httpx client (tests inject a MockTransport here)
            timeout: Per-request timeout in seconds
            max_retries: Retries after the first attempt for retryable errors
            sleep: Blocking sleep used between retries (seconds)
            clock: Monotonic clock for the circuit breaker (seconds)
        """
        self.token_manager = token_manager
        self.limiter = limiter
        self.queue = RequestQueue(limiter)
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms

        self._sleep = sleep
        self._clock = clock
        self._rng = rng
        self._original_limit = limiter.max_allowed

        self._client = http_client
        self._owns_client = http_client is None

        self._state_lock = threading.Lock()
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._circuit_open_until = 0.0

        # Request counters for observability
        self._request_count = 0
        self._error_count = 0
        self._retry_count = 0

        self._log = logger.bind(account_id=token_manager.config.account_id)

    def __enter__(self) -> "BaseClient":
        _ = self.client
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP pool if this client created it."""
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    @property
    def client(self) -> httpx.Client:
        """Get HTTP client, creating if needed."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout,
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=20),
                headers={"User-Agent": "netsuite-sync/1.0"},
            )
            self._owns_client = True
        return self._client

    @property
    def consecutive_failures(self) -> int:
        with self._state_lock:
            return self._consecutive_failures

    @property
    def circuit_open(self) -> bool:
        with self._state_lock:
            return self._clock() < self._circuit_open_until

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        priority: RequestPriority | str = RequestPriority.NORMAL,
    ) -> Any:
        """
        Make an authenticated, rate-limited, retrying request.

        Returns:
            Parsed JSON body; None for an empty body; for an empty body with a
            Location header (NetSuite's create reply), {"id": ..., "location": ...}

        Raises:
            CircuitOpenError: While the circuit breaker is open (no network call)
            NetSuiteError: Classified failure after retries are exhausted
            NoTokensError / OAuthError: When no usable credentials exist
        """
        self._check_circuit_breaker()

        return self.queue.enqueue(
            lambda: self._request_with_retry(method, url, json_body, params, headers),
            priority,
        )

    def _request_with_retry(
        self,
        method: str,
        url: str,
        json_body: Any,
        params: dict[str, Any] | None,
        headers: dict[str, str] | None,
    ) -> Any:
        # the breaker may have opened while this call waited for a slot
        self._check_circuit_breaker()
        log = self._log.bind(method=method, url=url)

        retrying = Retrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            sleep=self._sleep,
            before_sleep=lambda state: self._before_sleep(log, state),
            reraise=True,
        )

        try:
            return retrying(self._attempt, log, method, url, json_body, params, headers)
        except NetSuiteError as e:
            self._record_failure(log, e)
            raise

    def _attempt(
        self,
        log: Any,
        method: str,
        url: str,
        json_body: Any,
        params: dict[str, Any] | None,
        headers: dict[str, str] | None,
    ) -> Any:
        token = self.token_manager.get_access_token()

        request_headers = dict(headers or {})
        request_headers["Authorization"] = f"Bearer {token}"
        request_headers["Content-Type"] = "application/json"
        request_headers["Accept"] = "application/json"

        with self._state_lock:
            self._request_count += 1
            request_id = self._request_count

        log.debug("API request", request_id=request_id)

        start_time = time.monotonic()
        try:
            response = self.client.request(
                method,
                url,
                params=params,
                headers=request_headers,
                content=json.dumps(json_body) if json_body is not None else None,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise NetSuiteError(f"Request timed out: {e}", ErrorCategory.TIMEOUT, raw=e) from e
        except httpx.TransportError as e:
            raise NetSuiteError(str(e) or "Network error", ErrorCategory.NETWORK, raw=e) from e

        elapsed = time.monotonic() - start_time
        log.debug(
            "API response",
            request_id=request_id,
            status_code=response.status_code,
            elapsed_ms=round(elapsed * 1000),
        )

        if response.is_success:
            self._record_success()
            return self._parse_success(response)

        body = self._parse_error_body(response)
        classified = classify_error(response.status_code, body, response.headers)

        with self._state_lock:
            self._error_count += 1

        if classified.category == ErrorCategory.RATE_LIMITED:
            self.limiter.reduce_concurrency()
            log.warning("Rate limited, reducing concurrency", max_allowed=self.limiter.max_allowed)
        elif classified.category == ErrorCategory.AUTH_EXPIRED:
            self.token_manager.mark_stale()

        raise NetSuiteError(
            classified.message,
            classified.category,
            status_code=response.status_code,
            retry_after_ms=classified.retry_after_ms,
            raw=body,
        )

    @staticmethod
    def _parse_success(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            location = response.headers.get("Location")
            if location:
                return {"id": _location_id(location), "location": location}
            return None
        try:
            return response.json()
        except ValueError as e:
            raise NetSuiteError(
                f"Invalid JSON response: {e}",
                ErrorCategory.UNKNOWN,
                status_code=response.status_code,
                raw=response.text[:500],
            ) from e

    @staticmethod
    def _parse_error_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    # -------------------------------------------------------------------------
    # Retry / circuit breaker
    # -------------------------------------------------------------------------

    def _wait(self, retry_state: RetryCallState) -> float:
        """tenacity wait callback, in seconds."""
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = exc.retry_after_ms if isinstance(exc, NetSuiteError) else None
        attempt = retry_state.attempt_number - 1
        delay_ms = backoff_delay_ms(
            attempt,
            retry_after,
            self.base_delay_ms,
            self.max_delay_ms,
            self._rng,
        )
        return delay_ms / 1000.0

    def _before_sleep(self, log: Any, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        with self._state_lock:
            self._retry_count += 1
        log.info(
            "Retrying request",
            attempt=retry_state.attempt_number,
            category=getattr(exc, "category", None),
            delay_seconds=round(retry_state.upcoming_sleep, 3),
        )

    def _check_circuit_breaker(self) -> None:
        with self._state_lock:
            if self._clock() < self._circuit_open_until:
                raise CircuitOpenError(self._circuit_open_until)

    def _record_success(self) -> None:
        restore = False
        with self._state_lock:
            self._consecutive_failures = 0
            self._consecutive_successes += 1
            if self._consecutive_successes >= RESTORE_AFTER_SUCCESSES:
                self._consecutive_successes = 0
                restore = True
        if restore:
            self.limiter.restore_concurrency(self._original_limit)

    def _record_failure(self, log: Any, error: NetSuiteError) -> None:
        with self._state_lock:
            self._consecutive_successes = 0
            self._consecutive_failures += 1
            if self._consecutive_failures < CIRCUIT_BREAKER_THRESHOLD:
                return
            self._circuit_open_until = self._clock() + CIRCUIT_BREAKER_RESET_SECONDS
            self._consecutive_failures = 0

        log.error(
            "Circuit breaker opened",
            cooldown_seconds=CIRCUIT_BREAKER_RESET_SECONDS,
            last_category=error.category.value,
        )

    def reset_circuit_breaker(self) -> None:
        with self._state_lock:
            self._consecutive_failures = 0
            self._circuit_open_until = 0.0

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Get client statistics for monitoring."""
        with self._state_lock:
            stats = {
                "request_count": self._request_count,
                "error_count": self._error_count,
                "retry_count": self._retry_count,
                "error_rate": round(self._error_count / max(1, self._request_count), 4),
                "consecutive_failures": self._consecutive_failures,
                "circuit_open": self._clock() < self._circuit_open_until,
            }
        stats["limiter"] = self.limiter.get_stats()
        return stats

    def health_check(self, suiteql_url: str) -> dict[str, Any]:
        """Verify API connectivity and credentials."""
        try:
            self.request(
                "POST",
                suiteql_url,
                json_body={"q": HEALTH_CHECK_QUERY},
                params={"limit": 1},
                headers={"Prefer": "transient"},
                priority=RequestPriority.HIGH,
            )
            return {"status": "healthy"}
        except (NoTokensError, OAuthError) as e:
            return {"status": "auth_error", "message": str(e)}
        except NetSuiteError as e:
            if e.category in (ErrorCategory.AUTH_EXPIRED, ErrorCategory.AUTH_INVALID):
                return {"status": "auth_error", "message": str(e)}
            return {"status": "error", "category": e.category.value, "message": str(e)}
        except NetSuiteSyncError as e:
            return {"status": "error", "message": str(e)}
