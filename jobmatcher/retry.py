"""
Retry logic with exponential backoff and circuit breaking for provider calls.

Provides the building blocks every matching strategy wraps around an AI
provider call: a circuit breaker that tracks provider-wide health, an
async retry loop that respects error classification, and a per-call timeout.
"""

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import ErrorKind, MatchError, classify_error, is_retryable_error
from .logger import get_logger

logger = get_logger()


class CircuitBreaker:
    """
    Circuit breaker pattern to prevent repeated calls to a failing provider.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: Too many failures, requests are blocked
    - HALF_OPEN: Probing whether the provider has recovered
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    def __init__(
        self,
        failure_threshold: int = 10,
        reset_timeout: float = 60.0,
        half_open_max_calls: int = 3,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening the circuit
            reset_timeout: Seconds to wait in OPEN before probing again
            half_open_max_calls: Trial calls allowed (and successes needed) in HALF_OPEN
        """
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.half_open_max_calls = half_open_max_calls

        self.state = self.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.half_open_calls = 0

    def get_state(self) -> str:
        """Current state; an expired OPEN circuit moves to HALF_OPEN here."""
        if self.state == self.OPEN and self._time_until_reset() <= 0:
            self.state = self.HALF_OPEN
            self.half_open_calls = 0
            logger.info("Circuit breaker transitioning to HALF_OPEN")
        return self.state

    def can_execute(self) -> bool:
        state = self.get_state()
        if state == self.CLOSED:
            return True
        if state == self.HALF_OPEN:
            return self.half_open_calls < self.half_open_max_calls
        return False

    def record_success(self) -> None:
        self.success_count += 1

        if self.state == self.HALF_OPEN:
            self.half_open_calls += 1
            if self.half_open_calls >= self.half_open_max_calls:
                self.state = self.CLOSED
                self.failure_count = 0
                self.success_count = 0
                self.half_open_calls = 0
                logger.info("Circuit breaker CLOSED, provider recovered")
        elif self.state == self.CLOSED:
            self.failure_count = 0

    def record_failure(self, error: Optional[BaseException] = None) -> None:
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        reason = str(error) if error is not None else "Unknown error"

        if self.state == self.HALF_OPEN:
            self.half_open_calls += 1
            self._open(f"half-open trial failed: {reason}")
        elif self.state == self.CLOSED and self.failure_count >= self.failure_threshold:
            self._open(
                f"threshold reached ({self.failure_count}/{self.failure_threshold}): {reason}"
            )

    def _open(self, reason: str) -> None:
        self.state = self.OPEN
        logger.record_circuit_open()
        logger.warning("Circuit breaker OPEN", reason=reason)

    def _time_until_reset(self) -> float:
        """Seconds until an OPEN circuit may be tried again."""
        if self.last_failure_time is None:
            return 0
        elapsed = time.monotonic() - self.last_failure_time
        return max(0, self.reset_timeout - elapsed)

    async def execute(self, func: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run an async callable under circuit breaker protection.

        Raises:
            MatchError: circuit_breaker kind if the circuit rejects the call
            Original exception: if the callable fails
        """
        if not self.can_execute():
            raise MatchError(
                f"Circuit breaker is {self.state}. "
                f"Will reset in {self._time_until_reset():.1f}s",
                kind=ErrorKind.CIRCUIT_BREAKER,
            )

        try:
            result = await func()
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self.state = self.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None
        self.half_open_calls = 0

    def get_stats(self) -> Dict[str, Any]:
        return {
            "state": self.get_state(),
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure_time": self.last_failure_time,
            "half_open_calls": self.half_open_calls,
        }


def create_circuit_breaker(
    failure_threshold: Optional[int] = None,
    reset_timeout: Optional[float] = None,
    half_open_max_calls: Optional[int] = None,
) -> CircuitBreaker:
    """Build a breaker, falling back to the defaults for unset thresholds."""
    return CircuitBreaker(
        failure_threshold=failure_threshold if failure_threshold is not None else 10,
        reset_timeout=reset_timeout if reset_timeout is not None else 60.0,
        half_open_max_calls=half_open_max_calls if half_open_max_calls is not None else 3,
    )


async def retry_with_backoff(
    func: Callable[[], Awaitable[Any]],
    max_retries: int = 3,
    base_delay: float = 2.0,
    max_delay: float = 32.0,
    on_retry: Optional[Callable[[int, float, BaseException], Optional[float]]] = None,
    on_attempt: Optional[Callable[[int], None]] = None,
    jitter: float = 1.0,
) -> Any:
    """
    Call an async function with exponential backoff between attempts.

    Non-retryable errors (validation, circuit_breaker, json_parse, no_object)
    are raised immediately without consuming the remaining attempts.

    Args:
        func: Zero-argument coroutine function to call
        max_retries: Total number of attempts
        base_delay: Delay in seconds before the second attempt
        max_delay: Upper bound for the exponential part of the delay
        on_retry: Optional callback(attempt, delay, error); a returned number
            replaces the computed delay
        on_attempt: Optional callback(attempt) invoked before every attempt
        jitter: Maximum random seconds added to each delay

    Raises:
        The last error once attempts are exhausted, or the first
        non-retryable error.
    """
    last_error: Optional[BaseException] = None

    for attempt in range(1, max_retries + 1):
        if on_attempt:
            on_attempt(attempt)
        try:
            return await func()
        except Exception as e:
            last_error = e

            if not is_retryable_error(e):
                logger.debug(
                    "Non-retryable error, failing fast",
                    error_type=classify_error(e).value,
                    error=str(e),
                )
                raise

            if attempt == max_retries:
                break

            delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
            delay += random.uniform(0, jitter) if jitter > 0 else 0

            if on_retry:
                override = on_retry(attempt, delay, e)
                if override is not None:
                    delay = override

            logger.record_retry()
            await asyncio.sleep(delay)

    if last_error is None:
        raise ValueError("max_retries must be at least 1")
    raise last_error


async def with_timeout(
    awaitable: Awaitable[Any],
    timeout: float,
    label: str = "Operation",
) -> Any:
    """
    Bound an awaitable by a timeout.

    Raises:
        MatchError: timeout kind naming the operation when the limit expires
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise MatchError(
            f"{label} timed out after {int(timeout * 1000)}ms",
            kind=ErrorKind.TIMEOUT,
            cause=e,
        ) from e
