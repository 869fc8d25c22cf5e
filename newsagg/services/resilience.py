# newsagg/services/resilience.py
"""
Resilience patterns for provider calls.

Provides the degradation breaker that keeps the orchestrator away from a
misconfigured provider, the backoff schedule used by adapter retries, and a
retry decorator for short synchronous store writes.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from functools import wraps
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


# -----------------------------------------------------------------------------
# Circuit Breaker
# -----------------------------------------------------------------------------


class CircuitState(str, Enum):
    CLOSED = "closed"  # provider eligible
    OPEN = "open"  # degraded, skipped by the orchestrator
    HALF_OPEN = "half_open"  # cool-down over, next call is the probe


@dataclass
class CircuitBreaker:
    """
    Tracks whether a provider is degraded.

    A permanent failure (bad key, malformed request) trips the breaker
    immediately. Runs that end in exhausted transient retries count towards
    failure_threshold. Once reset_timeout_seconds have passed the breaker is
    half-open and the next call decides: success closes it, failure reopens.

    Usage:
        breaker = CircuitBreaker(name="gnews", reset_timeout_seconds=900)

        if breaker.is_open:
            skip provider
        try:
            ...
            breaker.record_success()
        except ProviderPermanent as e:
            breaker.trip(str(e))
    """

    name: str
    failure_threshold: int = 5
    reset_timeout_seconds: float = 60
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    # Internal state
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _last_reason: str | None = field(default=None, init=False)

    @property
    def state(self) -> CircuitState:
        """Get current circuit state, checking for cool-down expiry."""
        if self._state == CircuitState.OPEN:
            if self.clock() - self._opened_at >= self.reset_timeout_seconds:
                return CircuitState.HALF_OPEN
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def last_reason(self) -> str | None:
        return self._last_reason

    def remaining_cooldown(self) -> float:
        if self.state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.reset_timeout_seconds - (self.clock() - self._opened_at))

    def trip(self, reason: str) -> None:
        """Open immediately."""
        self._state = CircuitState.OPEN
        self._opened_at = self.clock()
        self._last_reason = reason
        logger.warning(
            f"Circuit '{self.name}' opened: {reason}. Cooldown: {self.reset_timeout_seconds}s",
            extra={"event": "provider_degraded", "provider": self.name},
        )

    def record_failure(self, reason: str) -> None:
        """Count a failed run; open once the threshold is reached or while half-open."""
        was_half_open = self.state == CircuitState.HALF_OPEN
        self._failure_count += 1
        if was_half_open:
            self.trip(f"half-open probe failed: {reason}")
        elif self._failure_count >= self.failure_threshold:
            self.trip(f"{self._failure_count} consecutive failures, last: {reason}")

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info(f"Circuit '{self.name}' closed after successful call")
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_reason = None

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_reason = None
        logger.info(f"Circuit '{self.name}' manually reset")


# -----------------------------------------------------------------------------
# Retry
# -----------------------------------------------------------------------------


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential backoff for the given 1-based attempt."""
    return min(base * (2 ** (attempt - 1)), cap)


def with_sync_retry(
    max_attempts: int = 3,
    min_wait: float = 0.2,
    max_wait: float = 2.0,
    retry_exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable:
    """
    Retry a blocking call (SQLAlchemy writes) on the given exceptions.

    Waits follow backoff_delay(attempt, min_wait, max_wait). The last
    exception is re-raised once max_attempts calls have failed.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        operation = func.__qualname__

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 1
            while True:
                try:
                    return func(*args, **kwargs)
                except retry_exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(
                            f"{operation} gave up after {attempt} attempts: {e}",
                            extra={"event": "store_retry_exhausted", "operation": operation},
                        )
                        raise
                    delay = backoff_delay(attempt, min_wait, max_wait)
                    logger.warning(
                        f"{operation} failed ({e}), retry {attempt + 1}/{max_attempts} in {delay:.1f}s",
                        extra={"event": "store_retry", "operation": operation},
                    )
                    time.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
