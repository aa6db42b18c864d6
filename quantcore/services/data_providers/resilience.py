"""
Resilience patterns for market-data collaborator calls.

This module provides:
1. Circuit Breaker - Fail fast after consecutive failures
2. Retry - Exponential backoff with jitter
3. ResilientCaller - Timeout, retry and circuit breaker combined

Usage:
    from quantcore.services.data_providers.resilience import (
        CircuitBreaker,
        ResilientCaller,
        with_retry,
    )

    caller = ResilientCaller(name="price_history", timeout=30.0)

    async def fetch(symbol: str):
        return await caller.call(lambda: provider.get_price_history(symbol, 365))

    @with_retry(max_attempts=3, base_delay=1.0)
    async def reliable_fetch():
        return await fetch_something()
"""

from __future__ import annotations

import asyncio
import functools
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from quantcore.core.logging import get_logger

logger = get_logger("resilience")

T = TypeVar("T")


# =============================================================================
# Exceptions
# =============================================================================


class CircuitOpenError(Exception):
    """Raised when circuit breaker is open and blocking calls."""

    def __init__(self, name: str, message: str = "Circuit breaker is open"):
        self.name = name
        self.message = message
        super().__init__(f"{name}: {message}")


class RetryExhaustedError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, attempts: int, last_error: Exception | None = None):
        self.attempts = attempts
        self.last_error = last_error
        message = f"All {attempts} retry attempts exhausted"
        if last_error:
            message += f": {last_error}"
        super().__init__(message)


# =============================================================================
# Circuit Breaker
# =============================================================================


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing fast, blocking calls
    HALF_OPEN = "half_open"  # Testing if provider recovered


@dataclass
class CircuitBreaker:
    """
    Circuit breaker for fail-fast protection of a collaborator.

    States:
    - CLOSED: Normal operation, counting failures
    - OPEN: After threshold failures, block all calls
    - HALF_OPEN: After recovery timeout, allow test request

    Args:
        failure_threshold: Number of consecutive failures before opening
        recovery_timeout: Seconds to wait before testing (half-open)
        name: Identifier for logging
        excluded_exceptions: Exception types that shouldn't trigger circuit
        clock: Monotonic time source
    """

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    name: str = "circuit"
    excluded_exceptions: tuple[type, ...] = ()
    clock: Callable[[], float] = time.monotonic

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _last_failure_time: float | None = field(default=None, init=False)

    @property
    def state(self) -> CircuitState:
        """Current circuit state (may transition from OPEN to HALF_OPEN)."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self.clock() - self._last_failure_time >= self.recovery_timeout:
                return CircuitState.HALF_OPEN
        return self._state

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def guard(self) -> None:
        """Raise CircuitOpenError if the circuit is open."""
        state = self.state

        if state == CircuitState.OPEN:
            remaining = self.recovery_timeout - (
                self.clock() - (self._last_failure_time or 0.0)
            )
            raise CircuitOpenError(
                self.name,
                f"Circuit open after {self._failure_count} failures, "
                f"retry in {remaining:.1f}s",
            )

        if state == CircuitState.HALF_OPEN:
            logger.info(f"[{self.name}] Circuit half-open, allowing test request")

    def record_success(self) -> None:
        """Record a successful call, reset failure count."""
        if self._state != CircuitState.CLOSED:
            logger.info(f"[{self.name}] Circuit closed after successful recovery")

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None

    def record_failure(self, error: Exception | None = None) -> None:
        """Record a failed call. Opens circuit after threshold failures."""
        if error is not None and isinstance(error, self.excluded_exceptions):
            return

        self._failure_count += 1
        self._last_failure_time = self.clock()

        if self._failure_count >= self.failure_threshold:
            if self._state != CircuitState.OPEN:
                logger.warning(
                    f"[{self.name}] Circuit OPEN after {self._failure_count} failures"
                )
            self._state = CircuitState.OPEN
        else:
            logger.debug(
                f"[{self.name}] Failure {self._failure_count}/{self.failure_threshold}"
            )

    def reset(self) -> None:
        """Force reset to closed state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None

    def get_stats(self) -> dict[str, Any]:
        """Get circuit breaker statistics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }


# =============================================================================
# Retry with Exponential Backoff
# =============================================================================

# Default exceptions that should trigger retry
DEFAULT_RETRY_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)


def _backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    exponential_base: float,
    jitter: float,
) -> float:
    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)
    if jitter > 0:
        delay *= 1 + (random.random() - 0.5) * 2 * jitter
    return delay


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    exponential_base: float = 2.0,
    jitter: float = 0.5,
    retry_on: tuple[type[Exception], ...] = DEFAULT_RETRY_EXCEPTIONS,
    on_retry: Callable[[int, Exception], None] | None = None,
) -> Callable:
    """
    Decorator for retry with exponential backoff and jitter.

    Args:
        max_attempts: Maximum number of attempts (including initial)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential growth (default 2.0)
        jitter: Random jitter factor (0.5 = ±50% of delay)
        retry_on: Exception types that trigger retry
        on_retry: Callback(attempt_number, exception) before each retry
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await retry_async(
                lambda: func(*args, **kwargs),
                max_attempts=max_attempts,
                base_delay=base_delay,
                max_delay=max_delay,
                exponential_base=exponential_base,
                jitter=jitter,
                retry_on=retry_on,
                on_retry=on_retry,
                label=func.__name__,
            )

        return wrapper

    return decorator


async def retry_async(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    exponential_base: float = 2.0,
    jitter: float = 0.5,
    retry_on: tuple[type[Exception], ...] = DEFAULT_RETRY_EXCEPTIONS,
    on_retry: Callable[[int, Exception], None] | None = None,
    label: str = "call",
) -> T:
    """
    Retry an async callable with exponential backoff.

    Raises:
        RetryExhaustedError: If all attempts fail with a retryable error
    """
    last_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            return await func()
        except retry_on as e:
            last_error = e

            if attempt >= max_attempts:
                logger.warning(
                    f"Retry exhausted for {label} after {max_attempts} attempts: {e}"
                )
                raise RetryExhaustedError(max_attempts, last_error) from e

            delay = _backoff_delay(
                attempt, base_delay, max_delay, exponential_base, jitter
            )
            logger.debug(
                f"Retry {attempt}/{max_attempts} for {label} after {delay:.2f}s: {e}"
            )
            if on_retry:
                on_retry(attempt, e)

            await asyncio.sleep(delay)

    raise RetryExhaustedError(max_attempts, last_error)


# =============================================================================
# Combined caller
# =============================================================================


class ResilientCaller:
    """
    Wraps collaborator calls with a per-attempt timeout, retry and a
    circuit breaker.

    Order: Circuit Breaker -> Retry -> Timeout
    """

    def __init__(
        self,
        name: str = "resilient",
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        retry_on: tuple[type[Exception], ...] = DEFAULT_RETRY_EXCEPTIONS,
    ):
        self.name = name
        self.timeout = timeout
        self.circuit = CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            name=name,
        )
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay
        self._retry_on = retry_on

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """Run func under the full resilience stack."""
        self.circuit.guard()

        async def _attempt() -> T:
            return await asyncio.wait_for(func(), timeout=self.timeout)

        try:
            result = await retry_async(
                _attempt,
                max_attempts=self._max_retries,
                base_delay=self._retry_delay,
                retry_on=self._retry_on,
                label=self.name,
            )
        except RetryExhaustedError as e:
            self.circuit.record_failure(e.last_error)
            raise
        except Exception as e:
            self.circuit.record_failure(e)
            raise

        self.circuit.record_success()
        return result

    def get_stats(self) -> dict[str, Any]:
        return {"name": self.name, "timeout": self.timeout, "circuit": self.circuit.get_stats()}
