"""Token bucket rate limiter for market-data collaborator calls."""

from __future__ import annotations

import asyncio
import threading
import time

from quantcore.core.logging import get_logger


logger = get_logger("core.rate_limiter")


class RateLimiter:
    """
    Token bucket rate limiter.

    Each instance owns its bucket; a client that needs limiting creates
    and holds its own limiter. Thread-safe and async-compatible.
    """

    def __init__(
        self,
        name: str,
        calls_per_second: float = 2.0,
        burst_size: int = 5,
        clock=time.monotonic,
    ):
        """
        Initialize rate limiter.

        Args:
            name: Identifier for logging
            calls_per_second: Sustained rate limit
            burst_size: Maximum burst of calls allowed
            clock: Monotonic time source (injectable for tests)
        """
        if calls_per_second <= 0:
            raise ValueError("calls_per_second must be positive")
        if burst_size < 1:
            raise ValueError("burst_size must be at least 1")
        self.name = name
        self.calls_per_second = calls_per_second
        self.burst_size = burst_size
        self._clock = clock
        self.tokens = float(burst_size)
        self.last_update = clock()
        self._lock = threading.Lock()
        self._async_lock: asyncio.Lock | None = None

    def _refill(self) -> None:
        """Refill tokens based on time elapsed."""
        now = self._clock()
        elapsed = now - self.last_update
        self.tokens = min(
            self.burst_size,
            self.tokens + elapsed * self.calls_per_second,
        )
        self.last_update = now

    def try_acquire(self) -> bool:
        """Take a token if one is available, without waiting."""
        with self._lock:
            self._refill()
            if self.tokens >= 1.0:
                self.tokens -= 1.0
                return True
            return False

    async def acquire(self, timeout: float = 30.0) -> bool:
        """
        Acquire a token asynchronously, waiting if necessary.

        Args:
            timeout: Maximum time to wait for a token

        Returns:
            True if token acquired, False if timeout
        """
        if self._async_lock is None:
            self._async_lock = asyncio.Lock()

        start = self._clock()

        while True:
            async with self._async_lock:
                with self._lock:
                    self._refill()

                    if self.tokens >= 1.0:
                        self.tokens -= 1.0
                        return True

                    wait_time = (1.0 - self.tokens) / self.calls_per_second

            if self._clock() - start + wait_time > timeout:
                logger.warning(f"Rate limiter {self.name} timeout after {timeout}s")
                return False

            logger.debug(f"Rate limiter {self.name} waiting {wait_time:.2f}s")
            await asyncio.sleep(min(wait_time, 0.5))

    def status(self) -> dict:
        """Get current rate limiter status."""
        with self._lock:
            self._refill()
            return {
                "name": self.name,
                "tokens_available": self.tokens,
                "burst_size": self.burst_size,
                "calls_per_second": self.calls_per_second,
            }
