"""Data providers - collaborator interfaces and call resilience."""

from .base import (
    CurrentPriceProvider,
    Holding,
    HoldingsProvider,
    PriceBar,
    PriceHistoryProvider,
    RateLimitedPriceProvider,
    to_price_frame,
)
from .resilience import (
    CircuitBreaker,
    CircuitOpenError,
    ResilientCaller,
    RetryExhaustedError,
    retry_async,
    with_retry,
)


__all__ = [
    "CircuitBreaker",
    "CircuitOpenError",
    "CurrentPriceProvider",
    "Holding",
    "HoldingsProvider",
    "PriceBar",
    "PriceHistoryProvider",
    "RateLimitedPriceProvider",
    "ResilientCaller",
    "RetryExhaustedError",
    "retry_async",
    "to_price_frame",
    "with_retry",
]
