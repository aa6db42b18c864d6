"""
Collaborator interfaces for market data and holdings.

The analytics core never fetches data itself. Callers plug in objects
satisfying these protocols; the orchestrator wraps them with timeouts,
retries and rate limiting.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from typing import Iterable, List, Optional, Protocol, runtime_checkable

import pandas as pd

from quantcore.core.logging import get_logger
from quantcore.core.rate_limiter import RateLimiter

logger = get_logger("data_providers")

PRICE_COLUMNS = ["open", "high", "low", "close", "volume"]


@dataclass(frozen=True)
class PriceBar:
    """One daily OHLCV observation."""

    date: date
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def to_dict(self) -> dict:
        d = asdict(self)
        d["date"] = self.date.isoformat()
        return d


@dataclass(frozen=True)
class Holding:
    """A current position as reported by the holdings collaborator."""

    symbol: str
    shares: float
    cost_basis: float = 0.0
    purchase_date: Optional[date] = None
    current_price: Optional[float] = None

    @property
    def market_value(self) -> float:
        price = self.current_price if self.current_price else self.cost_basis
        return float(self.shares) * float(price or 0.0)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "shares": self.shares,
            "cost_basis": self.cost_basis,
            "purchase_date": self.purchase_date.isoformat() if self.purchase_date else None,
            "current_price": self.current_price,
        }


@runtime_checkable
class PriceHistoryProvider(Protocol):
    """Protocol for historical price providers."""

    async def get_price_history(
        self,
        symbol: str,
        lookback_days: int,
    ) -> List[PriceBar]:
        """Ascending daily bars; may be partial or empty."""
        ...


@runtime_checkable
class CurrentPriceProvider(Protocol):
    """Protocol for latest-price providers."""

    async def get_current_price(self, symbol: str) -> Optional[float]:
        """Latest price, or None when unavailable."""
        ...


@runtime_checkable
class HoldingsProvider(Protocol):
    """Protocol for user holdings."""

    async def get_holdings(self, user_id: str) -> List[Holding]:
        """Current positions for a user."""
        ...


def to_price_frame(bars: Iterable[PriceBar]) -> pd.DataFrame:
    """
    Convert bars to a date-indexed DataFrame.

    The result is sorted ascending, holds one row per date (last bar
    wins) and keeps only rows with a positive close.
    """
    rows = [
        {
            "date": pd.Timestamp(bar.date),
            "open": bar.open,
            "high": bar.high,
            "low": bar.low,
            "close": bar.close,
            "volume": bar.volume,
        }
        for bar in bars
    ]
    if not rows:
        return pd.DataFrame(columns=PRICE_COLUMNS, index=pd.DatetimeIndex([], name="date"))

    df = pd.DataFrame(rows).set_index("date").sort_index()
    df = df[~df.index.duplicated(keep="last")]
    df["close"] = pd.to_numeric(df["close"], errors="coerce")
    dropped = int((~(df["close"] > 0)).sum())
    if dropped:
        logger.debug(f"Dropped {dropped} bars with non-positive close")
    return df[df["close"] > 0]


class RateLimitedPriceProvider:
    """Wraps a history provider so each call first takes a rate-limit token."""

    def __init__(
        self,
        provider: PriceHistoryProvider,
        limiter: RateLimiter,
        acquire_timeout: float = 30.0,
    ):
        self._provider = provider
        self.limiter = limiter
        self.acquire_timeout = acquire_timeout

    async def get_price_history(self, symbol: str, lookback_days: int) -> List[PriceBar]:
        if not await self.limiter.acquire(timeout=self.acquire_timeout):
            raise TimeoutError(f"Rate limit wait exceeded for {symbol}")
        return await self._provider.get_price_history(symbol, lookback_days)
