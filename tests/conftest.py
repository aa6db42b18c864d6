"""Pytest configuration and fixtures."""

from __future__ import annotations

import fnmatch
from datetime import date, datetime
from typing import Optional

import numpy as np
import pandas as pd
import pytest

from quantcore.core.config import Settings
from quantcore.services.data_providers.base import Holding, PriceBar

# Configure asyncio
pytest_plugins = ["pytest_asyncio"]


# ============================================================================
# In-memory Valkey
# ============================================================================


class FakeValkey:
    """Minimal async stand-in for the redis.asyncio client used by Cache."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, Optional[int]] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def scan_iter(self, match: str = "*", count: int = 100):
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def ping(self) -> bool:
        return True


@pytest.fixture
def fake_valkey(mocker) -> FakeValkey:
    """Route every Cache instance to an in-memory store."""
    valkey = FakeValkey()

    async def _client():
        return valkey

    mocker.patch("quantcore.cache.cache.get_valkey_client", _client)
    return valkey


@pytest.fixture
def broken_valkey(mocker):
    """Cache backend that fails on every call."""

    async def _client():
        raise ConnectionError("valkey down")

    mocker.patch("quantcore.cache.cache.get_valkey_client", _client)


# ============================================================================
# Price data
# ============================================================================


def make_bars(
    symbol: str,
    periods: int = 300,
    start_price: float = 100.0,
    drift: float = 0.0005,
    volatility: float = 0.015,
    end: date | None = None,
) -> list[PriceBar]:
    """Seeded geometric random walk as daily bars ending at `end`."""
    seed = sum(ord(ch) for ch in symbol)
    rng = np.random.default_rng(seed)
    shocks = rng.normal(drift, volatility, periods - 1)
    closes = start_price * np.concatenate([[1.0], np.cumprod(1 + shocks)])
    dates = pd.bdate_range(end=pd.Timestamp(end or date(2024, 12, 31)), periods=periods)
    return [
        PriceBar(date=d.date(), open=c, high=c * 1.01, low=c * 0.99, close=c, volume=1_000_000)
        for d, c in zip(dates, closes)
    ]


class FakePriceHistory:
    """Price history provider serving canned bars and recording calls."""

    def __init__(self, bars: dict[str, list[PriceBar]], failing: set[str] | None = None):
        self.bars = bars
        self.failing = failing or set()
        self.calls: list[tuple[str, int]] = []

    async def get_price_history(self, symbol: str, lookback_days: int) -> list[PriceBar]:
        self.calls.append((symbol, lookback_days))
        if symbol in self.failing:
            raise ConnectionError(f"history feed down for {symbol}")
        return self.bars.get(symbol, [])


class FakeCurrentPrices:
    def __init__(self, prices: dict[str, float]):
        self.prices = prices
        self.calls: list[str] = []

    async def get_current_price(self, symbol: str) -> Optional[float]:
        self.calls.append(symbol)
        return self.prices.get(symbol)


class FakeHoldings:
    def __init__(self, holdings: dict[str, list[Holding]]):
        self.holdings = holdings

    async def get_holdings(self, user_id: str) -> list[Holding]:
        return self.holdings.get(user_id, [])


@pytest.fixture
def price_bars() -> dict[str, list[PriceBar]]:
    return {
        "AAPL": make_bars("AAPL", start_price=180.0, drift=0.0008),
        "MSFT": make_bars("MSFT", start_price=400.0, drift=0.0006, volatility=0.012),
        "KO": make_bars("KO", start_price=60.0, drift=0.0002, volatility=0.008),
    }


@pytest.fixture
def holdings() -> dict[str, list[Holding]]:
    return {
        "alice": [
            Holding("AAPL", shares=10, cost_basis=150.0, purchase_date=date(2024, 3, 1)),
            Holding("MSFT", shares=5, cost_basis=350.0, purchase_date=date(2024, 2, 1)),
            Holding("KO", shares=20, cost_basis=55.0),
        ],
        "empty": [],
    }


@pytest.fixture
def test_settings() -> Settings:
    """Small simulation counts and fast provider timeouts."""
    return Settings(
        analytics_mode="live",
        monte_carlo_simulations=50,
        monte_carlo_days=60,
        monte_carlo_seed=7,
        provider_timeout=2.0,
        provider_retries=1,
        provider_calls_per_second=1000.0,
        provider_burst_size=100,
        min_points_cycle_detection=50,
    )


@pytest.fixture
def sine_dates() -> list[datetime]:
    return list(pd.bdate_range("2024-01-01", periods=252).to_pydatetime())
