"""
Synthetic (demo) analytics.

Generates seeded, clearly-labelled demo payloads from holdings alone by
running the real engines over simulated price series. Used only when the
deployment explicitly runs in synthetic mode; live analyses never fall
back to it when data is missing.
"""

from __future__ import annotations

import logging
import zlib
from datetime import datetime
from typing import Any, Sequence

import numpy as np
import pandas as pd

from .fourier import analyze_price_cycles
from .performance import build_asset_data
from .portfolio_optimizer import optimize_portfolio

logger = logging.getLogger(__name__)

SOURCE = "synthetic"


class SyntheticAnalytics:
    """
    Demo-mode strategy.

    Every payload carries source="synthetic" and synthetic=True so
    consumers can never mistake it for an analysis of real prices.
    """

    def __init__(
        self,
        seed: int = 42,
        history_days: int = 252,
        num_simulations: int = 100,
        num_days: int = 1260,
        annual_drift: float = 0.08,
        annual_volatility: float = 0.2,
    ):
        self.seed = seed
        self.history_days = history_days
        self.num_simulations = num_simulations
        self.num_days = num_days
        self.annual_drift = annual_drift
        self.annual_volatility = annual_volatility

    def _rng(self, key: str) -> np.random.Generator:
        # Stable across processes, unlike hash()
        return np.random.default_rng([self.seed, zlib.crc32(key.encode())])

    def _dates(self, as_of: datetime | None = None) -> pd.DatetimeIndex:
        end = pd.Timestamp(as_of or datetime.now()).normalize()
        return pd.bdate_range(end=end, periods=self.history_days)

    def price_series(self, symbol: str, start_price: float = 100.0) -> np.ndarray:
        """Geometric random walk seeded by symbol."""
        rng = self._rng(symbol)
        daily_mu = self.annual_drift / 252
        daily_sigma = self.annual_volatility / np.sqrt(252)
        shocks = rng.normal(daily_mu, daily_sigma, self.history_days - 1)
        growth = np.concatenate([[1.0], np.cumprod(1 + shocks)])
        return max(start_price, 0.01) * growth

    def portfolio_series(self, holdings: Sequence[Any]) -> np.ndarray:
        """Trend plus 21- and 63-day cycles plus seeded noise, scaled to holdings value."""
        total = sum(h.market_value for h in holdings)
        base = total if total > 0 else 10_000.0
        t = np.arange(self.history_days, dtype=float)
        rng = self._rng("portfolio:" + ",".join(sorted(h.symbol for h in holdings)))
        shape = (
            1
            + self.annual_drift * t / 252
            + 0.02 * np.sin(2 * np.pi * t / 21)
            + 0.03 * np.sin(2 * np.pi * t / 63)
            + rng.normal(0, 0.003, self.history_days)
        )
        return base * shape

    def _label(self, payload: dict[str, Any]) -> dict[str, Any]:
        payload["source"] = SOURCE
        payload["synthetic"] = True
        return payload

    def optimization(self, holdings: Sequence[Any]) -> dict[str, Any]:
        """Demo optimization over simulated histories of the held symbols."""
        assets = []
        values = {}
        for h in holdings:
            closes = self.price_series(h.symbol, float(h.current_price or h.cost_basis or 100.0))
            asset = build_asset_data(h.symbol, closes)
            if asset is not None:
                assets.append(asset)
            values[h.symbol] = float(h.shares) * float(closes[-1])

        total = sum(values.values())
        current = {s: v / total for s, v in values.items()} if total > 0 else {}

        result = optimize_portfolio(
            assets,
            current,
            num_simulations=self.num_simulations,
            num_days=self.num_days,
            seed=self.seed,
        )
        logger.info(f"Generated synthetic optimization for {len(assets)} symbols")
        return self._label(result.to_dict())

    def market_cycles(self, holdings: Sequence[Any], as_of: datetime | None = None) -> dict[str, Any]:
        """Demo spectral analysis of a simulated portfolio value series."""
        dates = self._dates(as_of)
        series = self.portfolio_series(holdings)
        result = analyze_price_cycles(series.tolist(), list(dates), min_cycle_points=0)
        logger.info(f"Generated synthetic market cycles over {len(series)} days")
        return self._label(result.to_dict())

    def performance(self, holdings: Sequence[Any], as_of: datetime | None = None) -> dict[str, Any]:
        dates = self._dates(as_of)
        series = self.portfolio_series(holdings)
        first = float(series[0])
        points = [
            {
                "date": d.to_pydatetime().isoformat(),
                "value": float(v),
                "percentage_change": (float(v) - first) / first * 100,
            }
            for d, v in zip(dates, series)
        ]
        return self._label({"points": points})
