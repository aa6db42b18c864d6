"""
Returns and portfolio performance helpers.

Pure functions over close-price series and holdings:
- Daily/log returns, historical and annualized volatility
- AssetData construction for the optimizer
- Portfolio value series (date, value, percentage change)
- Historical backtest of actual vs optimal weights
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .config import QUANT_CONSTANTS
from .portfolio_optimizer import AssetData

logger = logging.getLogger(__name__)

PriceInput = Union[pd.Series, pd.DataFrame]


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class PerformancePoint:
    date: datetime
    value: float
    percentage_change: float  # vs first point, in percent

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "value": self.value,
            "percentage_change": self.percentage_change,
        }


@dataclass
class BacktestPoint:
    date: datetime
    value: float
    cumulative_return: float
    drawdown: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "value": self.value,
            "cumulative_return": self.cumulative_return,
            "drawdown": self.drawdown,
        }


@dataclass
class HistoricalBacktest:
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    actual_performance: list[BacktestPoint] = field(default_factory=list)
    optimal_performance: list[BacktestPoint] = field(default_factory=list)
    actual_return: float = 0.0
    optimal_return: float = 0.0
    missed_gains: float = 0.0
    what_if_returns: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "actual_performance": [p.to_dict() for p in self.actual_performance],
            "optimal_performance": [p.to_dict() for p in self.optimal_performance],
            "actual_return": self.actual_return,
            "optimal_return": self.optimal_return,
            "missed_gains": self.missed_gains,
            "what_if_returns": self.what_if_returns,
        }


# =============================================================================
# Return statistics
# =============================================================================


def _closes(values: Union[Sequence[float], PriceInput]) -> np.ndarray:
    if isinstance(values, pd.DataFrame):
        values = values["close"]
    return np.asarray(values, dtype=float)


def daily_returns(closes: Union[Sequence[float], PriceInput]) -> np.ndarray:
    """Simple returns r_t = (p_t - p_{t-1}) / p_{t-1} over positive closes."""
    p = _closes(closes)
    p = p[p > 0]
    if len(p) < 2:
        return np.array([])
    return np.diff(p) / p[:-1]


def log_returns(closes: Union[Sequence[float], PriceInput]) -> np.ndarray:
    """Log returns over positive closes."""
    p = _closes(closes)
    p = p[p > 0]
    if len(p) < 2:
        return np.array([])
    return np.diff(np.log(p))


def historical_volatility(
    closes: Union[Sequence[float], PriceInput],
    trading_days: int = QUANT_CONSTANTS.trading_days,
) -> Optional[float]:
    """Annualized population stdev of log returns; None without 2 valid closes."""
    r = log_returns(closes)
    if len(r) == 0:
        return None
    return float(np.std(r) * math.sqrt(trading_days))


def annualized_return(
    returns: Sequence[float],
    trading_days: int = QUANT_CONSTANTS.trading_days,
) -> float:
    r = np.asarray(returns, dtype=float)
    if len(r) == 0:
        return 0.0
    return float((1 + r.mean()) ** trading_days - 1)


def annualized_volatility(
    returns: Sequence[float],
    trading_days: int = QUANT_CONSTANTS.trading_days,
) -> float:
    r = np.asarray(returns, dtype=float)
    if len(r) == 0:
        return 0.0
    return float(np.std(r) * math.sqrt(trading_days))


def build_asset_data(
    symbol: str,
    closes: Union[Sequence[float], PriceInput],
    min_points: int = 11,
) -> Optional[AssetData]:
    """AssetData from closes, or None when fewer than min_points closes exist."""
    p = _closes(closes)
    p = p[p > 0]
    if len(p) < min_points:
        return None
    r = daily_returns(p)
    return AssetData(
        symbol=symbol,
        returns=r,
        expected_return=annualized_return(r),
        volatility=annualized_volatility(r),
    )


# =============================================================================
# Portfolio series
# =============================================================================


def _close_series(prices: PriceInput) -> pd.Series:
    series = prices["close"] if isinstance(prices, pd.DataFrame) else prices
    series = series.copy()
    series.index = pd.DatetimeIndex(series.index)
    series = series[~series.index.duplicated(keep="last")].sort_index()
    return series[series > 0]


def _purchase_ts(purchase_date: date | datetime | None) -> Optional[pd.Timestamp]:
    return pd.Timestamp(purchase_date) if purchase_date is not None else None


def _aligned_closes(holdings: Sequence[Any], prices_by_symbol: Mapping[str, PriceInput]) -> pd.DataFrame:
    """Closes per held symbol on the union of dates, forward filled."""
    columns = {
        h.symbol: _close_series(prices_by_symbol[h.symbol])
        for h in holdings
        if h.symbol in prices_by_symbol
    }
    if not columns:
        return pd.DataFrame()
    return pd.DataFrame(columns).sort_index().ffill()


def compute_portfolio_performance(
    holdings: Sequence[Any],
    prices_by_symbol: Mapping[str, PriceInput],
) -> list[PerformancePoint]:
    """
    Daily portfolio value from shares x close.

    A holding contributes from its purchase date on; missing closes use
    the last known close, then the cost basis. Days with zero value are
    dropped. Percentage change is relative to the first point.
    """
    if not holdings:
        return []

    closes = _aligned_closes(holdings, prices_by_symbol)
    if closes.empty:
        return []

    values = pd.Series(0.0, index=closes.index)
    for h in holdings:
        if h.symbol in closes:
            price = closes[h.symbol].fillna(float(h.cost_basis or 0.0))
        else:
            price = pd.Series(float(h.cost_basis or 0.0), index=closes.index)
        contribution = price * float(h.shares)
        start = _purchase_ts(h.purchase_date)
        if start is not None:
            contribution = contribution.where(closes.index >= start, 0.0)
        values = values.add(contribution, fill_value=0.0)

    values = values[values > 0]
    if values.empty:
        return []

    first = float(values.iloc[0])
    return [
        PerformancePoint(
            date=ts.to_pydatetime(),
            value=float(v),
            percentage_change=(float(v) - first) / first * 100,
        )
        for ts, v in values.items()
    ]


def _backtest_points(values: pd.Series, notional: float) -> list[BacktestPoint]:
    peaks = values.cummax()
    points = []
    for ts, value in values.items():
        peak = float(peaks[ts])
        points.append(
            BacktestPoint(
                date=ts.to_pydatetime(),
                value=float(value),
                cumulative_return=(float(value) - notional) / notional,
                drawdown=(peak - float(value)) / peak if peak > 0 else 0.0,
            )
        )
    return points


def run_historical_backtest(
    holdings: Sequence[Any],
    prices_by_symbol: Mapping[str, PriceInput],
    optimal_weights: Mapping[str, float],
    current_weights: Mapping[str, float],
) -> HistoricalBacktest:
    """
    Replay actual vs optimal weights from a fixed notional.

    Each day's value is sum(notional * w * (1 + return since purchase)),
    with the return measured from each holding's cost basis.
    """
    c = QUANT_CONSTANTS
    backtest = HistoricalBacktest()
    if not holdings:
        return backtest

    closes = _aligned_closes(holdings, prices_by_symbol)
    if closes.empty:
        return backtest

    purchase_dates = [_purchase_ts(h.purchase_date) for h in holdings]
    known = [d for d in purchase_dates if d is not None]
    start = min(known) if known else closes.index[0]
    closes = closes[closes.index >= start]
    if closes.empty:
        return backtest

    notional = c.backtest_notional
    actual = pd.Series(0.0, index=closes.index)
    optimal = pd.Series(0.0, index=closes.index)

    for h, bought in zip(holdings, purchase_dates):
        basis = float(h.cost_basis or 0.0)
        if basis <= 0:
            logger.debug(f"Skipping {h.symbol} in backtest: no cost basis")
            continue
        if h.symbol in closes:
            price = closes[h.symbol].fillna(basis)
        else:
            price = pd.Series(basis, index=closes.index)
        growth = 1 + (price - basis) / basis
        if bought is not None:
            growth = growth.where(closes.index >= bought, 0.0)
        actual += notional * float(current_weights.get(h.symbol, 0.0)) * growth
        optimal += notional * float(optimal_weights.get(h.symbol, 0.0)) * growth

    backtest.start_date = closes.index[0].to_pydatetime()
    backtest.end_date = closes.index[-1].to_pydatetime()
    backtest.actual_performance = _backtest_points(actual, notional)
    backtest.optimal_performance = _backtest_points(optimal, notional)

    backtest.actual_return = backtest.actual_performance[-1].cumulative_return
    backtest.optimal_return = backtest.optimal_performance[-1].cumulative_return
    backtest.missed_gains = backtest.optimal_return - backtest.actual_return

    cash = c.cash_annual_return
    simple_returns = [
        (float(h.current_price) - float(h.cost_basis)) / float(h.cost_basis)
        for h in holdings
        if h.cost_basis and h.current_price is not None
    ]
    backtest.what_if_returns = {
        "Conservative (60/40)": backtest.actual_return * 0.6 + cash * 0.4,
        "Aggressive (90/10)": backtest.actual_return * 0.9 + cash * 0.1,
        "Equal Weight": float(np.mean(simple_returns)) if simple_returns else 0.0,
    }
    return backtest
