"""
Portfolio Optimizer - Mean-variance frontier and Monte Carlo risk.

Steps:
1. Sample covariance of daily returns (trailing common window, ddof=1)
2. Efficient frontier over 50 target returns using a single-pass
   heuristic allocation
3. Optimal portfolio = max Sharpe frontier point
4. Monte Carlo simulation of the optimal portfolio
5. Risk metrics (VaR, CVaR, drawdown, Sortino, Treynor)

The allocation heuristic weights assets by excess return over variance
and ignores the target return, so every frontier point carries the same
weights. The simulation treats assets as uncorrelated. Both are known
model limitations, kept deliberately.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

import numpy as np

from quantcore.core.exceptions import InsufficientDataError

from .config import QUANT_CONSTANTS

logger = logging.getLogger(__name__)

REPRESENTATIVE_PERCENTILES = (5, 25, 50, 75, 95)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class AssetData:
    """Optimizer input for one asset."""

    symbol: str
    returns: np.ndarray  # daily simple returns
    expected_return: float  # annualized
    volatility: float  # annualized

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "observations": int(len(self.returns)),
            "expected_return": self.expected_return,
            "volatility": self.volatility,
        }


@dataclass
class PortfolioPoint:
    """
    A portfolio on or off the frontier.

    risk is the stdev of daily portfolio returns, sqrt(w' S w), and the
    Sharpe ratio divides annual excess return by it. annualized_risk scales
    it by sqrt(252) for display next to the annualized returns.
    """

    risk: float
    expected_return: float
    sharpe_ratio: float
    weights: dict[str, float]

    @property
    def annualized_risk(self) -> float:
        return self.risk * math.sqrt(QUANT_CONSTANTS.trading_days)

    def to_dict(self) -> dict[str, Any]:
        return {
            "risk": self.risk,
            "annualized_risk": self.annualized_risk,
            "return": self.expected_return,
            "sharpe_ratio": self.sharpe_ratio,
            "weights": dict(self.weights),
        }


@dataclass
class MonteCarloResult:
    simulation_id: int
    final_value: float
    annualized_return: float
    max_drawdown: float
    path: np.ndarray
    percentile: float = 0.0  # batch-relative rank, set after sorting

    def summary(self) -> dict[str, Any]:
        return {
            "simulation_id": self.simulation_id,
            "final_value": self.final_value,
            "annualized_return": self.annualized_return,
            "max_drawdown": self.max_drawdown,
            "percentile": self.percentile,
        }


@dataclass
class RiskMetrics:
    value_at_risk_95: float = 0.0
    conditional_value_at_risk: float = 0.0
    max_drawdown: float = 0.0
    sortino_ratio: float = 0.0
    beta: float = QUANT_CONSTANTS.beta_placeholder
    treynor_ratio: float = 0.0
    information_ratio: float = QUANT_CONSTANTS.information_ratio_placeholder

    def to_dict(self) -> dict[str, float]:
        return {
            "value_at_risk_95": self.value_at_risk_95,
            "conditional_value_at_risk": self.conditional_value_at_risk,
            "max_drawdown": self.max_drawdown,
            "sortino_ratio": self.sortino_ratio,
            "beta": self.beta,
            "treynor_ratio": self.treynor_ratio,
            "information_ratio": self.information_ratio,
        }


@dataclass
class OptimizationResult:
    efficient_frontier: list[PortfolioPoint]
    optimal_portfolio: Optional[PortfolioPoint]
    current_portfolio: Optional[PortfolioPoint]
    optimal_weights: dict[str, float]
    current_weights: dict[str, float]
    max_sharpe_ratio: float
    min_variance_return: float
    monte_carlo: list[MonteCarloResult] = field(default_factory=list)
    risk_metrics: RiskMetrics = field(default_factory=RiskMetrics)
    covariance: Optional[np.ndarray] = None
    symbols: list[str] = field(default_factory=list)

    @classmethod
    def empty(cls, current_weights: Mapping[str, float] | None = None) -> OptimizationResult:
        """Well-formed result for a portfolio with nothing to optimize."""
        return cls(
            efficient_frontier=[],
            optimal_portfolio=None,
            current_portfolio=None,
            optimal_weights={},
            current_weights=dict(current_weights or {}),
            max_sharpe_ratio=0.0,
            min_variance_return=0.0,
        )

    @property
    def is_empty(self) -> bool:
        return not self.efficient_frontier

    def representative_paths(self) -> dict[str, list[float]]:
        """Paths at the 5/25/50/75/95th percentile of final value."""
        sims = self.monte_carlo
        if not sims:
            return {}
        paths = {}
        for pct in REPRESENTATIVE_PERCENTILES:
            idx = min(len(sims) - 1, max(0, math.ceil(pct / 100 * len(sims)) - 1))
            paths[f"p{pct}"] = sims[idx].path.tolist()
        return paths

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbols": self.symbols,
            "efficient_frontier": [p.to_dict() for p in self.efficient_frontier],
            "optimal_portfolio": self.optimal_portfolio.to_dict() if self.optimal_portfolio else None,
            "current_portfolio": self.current_portfolio.to_dict() if self.current_portfolio else None,
            "optimal_weights": self.optimal_weights,
            "current_weights": self.current_weights,
            "max_sharpe_ratio": self.max_sharpe_ratio,
            "min_variance_return": self.min_variance_return,
            "monte_carlo": [s.summary() for s in self.monte_carlo],
            "representative_paths": self.representative_paths(),
            "risk_metrics": self.risk_metrics.to_dict(),
            "covariance": self.covariance.tolist() if self.covariance is not None else None,
        }


# =============================================================================
# Covariance & frontier
# =============================================================================


def covariance_matrix(assets: Sequence[AssetData]) -> np.ndarray:
    """
    Sample covariance (ddof=1) over the trailing window common to all assets.

    Raises:
        InsufficientDataError: If fewer than 2 common observations exist.
    """
    if not assets:
        return np.zeros((0, 0))

    window = min(len(a.returns) for a in assets)
    if window < 2:
        raise InsufficientDataError(
            "Covariance needs at least 2 common return observations",
            required=2,
            available=window,
        )

    aligned = np.vstack([np.asarray(a.returns, dtype=float)[-window:] for a in assets])
    cov = np.atleast_2d(np.cov(aligned, ddof=1))
    # Exact symmetry regardless of summation order
    return (cov + cov.T) / 2


def heuristic_weights(assets: Sequence[AssetData], risk_free_rate: float) -> np.ndarray:
    """
    weight_i proportional to (E[R_i] - rf) / sigma_i^2, clipped at 0 and
    normalized. Zero-variance assets get 0; if nothing survives the clip,
    falls back to equal weight.
    """
    raw = np.zeros(len(assets))
    for i, asset in enumerate(assets):
        variance = asset.volatility**2
        if variance > 0:
            raw[i] = (asset.expected_return - risk_free_rate) / variance

    raw = np.clip(raw, 0.0, None)
    total = raw.sum()
    if total <= 0:
        return np.full(len(assets), 1.0 / len(assets))
    return raw / total


def portfolio_risk(weights: np.ndarray, cov: np.ndarray) -> float:
    """Stdev sqrt(w' S w) in the units of the covariance (daily returns)."""
    variance = float(weights @ cov @ weights)
    return math.sqrt(max(variance, 0.0))


def _sharpe(expected_return: float, risk: float, risk_free_rate: float) -> float:
    if risk <= 0:
        return 0.0
    return (expected_return - risk_free_rate) / risk


def _weights_dict(symbols: Sequence[str], weights: np.ndarray) -> dict[str, float]:
    return {s: float(w) for s, w in zip(symbols, weights)}


def generate_efficient_frontier(
    assets: Sequence[AssetData],
    cov: np.ndarray,
    num_points: int = QUANT_CONSTANTS.frontier_points,
    risk_free_rate: float = QUANT_CONSTANTS.risk_free_rate,
) -> list[PortfolioPoint]:
    if not assets:
        return []

    symbols = [a.symbol for a in assets]
    expected = np.array([a.expected_return for a in assets])
    targets = np.linspace(expected.min(), expected.max(), num_points)

    frontier = []
    for target in targets:
        weights = heuristic_weights(assets, risk_free_rate)
        risk = portfolio_risk(weights, cov)
        frontier.append(
            PortfolioPoint(
                risk=risk,
                expected_return=float(target),
                sharpe_ratio=_sharpe(float(target), risk, risk_free_rate),
                weights=_weights_dict(symbols, weights),
            )
        )
    return frontier


def evaluate_portfolio(
    weights: Mapping[str, float],
    assets: Sequence[AssetData],
    cov: np.ndarray,
    risk_free_rate: float = QUANT_CONSTANTS.risk_free_rate,
) -> PortfolioPoint:
    """Risk/return/Sharpe of an arbitrary weight mapping (e.g. current holdings)."""
    w = np.array([float(weights.get(a.symbol, 0.0)) for a in assets])
    expected = float(sum(wi * a.expected_return for wi, a in zip(w, assets)))
    risk = portfolio_risk(w, cov)
    return PortfolioPoint(
        risk=risk,
        expected_return=expected,
        sharpe_ratio=_sharpe(expected, risk, risk_free_rate),
        weights={a.symbol: float(weights.get(a.symbol, 0.0)) for a in assets},
    )


# =============================================================================
# Monte Carlo
# =============================================================================


def _box_muller(rng: np.random.Generator, size: tuple[int, ...]) -> np.ndarray:
    u1 = 1.0 - rng.random(size)  # (0, 1], keeps log finite
    u2 = rng.random(size)
    return np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)


def run_monte_carlo(
    weights: Mapping[str, float],
    assets: Sequence[AssetData],
    num_simulations: int = 1000,
    num_days: int = 1260,
    rng: np.random.Generator | None = None,
    seed: int | None = None,
) -> list[MonteCarloResult]:
    """
    Simulate portfolio value paths starting at 100.

    Daily return = R/252 + sigma_p/sqrt(252) * Z with
    sigma_p = sqrt(sum((w_i * sigma_i)^2)). Values are floored at zero.
    Results come back sorted by final value with percentile ranks.
    """
    c = QUANT_CONSTANTS
    if num_simulations <= 0 or num_days <= 0 or not assets:
        return []

    rng = rng or np.random.default_rng(seed)

    port_return = sum(weights.get(a.symbol, 0.0) * a.expected_return for a in assets)
    port_vol = math.sqrt(sum((weights.get(a.symbol, 0.0) * a.volatility) ** 2 for a in assets))
    daily_return = port_return / c.trading_days
    daily_vol = port_vol / math.sqrt(c.trading_days)

    z = _box_muller(rng, (num_simulations, num_days))
    growth = np.maximum(1.0 + daily_return + daily_vol * z, 0.0)

    start = c.monte_carlo_start_value
    values = start * np.cumprod(growth, axis=1)
    paths = np.hstack([np.full((num_simulations, 1), start), values])

    # Running peak never drops below the positive start value
    peaks = np.maximum.accumulate(paths, axis=1)
    max_drawdowns = ((peaks - paths) / peaks).max(axis=1)

    finals = paths[:, -1]
    annualized = (finals / start) ** (c.trading_days / num_days) - 1

    results = [
        MonteCarloResult(
            simulation_id=i,
            final_value=float(finals[i]),
            annualized_return=float(annualized[i]),
            max_drawdown=float(max_drawdowns[i]),
            path=paths[i],
        )
        for i in range(num_simulations)
    ]

    results.sort(key=lambda r: r.final_value)
    for rank, result in enumerate(results, start=1):
        result.percentile = rank / len(results) * 100

    return results


def calculate_risk_metrics(
    simulations: Sequence[MonteCarloResult],
    risk_free_rate: float = QUANT_CONSTANTS.risk_free_rate,
) -> RiskMetrics:
    c = QUANT_CONSTANTS
    if not simulations:
        return RiskMetrics()

    returns = np.sort(np.array([s.annualized_return for s in simulations]))
    idx = int(len(returns) * (1 - c.var_confidence))
    tail = returns[:idx] if idx > 0 else returns[:1]

    mean_return = float(returns.mean())
    downside = returns[returns < risk_free_rate]
    if len(downside):
        downside_dev = math.sqrt(float(np.mean((downside - risk_free_rate) ** 2)))
        sortino = (mean_return - risk_free_rate) / downside_dev if downside_dev > 0 else 0.0
    else:
        sortino = 0.0

    beta = c.beta_placeholder
    return RiskMetrics(
        value_at_risk_95=-float(returns[idx]),
        conditional_value_at_risk=-float(tail.mean()),
        max_drawdown=max(s.max_drawdown for s in simulations),
        sortino_ratio=sortino,
        beta=beta,
        treynor_ratio=(mean_return - risk_free_rate) / beta,
        information_ratio=c.information_ratio_placeholder,
    )


# =============================================================================
# Entry point
# =============================================================================


def optimize_portfolio(
    assets: Sequence[AssetData],
    current_weights: Mapping[str, float] | None = None,
    num_simulations: int = 1000,
    num_days: int = 1260,
    seed: int | None = None,
    rng: np.random.Generator | None = None,
) -> OptimizationResult:
    """
    Build the frontier, pick the max-Sharpe portfolio and stress it.

    An empty asset list returns OptimizationResult.empty().

    Raises:
        InsufficientDataError: If assets share fewer than 2 return observations.
    """
    current_weights = dict(current_weights or {})
    if not assets:
        return OptimizationResult.empty(current_weights)

    rf = QUANT_CONSTANTS.risk_free_rate
    cov = covariance_matrix(assets)
    frontier = generate_efficient_frontier(assets, cov, risk_free_rate=rf)

    optimal = frontier[int(np.argmax([p.sharpe_ratio for p in frontier]))]
    min_var = frontier[int(np.argmin([p.risk for p in frontier]))]

    simulations = run_monte_carlo(
        optimal.weights,
        assets,
        num_simulations=num_simulations,
        num_days=num_days,
        rng=rng,
        seed=seed,
    )

    logger.debug(
        f"Optimized {len(assets)} assets: sharpe={optimal.sharpe_ratio:.3f}, "
        f"risk={optimal.risk:.4f}, simulations={len(simulations)}"
    )

    return OptimizationResult(
        efficient_frontier=frontier,
        optimal_portfolio=optimal,
        current_portfolio=evaluate_portfolio(current_weights, assets, cov, rf),
        optimal_weights=dict(optimal.weights),
        current_weights=current_weights,
        max_sharpe_ratio=optimal.sharpe_ratio,
        min_variance_return=min_var.expected_return,
        monte_carlo=simulations,
        risk_metrics=calculate_risk_metrics(simulations, rf),
        covariance=cov,
        symbols=[a.symbol for a in assets],
    )
