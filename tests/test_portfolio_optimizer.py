"""
Tests for portfolio optimization.

Tests cover:
1. Covariance alignment and symmetry
2. Heuristic weights respect long-only, fully-invested constraints
3. Monte Carlo determinism, ordering and drawdown bounds
4. Risk metrics and the empty-portfolio result
"""

import math

import numpy as np
import pytest

from quantcore.core.exceptions import InsufficientDataError
from quantcore.quant_engine.portfolio_optimizer import (
    AssetData,
    OptimizationResult,
    calculate_risk_metrics,
    covariance_matrix,
    evaluate_portfolio,
    heuristic_weights,
    optimize_portfolio,
    portfolio_risk,
    run_monte_carlo,
)


def _asset(symbol: str, returns: np.ndarray) -> AssetData:
    return AssetData(
        symbol=symbol,
        returns=returns,
        expected_return=float((1 + returns.mean()) ** 252 - 1),
        volatility=float(returns.std() * math.sqrt(252)),
    )


@pytest.fixture
def assets() -> list[AssetData]:
    """Three assets with distinct drift and volatility."""
    rng = np.random.default_rng(42)
    return [
        _asset("AAA", rng.normal(0.0008, 0.010, 300)),
        _asset("BBB", rng.normal(0.0005, 0.015, 300)),
        _asset("CCC", rng.normal(0.0002, 0.020, 250)),
    ]


class TestCovariance:
    def test_symmetric_and_aligned(self, assets):
        cov = covariance_matrix(assets)

        assert cov.shape == (3, 3)
        assert np.array_equal(cov, cov.T)
        assert np.all(np.diag(cov) > 0)

    def test_trailing_window(self, assets):
        cov = covariance_matrix(assets)

        expected = np.var(assets[0].returns[-250:], ddof=1)
        assert cov[0, 0] == pytest.approx(expected)

    def test_too_few_observations(self):
        with pytest.raises(InsufficientDataError):
            covariance_matrix([_asset("A", np.array([0.01])), _asset("B", np.array([0.01, 0.02]))])

    def test_risk_is_daily_stdev(self):
        cov = np.array([[0.0001, 0.00002], [0.00002, 0.0004]])
        w = np.array([0.6, 0.4])

        assert portfolio_risk(w, cov) == pytest.approx(math.sqrt(w @ cov @ w))


class TestHeuristicWeights:
    def test_long_only_fully_invested(self, assets):
        weights = heuristic_weights(assets, 0.045)

        assert weights.sum() == pytest.approx(1.0)
        assert np.all(weights >= 0)

    def test_all_negative_excess_falls_back_to_equal(self):
        losers = [
            AssetData("A", np.zeros(20), expected_return=-0.1, volatility=0.2),
            AssetData("B", np.zeros(20), expected_return=-0.2, volatility=0.3),
        ]

        weights = heuristic_weights(losers, 0.045)

        assert np.allclose(weights, [0.5, 0.5])

    def test_zero_variance_asset_gets_nothing(self):
        mixed = [
            AssetData("CASH", np.zeros(20), expected_return=0.1, volatility=0.0),
            AssetData("STK", np.zeros(20), expected_return=0.1, volatility=0.2),
        ]

        weights = heuristic_weights(mixed, 0.045)

        assert weights[0] == 0.0
        assert weights[1] == pytest.approx(1.0)


class TestMonteCarlo:
    def test_seeded_runs_are_reproducible(self, assets):
        weights = {"AAA": 0.5, "BBB": 0.3, "CCC": 0.2}

        first = run_monte_carlo(weights, assets, num_simulations=50, num_days=100, seed=7)
        second = run_monte_carlo(weights, assets, num_simulations=50, num_days=100, seed=7)

        assert [r.final_value for r in first] == [r.final_value for r in second]

    def test_sorted_with_percentiles(self, assets):
        results = run_monte_carlo({"AAA": 1.0}, assets, num_simulations=40, num_days=60, seed=1)

        finals = [r.final_value for r in results]
        percentiles = [r.percentile for r in results]
        assert finals == sorted(finals)
        assert percentiles == sorted(percentiles)
        assert percentiles[-1] == 100.0
        assert percentiles[0] == pytest.approx(2.5)

    def test_paths_and_drawdowns(self, assets):
        results = run_monte_carlo({"BBB": 1.0}, assets, num_simulations=20, num_days=30, seed=3)

        for r in results:
            assert len(r.path) == 31
            assert r.path[0] == 100.0
            assert np.all(r.path >= 0)
            assert 0.0 <= r.max_drawdown <= 1.0

    def test_degenerate_inputs(self, assets):
        assert run_monte_carlo({"AAA": 1.0}, assets, num_simulations=0) == []
        assert run_monte_carlo({"AAA": 1.0}, [], num_simulations=10) == []


class TestRiskMetrics:
    def test_metrics_from_simulations(self, assets):
        sims = run_monte_carlo({"AAA": 0.6, "BBB": 0.4}, assets, num_simulations=200, num_days=252, seed=11)

        metrics = calculate_risk_metrics(sims)

        returns = sorted(s.annualized_return for s in sims)
        assert metrics.value_at_risk_95 == pytest.approx(-returns[10])
        assert metrics.conditional_value_at_risk == pytest.approx(-np.mean(returns[:10]))
        assert metrics.conditional_value_at_risk >= metrics.value_at_risk_95 - 1e-12
        assert metrics.beta == 1.0
        assert metrics.information_ratio == 0.5

    def test_no_simulations_gives_defaults(self):
        metrics = calculate_risk_metrics([])

        assert metrics.value_at_risk_95 == 0.0
        assert metrics.sortino_ratio == 0.0


class TestOptimizePortfolio:
    def test_full_result(self, assets):
        current = {"AAA": 0.2, "BBB": 0.3, "CCC": 0.5}

        result = optimize_portfolio(assets, current, num_simulations=100, num_days=252, seed=5)

        assert len(result.efficient_frontier) == 50
        assert sum(result.optimal_weights.values()) == pytest.approx(1.0)
        assert all(w >= 0 for w in result.optimal_weights.values())
        assert result.max_sharpe_ratio == max(p.sharpe_ratio for p in result.efficient_frontier)
        assert result.current_portfolio.weights == current
        assert len(result.monte_carlo) == 100
        assert set(result.representative_paths()) == {"p5", "p25", "p50", "p75", "p95"}

    def test_risk_and_sharpe_use_daily_covariance(self, assets):
        current = {"AAA": 0.5, "BBB": 0.5}

        result = optimize_portfolio(assets, current, num_simulations=10, num_days=10, seed=5)

        cov = result.covariance
        optimal = result.optimal_portfolio
        w = np.array([optimal.weights[a.symbol] for a in assets])
        assert optimal.risk == pytest.approx(math.sqrt(w @ cov @ w))
        assert optimal.sharpe_ratio == pytest.approx((optimal.expected_return - 0.045) / optimal.risk)
        assert optimal.to_dict()["annualized_risk"] == pytest.approx(optimal.risk * math.sqrt(252))

        cw = np.array([0.5, 0.5, 0.0])
        assert result.current_portfolio.risk == pytest.approx(math.sqrt(cw @ cov @ cw))

    def test_frontier_returns_span_assets(self, assets):
        result = optimize_portfolio(assets, num_simulations=10, num_days=10, seed=5)

        returns = [p.expected_return for p in result.efficient_frontier]
        assert returns[0] == pytest.approx(min(a.expected_return for a in assets))
        assert returns[-1] == pytest.approx(max(a.expected_return for a in assets))

    def test_empty_portfolio(self):
        result = optimize_portfolio([])

        assert result.is_empty
        assert result.optimal_portfolio is None
        assert result.monte_carlo == []
        payload = result.to_dict()
        assert payload["efficient_frontier"] == []
        assert payload["representative_paths"] == {}

    def test_empty_classmethod_keeps_current_weights(self):
        result = OptimizationResult.empty({"AAA": 1.0})

        assert result.current_weights == {"AAA": 1.0}

    def test_evaluate_unknown_symbol_ignored(self, assets):
        cov = covariance_matrix(assets)

        point = evaluate_portfolio({"AAA": 1.0, "ZZZ": 5.0}, assets, cov)

        assert point.expected_return == pytest.approx(assets[0].expected_return)
        assert "ZZZ" not in point.weights
