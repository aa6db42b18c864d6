"""
Tests for spectral cycle analysis.

Tests cover:
1. Detrending and the radix-2 FFT against numpy
2. Dominant frequency extraction on known sinusoids
3. Full pipeline output shape and short-series degradation
4. Correlations and lead-lag detection
"""

from datetime import datetime, timedelta

import numpy as np
import pandas as pd
import pytest

from quantcore.core.exceptions import InsufficientDataError, ValidationError
from quantcore.quant_engine.fourier import (
    analyze_portfolio_correlations,
    analyze_price_cycles,
    classify_cycle,
    detrend_linear,
    fft_radix2,
    find_lead_lag,
    pearson_correlation,
    perform_wavelet_analysis,
)


@pytest.fixture
def sine_series() -> tuple[list[float], list[datetime]]:
    """252 business days: linear drift plus a 21-day cycle."""
    n = 252
    t = np.arange(n)
    prices = 100 + 0.05 * t + 5 * np.sin(2 * np.pi * t / 21)
    dates = list(pd.bdate_range("2024-01-01", periods=n).to_pydatetime())
    return prices.tolist(), dates


class TestTransforms:
    def test_detrend_removes_line(self):
        values = 3.0 + 2.5 * np.arange(100)

        residual = detrend_linear(values)

        assert np.allclose(residual, 0.0, atol=1e-8)

    def test_detrend_preserves_oscillation(self):
        t = np.arange(200)
        wave = np.sin(2 * np.pi * t / 20)

        residual = detrend_linear(wave + 0.3 * t)

        assert np.abs(residual - wave).max() < 0.1

    def test_fft_matches_numpy_on_power_of_two(self):
        rng = np.random.default_rng(7)
        x = rng.normal(size=64)

        assert np.allclose(fft_radix2(x), np.fft.fft(x))

    def test_fft_zero_pads(self):
        x = np.arange(100, dtype=float)

        result = fft_radix2(x)

        assert len(result) == 128
        padded = np.concatenate([x, np.zeros(28)])
        assert np.allclose(result, np.fft.fft(padded))

    @pytest.mark.parametrize(
        "period,expected",
        [(1, "Intraday"), (5, "Weekly"), (21, "Monthly"), (63, "Quarterly"), (126, "Semi-Annual"), (252, "Annual")],
    )
    def test_cycle_classification(self, period, expected):
        assert classify_cycle(period) == expected


class TestPriceCycles:
    def test_detects_monthly_cycle(self, sine_series):
        prices, dates = sine_series

        result = analyze_price_cycles(prices, dates)

        assert result.dominant_frequencies
        top = result.dominant_frequencies[0]
        assert 18 <= top.period <= 24
        assert top.cycle_type == "Monthly"

    def test_frequencies_sorted_by_amplitude(self, sine_series):
        prices, dates = sine_series

        result = analyze_price_cycles(prices, dates)
        amplitudes = [f.amplitude for f in result.dominant_frequencies]

        assert amplitudes == sorted(amplitudes, reverse=True)
        assert len(amplitudes) <= 10

    def test_market_cycles_in_future(self, sine_series):
        prices, dates = sine_series

        result = analyze_price_cycles(prices, dates)

        assert 1 <= len(result.market_cycles) <= 5
        for cycle in result.market_cycles:
            assert cycle.next_peak >= dates[-1]
            assert cycle.next_trough >= dates[-1]
            assert 0 <= cycle.current_phase < 360

    def test_forecast_horizon(self, sine_series):
        prices, dates = sine_series

        result = analyze_price_cycles(prices, dates)

        assert len(result.forecast) == 30
        assert result.forecast[0].date == dates[-1] + timedelta(days=1)
        for point in result.forecast:
            assert point.lower_bound <= point.predicted_price <= point.upper_bound
        confidences = [p.confidence for p in result.forecast]
        assert confidences == sorted(confidences, reverse=True)
        assert confidences[-1] == pytest.approx(0.7)

    def test_decomposition_sums_to_prices(self, sine_series):
        prices, dates = sine_series

        d = analyze_price_cycles(prices, dates).decomposition
        total = np.array(d.trend) + np.array(d.seasonal) + np.array(d.cyclical) + np.array(d.residual)

        assert np.allclose(total, prices)

    def test_short_series_degrades(self):
        prices = [100 + i for i in range(20)]
        dates = list(pd.bdate_range("2024-01-01", periods=20))

        result = analyze_price_cycles(prices, dates, min_cycle_points=50)

        assert result.dominant_frequencies == []
        assert result.market_cycles == []
        assert result.forecast == []
        assert result.warnings
        assert result.power_spectrum.frequencies

    def test_length_mismatch_raises(self):
        with pytest.raises(ValidationError):
            analyze_price_cycles([1.0, 2.0, 3.0], [datetime(2024, 1, 1)])

    def test_single_point_raises(self):
        with pytest.raises(InsufficientDataError):
            analyze_price_cycles([1.0], [datetime(2024, 1, 1)])

    def test_to_dict_is_serializable(self, sine_series):
        import json

        prices, dates = sine_series

        payload = analyze_price_cycles(prices, dates).to_dict()

        json.dumps(payload, default=str)
        assert set(payload) >= {"dominant_frequencies", "market_cycles", "power_spectrum", "forecast", "wavelet"}


class TestWavelets:
    def test_levels_capped(self, sine_series):
        prices, dates = sine_series

        wavelet = perform_wavelet_analysis(prices, dates)

        assert len(wavelet.levels) == 5
        assert len(wavelet.scalogram) == 5
        assert len(wavelet.levels[0].coefficients) == 126
        for tp in wavelet.turning_points:
            assert tp.type in ("Peak", "Trough")

    def test_short_series_levels(self):
        dates = list(pd.bdate_range("2024-01-01", periods=4))

        wavelet = perform_wavelet_analysis([1.0, 2.0, 3.0, 4.0], dates)

        assert len(wavelet.levels) == 2


class TestCorrelations:
    def test_pearson_perfect(self):
        x = np.arange(50, dtype=float)

        assert pearson_correlation(x, 2 * x + 1) == pytest.approx(1.0)
        assert pearson_correlation(x, -x) == pytest.approx(-1.0)

    def test_pearson_constant_is_zero(self):
        assert pearson_correlation([1.0] * 10, list(range(10))) == 0.0

    def test_pearson_uses_trailing_window(self):
        x = [100.0, 1.0, 2.0, 3.0]
        y = [1.0, 2.0, 3.0]

        assert pearson_correlation(x, y) == pytest.approx(1.0)

    def test_lead_lag_detects_shift(self):
        rng = np.random.default_rng(3)
        base = rng.normal(size=200)
        x = base[3:]
        y = base[:-3]

        lag, corr = find_lead_lag(x, y)

        assert abs(lag) == 3
        assert corr == pytest.approx(1.0, abs=1e-6)

    def test_correlation_matrix(self):
        rng = np.random.default_rng(11)
        a = rng.normal(0, 0.01, 120)
        returns = {"AAA": a, "BBB": a * 0.9 + rng.normal(0, 0.001, 120), "CCC": rng.normal(0, 0.01, 120)}

        result = analyze_portfolio_correlations(returns)

        assert result.matrix.shape == (3, 3)
        assert np.allclose(result.matrix, result.matrix.T)
        assert np.allclose(np.diag(result.matrix), 1.0)
        pairs = {(p.symbol1, p.symbol2) for p in result.strong_correlations}
        assert ("AAA", "BBB") in pairs
