"""
Quant Engine Central Constants.

Model constants for the analytics engines are defined HERE and ONLY HERE.
They are part of the model definition and do not vary per deployment;
deployment-tunable knobs (lookbacks, simulation counts, TTLs) live in
quantcore.core.config.Settings.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class QuantConstants:
    """
    Fixed model constants shared by the option, spectral and portfolio
    engines.
    """

    # =========================================================================
    # MARKET ASSUMPTIONS
    # =========================================================================

    # Annual risk-free rate used by Sharpe, Sortino, Treynor and option pricing
    risk_free_rate: float = 0.045

    # Trading days per year for annualization
    trading_days: int = 252

    # =========================================================================
    # OPTIONS
    # =========================================================================

    # Spot/strike ratio band classified as at-the-money
    moneyness_itm: float = 1.02
    moneyness_otm: float = 0.98

    # Implied volatility solver
    iv_initial_guess: float = 0.3
    iv_min: float = 0.001
    iv_max: float = 5.0
    iv_tolerance: float = 1e-4
    iv_max_iterations: int = 100
    iv_min_vega: float = 1e-10

    # Smile spans spot * (1 ± range)
    smile_strike_range: float = 0.4
    smile_curvature: float = 0.5

    # Stylized chain skew
    chain_skew_factor: float = 0.3
    chain_put_skew_multiplier: float = 1.2
    chain_expirations_days: tuple[int, ...] = (30, 60, 90)
    chain_strike_multipliers: tuple[float, ...] = (
        0.85, 0.90, 0.95, 0.97, 0.99, 1.00, 1.01, 1.03, 1.05, 1.10, 1.15,
    )

    # Volatility surface
    surface_expirations_days: tuple[int, ...] = (30, 60, 90, 120, 180, 365)
    surface_term_decay: float = 0.1
    surface_smile_curvature: float = 0.4

    # Market outlook thresholds on put-call IV skew
    outlook_bearish_skew: float = 0.03
    outlook_bullish_skew: float = -0.02

    # =========================================================================
    # SPECTRAL ANALYSIS
    # =========================================================================

    peak_magnitude_multiple: float = 2.0
    psd_noise_multiple: float = 3.0
    max_dominant_frequencies: int = 10
    max_market_cycles: int = 5
    seasonal_period_cutoff: float = 30.0
    trend_max_window: int = 200
    forecast_horizon_days: int = 30
    forecast_confidence_decay: float = 0.3
    forecast_variance_factor: float = 0.1
    max_wavelet_levels: int = 5
    wavelet_threshold_multiple: float = 2.0

    # Correlations
    strong_correlation: float = 0.7
    lead_lag_max_lag: int = 10
    lead_lag_min_overlap: int = 10
    lead_lag_report_threshold: float = 0.6

    # =========================================================================
    # PORTFOLIO OPTIMIZATION
    # =========================================================================

    frontier_points: int = 50
    monte_carlo_start_value: float = 100.0
    var_confidence: float = 0.95
    beta_placeholder: float = 1.0
    information_ratio_placeholder: float = 0.5

    # Historical backtest
    backtest_notional: float = 100_000.0
    cash_annual_return: float = 0.02


# Singleton instance - import this everywhere
QUANT_CONSTANTS = QuantConstants()
