"""
Quantitative Analytics Engine
=============================

Pure numerical engines that turn historical price series into option
valuations, spectral cycle decompositions and risk-optimized allocations.

Modules
-------
- options: Black-Scholes pricing, Greeks, implied volatility, smile, chain
- fourier: FFT cycle extraction, decomposition, forecast, wavelets, correlations
- portfolio_optimizer: covariance, efficient frontier, Monte Carlo, risk metrics
- performance: return statistics, portfolio value series, historical backtest
- synthetic: labelled demo-mode payloads

The engines hold no state and perform no I/O; caching, data fetching and
partial-failure handling belong to quantcore.portfolio.service.
"""

from __future__ import annotations

__version__ = "1.0.0"

from quantcore.quant_engine.config import QUANT_CONSTANTS, QuantConstants

# Options
from quantcore.quant_engine.options import (
    MarketOutlook,
    Moneyness,
    OptionChainItem,
    OptionGreeks,
    OptionParameters,
    OptionPriceResult,
    PayoffProfile,
    SmilePoint,
    VolatilitySurface,
    build_option_chain,
    calculate_implied_volatility,
    calculate_option_price,
    calculate_put_greeks,
    calculate_volatility_smile,
    classify_moneyness,
    compute_payoff_profile,
    determine_market_outlook,
    generate_volatility_surface,
)

# Spectral analysis
from quantcore.quant_engine.fourier import (
    CorrelationMatrix,
    CycleAnalysis,
    FourierAnalysisResult,
    FrequencyComponent,
    analyze_portfolio_correlations,
    analyze_price_cycles,
    detrend_linear,
    fft_radix2,
    find_lead_lag,
    pearson_correlation,
)

# Portfolio optimization
from quantcore.quant_engine.portfolio_optimizer import (
    AssetData,
    MonteCarloResult,
    OptimizationResult,
    PortfolioPoint,
    RiskMetrics,
    covariance_matrix,
    optimize_portfolio,
    run_monte_carlo,
)

# Performance
from quantcore.quant_engine.performance import (
    HistoricalBacktest,
    PerformancePoint,
    annualized_return,
    annualized_volatility,
    build_asset_data,
    compute_portfolio_performance,
    daily_returns,
    historical_volatility,
    log_returns,
    run_historical_backtest,
)

from quantcore.quant_engine.synthetic import SyntheticAnalytics


__all__ = [
    # Config
    "QUANT_CONSTANTS",
    "QuantConstants",
    # Options
    "MarketOutlook",
    "Moneyness",
    "OptionChainItem",
    "OptionGreeks",
    "OptionParameters",
    "OptionPriceResult",
    "PayoffProfile",
    "SmilePoint",
    "VolatilitySurface",
    "build_option_chain",
    "calculate_implied_volatility",
    "calculate_option_price",
    "calculate_put_greeks",
    "calculate_volatility_smile",
    "classify_moneyness",
    "compute_payoff_profile",
    "determine_market_outlook",
    "generate_volatility_surface",
    # Spectral
    "CorrelationMatrix",
    "CycleAnalysis",
    "FourierAnalysisResult",
    "FrequencyComponent",
    "analyze_portfolio_correlations",
    "analyze_price_cycles",
    "detrend_linear",
    "fft_radix2",
    "find_lead_lag",
    "pearson_correlation",
    # Optimizer
    "AssetData",
    "MonteCarloResult",
    "OptimizationResult",
    "PortfolioPoint",
    "RiskMetrics",
    "covariance_matrix",
    "optimize_portfolio",
    "run_monte_carlo",
    # Performance
    "HistoricalBacktest",
    "PerformancePoint",
    "annualized_return",
    "annualized_volatility",
    "build_asset_data",
    "compute_portfolio_performance",
    "daily_returns",
    "historical_volatility",
    "log_returns",
    "run_historical_backtest",
    # Demo
    "SyntheticAnalytics",
]
