"""
Spectral Cycle Analyzer - Fourier decomposition of price series.

Pipeline for a single series (strictly ordered):
1. Least-squares linear detrend
2. Zero-padded recursive radix-2 FFT
3. Dominant frequencies (local-max peaks above 2x mean magnitude)
4. Market cycles with next peak/trough projections
5. Power spectral density and significant peaks
6. Trend / seasonal / cyclical / residual decomposition
7. Cycle-sum forecast with a simplified variance band
8. Haar wavelet levels and turning points

Plus cross-series Pearson correlations and lead-lag detection.

Everything here is deterministic: identical input gives identical output.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd

from quantcore.core.exceptions import InsufficientDataError, ValidationError

from .config import QUANT_CONSTANTS

logger = logging.getLogger(__name__)

DEFAULT_MIN_CYCLE_POINTS = 50


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class FrequencyComponent:
    """One spectral peak."""

    frequency: float  # cycles per sample of the padded transform
    period: float  # days
    amplitude: float
    phase: float  # radians
    power: float
    cycle_type: str
    significance: float  # amplitude / mean amplitude

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency": self.frequency,
            "period": self.period,
            "amplitude": self.amplitude,
            "phase": self.phase,
            "power": self.power,
            "cycle_type": self.cycle_type,
            "significance": self.significance,
        }


@dataclass
class CycleAnalysis:
    """Projection of a frequency component from an as-of date."""

    name: str
    period_days: float
    strength: float
    next_peak: datetime
    next_trough: datetime
    current_phase: float  # degrees in [0, 360)
    phase_description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "period_days": self.period_days,
            "strength": self.strength,
            "next_peak": self.next_peak.isoformat(),
            "next_trough": self.next_trough.isoformat(),
            "current_phase": self.current_phase,
            "phase_description": self.phase_description,
        }


@dataclass
class SpectralAnalysis:
    frequencies: list[float]
    power_spectral_density: list[float]
    total_power: float
    noise_floor: float
    significant_peaks: list[int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequencies": self.frequencies,
            "power_spectral_density": self.power_spectral_density,
            "total_power": self.total_power,
            "noise_floor": self.noise_floor,
            "significant_peaks": self.significant_peaks,
        }


@dataclass
class PriceDecomposition:
    trend: list[float]
    seasonal: list[float]
    cyclical: list[float]
    residual: list[float]
    dates: list[datetime]

    def to_dict(self) -> dict[str, Any]:
        return {
            "trend": self.trend,
            "seasonal": self.seasonal,
            "cyclical": self.cyclical,
            "residual": self.residual,
            "dates": [d.isoformat() for d in self.dates],
        }


@dataclass
class PredictionPoint:
    date: datetime
    predicted_price: float
    upper_bound: float
    lower_bound: float
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "predicted_price": self.predicted_price,
            "upper_bound": self.upper_bound,
            "lower_bound": self.lower_bound,
            "confidence": self.confidence,
        }


@dataclass
class WaveletLevel:
    level: int
    time_scale: str
    coefficients: list[float]
    energy: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "time_scale": self.time_scale,
            "coefficients": self.coefficients,
            "energy": self.energy,
        }


@dataclass
class TurningPoint:
    date: datetime
    type: str  # Peak or Trough
    confidence: float
    time_scale: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "type": self.type,
            "confidence": self.confidence,
            "time_scale": self.time_scale,
        }


@dataclass
class WaveletAnalysis:
    levels: list[WaveletLevel]
    scalogram: list[float]  # energy per level
    turning_points: list[TurningPoint]

    def to_dict(self) -> dict[str, Any]:
        return {
            "levels": [lvl.to_dict() for lvl in self.levels],
            "scalogram": self.scalogram,
            "turning_points": [tp.to_dict() for tp in self.turning_points],
        }


@dataclass
class SymbolPair:
    symbol1: str
    symbol2: str
    correlation: float
    relationship: str
    lag_days: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol1": self.symbol1,
            "symbol2": self.symbol2,
            "correlation": self.correlation,
            "relationship": self.relationship,
            "lag_days": self.lag_days,
        }


@dataclass
class CorrelationMatrix:
    symbols: list[str]
    matrix: np.ndarray
    strong_correlations: list[SymbolPair] = field(default_factory=list)
    lead_lag_relationships: list[SymbolPair] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbols": self.symbols,
            "matrix": self.matrix.tolist(),
            "strong_correlations": [p.to_dict() for p in self.strong_correlations],
            "lead_lag_relationships": [p.to_dict() for p in self.lead_lag_relationships],
        }


@dataclass
class FourierAnalysisResult:
    dominant_frequencies: list[FrequencyComponent]
    market_cycles: list[CycleAnalysis]
    power_spectrum: SpectralAnalysis
    decomposition: PriceDecomposition
    forecast: list[PredictionPoint]
    wavelet: WaveletAnalysis
    cross_correlations: CorrelationMatrix | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dominant_frequencies": [f.to_dict() for f in self.dominant_frequencies],
            "market_cycles": [c.to_dict() for c in self.market_cycles],
            "power_spectrum": self.power_spectrum.to_dict(),
            "decomposition": self.decomposition.to_dict(),
            "forecast": [p.to_dict() for p in self.forecast],
            "wavelet": self.wavelet.to_dict(),
            "cross_correlations": (
                self.cross_correlations.to_dict() if self.cross_correlations else None
            ),
            "warnings": self.warnings,
        }


# =============================================================================
# Transform primitives
# =============================================================================


def detrend_linear(values: Sequence[float]) -> np.ndarray:
    """Subtract the least-squares line fitted over index 0..n-1."""
    y = np.asarray(values, dtype=float)
    n = len(y)
    if n < 2:
        return y - y.mean() if n else y

    x = np.arange(n, dtype=float)
    sum_x, sum_y = x.sum(), y.sum()
    denom = n * (x * x).sum() - sum_x * sum_x
    slope = (n * (x * y).sum() - sum_x * sum_y) / denom
    intercept = (sum_y - slope * sum_x) / n
    return y - (slope * x + intercept)


def _next_pow2(n: int) -> int:
    size = 1
    while size < n:
        size *= 2
    return size


def _fft_recursive(data: np.ndarray) -> np.ndarray:
    n = len(data)
    if n <= 1:
        return data.copy()
    even = _fft_recursive(data[0::2])
    odd = _fft_recursive(data[1::2])
    twiddle = np.exp(-2j * np.pi * np.arange(n // 2) / n) * odd
    return np.concatenate([even + twiddle, even - twiddle])


def fft_radix2(values: Sequence[float]) -> np.ndarray:
    """
    Zero-pad to the next power of two and apply a recursive
    Cooley-Tukey radix-2 transform.
    """
    x = np.asarray(values, dtype=complex)
    size = _next_pow2(max(len(x), 1))
    padded = np.zeros(size, dtype=complex)
    padded[: len(x)] = x
    return _fft_recursive(padded)


# =============================================================================
# Spectral features
# =============================================================================


def classify_cycle(period_days: float) -> str:
    if period_days <= 1.5:
        return "Intraday"
    if period_days <= 5.5:
        return "Weekly"
    if period_days <= 25:
        return "Monthly"
    if period_days <= 70:
        return "Quarterly"
    if period_days <= 200:
        return "Semi-Annual"
    return "Annual"


def extract_dominant_frequencies(
    spectrum: np.ndarray,
    original_length: int,
    max_components: int = QUANT_CONSTANTS.max_dominant_frequencies,
) -> list[FrequencyComponent]:
    """Peaks over bins 1..N/2-1 above 2x mean magnitude, top N by amplitude."""
    n = len(spectrum)
    half = n // 2
    if half < 2:
        return []

    magnitudes = np.abs(spectrum[:half]) / half
    bins = magnitudes[1:half]
    mean_mag = float(bins.mean())
    if mean_mag <= 0:
        return []

    threshold = mean_mag * QUANT_CONSTANTS.peak_magnitude_multiple
    components = []
    for i in range(1, half):
        m = magnitudes[i]
        if m <= threshold:
            continue
        if i > 1 and not m > magnitudes[i - 1]:
            continue
        if i < half - 1 and not m > magnitudes[i + 1]:
            continue
        period = original_length / i
        components.append(
            FrequencyComponent(
                frequency=i / n,
                period=period,
                amplitude=float(m),
                phase=float(np.angle(spectrum[i])),
                power=float(m * m),
                cycle_type=classify_cycle(period),
                significance=float(m / mean_mag),
            )
        )

    components.sort(key=lambda c: c.amplitude, reverse=True)
    return components[:max_components]


def _phase_description(phase: float) -> str:
    if phase < math.pi / 2:
        return "Rising - Early Stage"
    if phase < math.pi:
        return "Rising - Late Stage"
    if phase < 3 * math.pi / 2:
        return "Falling - Early Stage"
    return "Falling - Late Stage"


def identify_market_cycles(
    frequencies: Sequence[FrequencyComponent],
    as_of: datetime,
    max_cycles: int = QUANT_CONSTANTS.max_market_cycles,
) -> list[CycleAnalysis]:
    """Project next peak (phase pi/2) and trough (3pi/2) for the top cycles."""
    cycles = []
    two_pi = 2 * math.pi

    for freq in list(frequencies)[:max_cycles]:
        period = freq.period
        to_peak = ((math.pi / 2 - freq.phase) / two_pi) * period
        if to_peak < 0:
            to_peak += period
        to_trough = ((3 * math.pi / 2 - freq.phase) / two_pi) * period
        if to_trough < 0:
            to_trough += period

        phase = freq.phase % two_pi

        cycles.append(
            CycleAnalysis(
                name=f"{freq.cycle_type} Cycle ({period:.1f} days)",
                period_days=period,
                strength=freq.significance,
                next_peak=as_of + timedelta(days=to_peak),
                next_trough=as_of + timedelta(days=to_trough),
                current_phase=math.degrees(phase),
                phase_description=_phase_description(phase),
            )
        )

    return cycles


def calculate_power_spectrum(spectrum: np.ndarray) -> SpectralAnalysis:
    """PSD = |X|^2 / N over bins 0..N/2-1; peaks above 3x the noise floor."""
    n = len(spectrum)
    half = n // 2
    if half == 0:
        return SpectralAnalysis([], [], 0.0, 0.0, [])

    psd = np.abs(spectrum[:half]) ** 2 / n
    noise_floor = float(psd.mean())
    threshold = noise_floor * QUANT_CONSTANTS.psd_noise_multiple

    peaks = [
        i
        for i in range(1, half - 1)
        if psd[i] > threshold and psd[i] > psd[i - 1] and psd[i] > psd[i + 1]
    ]

    return SpectralAnalysis(
        frequencies=(np.arange(half) / n).tolist(),
        power_spectral_density=psd.tolist(),
        total_power=float(psd.sum()),
        noise_floor=noise_floor,
        significant_peaks=peaks,
    )


def _centered_trend(prices: np.ndarray) -> np.ndarray:
    n = len(prices)
    half_window = min(QUANT_CONSTANTS.trend_max_window, n // 4) // 2
    if half_window == 0:
        return prices.copy()

    csum = np.concatenate([[0.0], np.cumsum(prices)])
    idx = np.arange(n)
    start = np.maximum(0, idx - half_window)
    end = np.minimum(n, idx + half_window)
    return (csum[end] - csum[start]) / (end - start)


def decompose_time_series(
    prices: Sequence[float],
    dates: Sequence[datetime],
    frequencies: Sequence[FrequencyComponent],
) -> PriceDecomposition:
    """Moving-average trend plus cosine reconstructions split at 30 days."""
    y = np.asarray(prices, dtype=float)
    t = np.arange(len(y), dtype=float)
    trend = _centered_trend(y)

    seasonal = np.zeros_like(y)
    cyclical = np.zeros_like(y)
    for freq in frequencies:
        wave = freq.amplitude * np.cos(2 * np.pi * freq.frequency * t + freq.phase)
        if freq.period < QUANT_CONSTANTS.seasonal_period_cutoff:
            seasonal += wave
        else:
            cyclical += wave

    return PriceDecomposition(
        trend=trend.tolist(),
        seasonal=seasonal.tolist(),
        cyclical=cyclical.tolist(),
        residual=(y - trend - seasonal - cyclical).tolist(),
        dates=list(dates),
    )


def generate_forecast(
    frequencies: Sequence[FrequencyComponent],
    last_price: float,
    last_date: datetime,
    days_ahead: int = QUANT_CONSTANTS.forecast_horizon_days,
) -> list[PredictionPoint]:
    """
    Add cycle contributions to the last price for each day ahead.

    The band uses a fixed variance proxy (sum of amplitude^2 * 0.1), not
    a statistically derived interval.
    """
    c = QUANT_CONSTANTS
    variance = sum(f.amplitude**2 * c.forecast_variance_factor for f in frequencies)
    band = 2 * math.sqrt(variance)

    points = []
    for day in range(1, days_ahead + 1):
        prediction = last_price + sum(
            f.amplitude * math.cos(2 * math.pi * f.frequency * day + f.phase)
            for f in frequencies
        )
        points.append(
            PredictionPoint(
                date=last_date + timedelta(days=day),
                predicted_price=prediction,
                upper_bound=prediction + band,
                lower_bound=prediction - band,
                confidence=max(0.0, 1 - (day / c.forecast_horizon_days) * c.forecast_confidence_decay),
            )
        )
    return points


# =============================================================================
# Wavelets
# =============================================================================


def wavelet_time_scale(level: int) -> str:
    days = 2**level
    if days <= 2:
        return "Short-term (1-2 days)"
    if days <= 8:
        return "Weekly"
    if days <= 32:
        return "Monthly"
    return "Long-term"


def _detect_turning_points(
    coefficients: np.ndarray,
    level: int,
    dates: Sequence[datetime],
) -> list[TurningPoint]:
    if len(coefficients) < 3:
        return []

    threshold = float(np.abs(coefficients).mean()) * QUANT_CONSTANTS.wavelet_threshold_multiple
    scale = 2**level
    time_scale = wavelet_time_scale(level)
    points = []

    for i in range(1, len(coefficients) - 1):
        c = coefficients[i]
        if abs(c) <= threshold:
            continue
        is_peak = c > coefficients[i - 1] and c > coefficients[i + 1]
        is_trough = c < coefficients[i - 1] and c < coefficients[i + 1]
        if not (is_peak or is_trough):
            continue
        date_index = i * scale
        if date_index < len(dates):
            points.append(
                TurningPoint(
                    date=dates[date_index],
                    type="Peak" if is_peak else "Trough",
                    confidence=abs(c) / threshold,
                    time_scale=time_scale,
                )
            )
    return points


def perform_wavelet_analysis(
    prices: Sequence[float],
    dates: Sequence[datetime],
) -> WaveletAnalysis:
    """Simplified Haar decomposition up to min(5, log2(n)) levels."""
    current = np.asarray(prices, dtype=float)
    n = len(current)
    max_levels = min(QUANT_CONSTANTS.max_wavelet_levels, int(math.log2(n))) if n >= 1 else 0

    levels: list[WaveletLevel] = []
    turning_points: list[TurningPoint] = []

    for level in range(1, max_levels + 1):
        pairs = len(current) // 2
        if pairs == 0:
            break
        left = current[0 : 2 * pairs : 2]
        right = current[1 : 2 * pairs : 2]
        coefficients = (left - right) / 2

        levels.append(
            WaveletLevel(
                level=level,
                time_scale=wavelet_time_scale(level),
                coefficients=coefficients.tolist(),
                energy=float((coefficients**2).sum()),
            )
        )
        turning_points.extend(_detect_turning_points(coefficients, level, dates))
        current = (left + right) / 2

    return WaveletAnalysis(
        levels=levels,
        scalogram=[lvl.energy for lvl in levels],
        turning_points=turning_points,
    )


# =============================================================================
# Correlations
# =============================================================================


def _trailing_window(x: Sequence[float], y: Sequence[float]) -> tuple[np.ndarray, np.ndarray]:
    a = np.asarray(x, dtype=float)
    b = np.asarray(y, dtype=float)
    n = min(len(a), len(b))
    if n == 0:
        return a[:0], b[:0]
    return a[len(a) - n :], b[len(b) - n :]


def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson correlation on the trailing common window; 0 when undefined."""
    a, b = _trailing_window(x, y)
    if len(a) == 0:
        return 0.0

    da = a - a.mean()
    db = b - b.mean()
    var_a = float((da * da).sum())
    var_b = float((db * db).sum())
    if var_a == 0 or var_b == 0:
        return 0.0
    return float((da * db).sum() / math.sqrt(var_a * var_b))


def find_lead_lag(
    x: Sequence[float],
    y: Sequence[float],
    max_lag: int = QUANT_CONSTANTS.lead_lag_max_lag,
) -> tuple[int, float]:
    """
    Lag in [-max_lag, max_lag] (excluding 0) maximizing |correlation|.

    A positive lag pairs x[t + lag] with y[t]. Returns (0, 0.0) when no
    shift leaves more than the minimum overlap.
    """
    a, b = _trailing_window(x, y)
    n = len(a)
    best_corr = 0.0
    best_lag = 0

    for lag in range(-max_lag, max_lag + 1):
        if lag == 0:
            continue
        if lag > 0:
            xs, ys = a[lag:], b[: n - lag]
        else:
            xs, ys = a[: n + lag], b[-lag:]
        if len(xs) <= QUANT_CONSTANTS.lead_lag_min_overlap:
            continue
        corr = pearson_correlation(xs, ys)
        if abs(corr) > abs(best_corr):
            best_corr = corr
            best_lag = lag

    return best_lag, best_corr


def analyze_portfolio_correlations(returns: Mapping[str, Sequence[float]]) -> CorrelationMatrix:
    """Pairwise correlations, strong pairs and lead-lag relationships."""
    c = QUANT_CONSTANTS
    symbols = list(returns.keys())
    n = len(symbols)
    matrix = np.eye(n)
    strong: list[SymbolPair] = []
    lead_lag: list[SymbolPair] = []

    for i in range(n):
        for j in range(i + 1, n):
            corr = pearson_correlation(returns[symbols[i]], returns[symbols[j]])
            matrix[i, j] = matrix[j, i] = corr
            if abs(corr) > c.strong_correlation:
                strong.append(
                    SymbolPair(
                        symbol1=symbols[i],
                        symbol2=symbols[j],
                        correlation=corr,
                        relationship="Positive" if corr > 0 else "Negative",
                    )
                )

            lag, lag_corr = find_lead_lag(returns[symbols[i]], returns[symbols[j]])
            if abs(lag_corr) > c.lead_lag_report_threshold:
                lead_lag.append(
                    SymbolPair(
                        symbol1=symbols[i],
                        symbol2=symbols[j],
                        correlation=lag_corr,
                        relationship="Leads by" if lag > 0 else "Lags by",
                        lag_days=lag,
                    )
                )

    return CorrelationMatrix(
        symbols=symbols,
        matrix=matrix,
        strong_correlations=strong,
        lead_lag_relationships=lead_lag,
    )


# =============================================================================
# Entry point
# =============================================================================


def _to_datetimes(dates: Sequence[date | datetime | str]) -> list[datetime]:
    return [pd.Timestamp(d).to_pydatetime() for d in dates]


def analyze_price_cycles(
    prices: Sequence[float],
    dates: Sequence[date | datetime | str],
    min_cycle_points: int = DEFAULT_MIN_CYCLE_POINTS,
) -> FourierAnalysisResult:
    """
    Run the full spectral pipeline on one price series.

    Series shorter than min_cycle_points still get a power spectrum,
    trend/residual decomposition and wavelet levels; dominant
    frequencies, market cycles and the forecast are omitted and a
    warning records why.

    Raises:
        ValidationError: If prices and dates differ in length.
        InsufficientDataError: If fewer than 2 points are supplied.
    """
    if len(prices) != len(dates):
        raise ValidationError(
            "Prices and dates must have the same length",
            details={"prices": len(prices), "dates": len(dates)},
        )
    n = len(prices)
    if n < 2:
        raise InsufficientDataError(
            "Spectral analysis needs at least 2 points", required=2, available=n
        )

    y = np.asarray(prices, dtype=float)
    stamps = _to_datetimes(dates)
    warnings: list[str] = []

    spectrum = fft_radix2(detrend_linear(y))

    if n >= min_cycle_points:
        frequencies = extract_dominant_frequencies(spectrum, n)
        cycles = identify_market_cycles(frequencies, stamps[-1])
        forecast = generate_forecast(frequencies, float(y[-1]), stamps[-1])
    else:
        frequencies, cycles, forecast = [], [], []
        warnings.append(
            f"Cycle detection needs at least {min_cycle_points} points, got {n}; "
            "dominant frequencies, market cycles and forecast omitted"
        )
        logger.debug(f"Skipping cycle detection for short series (n={n})")

    return FourierAnalysisResult(
        dominant_frequencies=frequencies,
        market_cycles=cycles,
        power_spectrum=calculate_power_spectrum(spectrum),
        decomposition=decompose_time_series(y, stamps, frequencies),
        forecast=forecast,
        wavelet=perform_wavelet_analysis(y, stamps),
        warnings=warnings,
    )
