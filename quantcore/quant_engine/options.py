"""
Option Pricing Engine - Black-Scholes valuation.

Closed-form European option pricing with continuous dividend yield:
- Call/put prices and Greeks (put Greeks derived from call Greeks by parity)
- Implied volatility via Newton-Raphson
- Stylized volatility smile, option chain and volatility surface
- Market outlook from put/call implied-vol skew
- Payoff profile for long call, long put and stock

All functions are pure: no caching, no I/O, no shared state.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Sequence

import numpy as np
from scipy import stats

from quantcore.core.exceptions import ValidationError

from .config import QUANT_CONSTANTS

logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================


class Moneyness(str, Enum):
    """Spot/strike classification."""

    IN_THE_MONEY = "In-the-Money"
    AT_THE_MONEY = "At-the-Money"
    OUT_OF_THE_MONEY = "Out-of-the-Money"


class MarketOutlook(str, Enum):
    """Sentiment read from at-the-money put/call implied-vol skew."""

    BEARISH = "Bearish - Put protection in demand"
    BULLISH = "Bullish - Call speculation active"
    NEUTRAL_BALANCED = "Neutral - Balanced options activity"
    NEUTRAL = "Neutral"


@dataclass(frozen=True)
class OptionParameters:
    """Inputs to a Black-Scholes valuation."""

    spot: float  # S
    strike: float  # K
    time_to_expiry: float  # T in years
    risk_free_rate: float = QUANT_CONSTANTS.risk_free_rate  # r
    volatility: float = 0.2  # sigma
    dividend_yield: float = 0.0  # q

    def with_volatility(self, volatility: float) -> OptionParameters:
        return replace(self, volatility=volatility)


@dataclass(frozen=True)
class OptionGreeks:
    """Price sensitivities. Vega and rho are per 1% change."""

    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0
    rho: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class OptionPriceResult:
    """Valuation of a call/put pair at one strike and expiry."""

    call_price: float
    put_price: float
    greeks: OptionGreeks  # Call convention
    put_greeks: OptionGreeks
    implied_volatility: float
    time_to_expiry: float
    intrinsic_value: float
    time_value: float
    moneyness: Moneyness

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_price": self.call_price,
            "put_price": self.put_price,
            "greeks": self.greeks.to_dict(),
            "put_greeks": self.put_greeks.to_dict(),
            "implied_volatility": self.implied_volatility,
            "time_to_expiry": self.time_to_expiry,
            "intrinsic_value": self.intrinsic_value,
            "time_value": self.time_value,
            "moneyness": self.moneyness.value,
        }


@dataclass(frozen=True)
class SmilePoint:
    strike: float
    implied_vol: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class OptionChainItem:
    """One strike of a stylized option chain."""

    strike: float
    call_price: float
    put_price: float
    call_greeks: OptionGreeks
    put_greeks: OptionGreeks
    call_implied_vol: float
    put_implied_vol: float
    moneyness: Moneyness
    time_to_expiry: float
    break_even: float  # For the call buyer
    max_profit: float  # Unlimited for a long call
    max_loss: float  # Premium paid

    def to_dict(self) -> dict[str, Any]:
        return {
            "strike": self.strike,
            "call_price": self.call_price,
            "put_price": self.put_price,
            "call_greeks": self.call_greeks.to_dict(),
            "put_greeks": self.put_greeks.to_dict(),
            "call_implied_vol": self.call_implied_vol,
            "put_implied_vol": self.put_implied_vol,
            "moneyness": self.moneyness.value,
            "time_to_expiry": self.time_to_expiry,
            "break_even": self.break_even,
            # JSON has no infinity
            "max_profit": None if math.isinf(self.max_profit) else self.max_profit,
            "max_loss": self.max_loss,
        }


@dataclass
class VolatilitySurface:
    """Implied vol grid: rows are strikes, columns are expirations (years)."""

    strikes: list[float]
    expirations: list[float]
    implied_vols: np.ndarray

    def to_dict(self) -> dict[str, Any]:
        return {
            "strikes": self.strikes,
            "expirations": self.expirations,
            "implied_vols": self.implied_vols.tolist(),
        }


@dataclass
class PayoffProfile:
    """Profit/loss at expiry across a range of underlying prices."""

    current_price: float
    strike: float
    call_premium: float
    put_premium: float
    price_range: list[float] = field(default_factory=list)
    call_payoff: list[float] = field(default_factory=list)
    put_payoff: list[float] = field(default_factory=list)
    stock_returns: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Core pricing
# =============================================================================


def classify_moneyness(spot: float, strike: float) -> Moneyness:
    """Classify S/K against the fixed 2% at-the-money band."""
    ratio = spot / strike
    if ratio > QUANT_CONSTANTS.moneyness_itm:
        return Moneyness.IN_THE_MONEY
    if ratio < QUANT_CONSTANTS.moneyness_otm:
        return Moneyness.OUT_OF_THE_MONEY
    return Moneyness.AT_THE_MONEY


def _d1_d2(p: OptionParameters) -> tuple[float, float]:
    sig_sqrt_t = p.volatility * math.sqrt(p.time_to_expiry)
    d1 = (
        math.log(p.spot / p.strike)
        + (p.risk_free_rate - p.dividend_yield + 0.5 * p.volatility**2) * p.time_to_expiry
    ) / sig_sqrt_t
    return d1, d1 - sig_sqrt_t


def calculate_greeks(params: OptionParameters, d1: float, d2: float) -> OptionGreeks:
    """Call Greeks in the general branch (T > 0, sigma > 0)."""
    S, K, T = params.spot, params.strike, params.time_to_expiry
    r, q, sigma = params.risk_free_rate, params.dividend_yield, params.volatility

    sqrt_t = math.sqrt(T)
    pdf_d1 = stats.norm.pdf(d1)
    cdf_d1 = stats.norm.cdf(d1)
    cdf_d2 = stats.norm.cdf(d2)
    div_discount = math.exp(-q * T)
    rate_discount = math.exp(-r * T)

    return OptionGreeks(
        delta=float(div_discount * cdf_d1),
        gamma=float(div_discount * pdf_d1 / (S * sigma * sqrt_t)),
        theta=float(
            -(S * pdf_d1 * sigma * div_discount) / (2 * sqrt_t)
            - r * K * rate_discount * cdf_d2
            + q * S * div_discount * cdf_d1
        ),
        vega=float(S * div_discount * pdf_d1 * sqrt_t / 100),
        rho=float(K * T * rate_discount * cdf_d2 / 100),
    )


def calculate_put_greeks(params: OptionParameters, call_greeks: OptionGreeks) -> OptionGreeks:
    """Put Greeks from call Greeks via put-call parity."""
    T, r, K = params.time_to_expiry, params.risk_free_rate, params.strike
    rate_discount = math.exp(-r * T)
    return OptionGreeks(
        delta=call_greeks.delta - math.exp(-params.dividend_yield * T),
        gamma=call_greeks.gamma,
        theta=call_greeks.theta + r * K * rate_discount,
        vega=call_greeks.vega,
        rho=-K * T * rate_discount / 100,
    )


def _expired_result(params: OptionParameters) -> OptionPriceResult:
    intrinsic_call = max(params.spot - params.strike, 0.0)
    intrinsic_put = max(params.strike - params.spot, 0.0)
    return OptionPriceResult(
        call_price=intrinsic_call,
        put_price=intrinsic_put,
        greeks=OptionGreeks(delta=1.0 if intrinsic_call > 0 else 0.0),
        put_greeks=OptionGreeks(delta=-1.0 if intrinsic_put > 0 else 0.0),
        implied_volatility=params.volatility,
        time_to_expiry=0.0,
        intrinsic_value=max(intrinsic_call, intrinsic_put),
        time_value=0.0,
        moneyness=classify_moneyness(params.spot, params.strike),
    )


def _zero_vol_result(params: OptionParameters) -> OptionPriceResult:
    # sigma -> 0 limit: discounted forward intrinsic, no convexity
    T = params.time_to_expiry
    fwd_spot = params.spot * math.exp(-params.dividend_yield * T)
    pv_strike = params.strike * math.exp(-params.risk_free_rate * T)
    call = max(fwd_spot - pv_strike, 0.0)
    put = max(pv_strike - fwd_spot, 0.0)
    call_delta = math.exp(-params.dividend_yield * T) if call > 0 else 0.0
    put_delta = -math.exp(-params.dividend_yield * T) if put > 0 else 0.0
    intrinsic_call = max(params.spot - params.strike, 0.0)
    intrinsic_put = max(params.strike - params.spot, 0.0)
    return OptionPriceResult(
        call_price=call,
        put_price=put,
        greeks=OptionGreeks(delta=call_delta),
        put_greeks=OptionGreeks(delta=put_delta),
        implied_volatility=params.volatility,
        time_to_expiry=T,
        intrinsic_value=max(intrinsic_call, intrinsic_put),
        time_value=max(call - intrinsic_call, put - intrinsic_put),
        moneyness=classify_moneyness(params.spot, params.strike),
    )


def calculate_option_price(params: OptionParameters) -> OptionPriceResult:
    """
    Price a European call/put pair with Black-Scholes-Merton.

    T <= 0 returns pure intrinsic value with degenerate Greeks. A zero
    volatility with T > 0 returns the deterministic limit instead of
    dividing by zero.

    Raises:
        ValidationError: If spot or strike is not positive.
    """
    if params.spot <= 0 or params.strike <= 0:
        raise ValidationError(
            "Spot and strike must be positive",
            details={"spot": params.spot, "strike": params.strike},
        )

    if params.time_to_expiry <= 0:
        return _expired_result(params)

    if params.volatility <= 0:
        return _zero_vol_result(params)

    S, K, T = params.spot, params.strike, params.time_to_expiry
    r, q = params.risk_free_rate, params.dividend_yield

    d1, d2 = _d1_d2(params)
    call_price = float(
        S * math.exp(-q * T) * stats.norm.cdf(d1) - K * math.exp(-r * T) * stats.norm.cdf(d2)
    )
    put_price = float(
        K * math.exp(-r * T) * stats.norm.cdf(-d2) - S * math.exp(-q * T) * stats.norm.cdf(-d1)
    )

    greeks = calculate_greeks(params, d1, d2)
    call_intrinsic = max(S - K, 0.0)
    put_intrinsic = max(K - S, 0.0)

    return OptionPriceResult(
        call_price=call_price,
        put_price=put_price,
        greeks=greeks,
        put_greeks=calculate_put_greeks(params, greeks),
        implied_volatility=params.volatility,
        time_to_expiry=T,
        intrinsic_value=max(call_intrinsic, put_intrinsic),
        time_value=max(call_price - call_intrinsic, put_price - put_intrinsic),
        moneyness=classify_moneyness(S, K),
    )


def calculate_implied_volatility(
    market_price: float,
    params: OptionParameters,
    is_call: bool = True,
    tolerance: float = QUANT_CONSTANTS.iv_tolerance,
    max_iterations: int = QUANT_CONSTANTS.iv_max_iterations,
) -> float:
    """
    Solve for the volatility that reproduces market_price.

    Newton-Raphson from sigma = 0.3, clamped to [0.001, 5.0] each step.
    Stops early on convergence or a vanishing vega. Returns the last
    iterate when max_iterations is reached, so the result is a
    best-effort estimate and may not be converged.

    Convergence is judged on price (iv_tolerance), not on sigma. Far from
    the money at low volatility the price barely moves with sigma, so a
    price within tolerance can map to a sigma well off the true value
    (e.g. sigma=0.05, S=100, K=120, T=0.5 solves to about 0.12).
    """
    c = QUANT_CONSTANTS
    sigma = c.iv_initial_guess

    for _ in range(max_iterations):
        result = calculate_option_price(params.with_volatility(sigma))
        theoretical = result.call_price if is_call else result.put_price
        vega = result.greeks.vega * 100  # undo per-1% scaling

        diff = theoretical - market_price
        if abs(diff) < tolerance:
            return sigma

        if abs(vega) < c.iv_min_vega:
            logger.debug(f"IV solver stopped on vanishing vega at sigma={sigma:.4f}")
            break

        sigma -= diff / vega
        sigma = max(c.iv_min, min(c.iv_max, sigma))

    return sigma


def calculate_volatility_smile(
    spot: float,
    time_to_expiry: float,
    risk_free_rate: float,
    base_volatility: float,
    num_strikes: int = 21,
) -> list[SmilePoint]:
    """
    Stylized quadratic smile: vol = base * (1 + 0.5 * (m - 1)^2).

    Strikes span spot * (1 - 0.4) .. spot * (1 + 0.4). This is a
    synthetic shape, not a calibration to market quotes.
    """
    c = QUANT_CONSTANTS
    if num_strikes < 1:
        return []
    if num_strikes == 1:
        return [SmilePoint(strike=spot, implied_vol=base_volatility)]

    points = []
    for i in range(num_strikes):
        m = 1 - c.smile_strike_range + 2 * c.smile_strike_range * i / (num_strikes - 1)
        skew = (m - 1) ** 2 * c.smile_curvature
        points.append(SmilePoint(strike=spot * m, implied_vol=base_volatility * (1 + skew)))
    return points


# =============================================================================
# Chain, surface, outlook, payoff
# =============================================================================


def build_option_chain(
    spot: float,
    volatility: float,
    dividend_yield: float,
    risk_free_rate: float = QUANT_CONSTANTS.risk_free_rate,
    expirations_days: Sequence[int] = QUANT_CONSTANTS.chain_expirations_days,
    strike_multipliers: Sequence[float] = QUANT_CONSTANTS.chain_strike_multipliers,
) -> dict[int, list[OptionChainItem]]:
    """
    Build a stylized chain per expiry (days), each sorted by strike.

    Implied vols carry a quadratic skew in moneyness, steeper for puts.
    """
    c = QUANT_CONSTANTS
    chains: dict[int, list[OptionChainItem]] = {}

    for days in expirations_days:
        T = days / 365.0
        items = []
        for m in strike_multipliers:
            strike = round(spot * m, 2)
            params = OptionParameters(
                spot=spot,
                strike=strike,
                time_to_expiry=T,
                risk_free_rate=risk_free_rate,
                volatility=volatility,
                dividend_yield=dividend_yield,
            )
            priced = calculate_option_price(params)
            skew = (m - 1) ** 2 * c.chain_skew_factor
            items.append(
                OptionChainItem(
                    strike=strike,
                    call_price=round(priced.call_price, 2),
                    put_price=round(priced.put_price, 2),
                    call_greeks=priced.greeks,
                    put_greeks=priced.put_greeks,
                    call_implied_vol=volatility * (1 + skew),
                    put_implied_vol=volatility * (1 + skew * c.chain_put_skew_multiplier),
                    moneyness=priced.moneyness,
                    time_to_expiry=T,
                    break_even=strike + priced.call_price,
                    max_profit=math.inf,
                    max_loss=priced.call_price,
                )
            )
        chains[days] = sorted(items, key=lambda item: item.strike)

    return chains


def generate_volatility_surface(
    spot: float,
    base_vol: float,
    expirations_days: Sequence[int] = QUANT_CONSTANTS.surface_expirations_days,
    strike_multipliers: Sequence[float] = QUANT_CONSTANTS.chain_strike_multipliers,
) -> VolatilitySurface:
    """vol = base * (1 - 0.1 * sqrt(T)) * (1 + 0.4 * (m - 1)^2)."""
    c = QUANT_CONSTANTS
    m = np.asarray(strike_multipliers, dtype=float)[:, None]
    T = np.asarray(expirations_days, dtype=float)[None, :] / 365.0

    smile = 1 + c.surface_smile_curvature * (m - 1) ** 2
    term = 1 - c.surface_term_decay * np.sqrt(T)

    return VolatilitySurface(
        strikes=[round(spot * float(x), 2) for x in strike_multipliers],
        expirations=[d / 365.0 for d in expirations_days],
        implied_vols=base_vol * smile * term,
    )


def determine_market_outlook(chain: Sequence[OptionChainItem]) -> MarketOutlook:
    """Read sentiment from the average ATM put-minus-call implied vol."""
    if not chain:
        return MarketOutlook.NEUTRAL

    atm = [item for item in chain if item.moneyness == Moneyness.AT_THE_MONEY]
    if not atm:
        return MarketOutlook.NEUTRAL

    skew = float(np.mean([item.put_implied_vol - item.call_implied_vol for item in atm]))
    if skew > QUANT_CONSTANTS.outlook_bearish_skew:
        return MarketOutlook.BEARISH
    if skew < QUANT_CONSTANTS.outlook_bullish_skew:
        return MarketOutlook.BULLISH
    return MarketOutlook.NEUTRAL_BALANCED


def compute_payoff_profile(
    spot: float,
    strike: float,
    call_premium: float,
    put_premium: float,
) -> PayoffProfile:
    """P&L at expiry from 70% to 130% of spot in 1% steps."""
    prices = spot * np.arange(70, 131) / 100.0

    return PayoffProfile(
        current_price=spot,
        strike=strike,
        call_premium=call_premium,
        put_premium=put_premium,
        price_range=[round(float(p), 2) for p in prices],
        call_payoff=(np.maximum(prices - strike, 0.0) - call_premium).tolist(),
        put_payoff=(np.maximum(strike - prices, 0.0) - put_premium).tolist(),
        stock_returns=(prices - spot).tolist(),
    )
