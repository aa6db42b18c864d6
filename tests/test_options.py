"""
Tests for the option pricing engine.

Tests cover:
1. Black-Scholes prices and Greeks against textbook values
2. Put-call parity and expiry/zero-vol edge cases
3. Implied volatility round-trips
4. Smile, chain, surface, outlook and payoff shapes
"""

import math

import numpy as np
import pytest

from quantcore.core.exceptions import ValidationError
from quantcore.quant_engine.options import (
    MarketOutlook,
    Moneyness,
    OptionParameters,
    build_option_chain,
    calculate_implied_volatility,
    calculate_option_price,
    calculate_volatility_smile,
    classify_moneyness,
    compute_payoff_profile,
    determine_market_outlook,
    generate_volatility_surface,
)


@pytest.fixture
def textbook_params() -> OptionParameters:
    """S=K=100, T=1y, r=5%, sigma=20%, no dividend."""
    return OptionParameters(
        spot=100.0,
        strike=100.0,
        time_to_expiry=1.0,
        risk_free_rate=0.05,
        volatility=0.2,
        dividend_yield=0.0,
    )


class TestBlackScholes:
    """Pricing correctness."""

    def test_textbook_call_and_put(self, textbook_params):
        result = calculate_option_price(textbook_params)

        assert result.call_price == pytest.approx(10.4506, abs=1e-3)
        assert result.put_price == pytest.approx(5.5735, abs=1e-3)

    def test_call_delta(self, textbook_params):
        result = calculate_option_price(textbook_params)

        assert result.greeks.delta == pytest.approx(0.6368, abs=1e-3)
        assert result.put_greeks.delta == pytest.approx(0.6368 - 1, abs=1e-3)

    @pytest.mark.parametrize(
        "spot,strike,T,q",
        [(100, 100, 1.0, 0.0), (120, 100, 0.5, 0.02), (80, 110, 2.0, 0.01), (50, 45, 0.1, 0.0)],
    )
    def test_put_call_parity(self, spot, strike, T, q):
        """C - P == S*e^(-qT) - K*e^(-rT)."""
        r = 0.045
        params = OptionParameters(spot, strike, T, r, 0.3, q)
        result = calculate_option_price(params)

        expected = spot * math.exp(-q * T) - strike * math.exp(-r * T)
        assert result.call_price - result.put_price == pytest.approx(expected, abs=1e-6)

    def test_greeks_ranges(self, textbook_params):
        result = calculate_option_price(textbook_params)
        g = result.greeks

        assert 0 <= g.delta <= 1
        assert -1 <= result.put_greeks.delta <= 0
        assert g.gamma > 0
        assert g.vega > 0
        assert result.put_greeks.gamma == g.gamma
        assert result.put_greeks.vega == g.vega
        assert result.put_greeks.rho < 0

    def test_expired_option_is_intrinsic(self):
        params = OptionParameters(spot=110, strike=100, time_to_expiry=0.0, volatility=0.3)
        result = calculate_option_price(params)

        assert result.call_price == 10.0
        assert result.put_price == 0.0
        assert result.greeks.delta == 1.0
        assert result.put_greeks.delta == 0.0
        assert result.time_value == 0.0

    def test_expired_put_delta(self):
        params = OptionParameters(spot=90, strike=100, time_to_expiry=0.0)
        result = calculate_option_price(params)

        assert result.put_price == 10.0
        assert result.put_greeks.delta == -1.0
        assert result.greeks.delta == 0.0

    def test_zero_volatility_is_deterministic(self):
        params = OptionParameters(spot=100, strike=90, time_to_expiry=1.0, risk_free_rate=0.05, volatility=0.0)
        result = calculate_option_price(params)

        assert result.call_price == pytest.approx(100 - 90 * math.exp(-0.05), abs=1e-9)
        assert result.put_price == 0.0
        assert math.isfinite(result.greeks.delta)

    @pytest.mark.parametrize("spot,strike", [(0, 100), (100, 0), (-5, 100)])
    def test_non_positive_inputs_raise(self, spot, strike):
        with pytest.raises(ValidationError):
            calculate_option_price(OptionParameters(spot=spot, strike=strike, time_to_expiry=1.0))

    def test_intrinsic_and_time_value(self, textbook_params):
        result = calculate_option_price(textbook_params)

        assert result.intrinsic_value == 0.0
        assert result.time_value == pytest.approx(result.call_price)


class TestMoneyness:
    @pytest.mark.parametrize(
        "spot,strike,expected",
        [
            (103, 100, Moneyness.IN_THE_MONEY),
            (100, 100, Moneyness.AT_THE_MONEY),
            (101.5, 100, Moneyness.AT_THE_MONEY),
            (97, 100, Moneyness.OUT_OF_THE_MONEY),
        ],
    )
    def test_classification(self, spot, strike, expected):
        assert classify_moneyness(spot, strike) == expected


class TestImpliedVolatility:
    """Newton-Raphson solver."""

    @pytest.mark.parametrize("sigma", [0.05, 0.1, 0.25, 0.6, 2.0])
    def test_round_trip_call(self, textbook_params, sigma):
        price = calculate_option_price(textbook_params.with_volatility(sigma)).call_price

        iv = calculate_implied_volatility(price, textbook_params, is_call=True)

        assert iv == pytest.approx(sigma, abs=1e-3)

    def test_round_trip_put(self, textbook_params):
        price = calculate_option_price(textbook_params.with_volatility(0.35)).put_price

        iv = calculate_implied_volatility(price, textbook_params, is_call=False)

        assert iv == pytest.approx(0.35, abs=1e-3)

    def test_result_is_clamped(self, textbook_params):
        """An impossible price still returns a bounded estimate."""
        iv = calculate_implied_volatility(1000.0, textbook_params)

        assert 0.001 <= iv <= 5.0


class TestSmileAndSurface:
    def test_smile_shape(self):
        smile = calculate_volatility_smile(100.0, 30 / 365, 0.045, 0.25)

        assert len(smile) == 21
        assert smile[0].strike == pytest.approx(60.0)
        assert smile[-1].strike == pytest.approx(140.0)
        # Minimum at the money, symmetric wings
        assert smile[10].implied_vol == pytest.approx(0.25)
        assert smile[0].implied_vol == pytest.approx(smile[-1].implied_vol)
        assert smile[0].implied_vol > smile[10].implied_vol

    def test_surface_grid(self):
        surface = generate_volatility_surface(100.0, 0.3)

        assert surface.implied_vols.shape == (11, 6)
        assert len(surface.expirations) == 6
        # Term structure decays with expiry
        atm_row = surface.implied_vols[5]
        assert np.all(np.diff(atm_row) < 0)


class TestOptionChain:
    def test_chain_per_expiry_sorted(self):
        chains = build_option_chain(100.0, 0.25, 0.02)

        assert set(chains) == {30, 60, 90}
        for items in chains.values():
            strikes = [item.strike for item in items]
            assert strikes == sorted(strikes)
            assert len(items) == 11

    def test_put_skew_steeper(self):
        chain = build_option_chain(100.0, 0.25, 0.02)[30]
        wing = chain[0]

        assert wing.put_implied_vol > wing.call_implied_vol

    def test_chain_item_serializes_unlimited_profit(self):
        item = build_option_chain(100.0, 0.25, 0.0)[30][0]

        data = item.to_dict()
        assert data["max_profit"] is None
        assert data["break_even"] == pytest.approx(item.strike + item.max_loss)

    def test_outlook(self):
        chain = build_option_chain(100.0, 0.25, 0.0)[30]

        # ATM strikes carry almost no skew
        assert determine_market_outlook(chain) == MarketOutlook.NEUTRAL_BALANCED
        assert determine_market_outlook([]) == MarketOutlook.NEUTRAL


class TestPayoff:
    def test_payoff_profile(self):
        profile = compute_payoff_profile(100.0, 100.0, 5.0, 4.0)

        assert len(profile.price_range) == 61
        assert profile.price_range[0] == 70.0
        assert profile.price_range[-1] == 130.0
        assert profile.call_payoff[0] == -5.0
        assert profile.call_payoff[-1] == pytest.approx(25.0)
        assert profile.put_payoff[0] == pytest.approx(26.0)
        assert profile.stock_returns[30] == pytest.approx(0.0)
