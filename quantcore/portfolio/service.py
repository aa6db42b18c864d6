"""Analysis orchestration: data gathering, engine fan-out, caching and result envelopes."""

from __future__ import annotations

import asyncio
import functools
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

import pandas as pd

from quantcore.cache.cache import Cache, daily_key, symbol_set_key
from quantcore.core.config import Settings, get_settings
from quantcore.core.exceptions import (
    AnalysisUnavailableError,
    AppException,
    ExternalServiceError,
    InsufficientDataError,
)
from quantcore.core.logging import LoggerAdapter, analysis_id_var, get_logger
from quantcore.core.rate_limiter import RateLimiter
from quantcore.quant_engine.config import QUANT_CONSTANTS
from quantcore.quant_engine.fourier import analyze_portfolio_correlations, analyze_price_cycles
from quantcore.quant_engine.options import (
    Moneyness,
    OptionParameters,
    build_option_chain,
    calculate_option_price,
    calculate_volatility_smile,
    compute_payoff_profile,
    determine_market_outlook,
    generate_volatility_surface,
)
from quantcore.quant_engine.performance import (
    build_asset_data,
    compute_portfolio_performance,
    daily_returns,
    historical_volatility,
    run_historical_backtest,
)
from quantcore.quant_engine.portfolio_optimizer import OptimizationResult, optimize_portfolio
from quantcore.quant_engine.synthetic import SyntheticAnalytics
from quantcore.services.data_providers.base import (
    CurrentPriceProvider,
    Holding,
    HoldingsProvider,
    PriceHistoryProvider,
    RateLimitedPriceProvider,
    to_price_frame,
)
from quantcore.services.data_providers.resilience import ResilientCaller


logger = LoggerAdapter(get_logger("portfolio.service"), {})

OPTIONS_EXPIRY_DAYS = 30

STATUS_OK = "ok"
STATUS_PARTIAL = "partial"
STATUS_UNAVAILABLE = "unavailable"
STATUS_EMPTY = "empty"
STATUS_ERROR = "error"

CACHEABLE_STATUSES = {STATUS_OK, STATUS_PARTIAL}


def _analysis_result(
    analysis: str,
    status: str,
    data: dict[str, Any],
    warnings: list[str] | None = None,
    source: str = "live",
) -> dict[str, Any]:
    return {
        "analysis": analysis,
        "status": status,
        "data": data,
        "warnings": warnings or [],
        "source": source,
        "as_of": datetime.now(timezone.utc).isoformat(),
    }


def _status_for(exc: AppException) -> str:
    if isinstance(exc, (InsufficientDataError, AnalysisUnavailableError)):
        return STATUS_UNAVAILABLE
    return STATUS_ERROR


def _merge_holdings(holdings: Sequence[Holding]) -> list[Holding]:
    """Collapse repeated lots of a symbol into one position."""
    merged: "OrderedDict[str, Holding]" = OrderedDict()
    for h in holdings:
        symbol = h.symbol.upper()
        if h.shares <= 0:
            continue
        if symbol not in merged:
            merged[symbol] = Holding(
                symbol=symbol,
                shares=h.shares,
                cost_basis=h.cost_basis,
                purchase_date=h.purchase_date,
                current_price=h.current_price,
            )
            continue
        prev = merged[symbol]
        shares = prev.shares + h.shares
        basis = (prev.shares * prev.cost_basis + h.shares * h.cost_basis) / shares
        dates = [d for d in (prev.purchase_date, h.purchase_date) if d is not None]
        merged[symbol] = Holding(
            symbol=symbol,
            shares=shares,
            cost_basis=basis,
            purchase_date=min(dates) if dates else None,
            current_price=h.current_price if h.current_price is not None else prev.current_price,
        )
    return list(merged.values())


class AnalysisOrchestrator:
    """
    Coordinates the option, spectral and portfolio engines for a user or
    symbol.

    Every public operation returns an envelope
    {analysis, status, data, warnings, source, as_of} and never raises.
    Engine work runs in the default executor; collaborator calls are rate
    limited and wrapped with timeout, retry and a circuit breaker.
    """

    def __init__(
        self,
        price_history: PriceHistoryProvider,
        current_prices: CurrentPriceProvider,
        holdings: HoldingsProvider,
        cache: Cache | None = None,
        settings: Settings | None = None,
        synthetic: SyntheticAnalytics | None = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        self._limiter = RateLimiter(
            "price_history",
            calls_per_second=s.provider_calls_per_second,
            burst_size=s.provider_burst_size,
        )
        self._price_history = RateLimitedPriceProvider(
            price_history, self._limiter, acquire_timeout=s.provider_timeout
        )
        self._current_prices = current_prices
        self._holdings = holdings
        self._cache = cache if cache is not None else Cache(prefix="analytics", default_ttl=s.cache_default_ttl)

        if synthetic is None and s.is_synthetic:
            synthetic = SyntheticAnalytics(seed=s.monte_carlo_seed if s.monte_carlo_seed is not None else 42)
        self._synthetic = synthetic

        caller_opts = dict(timeout=s.provider_timeout, max_retries=s.provider_retries)
        self._history_caller = ResilientCaller(name="price_history", **caller_opts)
        self._price_caller = ResilientCaller(name="current_price", **caller_opts)
        self._holdings_caller = ResilientCaller(name="holdings", **caller_opts)

    @property
    def is_synthetic(self) -> bool:
        return self._synthetic is not None

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _run(self, analysis: str, body: Callable[[], Awaitable[dict[str, Any]]]) -> dict[str, Any]:
        """Run one operation under its own analysis id, converting failures to envelopes."""
        token = analysis_id_var.set(uuid.uuid4().hex)
        try:
            return await body()
        except AppException as exc:
            logger.warning(
                f"{analysis} failed: {exc.message}",
                extra={"analysis": analysis, "error_code": exc.error_code},
            )
            return _analysis_result(analysis, _status_for(exc), {}, [exc.message])
        except Exception:
            logger.exception(f"{analysis} failed unexpectedly", extra={"analysis": analysis})
            return _analysis_result(analysis, STATUS_ERROR, {}, ["Internal analysis error"])
        finally:
            analysis_id_var.reset(token)

    async def _offload(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run CPU-bound engine work off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    async def _cached(self, key: str) -> Optional[dict[str, Any]]:
        cached = await self._cache.get(key)
        if cached is None:
            return None
        result = dict(cached)
        result["source"] = "cache"
        return result

    async def _store(self, key: str, result: dict[str, Any], ttl: int) -> dict[str, Any]:
        if result["status"] in CACHEABLE_STATUSES:
            await self._cache.set(key, result, ttl=ttl)
        return result

    async def _fetch_holdings(self, user_id: str) -> list[Holding]:
        try:
            raw = await self._holdings_caller.call(lambda: self._holdings.get_holdings(user_id))
        except Exception as exc:
            raise ExternalServiceError(
                "Holdings unavailable", details={"user_id": user_id, "reason": str(exc)}
            ) from exc
        return _merge_holdings(raw or [])

    async def _fetch_history(self, symbol: str, lookback_days: int) -> pd.DataFrame:
        try:
            bars = await self._history_caller.call(
                lambda: self._price_history.get_price_history(symbol, lookback_days)
            )
        except Exception as exc:
            raise ExternalServiceError(
                f"Price history unavailable for {symbol}",
                details={"symbol": symbol, "reason": str(exc)},
            ) from exc
        return to_price_frame(bars or [])

    async def _fetch_current_price(self, symbol: str) -> Optional[float]:
        key = daily_key("price", symbol)
        cached = await self._cache.get(key)
        if cached is not None:
            return float(cached)
        try:
            price = await self._price_caller.call(lambda: self._current_prices.get_current_price(symbol))
        except Exception as exc:
            raise ExternalServiceError(
                f"Current price unavailable for {symbol}",
                details={"symbol": symbol, "reason": str(exc)},
            ) from exc
        if price is not None and price > 0:
            await self._cache.set(key, float(price), ttl=self.settings.price_cache_ttl)
            return float(price)
        return None

    async def _fetch_histories(
        self,
        symbols: Sequence[str],
        lookback_days: int,
    ) -> tuple[dict[str, pd.DataFrame], list[str]]:
        """Fetch histories concurrently; failed symbols become warnings."""
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_symbols)

        async def fetch_one(symbol: str) -> pd.DataFrame:
            async with semaphore:
                return await self._fetch_history(symbol, lookback_days)

        results = await asyncio.gather(*[fetch_one(s) for s in symbols], return_exceptions=True)

        frames: dict[str, pd.DataFrame] = {}
        warnings: list[str] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, Exception):
                logger.warning(
                    f"History fetch failed for {symbol}: {result}",
                    extra={"symbol": symbol},
                )
                warnings.append(f"{symbol}: price history unavailable")
                continue
            if result.empty:
                warnings.append(f"{symbol}: no price history")
                continue
            frames[symbol] = result
        return frames, warnings

    def _portfolio_key(self, kind: str, user_id: str, holdings: Sequence[Holding]) -> str:
        return daily_key(kind, f"{user_id}@{symbol_set_key(h.symbol for h in holdings)}")

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def _compute_options(self, symbol: str, spot: float, volatility: float, dividend_yield: float) -> dict[str, Any]:
        rf = QUANT_CONSTANTS.risk_free_rate
        expiry = OPTIONS_EXPIRY_DAYS / 365.0

        atm = calculate_option_price(
            OptionParameters(
                spot=spot,
                strike=spot,
                time_to_expiry=expiry,
                risk_free_rate=rf,
                volatility=volatility,
                dividend_yield=dividend_yield,
            )
        )
        chains = build_option_chain(spot, volatility, dividend_yield, risk_free_rate=rf)
        chain = chains.get(OPTIONS_EXPIRY_DAYS) or next(iter(chains.values()), [])
        anchor = next(
            (item for item in chain if item.moneyness == Moneyness.AT_THE_MONEY),
            chain[len(chain) // 2] if chain else None,
        )

        return {
            "symbol": symbol,
            "current_price": spot,
            "historical_volatility": volatility,
            "dividend_yield": dividend_yield,
            "atm_option": atm.to_dict(),
            "option_chain": [item.to_dict() for item in chain],
            "chains_by_expiry": {
                str(days): [item.to_dict() for item in items] for days, items in chains.items()
            },
            "volatility_smile": [
                p.to_dict() for p in calculate_volatility_smile(spot, expiry, rf, volatility)
            ],
            "volatility_surface": generate_volatility_surface(spot, volatility).to_dict(),
            "market_outlook": determine_market_outlook(chain).value,
            "payoff_profile": (
                compute_payoff_profile(spot, anchor.strike, anchor.call_price, anchor.put_price).to_dict()
                if anchor
                else None
            ),
        }

    async def _options_for(self, symbol: str) -> dict[str, Any]:
        analysis = "options"
        symbol = symbol.upper()
        key = daily_key(analysis, symbol)
        cached = await self._cached(key)
        if cached is not None:
            return cached

        spot = await self._fetch_current_price(symbol)
        if spot is None:
            return _analysis_result(analysis, STATUS_UNAVAILABLE, {"symbol": symbol}, ["Current price unavailable"])

        frame = await self._fetch_history(symbol, self.settings.options_lookback_days)
        volatility = historical_volatility(frame["close"]) if not frame.empty else None
        if volatility is None:
            return _analysis_result(
                analysis,
                STATUS_UNAVAILABLE,
                {"symbol": symbol, "current_price": spot},
                ["Not enough price history to estimate volatility"],
            )

        data = await self._offload(
            self._compute_options, symbol, spot, volatility, self.settings.default_dividend_yield
        )
        result = _analysis_result(analysis, STATUS_OK, data)
        return await self._store(key, result, self.settings.options_cache_ttl)

    async def analyze_stock_options(self, symbol: str) -> dict[str, Any]:
        """Option valuation, chain, smile, surface and outlook for one symbol."""
        return await self._run("options", lambda: self._options_for(symbol))

    async def analyze_portfolio_options(self, user_id: str) -> dict[str, Any]:
        """Options analysis for every held symbol; failures are isolated per symbol."""
        analysis = "portfolio_options"

        async def body() -> dict[str, Any]:
            holdings = await self._fetch_holdings(user_id)
            if not holdings:
                return _analysis_result(analysis, STATUS_EMPTY, {"results": [], "unavailable": []})

            semaphore = asyncio.Semaphore(self.settings.max_concurrent_symbols)

            async def one(symbol: str) -> dict[str, Any]:
                async with semaphore:
                    return await self.analyze_stock_options(symbol)

            symbols = [h.symbol for h in holdings]
            envelopes = await asyncio.gather(*[one(s) for s in symbols], return_exceptions=True)

            results: list[dict[str, Any]] = []
            unavailable: list[dict[str, Any]] = []
            for symbol, envelope in zip(symbols, envelopes):
                if isinstance(envelope, Exception):
                    logger.error(f"Options analysis crashed for {symbol}: {envelope}", extra={"symbol": symbol})
                    unavailable.append({"symbol": symbol, "reason": "Internal analysis error"})
                elif envelope["status"] in CACHEABLE_STATUSES:
                    results.append(envelope["data"])
                else:
                    reason = envelope["warnings"][0] if envelope["warnings"] else envelope["status"]
                    unavailable.append({"symbol": symbol, "reason": reason})

            if not results:
                status = STATUS_UNAVAILABLE
            elif unavailable:
                status = STATUS_PARTIAL
            else:
                status = STATUS_OK

            logger.info(
                f"Portfolio options: {len(results)} analyzed, {len(unavailable)} unavailable",
                extra={"user_id": user_id},
            )
            return _analysis_result(
                analysis,
                status,
                {"results": results, "unavailable": unavailable},
                [f"{u['symbol']}: {u['reason']}" for u in unavailable],
            )

        return await self._run(analysis, body)

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    def _current_weights(self, holdings: Sequence[Holding], frames: dict[str, pd.DataFrame]) -> dict[str, float]:
        values = {}
        for h in holdings:
            price = h.current_price
            if not price and h.symbol in frames:
                price = float(frames[h.symbol]["close"].iloc[-1])
            if not price:
                price = h.cost_basis
            values[h.symbol] = float(h.shares) * float(price or 0.0)
        total = sum(values.values())
        if total <= 0:
            return {}
        return {s: v / total for s, v in values.items()}

    def _run_optimization(
        self,
        holdings: Sequence[Holding],
        frames: dict[str, pd.DataFrame],
        current_weights: dict[str, float],
    ) -> tuple[OptimizationResult, dict[str, Any], list[str]]:
        s = self.settings
        warnings: list[str] = []
        assets = []
        for h in holdings:
            frame = frames.get(h.symbol)
            if frame is None:
                continue
            asset = build_asset_data(h.symbol, frame["close"], min_points=s.min_points_asset)
            if asset is None:
                warnings.append(
                    f"{h.symbol}: fewer than {s.min_points_asset} closes, excluded from optimization"
                )
                continue
            assets.append(asset)

        if not assets:
            return OptimizationResult.empty(current_weights), {}, warnings

        result = optimize_portfolio(
            assets,
            current_weights,
            num_simulations=s.monte_carlo_simulations,
            num_days=s.monte_carlo_days,
            seed=s.monte_carlo_seed,
        )
        backtest = run_historical_backtest(holdings, frames, result.optimal_weights, current_weights)
        return result, backtest.to_dict(), warnings

    async def optimize_portfolio(self, user_id: str) -> dict[str, Any]:
        """Efficient frontier, Monte Carlo risk and historical backtest for a user."""
        analysis = "optimization"

        async def body() -> dict[str, Any]:
            holdings = await self._fetch_holdings(user_id)
            if not holdings:
                return _analysis_result(analysis, STATUS_EMPTY, OptimizationResult.empty().to_dict())

            if self._synthetic is not None:
                data = await self._offload(self._synthetic.optimization, holdings)
                return _analysis_result(analysis, STATUS_OK, data, source="synthetic")

            key = self._portfolio_key(analysis, user_id, holdings)
            cached = await self._cached(key)
            if cached is not None:
                return cached

            frames, warnings = await self._fetch_histories(
                [h.symbol for h in holdings], self.settings.optimization_lookback_days
            )
            current_weights = self._current_weights(holdings, frames)
            result, backtest, engine_warnings = await self._offload(
                self._run_optimization, holdings, frames, current_weights
            )
            warnings.extend(engine_warnings)

            data = result.to_dict()
            data["historical_backtest"] = backtest or None

            if result.is_empty:
                warnings.append("No asset has enough price history to optimize")
                return _analysis_result(analysis, STATUS_UNAVAILABLE, data, warnings)

            status = STATUS_PARTIAL if warnings else STATUS_OK
            envelope = _analysis_result(analysis, status, data, warnings)
            return await self._store(key, envelope, self.settings.optimization_cache_ttl)

        return await self._run(analysis, body)

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def _run_portfolio_cycles(
        self,
        holdings: Sequence[Holding],
        frames: dict[str, pd.DataFrame],
    ) -> dict[str, Any]:
        points = compute_portfolio_performance(holdings, frames)
        if len(points) < 2:
            raise InsufficientDataError(
                "Not enough portfolio history for cycle analysis", required=2, available=len(points)
            )

        result = analyze_price_cycles(
            [p.value for p in points],
            [p.date for p in points],
            min_cycle_points=self.settings.min_points_cycle_detection,
        )

        returns = {}
        for symbol, frame in frames.items():
            r = daily_returns(frame["close"])
            if len(r) > QUANT_CONSTANTS.lead_lag_min_overlap:
                returns[symbol] = r
        if len(returns) > 1:
            result.cross_correlations = analyze_portfolio_correlations(returns)

        return result.to_dict()

    async def analyze_market_cycles(self, user_id: str) -> dict[str, Any]:
        """Spectral analysis of the portfolio value series plus cross-correlations."""
        analysis = "market_cycles"

        async def body() -> dict[str, Any]:
            holdings = await self._fetch_holdings(user_id)
            if not holdings:
                return _analysis_result(analysis, STATUS_EMPTY, _empty_cycles())

            if self._synthetic is not None:
                data = await self._offload(self._synthetic.market_cycles, holdings)
                return _analysis_result(analysis, STATUS_OK, data, source="synthetic")

            key = self._portfolio_key(analysis, user_id, holdings)
            cached = await self._cached(key)
            if cached is not None:
                return cached

            frames, warnings = await self._fetch_histories(
                [h.symbol for h in holdings], self.settings.optimization_lookback_days
            )
            data = await self._offload(self._run_portfolio_cycles, holdings, frames)
            warnings = warnings + data.get("warnings", [])
            status = STATUS_PARTIAL if warnings else STATUS_OK
            envelope = _analysis_result(analysis, status, data, warnings)
            return await self._store(key, envelope, self.settings.cycles_cache_ttl)

        return await self._run(analysis, body)

    async def analyze_symbol_cycles(self, symbol: str) -> dict[str, Any]:
        """Spectral analysis of one symbol's close series."""
        analysis = "symbol_cycles"
        symbol = symbol.upper()

        async def body() -> dict[str, Any]:
            key = daily_key(analysis, symbol)
            cached = await self._cached(key)
            if cached is not None:
                return cached

            frame = await self._fetch_history(symbol, self.settings.optimization_lookback_days)
            if len(frame) < 2:
                raise InsufficientDataError(
                    f"Not enough price history for {symbol}", required=2, available=len(frame)
                )

            result = await self._offload(
                analyze_price_cycles,
                frame["close"].tolist(),
                list(frame.index),
                min_cycle_points=self.settings.min_points_cycle_detection,
            )
            data = result.to_dict()
            data["symbol"] = symbol
            status = STATUS_PARTIAL if result.warnings else STATUS_OK
            envelope = _analysis_result(analysis, status, data, list(result.warnings))
            return await self._store(key, envelope, self.settings.cycles_cache_ttl)

        return await self._run(analysis, body)

    # ------------------------------------------------------------------
    # Performance
    # ------------------------------------------------------------------

    async def portfolio_performance(self, user_id: str) -> dict[str, Any]:
        """Daily portfolio value series (date, value, percentage change)."""
        analysis = "performance"

        async def body() -> dict[str, Any]:
            holdings = await self._fetch_holdings(user_id)
            if not holdings:
                return _analysis_result(analysis, STATUS_EMPTY, {"points": []})

            if self._synthetic is not None:
                data = await self._offload(self._synthetic.performance, holdings)
                return _analysis_result(analysis, STATUS_OK, data, source="synthetic")

            key = self._portfolio_key(analysis, user_id, holdings)
            cached = await self._cached(key)
            if cached is not None:
                return cached

            frames, warnings = await self._fetch_histories(
                [h.symbol for h in holdings], self.settings.optimization_lookback_days
            )
            points = await self._offload(compute_portfolio_performance, holdings, frames)
            if not points:
                return _analysis_result(analysis, STATUS_UNAVAILABLE, {"points": []}, warnings or ["No price history"])

            status = STATUS_PARTIAL if warnings else STATUS_OK
            envelope = _analysis_result(analysis, status, {"points": [p.to_dict() for p in points]}, warnings)
            return await self._store(key, envelope, self.settings.price_cache_ttl)

        return await self._run(analysis, body)

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    async def invalidate(
        self,
        user_id: str | None = None,
        symbols: Sequence[str] | None = None,
    ) -> int:
        """Drop cached analyses for a user and/or symbols. Returns keys removed."""
        patterns = []
        if user_id:
            patterns.append(f"*_{user_id}@*")
        for symbol in symbols or []:
            sym = symbol.upper()
            # Portfolio scopes are user@SYM1,SYM2 followed by _<day>
            patterns.extend([f"*_{sym}_*", f"*@{sym},*", f"*,{sym},*", f"*,{sym}_*", f"*@{sym}_*"])

        removed = 0
        for pattern in patterns:
            removed += await self._cache.invalidate_pattern(pattern)
        logger.info(f"Invalidated {removed} cached analyses", extra={"user_id": user_id})
        return removed


def _empty_cycles() -> dict[str, Any]:
    return {
        "dominant_frequencies": [],
        "market_cycles": [],
        "power_spectrum": None,
        "decomposition": None,
        "forecast": [],
        "wavelet": None,
        "cross_correlations": None,
        "warnings": [],
    }
