"""
Portfolio walk-forward.

Runs the per-symbol walk-forward for every requested symbol, then combines
the symbols window by window into one portfolio:

1. Availability check (symbols without enough candles are excluded)
2. Per-symbol walk-forward (thread pool)
3. Valid-window-ratio guard
4. Reference window set
5. Benchmark MA(200) regime filter
6. Per-symbol MA filter
7. Candidate selection by IN-SAMPLE return only
8. Weighting (equal / inverse volatility) with a per-symbol cap
9. Portfolio OOS return
10. Drawdown throttle (reduce / halt)
11. Aggregation and consistency gate
12. Per-symbol contribution

CRITICAL: Out-of-sample returns never influence which symbols are held.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, localcontext
from enum import Enum
from math import ceil, floor
from typing import Callable, Optional
import structlog

import numpy as np
import pandas as pd

from src.data.cost_model.slippage_model import slippage_for_source
from src.data.loader import CandleSource
from src.data.schema import SOURCE_YF, SymbolConfig, resolve_symbol, to_timestamp
from src.exceptions import CandleLoadError, ConfigurationError, InsufficientDataError, NoDataError
from src.portfolio.allocator import PortfolioAllocator, WeightingMode, trailing_volatility
from src.risk.drawdown_monitor import DrawdownThrottle, ThrottleAction
from src.strategy.base import Strategy
from src.utils.decimal_utils import MONEY_CONTEXT, to_decimal
from research.backtesting.config import PortfolioWalkForwardConfig
from research.backtesting.engine import BacktestEngine
from research.backtesting.walk_forward import (
    WalkForwardRunner,
    WalkForwardWindow,
    WindowResult,
    WindowStatus,
)

logger = structlog.get_logger(__name__)

AVAILABILITY_RATIO = 0.6
BENCHMARK_MA_PERIOD = 200
BENCHMARK_LOOKBACK_DAYS = 250
SYMBOL_MA_EXTRA_DAYS = 30
MIN_POSITIVE_RATIO = 0.4

StrategyFactoryFn = Callable[[str], Strategy]


class PortfolioWindowStatus(str, Enum):
    VALID = "valid"
    INSUFFICIENT_TRADES = "insufficient_trades"
    BENCHMARK_BLOCKED = "benchmark_blocked"
    DD_HALTED = "dd_halted"
    DD_REDUCED = "dd_reduced"


# Windows that count towards aggregated metrics
COUNTED_STATUSES = (PortfolioWindowStatus.VALID, PortfolioWindowStatus.DD_REDUCED)


@dataclass
class PortfolioWindowResult:
    """One recorded portfolio window."""
    window_index: int
    window: WalkForwardWindow
    symbol_returns: dict[str, Optional[float]]
    portfolio_return: float
    active_symbols: list[str]
    weights: dict[str, float]
    benchmark_filter_applied: bool
    total_oos_trades: int
    position_scalar: float
    drawdown_at_window: float  # %
    status: PortfolioWindowStatus

    @property
    def out_sample_start(self) -> datetime:
        return self.window.out_sample_start

    def to_dict(self) -> dict:
        return {
            "window_index": self.window_index,
            **self.window.to_dict(),
            "symbol_returns": dict(self.symbol_returns),
            "portfolio_return": self.portfolio_return,
            "active_symbols": list(self.active_symbols),
            "weights": dict(self.weights),
            "benchmark_filter_applied": self.benchmark_filter_applied,
            "total_oos_trades": self.total_oos_trades,
            "position_scalar": self.position_scalar,
            "drawdown_at_window": self.drawdown_at_window,
            "status": self.status.value,
        }


@dataclass
class AggregatedMetrics:
    median_oos_return: float = 0.0
    avg_oos_return: float = 0.0
    positive_window_count: int = 0
    total_valid_windows: int = 0
    positive_ratio: float = 0.0
    max_drawdown: float = 0.0
    sharpe_estimate: float = 0.0
    consistency_pass: bool = False

    def to_dict(self) -> dict:
        return {
            "median_oos_return": self.median_oos_return,
            "avg_oos_return": self.avg_oos_return,
            "positive_window_count": self.positive_window_count,
            "total_valid_windows": self.total_valid_windows,
            "positive_ratio": self.positive_ratio,
            "max_drawdown": self.max_drawdown,
            "sharpe_estimate": self.sharpe_estimate,
            "consistency_pass": self.consistency_pass,
        }


@dataclass
class SymbolContribution:
    symbol: str
    avg_return: float
    valid_window_count: int


@dataclass
class DataAvailability:
    """Candle coverage of one symbol over the required range."""
    symbol: str
    source: str
    available: bool
    candle_count: int
    earliest: Optional[datetime]
    latest: Optional[datetime]
    required_start: datetime
    required_end: datetime
    min_required: int
    warning: Optional[str] = None


@dataclass
class PortfolioWalkForwardResult:
    symbols: list[str]
    excluded_symbols: list[str]
    start: datetime
    end: datetime
    windows: list[PortfolioWindowResult]
    aggregated: AggregatedMetrics
    symbol_contributions: list[SymbolContribution]
    symbol_windows: dict[str, list[WindowResult]]
    strategy_name: str
    availability: list[DataAvailability] = field(default_factory=list)

    def window_by_oos_start(self) -> dict[datetime, PortfolioWindowResult]:
        return {w.out_sample_start: w for w in self.windows}


# =============================================================================
# Aggregation helpers
# =============================================================================

def median(values: list[float]) -> float:
    """Median; mean of the two middle values for an even count, 0 when empty."""
    if not values:
        return 0.0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


def sharpe_estimate(returns: list[float]) -> float:
    """Mean / sample stdev of per-window returns; 0 with < 2 samples or no dispersion."""
    if len(returns) < 2:
        return 0.0
    std = float(np.std(returns, ddof=1))
    if std == 0:
        return 0.0
    return float(np.mean(returns)) / std


def cumulative_max_drawdown(returns: list[float]) -> float:
    """
    Peak-to-trough decline of the cumulative sum of window returns.

    The running peak starts at 0, so a series that only loses still
    reports its full cumulative loss. Result is in percent points.
    """
    peak = 0.0
    cumulative = 0.0
    max_dd = 0.0
    for r in returns:
        cumulative += r
        if cumulative > peak:
            peak = cumulative
        max_dd = max(max_dd, peak - cumulative)
    return max_dd


def aggregate_windows(windows: list[PortfolioWindowResult]) -> AggregatedMetrics:
    """Aggregate metrics over valid and reduced windows; drawdown over all windows."""
    counted = [w.portfolio_return for w in windows if w.status in COUNTED_STATUSES]
    all_returns = [w.portfolio_return for w in windows]

    positive = sum(1 for r in counted if r > 0)
    positive_ratio = positive / len(counted) if counted else 0.0
    median_return = median(counted)

    return AggregatedMetrics(
        median_oos_return=median_return,
        avg_oos_return=float(np.mean(counted)) if counted else 0.0,
        positive_window_count=positive,
        total_valid_windows=len(counted),
        positive_ratio=positive_ratio,
        max_drawdown=cumulative_max_drawdown(all_returns),
        sharpe_estimate=sharpe_estimate(counted),
        consistency_pass=positive_ratio >= MIN_POSITIVE_RATIO and median_return >= 0,
    )


def symbol_contributions(
    symbols: list[str],
    windows: list[PortfolioWindowResult],
) -> list[SymbolContribution]:
    """Average non-null OOS return per symbol, ranked descending."""
    contributions = []
    for symbol in symbols:
        returns = [
            w.symbol_returns[symbol] for w in windows
            if w.symbol_returns.get(symbol) is not None
        ]
        contributions.append(SymbolContribution(
            symbol=symbol,
            avg_return=float(np.mean(returns)) if returns else 0.0,
            valid_window_count=len(returns),
        ))
    contributions.sort(key=lambda c: c.avg_return, reverse=True)
    return contributions


def bearish_by_window(
    bars: pd.DataFrame,
    windows: list[WalkForwardWindow],
    period: int,
) -> dict[datetime, bool]:
    """
    For each window: last close < MA(period), using bars before the IS end.

    A window with fewer than `period` bars of history is never bearish.
    """
    flags = {}
    for window in windows:
        history = bars[bars["timestamp"] < window.in_sample_end]
        if len(history) < period:
            flags[window.out_sample_start] = False
            continue

        closes = [to_decimal(float(c)) for c in history["close"].iloc[-period:]]
        with localcontext(MONEY_CONTEXT):
            ma = sum(closes, Decimal(0)) / period
        flags[window.out_sample_start] = closes[-1] < ma
    return flags


# =============================================================================
# Engine
# =============================================================================

class PortfolioWalkForward:
    """
    Portfolio-level walk-forward over several symbols.

    Usage:
        runner = PortfolioWalkForward(candle_source, config)
        result = runner.run()
    """

    def __init__(
        self,
        source: CandleSource,
        config: PortfolioWalkForwardConfig,
        strategy_factory: Optional[StrategyFactoryFn] = None,
    ):
        """
        Initialize portfolio walk-forward.

        Args:
            source: Candle source
            config: Run configuration (validated here)
            strategy_factory: Builds the strategy for a resolved symbol;
                defaults to the per-asset-class factory from the config
        """
        self.source = source
        self.config = config.validate()
        self.strategy_factory = strategy_factory or config.strategy_factory()
        self.allocator = PortfolioAllocator(
            mode=config.weighting_mode,
            max_symbol_weight=config.max_symbol_weight,
        )

    def run(self) -> PortfolioWalkForwardResult:
        """
        Run the full portfolio walk-forward.

        Raises:
            InsufficientDataError: every symbol failed the availability
                check, or no symbol produced a walk-forward window
        """
        cfg = self.config
        start = to_timestamp(cfg.start)
        end = to_timestamp(cfg.end)

        # 1. Availability
        availability, bars_by_symbol = self.check_availability([resolve_symbol(s) for s in cfg.symbols])
        resolved = [
            SymbolConfig(a.symbol, a.source) for a in availability if a.available
        ]
        excluded = [a.symbol for a in availability if not a.available]
        if not resolved:
            raise InsufficientDataError(
                "All symbols insufficient: no symbol has enough candles for the requested range"
            )

        logger.info(
            "portfolio_walk_forward_starting",
            symbols=[r.symbol for r in resolved],
            excluded=excluded,
            start=str(start.date()),
            end=str(end.date()),
            max_positions=cfg.max_positions,
            weighting=cfg.weighting,
            slippage_bps=cfg.slippage_bps,
        )

        # 2. Per-symbol walk-forward
        symbol_windows = self._run_symbols(resolved, bars_by_symbol, start, end)

        # 3. Valid-window-ratio guard
        resolved, ratio_excluded = self._apply_window_ratio_guard(resolved, symbol_windows)
        excluded.extend(ratio_excluded)
        symbols = [r.symbol for r in resolved]

        # 4. Reference windows
        reference: list[WindowResult] = []
        for symbol in symbols:
            if len(symbol_windows.get(symbol, [])) > len(reference):
                reference = symbol_windows[symbol]
        if not reference:
            raise InsufficientDataError(
                "All symbol walk-forward runs failed: no window could be evaluated"
            )
        reference_windows = [r.window for r in reference]
        strategy_name = getattr(self.strategy_factory, "display_name", None) \
            or reference[0].in_sample_result.strategy_name

        # 5-6. Filters
        benchmark_flags = self._benchmark_flags(reference_windows) if cfg.use_benchmark_filter else {}
        symbol_ma_flags = self._symbol_ma_flags(resolved, reference_windows) if cfg.symbol_ma_filter else {}

        # 7-10. Window loop (sequential: drawdown state carries across windows)
        throttle = DrawdownThrottle(
            reduce_pct=cfg.dd_reduce_pct,
            halt_pct=cfg.dd_halt_pct,
            lookback=cfg.dd_lookback,
        )
        by_oos_start = {
            symbol: {w.window.out_sample_start: w for w in symbol_windows.get(symbol, [])}
            for symbol in symbols
        }
        source_of = {r.symbol: r.source for r in resolved}

        windows = []
        for index, window in enumerate(reference_windows):
            windows.append(self._evaluate_window(
                index,
                window,
                symbols,
                by_oos_start,
                source_of,
                benchmark_flags.get(window.out_sample_start, False),
                symbol_ma_flags,
                throttle,
            ))

        # 11-12. Aggregation
        aggregated = aggregate_windows(windows)
        contributions = symbol_contributions(symbols, windows)

        logger.info(
            "portfolio_walk_forward_complete",
            strategy=strategy_name,
            total_windows=len(windows),
            valid_windows=aggregated.total_valid_windows,
            positive_ratio=round(aggregated.positive_ratio, 4),
            median_oos_return=round(aggregated.median_oos_return, 4),
            consistency_pass=aggregated.consistency_pass,
        )

        return PortfolioWalkForwardResult(
            symbols=symbols,
            excluded_symbols=excluded,
            start=start,
            end=end,
            windows=windows,
            aggregated=aggregated,
            symbol_contributions=contributions,
            symbol_windows=symbol_windows,
            strategy_name=strategy_name,
            availability=availability,
        )

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def check_availability(
        self,
        resolved: list[SymbolConfig],
    ) -> tuple[list[DataAvailability], dict[str, pd.DataFrame]]:
        """
        Load each symbol over [start - warmup, end] and check coverage.

        A symbol needs floor((warmup + IS + OOS) * 0.6) candles. Load
        failures mark the symbol unavailable with the error as warning.

        Returns:
            (availability per symbol, bars of available symbols)
        """
        cfg = self.config
        required_start = to_timestamp(cfg.start) - timedelta(days=cfg.warmup_days)
        required_end = to_timestamp(cfg.end)
        min_required = floor(
            (cfg.warmup_days + cfg.in_sample_days + cfg.out_sample_days) * AVAILABILITY_RATIO
        )

        results = []
        bars_by_symbol = {}
        for r in resolved:
            bars = None
            warning = None
            try:
                bars = self.source.load_bars(r.symbol, r.source, required_start, required_end)
            except NoDataError:
                warning = f"No candles in {r.source}_candles for {r.symbol}"
            except CandleLoadError as e:
                warning = f"Candle load failed: {e}"
            except ValueError as e:
                warning = f"Invalid candle series: {e}"

            count = len(bars) if bars is not None else 0
            available = count >= min_required and count > 0
            if bars is not None and not available:
                warning = (
                    f"{count} candles < minimum {min_required} "
                    f"({bars['timestamp'].iloc[0].date()} to {bars['timestamp'].iloc[-1].date()})"
                )

            results.append(DataAvailability(
                symbol=r.symbol,
                source=r.source,
                available=available,
                candle_count=count,
                earliest=bars["timestamp"].iloc[0].to_pydatetime() if count else None,
                latest=bars["timestamp"].iloc[-1].to_pydatetime() if count else None,
                required_start=required_start,
                required_end=required_end,
                min_required=min_required,
                warning=warning,
            ))

            if available:
                bars_by_symbol[r.symbol] = bars
            else:
                logger.warning(
                    "symbol_excluded_insufficient_data",
                    symbol=r.symbol,
                    source=r.source,
                    candle_count=count,
                    min_required=min_required,
                    warning=warning,
                )

        return results, bars_by_symbol

    def _run_symbols(
        self,
        resolved: list[SymbolConfig],
        bars_by_symbol: dict[str, pd.DataFrame],
        start: pd.Timestamp,
        end: pd.Timestamp,
    ) -> dict[str, list[WindowResult]]:
        """Walk-forward per symbol in a thread pool; results keep input order."""
        def run_one(r: SymbolConfig) -> list[WindowResult]:
            return self._run_symbol(r, bars_by_symbol[r.symbol], start, end)

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            outcomes = list(executor.map(run_one, resolved))

        return {r.symbol: windows for r, windows in zip(resolved, outcomes)}

    def _run_symbol(
        self,
        resolved: SymbolConfig,
        bars: pd.DataFrame,
        start: pd.Timestamp,
        end: pd.Timestamp,
    ) -> list[WindowResult]:
        cfg = self.config
        engine = BacktestEngine(
            initial_capital=cfg.initial_capital,
            commission_pct=cfg.commission_pct,
            slippage=slippage_for_source(resolved.source, cfg.slippage_bps),
        )
        runner = WalkForwardRunner(
            engine=engine,
            in_sample_days=cfg.in_sample_days,
            out_sample_days=cfg.out_sample_days,
            step_days=cfg.effective_step_days,
            warmup_days=cfg.warmup_days,
            min_oos_trades=cfg.min_oos_trades,
        )

        try:
            strategy = self.strategy_factory(resolved.symbol)
            result = runner.run(strategy, bars, resolved.symbol, start, end)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(
                "symbol_walk_forward_failed",
                symbol=resolved.symbol,
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

        return result.windows

    def _apply_window_ratio_guard(
        self,
        resolved: list[SymbolConfig],
        symbol_windows: dict[str, list[WindowResult]],
    ) -> tuple[list[SymbolConfig], list[str]]:
        """Drop symbols whose valid-window share is below min_symbol_window_ratio."""
        min_ratio = self.config.min_symbol_window_ratio
        if min_ratio <= 0:
            return resolved, []

        total_windows = max([len(w) for w in symbol_windows.values()] + [1])
        kept = []
        excluded = []
        for r in resolved:
            windows = symbol_windows.get(r.symbol, [])
            if not windows:
                excluded.append(r.symbol)
                continue

            valid = sum(1 for w in windows if w.status != WindowStatus.INSUFFICIENT_TRADES)
            ratio = valid / total_windows
            if ratio < min_ratio:
                logger.warning(
                    "symbol_excluded_window_ratio",
                    symbol=r.symbol,
                    ratio=round(ratio, 4),
                    min_ratio=min_ratio,
                )
                excluded.append(r.symbol)
                continue
            kept.append(r)

        return kept, excluded

    def _benchmark_flags(self, windows: list[WalkForwardWindow]) -> dict[datetime, bool]:
        """Benchmark MA(200) regime per window; a load failure disables the filter."""
        cfg = self.config
        benchmark = resolve_symbol(cfg.benchmark_symbol)
        load_start = to_timestamp(cfg.start) - timedelta(days=BENCHMARK_LOOKBACK_DAYS)

        try:
            bars = self.source.load_bars(benchmark.symbol, SOURCE_YF, load_start, cfg.end)
        except (CandleLoadError, ValueError) as e:
            logger.warning("benchmark_filter_disabled", symbol=benchmark.symbol, error=str(e))
            return {}

        flags = bearish_by_window(bars, windows, BENCHMARK_MA_PERIOD)
        logger.info(
            "benchmark_filter_ready",
            symbol=benchmark.symbol,
            candles=len(bars),
            blocked_windows=sum(flags.values()),
        )
        return flags

    def _symbol_ma_flags(
        self,
        resolved: list[SymbolConfig],
        windows: list[WalkForwardWindow],
    ) -> dict[str, dict[datetime, bool]]:
        """Per-symbol MA(N) bearish flags; a load failure disables that symbol's filter."""
        cfg = self.config
        period = cfg.symbol_ma_period
        load_start = to_timestamp(cfg.start) - timedelta(days=period + SYMBOL_MA_EXTRA_DAYS)

        flags = {}
        for r in resolved:
            try:
                bars = self.source.load_bars(r.symbol, r.source, load_start, cfg.end)
            except (CandleLoadError, ValueError) as e:
                logger.warning("symbol_ma_filter_disabled", symbol=r.symbol, error=str(e))
                continue

            flags[r.symbol] = bearish_by_window(bars, windows, period)
            logger.debug(
                "symbol_ma_filter_ready",
                symbol=r.symbol,
                period=period,
                blocked_windows=sum(flags[r.symbol].values()),
            )
        return flags

    def _symbol_volatility(self, symbol: str, source: str, oos_start: datetime) -> Optional[float]:
        """Trailing daily-return stdev ending the day before OOS start."""
        lookback = self.config.vol_lookback
        load_start = oos_start - timedelta(days=ceil(lookback * 1.5))
        load_end = oos_start - timedelta(days=1)
        try:
            bars = self.source.load_bars(symbol, source, load_start, load_end)
        except (CandleLoadError, ValueError) as e:
            logger.debug("volatility_unavailable", symbol=symbol, error=str(e))
            return None
        return trailing_volatility(bars, lookback)

    def _evaluate_window(
        self,
        index: int,
        window: WalkForwardWindow,
        symbols: list[str],
        by_oos_start: dict[str, dict[datetime, WindowResult]],
        source_of: dict[str, str],
        benchmark_blocked: bool,
        symbol_ma_flags: dict[str, dict[datetime, bool]],
        throttle: DrawdownThrottle,
    ) -> PortfolioWindowResult:
        """Steps 7-10 for one window."""
        cfg = self.config
        key = window.out_sample_start

        symbol_returns: dict[str, Optional[float]] = {}
        is_returns: dict[str, float] = {}
        total_oos_trades = 0

        for symbol in symbols:
            matching = by_oos_start[symbol].get(key)
            if matching is None or matching.status == WindowStatus.INSUFFICIENT_TRADES:
                symbol_returns[symbol] = None
                continue
            if symbol_ma_flags.get(symbol, {}).get(key, False):
                symbol_returns[symbol] = None
                continue

            symbol_returns[symbol] = matching.out_sample_return
            is_returns[symbol] = matching.in_sample_return
            total_oos_trades += matching.oos_trade_count

        portfolio_return = 0.0
        active: list[str] = []
        weights: dict[str, float] = {}

        if benchmark_blocked:
            status = PortfolioWindowStatus.BENCHMARK_BLOCKED
        else:
            # Rank by in-sample return; sorted() is stable so ties keep symbol order
            candidates = [s for s in symbols if symbol_returns[s] is not None]
            candidates = sorted(candidates, key=lambda s: is_returns[s], reverse=True)
            selected = candidates[:cfg.max_positions]

            if not selected:
                status = PortfolioWindowStatus.INSUFFICIENT_TRADES
            else:
                vols = None
                if self.allocator.mode == WeightingMode.INV_VOL:
                    vols = {s: self._symbol_volatility(s, source_of[s], key) for s in selected}
                weights = self.allocator.weights(selected, vols)
                portfolio_return = sum(symbol_returns[s] * weights[s] for s in selected)
                active = list(selected)
                status = (
                    PortfolioWindowStatus.VALID if total_oos_trades >= cfg.min_oos_trades
                    else PortfolioWindowStatus.INSUFFICIENT_TRADES
                )

        decision = throttle.apply(
            portfolio_return,
            can_halt=status != PortfolioWindowStatus.INSUFFICIENT_TRADES,
            can_reduce=status == PortfolioWindowStatus.VALID,
        )
        if decision.action == ThrottleAction.HALT:
            status = PortfolioWindowStatus.DD_HALTED
            active = []
            weights = {}
        elif decision.action == ThrottleAction.REDUCE:
            status = PortfolioWindowStatus.DD_REDUCED

        logger.debug(
            "portfolio_window_recorded",
            window_index=index,
            out_sample=window.out_sample_period,
            status=status.value,
            portfolio_return=round(decision.portfolio_return, 4),
            active_symbols=active,
        )

        return PortfolioWindowResult(
            window_index=index,
            window=window,
            symbol_returns=symbol_returns,
            portfolio_return=decision.portfolio_return,
            active_symbols=active,
            weights=weights,
            benchmark_filter_applied=benchmark_blocked,
            total_oos_trades=total_oos_trades,
            position_scalar=decision.position_scalar,
            drawdown_at_window=decision.drawdown_pct,
            status=status,
        )


def run_portfolio_walk_forward(
    source: CandleSource,
    config: PortfolioWalkForwardConfig,
    strategy_factory: Optional[StrategyFactoryFn] = None,
) -> PortfolioWalkForwardResult:
    """Convenience wrapper around PortfolioWalkForward(...).run()."""
    return PortfolioWalkForward(source, config, strategy_factory).run()
