"""
Walk-forward validation framework.

CRITICAL: Out-of-sample results are the only numbers that count.
In-sample results are used for ranking and comparison, never as evidence.

Walk-forward protocol:
- In-sample  = [t, t + IS)
- Out-sample = [t + IS, t + IS + OOS)
- t advances by step_days while the out-sample end stays within the range
- Every segment is simulated from a fresh strategy state
- Warmup days before a segment start are indicator history only
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import localcontext
from enum import Enum
from typing import Optional
import structlog

import numpy as np
import pandas as pd

from src.data.loader import DateLike
from src.data.schema import to_timestamp
from src.exceptions import ConfigurationError, NoDataError
from src.strategy.base import Strategy
from src.utils.decimal_utils import MONEY_CONTEXT, ZERO
from research.backtesting.engine import BacktestEngine, BacktestResult
from research.backtesting.metrics import PerformanceMetrics, count_round_trips

logger = structlog.get_logger(__name__)

DEFAULT_MIN_OOS_TRADES = 3


class WindowStatus(str, Enum):
    VALID = "valid"
    INSUFFICIENT_TRADES = "insufficient_trades"


@dataclass(frozen=True)
class WalkForwardWindow:
    """One in-sample / out-of-sample pair. End bounds are exclusive."""
    in_sample_start: datetime
    in_sample_end: datetime
    out_sample_start: datetime
    out_sample_end: datetime

    @property
    def in_sample_period(self) -> str:
        return f"{self.in_sample_start.date()} to {self.in_sample_end.date()}"

    @property
    def out_sample_period(self) -> str:
        return f"{self.out_sample_start.date()} to {self.out_sample_end.date()}"

    def to_dict(self) -> dict:
        return {
            "in_sample_start": self.in_sample_start.isoformat(),
            "in_sample_end": self.in_sample_end.isoformat(),
            "out_sample_start": self.out_sample_start.isoformat(),
            "out_sample_end": self.out_sample_end.isoformat(),
        }


@dataclass
class WindowResult:
    """IS and OOS simulation of one window."""
    window: WalkForwardWindow
    in_sample_result: BacktestResult
    out_sample_result: BacktestResult
    oos_trade_count: int
    status: WindowStatus

    @property
    def in_sample_return(self) -> float:
        return self.in_sample_result.total_return

    @property
    def out_sample_return(self) -> float:
        return self.out_sample_result.total_return

    @property
    def is_valid(self) -> bool:
        return self.status == WindowStatus.VALID


@dataclass
class WalkForwardResult:
    """All windows of one symbol plus averaged metrics."""
    strategy_name: str
    symbol: str
    windows: list[WindowResult]
    in_sample_metrics: PerformanceMetrics
    out_sample_metrics: PerformanceMetrics

    @property
    def valid_windows(self) -> list[WindowResult]:
        return [w for w in self.windows if w.is_valid]


def generate_windows(
    start: DateLike,
    end: DateLike,
    in_sample_days: int,
    out_sample_days: int,
    step_days: int,
) -> list[WalkForwardWindow]:
    """
    Slide an (IS, OOS) pair through [start, end].

    Out-of-sample starts strictly increase. A range shorter than one
    IS + OOS span yields no windows.

    Raises:
        ConfigurationError: non-positive day counts
    """
    if in_sample_days <= 0 or out_sample_days <= 0 or step_days <= 0:
        raise ConfigurationError(
            "Walk-forward day counts must be positive "
            f"(in_sample={in_sample_days}, out_sample={out_sample_days}, step={step_days})"
        )

    start_ts = to_timestamp(start)
    end_ts = to_timestamp(end)

    windows = []
    current = start_ts
    while True:
        in_sample_end = current + timedelta(days=in_sample_days)
        out_sample_end = in_sample_end + timedelta(days=out_sample_days)
        if out_sample_end > end_ts:
            break

        windows.append(WalkForwardWindow(
            in_sample_start=current,
            in_sample_end=in_sample_end,
            out_sample_start=in_sample_end,
            out_sample_end=out_sample_end,
        ))
        current = current + timedelta(days=step_days)

    logger.debug("windows_generated", count=len(windows), start=str(start_ts.date()), end=str(end_ts.date()))
    return windows


def average_metrics(metrics: list[PerformanceMetrics]) -> PerformanceMetrics:
    """
    Average per-window metrics; trade counts are summed.

    An empty list gives all-zero metrics.
    """
    if not metrics:
        return PerformanceMetrics()

    n = len(metrics)
    with localcontext(MONEY_CONTEXT):
        avg_win = sum((m.avg_win for m in metrics), ZERO) / n
        avg_loss = sum((m.avg_loss for m in metrics), ZERO) / n

    return PerformanceMetrics(
        total_return=float(np.mean([m.total_return for m in metrics])),
        sharpe_ratio=float(np.mean([m.sharpe_ratio for m in metrics])),
        max_drawdown=float(np.mean([m.max_drawdown for m in metrics])),
        win_rate=float(np.mean([m.win_rate for m in metrics])),
        profit_factor=float(np.mean([m.profit_factor for m in metrics])),
        avg_win=avg_win,
        avg_loss=avg_loss,
        total_trades=sum(m.total_trades for m in metrics),
        winning_trades=sum(m.winning_trades for m in metrics),
        losing_trades=sum(m.losing_trades for m in metrics),
        avg_trade_duration=float(np.mean([m.avg_trade_duration for m in metrics])),
    )


class WalkForwardRunner:
    """
    Runs a strategy through walk-forward windows on one symbol's bars.

    Key principles:
    - IS and OOS segments never overlap
    - Fresh strategy state per segment
    - Transaction costs applied to every segment
    - A window that cannot be simulated is skipped, not fatal
    """

    def __init__(
        self,
        engine: BacktestEngine,
        in_sample_days: int,
        out_sample_days: int,
        step_days: int,
        warmup_days: int = 0,
        min_oos_trades: int = DEFAULT_MIN_OOS_TRADES,
    ):
        """
        Initialize walk-forward runner.

        Args:
            engine: Simulator used for every segment
            in_sample_days: In-sample length (calendar days)
            out_sample_days: Out-of-sample length (calendar days)
            step_days: Distance between consecutive window starts
            warmup_days: History loaded before each segment start
            min_oos_trades: Round trips needed for a window to be valid
        """
        if warmup_days < 0:
            raise ConfigurationError("warmup_days must be >= 0")

        self.engine = engine
        self.in_sample_days = in_sample_days
        self.out_sample_days = out_sample_days
        self.step_days = step_days
        self.warmup_days = warmup_days
        self.min_oos_trades = min_oos_trades

    def windows(self, start: DateLike, end: DateLike) -> list[WalkForwardWindow]:
        return generate_windows(start, end, self.in_sample_days, self.out_sample_days, self.step_days)

    def run(
        self,
        strategy: Strategy,
        bars: pd.DataFrame,
        symbol: str,
        start: DateLike,
        end: DateLike,
    ) -> WalkForwardResult:
        """
        Run walk-forward over [start, end].

        Args:
            strategy: Strategy configuration (state is created per segment)
            bars: Bars covering [start - warmup_days, end]
            symbol: Symbol label
            start: First in-sample day
            end: Last day of the range

        Returns:
            WalkForwardResult

        Raises:
            ConfigurationError: invalid window day counts
            NoDataError: no window could be evaluated
        """
        windows = self.windows(start, end)

        logger.info(
            "walk_forward_starting",
            symbol=symbol,
            strategy=strategy.name,
            num_windows=len(windows),
        )

        results: list[WindowResult] = []
        for window in windows:
            try:
                is_result = self._run_segment(
                    strategy, bars, symbol, window.in_sample_start, window.in_sample_end
                )
                oos_result = self._run_segment(
                    strategy, bars, symbol, window.out_sample_start, window.out_sample_end
                )
            except NoDataError as e:
                logger.warning(
                    "window_skipped_no_data",
                    symbol=symbol,
                    in_sample=window.in_sample_period,
                    out_sample=window.out_sample_period,
                    error=str(e),
                )
                continue

            oos_trades = count_round_trips(oos_result.trades)
            status = (
                WindowStatus.VALID if oos_trades >= self.min_oos_trades
                else WindowStatus.INSUFFICIENT_TRADES
            )

            results.append(WindowResult(
                window=window,
                in_sample_result=is_result,
                out_sample_result=oos_result,
                oos_trade_count=oos_trades,
                status=status,
            ))

            logger.debug(
                "window_complete",
                symbol=symbol,
                out_sample=window.out_sample_period,
                is_return=round(is_result.total_return, 4),
                oos_return=round(oos_result.total_return, 4),
                oos_trades=oos_trades,
                status=status.value,
            )

        if not results:
            raise NoDataError(f"No walk-forward window could be evaluated for {symbol}", symbol=symbol)

        valid = [r for r in results if r.is_valid]
        in_sample_metrics = average_metrics([r.in_sample_result.metrics for r in results])
        out_sample_metrics = average_metrics(
            [r.out_sample_result.metrics for r in (valid or results)]
        )

        logger.info(
            "walk_forward_complete",
            symbol=symbol,
            windows=len(results),
            valid_windows=len(valid),
            is_sharpe=round(in_sample_metrics.sharpe_ratio, 4),
            oos_sharpe=round(out_sample_metrics.sharpe_ratio, 4),
        )

        return WalkForwardResult(
            strategy_name=strategy.name,
            symbol=symbol,
            windows=results,
            in_sample_metrics=in_sample_metrics,
            out_sample_metrics=out_sample_metrics,
        )

    def _run_segment(
        self,
        strategy: Strategy,
        bars: pd.DataFrame,
        symbol: str,
        segment_start: datetime,
        segment_end: datetime,
    ) -> BacktestResult:
        """Simulate [segment_start, segment_end) with warmup history before it."""
        history_start = segment_start - timedelta(days=self.warmup_days)
        segment = bars[
            (bars["timestamp"] >= history_start) & (bars["timestamp"] < segment_end)
        ]
        return self.engine.run(strategy, segment, trade_start=segment_start, symbol=symbol)


def symbol_windows_by_oos_start(result: Optional[WalkForwardResult]) -> dict[datetime, WindowResult]:
    """Index a symbol's windows by out-of-sample start."""
    if result is None:
        return {}
    return {w.window.out_sample_start: w for w in result.windows}
