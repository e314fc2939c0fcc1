"""
Enhanced MA Crossover.

Simple MA crossover with risk controls layered on:
1. ATR stop: exit when close < entry price - entry ATR * multiplier
2. Trend filter: enter only while the long MA slope is positive
3. Optional 200-day MA filter: enter only above MA(200)
4. Optional ADX filter: enter only when ADX > threshold (blocks chop)

The 200MA filter is soft: with too little history it is skipped and the
trade is allowed. The ADX filter raises the minimum history instead.
"""

from dataclasses import dataclass
from typing import Optional
import structlog

import pandas as pd

from src.strategy.base import Position, Signal, Strategy
from src.strategy.indicators import adx_simple, atr, sma

logger = structlog.get_logger(__name__)


@dataclass
class EnhancedMAState:
    """Per-run state: ATR captured at entry, used for the stop."""
    entry_atr: Optional[float] = None


class EnhancedMAStrategy(Strategy):

    def __init__(
        self,
        short_period: int = 10,
        long_period: int = 20,
        atr_period: int = 14,
        atr_multiplier: float = 2.0,
        slope_period: int = 5,
        use_200ma_filter: bool = False,
        ma200_period: int = 200,
        use_adx_filter: bool = False,
        adx_period: int = 14,
        adx_threshold: float = 20.0,
    ):
        self.short_period = short_period
        self.long_period = long_period
        self.atr_period = atr_period
        self.atr_multiplier = atr_multiplier
        self.slope_period = slope_period
        self.use_200ma_filter = use_200ma_filter
        self.ma200_period = ma200_period
        self.use_adx_filter = use_adx_filter
        self.adx_period = adx_period
        self.adx_threshold = adx_threshold

        filters = []
        if use_200ma_filter:
            filters.append("200MA")
        if use_adx_filter:
            filters.append(f"ADX>{adx_threshold:g}")

        self.name = "Enhanced MA (ATR Stop + Size + Filter)"
        if filters:
            self.name = f"Enhanced MA (ATR Stop + Size + Filter + {' + '.join(filters)})"

    @property
    def min_bars(self) -> int:
        return max(
            self.long_period + self.slope_period,
            self.atr_period + 1,
            self.adx_period * 2 + 1 if self.use_adx_filter else 0,
        )

    def initial_state(self) -> EnhancedMAState:
        return EnhancedMAState()

    def decide(
        self,
        bars: pd.DataFrame,
        position: Optional[Position],
        state: EnhancedMAState,
    ) -> Signal:
        if len(bars) < self.min_bars:
            return Signal.hold()

        close = float(bars["close"].iloc[-1])

        # ATR stop
        if position is not None and state.entry_atr is not None:
            stop_price = float(position.avg_price) - state.entry_atr * self.atr_multiplier
            if close < stop_price:
                state.entry_atr = None
                return Signal.sell(
                    reason=f"ATR stop (stop: {stop_price:.0f}, close: {close:.0f})"
                )

        short_ma = sma(bars, self.short_period)
        long_ma = sma(bars, self.long_period)

        prev = bars.iloc[:-1]
        prev_short = sma(prev, self.short_period) if len(prev) >= self.short_period else None
        prev_long = sma(prev, self.long_period) if len(prev) >= self.long_period else None

        # Long MA slope over slope_period bars
        slope_bars = bars.iloc[:-self.slope_period] if self.slope_period > 0 else bars
        is_trending = (
            len(slope_bars) >= self.long_period
            and long_ma - sma(slope_bars, self.long_period) > 0
        )

        above_200ma = True
        if self.use_200ma_filter and len(bars) >= self.ma200_period:
            above_200ma = close > sma(bars, self.ma200_period)

        adx_strong = True
        adx_value = None
        if self.use_adx_filter and len(bars) >= self.adx_period * 2 + 1:
            adx_value = adx_simple(bars, self.adx_period)
            adx_strong = adx_value > self.adx_threshold

        crossed = prev_short is not None and prev_long is not None

        if (
            crossed
            and prev_short <= prev_long
            and short_ma > long_ma
            and position is None
            and is_trending
            and above_200ma
            and adx_strong
        ):
            entry_atr = atr(bars, self.atr_period)
            state.entry_atr = entry_atr

            details = [
                f"short MA: {short_ma:.0f}",
                f"long MA: {long_ma:.0f}",
                f"ATR stop: {close - entry_atr * self.atr_multiplier:.0f}",
            ]
            if adx_value is not None:
                details.append(f"ADX: {adx_value:.1f}")

            logger.debug("enhanced_ma_entry", close=close, atr=entry_atr, adx=adx_value)
            return Signal.buy(reason=f"Golden cross + uptrend ({', '.join(details)})")

        if (
            crossed
            and prev_short >= prev_long
            and short_ma < long_ma
            and position is not None
        ):
            state.entry_atr = None
            return Signal.sell(
                reason=f"Dead cross (short MA: {short_ma:.0f}, long MA: {long_ma:.0f})"
            )

        return Signal.hold()
