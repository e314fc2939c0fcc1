"""
Simple Moving Average Crossover.

- Buy when the short SMA crosses above the long SMA (golden cross)
- Sell when the short SMA crosses below the long SMA (dead cross)
"""

from typing import Any, Optional
import structlog

import pandas as pd

from src.strategy.base import Position, Signal, Strategy
from src.strategy.indicators import sma

logger = structlog.get_logger(__name__)


class SimpleMAStrategy(Strategy):
    """Baseline trend-following crossover with no filters or stops."""

    name = "Simple MA Crossover"

    def __init__(self, short_period: int = 10, long_period: int = 20):
        if short_period <= 0 or long_period <= 0:
            raise ValueError("MA periods must be positive")

        self.short_period = short_period
        self.long_period = long_period

    def decide(
        self,
        bars: pd.DataFrame,
        position: Optional[Position],
        state: Any = None,
    ) -> Signal:
        if len(bars) < max(self.short_period, self.long_period):
            return Signal.hold()

        short_ma = sma(bars, self.short_period)
        long_ma = sma(bars, self.long_period)

        prev = bars.iloc[:-1]
        if len(prev) < max(self.short_period, self.long_period):
            return Signal.hold()

        prev_short = sma(prev, self.short_period)
        prev_long = sma(prev, self.long_period)

        if prev_short <= prev_long and short_ma > long_ma and position is None:
            logger.debug("golden_cross", short_ma=short_ma, long_ma=long_ma)
            return Signal.buy(
                reason=f"Golden cross (short MA: {short_ma:.2f}, long MA: {long_ma:.2f})"
            )

        if prev_short >= prev_long and short_ma < long_ma and position is not None:
            logger.debug("dead_cross", short_ma=short_ma, long_ma=long_ma)
            return Signal.sell(
                reason=f"Dead cross (short MA: {short_ma:.2f}, long MA: {long_ma:.2f})"
            )

        return Signal.hold()
