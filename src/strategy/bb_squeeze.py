"""
Bollinger Band Squeeze (Keltner release).

- Squeeze ON: Bollinger Bands sit inside the Keltner Channel
- Entry: squeeze was on for the previous bar, is off now, and the close
  breaks above the upper Bollinger Band
- Exit: ATR stop (entry price - entry ATR * multiplier) or close below
  the lower Bollinger Band

Suits names that alternate between tight ranges and sharp expansions.
"""

from dataclasses import dataclass
from typing import Optional
import structlog

import pandas as pd

from src.strategy.base import Position, Signal, Strategy
from src.strategy.indicators import atr, bollinger_bands, keltner_channel

logger = structlog.get_logger(__name__)


@dataclass
class BBSqueezeState:
    prev_squeeze: bool = False
    entry_atr: Optional[float] = None


class BBSqueezeStrategy(Strategy):

    name = "BB Squeeze (Keltner + ATR Stop)"

    def __init__(
        self,
        bb_period: int = 20,
        bb_std_dev: float = 2.0,
        keltner_period: int = 20,
        keltner_multiplier: float = 1.5,
        atr_period: int = 14,
        atr_stop_multiplier: float = 2.0,
    ):
        self.bb_period = bb_period
        self.bb_std_dev = bb_std_dev
        self.keltner_period = keltner_period
        self.keltner_multiplier = keltner_multiplier
        self.atr_period = atr_period
        self.atr_stop_multiplier = atr_stop_multiplier

    @property
    def min_bars(self) -> int:
        return max(self.bb_period, self.keltner_period, self.atr_period) + 2

    def initial_state(self) -> BBSqueezeState:
        return BBSqueezeState()

    def decide(
        self,
        bars: pd.DataFrame,
        position: Optional[Position],
        state: BBSqueezeState,
    ) -> Signal:
        if len(bars) < self.min_bars:
            return Signal.hold()

        close = float(bars["close"].iloc[-1])

        if position is not None and state.entry_atr is not None:
            stop_price = float(position.avg_price) - state.entry_atr * self.atr_stop_multiplier
            if close < stop_price:
                state.entry_atr = None
                state.prev_squeeze = False
                return Signal.sell(
                    reason=f"ATR stop (stop: {stop_price:.4f}, close: {close:.4f})"
                )

        bb_upper, _, bb_lower = bollinger_bands(bars, self.bb_period, self.bb_std_dev)
        kc_upper, _, kc_lower = keltner_channel(
            bars, self.keltner_period, self.keltner_multiplier, self.atr_period
        )

        squeeze = bb_upper < kc_upper and bb_lower > kc_lower

        if position is not None and close < bb_lower:
            state.entry_atr = None
            state.prev_squeeze = squeeze
            return Signal.sell(
                reason=f"Close below lower band (lower: {bb_lower:.4f}, close: {close:.4f})"
            )

        if state.prev_squeeze and not squeeze and close > bb_upper and position is None:
            entry_atr = atr(bars, self.atr_period)
            state.entry_atr = entry_atr
            state.prev_squeeze = squeeze

            logger.debug("squeeze_breakout", close=close, bb_upper=bb_upper, kc_upper=kc_upper)
            return Signal.buy(
                reason=(
                    f"Squeeze release breakout (BB upper: {bb_upper:.4f}, "
                    f"KC upper: {kc_upper:.4f}, "
                    f"ATR stop: {close - entry_atr * self.atr_stop_multiplier:.4f})"
                )
            )

        state.prev_squeeze = squeeze
        return Signal.hold()
