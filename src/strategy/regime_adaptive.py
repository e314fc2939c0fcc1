"""
Regime-Adaptive strategy.

Detects the market regime on every bar and routes the decision:
- TRENDING_UP:   Enhanced MA (trend following)
- SIDEWAYS:      BB Squeeze (range breakout)
- WEAK_TREND:    BB Squeeze
- TRENDING_DOWN: stay in cash (sell if holding, otherwise hold)
"""

from dataclasses import dataclass, field
from typing import Callable, Optional
import structlog

import pandas as pd

from src.exceptions import UnknownRegimeError
from src.regime.detector import MarketRegime, RegimeDetector
from src.strategy.base import Position, Signal, Strategy
from src.strategy.bb_squeeze import BBSqueezeState, BBSqueezeStrategy
from src.strategy.enhanced_ma import EnhancedMAState, EnhancedMAStrategy

logger = structlog.get_logger(__name__)


@dataclass
class RegimeAdaptiveState:
    """Sub-strategy states plus the last regime seen."""
    trend: EnhancedMAState = field(default_factory=EnhancedMAState)
    breakout: BBSqueezeState = field(default_factory=BBSqueezeState)
    regime: MarketRegime = MarketRegime.SIDEWAYS
    active_strategy: str = "none"


class RegimeAdaptiveStrategy(Strategy):

    name = "Regime-Adaptive (Auto Strategy Selection)"

    def __init__(
        self,
        sma50_period: int = 50,
        sma200_period: int = 200,
        adx_period: int = 14,
        enhanced_ma: Optional[dict] = None,
        bb_squeeze: Optional[dict] = None,
    ):
        self.detector = RegimeDetector(
            sma50_period=sma50_period,
            sma200_period=sma200_period,
            adx_period=adx_period,
        )

        self.trend_strategy = EnhancedMAStrategy(**(enhanced_ma or {}))

        bb_params = dict(bb_squeeze or {})
        bb_params.setdefault("keltner_period", bb_params.get("bb_period", 20))
        self.breakout_strategy = BBSqueezeStrategy(**bb_params)

        self._routes: dict[MarketRegime, Callable] = {
            MarketRegime.TRENDING_UP: self._trend,
            MarketRegime.SIDEWAYS: self._breakout,
            MarketRegime.WEAK_TREND: self._breakout,
            MarketRegime.TRENDING_DOWN: self._cash,
        }

    def initial_state(self) -> RegimeAdaptiveState:
        return RegimeAdaptiveState()

    def decide(
        self,
        bars: pd.DataFrame,
        position: Optional[Position],
        state: RegimeAdaptiveState,
    ) -> Signal:
        regime = self.detector.detect_regime(bars).regime

        if regime != state.regime:
            logger.debug("regime_changed", previous=state.regime.value, current=regime.value)
        state.regime = regime

        route = self._routes.get(regime)
        if route is None:
            raise UnknownRegimeError(f"No routing rule for regime {regime!r}")

        signal, strategy_name = route(bars, position, state)
        state.active_strategy = strategy_name

        if signal.reason:
            reason = f"[{regime.value}] {signal.reason}"
        else:
            reason = f"[{regime.value}] strategy: {strategy_name}"

        return Signal(action=signal.action, quantity=signal.quantity, reason=reason)

    def _trend(self, bars, position, state):
        return self.trend_strategy.decide(bars, position, state.trend), "enhanced-ma"

    def _breakout(self, bars, position, state):
        return self.breakout_strategy.decide(bars, position, state.breakout), "bb-squeeze"

    def _cash(self, bars, position, state):
        if position is not None:
            return Signal.sell(reason="Downtrend, moving to cash"), "none"
        return Signal.hold(reason="Downtrend, new entries blocked"), "none"
