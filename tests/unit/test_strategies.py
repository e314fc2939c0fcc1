"""
Tests for the strategy variants.

Each strategy decides on the causal prefix it is given; stateful variants
carry everything between bars in their per-run state object.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from research.backtesting.engine import BacktestEngine
from src.data.cost_model.slippage_model import SlippageParams
from src.regime.detector import MarketRegime
from src.strategy.base import Position, SignalType
from src.strategy.bb_squeeze import BBSqueezeState, BBSqueezeStrategy
from src.strategy.enhanced_ma import EnhancedMAState, EnhancedMAStrategy
from src.strategy.regime_adaptive import RegimeAdaptiveStrategy
from src.strategy.simple_ma import SimpleMAStrategy


def _position(avg_price="100") -> Position:
    return Position(
        symbol="TEST",
        qty=Decimal("10"),
        avg_price=Decimal(avg_price),
        entry_time=datetime(2024, 1, 1),
    )


# Golden cross on the last bar while the long MA is falling
FALLING_TREND_CROSS = [200.0] * 5 + [100.0] * 10 + [110.0] * 10


class TestSimpleMA:

    def test_holds_without_history(self, make_bars):
        signal = SimpleMAStrategy().decide(make_bars([100.0] * 15), None, None)
        assert signal.action == SignalType.HOLD

    def test_golden_cross_buys(self, make_bars):
        bars = make_bars([100.0] * 20 + [110.0])
        signal = SimpleMAStrategy().decide(bars, None, None)
        assert signal.action == SignalType.BUY
        assert signal.reason.startswith("Golden cross")

    def test_golden_cross_ignored_when_holding(self, make_bars):
        bars = make_bars([100.0] * 20 + [110.0])
        signal = SimpleMAStrategy().decide(bars, _position(), None)
        assert signal.action == SignalType.HOLD

    def test_dead_cross_sells(self, make_bars):
        bars = make_bars([100.0] * 20 + [90.0])
        signal = SimpleMAStrategy().decide(bars, _position(), None)
        assert signal.action == SignalType.SELL

    def test_has_no_trend_filter(self, make_bars):
        signal = SimpleMAStrategy().decide(make_bars(FALLING_TREND_CROSS), None, None)
        assert signal.action == SignalType.BUY

    def test_rejects_non_positive_periods(self):
        with pytest.raises(ValueError):
            SimpleMAStrategy(short_period=0)


class TestEnhancedMA:

    def test_entry_records_atr(self, make_bars):
        strategy = EnhancedMAStrategy()
        state = strategy.initial_state()
        bars = make_bars([100.0] * 30 + [110.0])

        signal = strategy.decide(bars, None, state)

        assert signal.action == SignalType.BUY
        assert state.entry_atr is not None
        assert state.entry_atr > 0

    def test_trend_filter_blocks_entry(self, make_bars):
        """Same crossover that Simple MA buys, but the long MA slope is negative."""
        strategy = EnhancedMAStrategy()
        signal = strategy.decide(make_bars(FALLING_TREND_CROSS), None, strategy.initial_state())
        assert signal.action == SignalType.HOLD

    def test_atr_stop(self, make_bars):
        """Entry 100, ATR 1, multiplier 2 -> stop at 98."""
        strategy = EnhancedMAStrategy()
        state = EnhancedMAState(entry_atr=1.0)
        bars = make_bars([100.0] * 30 + [97.0])

        signal = strategy.decide(bars, _position("100"), state)

        assert signal.action == SignalType.SELL
        assert signal.reason.startswith("ATR stop")
        assert state.entry_atr is None

    def test_200ma_filter_is_soft_with_short_history(self, make_bars):
        strategy = EnhancedMAStrategy(use_200ma_filter=True)
        bars = make_bars([100.0] * 30 + [110.0])
        signal = strategy.decide(bars, None, strategy.initial_state())
        assert signal.action == SignalType.BUY

    def test_200ma_filter_blocks_below_average(self, make_bars):
        """Long decline then a small pop: close is still under MA(200)."""
        closes = [300.0 - i for i in range(200)] + [101.0] * 29 + [115.0]
        bars = make_bars(closes)

        unfiltered = EnhancedMAStrategy()
        assert unfiltered.decide(bars, None, unfiltered.initial_state()).action == SignalType.BUY

        strategy = EnhancedMAStrategy(use_200ma_filter=True)
        signal = strategy.decide(bars, None, strategy.initial_state())
        assert signal.action == SignalType.HOLD

    def test_name_lists_filters(self):
        assert EnhancedMAStrategy().name == "Enhanced MA (ATR Stop + Size + Filter)"
        assert "200MA" in EnhancedMAStrategy(use_200ma_filter=True).name
        assert "ADX>20" in EnhancedMAStrategy(use_adx_filter=True).name

    def test_adx_filter_raises_min_bars(self):
        assert EnhancedMAStrategy(use_adx_filter=True, adx_period=20).min_bars == 41


class TestBBSqueeze:

    def test_flat_market_is_squeeze(self, make_bars):
        strategy = BBSqueezeStrategy()
        state = strategy.initial_state()

        signal = strategy.decide(make_bars([100.0] * 30), None, state)

        assert signal.action == SignalType.HOLD
        assert state.prev_squeeze is True

    def test_release_breakout_buys(self, make_bars):
        strategy = BBSqueezeStrategy()
        state = BBSqueezeState(prev_squeeze=True)

        signal = strategy.decide(make_bars([100.0] * 25 + [130.0]), None, state)

        assert signal.action == SignalType.BUY
        assert state.entry_atr is not None
        assert state.prev_squeeze is False

    def test_breakout_without_prior_squeeze_holds(self, make_bars):
        strategy = BBSqueezeStrategy()
        signal = strategy.decide(make_bars([100.0] * 25 + [130.0]), None, strategy.initial_state())
        assert signal.action == SignalType.HOLD

    def test_close_below_lower_band_sells(self, make_bars):
        strategy = BBSqueezeStrategy()
        signal = strategy.decide(
            make_bars([100.0] * 25 + [80.0]), _position("100"), strategy.initial_state()
        )
        assert signal.action == SignalType.SELL
        assert signal.reason.startswith("Close below lower band")

    def test_atr_stop_resets_state(self, make_bars):
        strategy = BBSqueezeStrategy()
        state = BBSqueezeState(prev_squeeze=True, entry_atr=1.0)

        signal = strategy.decide(make_bars([100.0] * 25 + [97.0]), _position("100"), state)

        assert signal.action == SignalType.SELL
        assert state.entry_atr is None
        assert state.prev_squeeze is False


class TestRegimeAdaptive:

    def test_short_history_routes_to_breakout(self, make_bars):
        strategy = RegimeAdaptiveStrategy()
        state = strategy.initial_state()

        signal = strategy.decide(make_bars([100.0] * 30), None, state)

        assert signal.action == SignalType.HOLD
        assert signal.reason == "[SIDEWAYS] strategy: bb-squeeze"
        assert state.active_strategy == "bb-squeeze"

    def test_uptrend_routes_to_trend_following(self, uptrend_bars):
        strategy = RegimeAdaptiveStrategy()
        state = strategy.initial_state()

        strategy.decide(uptrend_bars, None, state)

        assert state.regime == MarketRegime.TRENDING_UP
        assert state.active_strategy == "enhanced-ma"

    def test_downtrend_sells_position(self, downtrend_bars):
        strategy = RegimeAdaptiveStrategy()
        signal = strategy.decide(downtrend_bars, _position("300"), strategy.initial_state())

        assert signal.action == SignalType.SELL
        assert signal.reason == "[TRENDING_DOWN] Downtrend, moving to cash"

    def test_downtrend_blocks_entries(self, downtrend_bars):
        strategy = RegimeAdaptiveStrategy()
        signal = strategy.decide(downtrend_bars, None, strategy.initial_state())
        assert signal.action == SignalType.HOLD

    def test_initial_state_is_fresh(self):
        strategy = RegimeAdaptiveStrategy()
        first = strategy.initial_state()
        first.trend.entry_atr = 5.0

        second = strategy.initial_state()
        assert second.trend.entry_atr is None
        assert second is not first


class TestNoLookahead:
    """Changing bars after index k must not change any decision up to k."""

    @pytest.mark.parametrize("strategy", [
        SimpleMAStrategy(),
        EnhancedMAStrategy(),
        BBSqueezeStrategy(),
        RegimeAdaptiveStrategy(),
    ], ids=["simple-ma", "enhanced-ma", "bb-squeeze", "regime-adaptive"])
    def test_trades_before_cutoff_unchanged(self, strategy, sample_bars):
        cutoff = 220
        mutated = sample_bars.copy()
        mutated.loc[cutoff + 1:, ["open", "high", "low", "close"]] *= 0.5

        engine = BacktestEngine(slippage=SlippageParams(fixed_pct=Decimal("0.1")))
        original = engine.run(strategy, sample_bars, symbol="TEST")
        changed = engine.run(strategy, mutated, symbol="TEST")

        limit = sample_bars["timestamp"].iloc[cutoff]
        before = [(t.timestamp, t.side, t.price, t.qty) for t in original.trades if t.timestamp <= limit]
        after = [(t.timestamp, t.side, t.price, t.qty) for t in changed.trades if t.timestamp <= limit]

        assert before == after
