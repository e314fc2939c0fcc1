"""
Tests for the slippage model.

Covers the three models, the fixed override, stress multipliers and
per-source presets.
"""

from decimal import Decimal

import pytest

from src.data.cost_model.slippage_model import (
    DEFAULT_FIXED_PCT,
    OrderSide,
    SlippageModelType,
    SlippageParams,
    apply_slippage,
    calculate_slippage,
    slippage_for_source,
)


class TestCalculateSlippage:
    """Test slippage percentage per model."""

    def test_fixed_default(self):
        """Fixed model without override uses 0.05%."""
        assert calculate_slippage(SlippageParams()) == Decimal("0.05")

    def test_fixed_override_beats_model(self):
        """A non-zero fixed_pct wins over linear/sqrt."""
        params = SlippageParams(
            model=SlippageModelType.SQRT,
            order_size=Decimal("1000000"),
            avg_volume=Decimal("100"),
            bid_ask_spread=Decimal("1"),
            fixed_pct=Decimal("0.3"),
        )
        assert calculate_slippage(params) == Decimal("0.3")

    def test_zero_fixed_pct_falls_through_to_model(self):
        params = SlippageParams(
            model=SlippageModelType.LINEAR,
            order_size=Decimal("50"),
            avg_volume=Decimal("100"),
            bid_ask_spread=Decimal("0.2"),
            fixed_pct=Decimal("0"),
        )
        assert calculate_slippage(params) == Decimal("0.1")

    def test_linear(self):
        params = SlippageParams(
            model=SlippageModelType.LINEAR,
            order_size=Decimal("250"),
            avg_volume=Decimal("1000"),
            bid_ask_spread=Decimal("0.4"),
        )
        assert calculate_slippage(params) == Decimal("0.1")

    def test_sqrt(self):
        """sqrt(order / volume) * spread."""
        params = SlippageParams(
            model=SlippageModelType.SQRT,
            order_size=Decimal("25"),
            avg_volume=Decimal("100"),
            bid_ask_spread=Decimal("0.2"),
        )
        assert calculate_slippage(params) == Decimal("0.1")

    @pytest.mark.parametrize("model", [SlippageModelType.LINEAR, SlippageModelType.SQRT])
    def test_zero_volume_means_no_impact(self, model):
        params = SlippageParams(
            model=model,
            order_size=Decimal("1000"),
            avg_volume=Decimal("0"),
            bid_ask_spread=Decimal("0.5"),
        )
        assert calculate_slippage(params) == Decimal("0")

    def test_stress_multiplier(self):
        params = SlippageParams(stress_multiplier=Decimal("10"))
        assert calculate_slippage(params) == DEFAULT_FIXED_PCT * 10

    def test_with_market_fills_inputs(self):
        params = SlippageParams(model=SlippageModelType.LINEAR).with_market(
            order_size=100.0, avg_volume=1000, bid_ask_spread="0.5"
        )
        assert params.order_size == Decimal("100.0")
        assert params.avg_volume == Decimal("1000")
        assert calculate_slippage(params) == Decimal("0.05")


class TestApplySlippage:
    """Execution price moves against the order."""

    def test_buy_fills_higher(self):
        assert apply_slippage(Decimal("100"), Decimal("0.5"), OrderSide.BUY) == Decimal("100.5")

    def test_sell_fills_lower(self):
        assert apply_slippage(Decimal("100"), Decimal("0.5"), OrderSide.SELL) == Decimal("99.5")

    def test_zero_slippage_is_identity(self):
        assert apply_slippage(Decimal("123.45"), Decimal("0"), OrderSide.BUY) == Decimal("123.45")


class TestPresets:
    """Per-source presets and bps overrides."""

    def test_upbit_is_fixed(self):
        params = slippage_for_source("upbit")
        assert params.model == SlippageModelType.FIXED
        assert calculate_slippage(params) == Decimal("0.05")

    def test_binance_is_fixed_ten_bps(self):
        assert calculate_slippage(slippage_for_source("binance")) == Decimal("0.1")

    @pytest.mark.parametrize("source", ["kis", "yf"])
    def test_equities_use_sqrt(self, source):
        assert slippage_for_source(source).model == SlippageModelType.SQRT

    def test_bps_override(self):
        """30 bps -> fixed 0.3%, regardless of source."""
        params = slippage_for_source("yf", slippage_bps=30)
        assert params.model == SlippageModelType.FIXED
        assert calculate_slippage(params) == Decimal("0.3")

    def test_zero_bps_keeps_preset(self):
        assert slippage_for_source("yf", slippage_bps=0) == slippage_for_source("yf")

    def test_unknown_source_uses_default(self):
        assert calculate_slippage(slippage_for_source("nowhere")) == DEFAULT_FIXED_PCT
