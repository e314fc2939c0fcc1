"""
Tests for run metrics.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from research.backtesting.metrics import (
    EquityPoint,
    Trade,
    calculate_avg_trade_duration,
    calculate_drawdowns,
    calculate_max_drawdown,
    calculate_metrics,
    calculate_profit_factor,
    calculate_sharpe_ratio,
    calculate_win_rate,
    count_round_trips,
)
from src.strategy.base import SignalType

T0 = datetime(2024, 1, 1)


def _trade(side, day, pnl=None) -> Trade:
    return Trade(
        symbol="TEST",
        side=side,
        qty=Decimal("1"),
        price=Decimal("100"),
        timestamp=T0 + timedelta(days=day),
        commission=Decimal("0"),
        slippage_pct=Decimal("0"),
        realized_pnl=None if pnl is None else Decimal(pnl),
    )


def _equity(values) -> list[EquityPoint]:
    return [EquityPoint(timestamp=T0 + timedelta(days=i), equity=Decimal(str(v))) for i, v in enumerate(values)]


@pytest.fixture
def mixed_trades():
    """One winning and one losing round trip."""
    return [
        _trade(SignalType.BUY, 0),
        _trade(SignalType.SELL, 2, "100"),
        _trade(SignalType.BUY, 3),
        _trade(SignalType.SELL, 4, "-50"),
    ]


class TestCalculateMetrics:

    def test_no_trades_all_zero(self):
        metrics = calculate_metrics([], _equity([100, 120, 80]), Decimal("100"))
        assert metrics.total_return == 0.0
        assert metrics.max_drawdown == 0.0
        assert metrics.total_trades == 0

    def test_total_return_from_final_equity(self, mixed_trades):
        metrics = calculate_metrics(mixed_trades, _equity([100, 110, 105]), Decimal("100"))
        assert metrics.total_return == pytest.approx(5.0)
        assert metrics.total_trades == 4

    def test_summary(self, mixed_trades):
        metrics = calculate_metrics(mixed_trades, _equity([100, 120, 90, 130]), Decimal("100"))

        assert metrics.winning_trades == 1
        assert metrics.losing_trades == 1
        assert metrics.win_rate == pytest.approx(25.0)
        assert metrics.profit_factor == pytest.approx(2.0)
        assert metrics.avg_win == Decimal("100")
        assert metrics.avg_loss == Decimal("50")
        assert metrics.max_drawdown == pytest.approx(25.0)


class TestComponents:

    def test_win_rate_counts_buys_in_denominator(self, mixed_trades):
        assert calculate_win_rate(mixed_trades) == (1, 1, 25.0)

    def test_profit_factor_without_losses(self):
        trades = [_trade(SignalType.BUY, 0), _trade(SignalType.SELL, 1, "10")]
        assert calculate_profit_factor(trades) == float("inf")

    def test_profit_factor_without_closed_trades(self):
        assert calculate_profit_factor([_trade(SignalType.BUY, 0)]) == 0.0

    def test_max_drawdown(self):
        assert calculate_max_drawdown(_equity([100, 120, 90, 130])) == pytest.approx(25.0)

    def test_drawdowns_track_peak(self):
        points = calculate_drawdowns(_equity([100, 80, 120]))
        assert [p.peak for p in points] == [Decimal("100"), Decimal("100"), Decimal("120")]
        assert points[1].drawdown_pct == pytest.approx(20.0)

    def test_sharpe_flat_equity_is_zero(self):
        assert calculate_sharpe_ratio(_equity([100, 100, 100])) == 0.0

    def test_sharpe_sign(self):
        assert calculate_sharpe_ratio(_equity([100, 101, 103, 104])) > 0
        assert calculate_sharpe_ratio(_equity([100, 99, 97, 96])) < 0

    def test_avg_trade_duration_hours(self, mixed_trades):
        # 48h and 24h holds
        assert calculate_avg_trade_duration(mixed_trades) == pytest.approx(36.0)

    def test_round_trips(self, mixed_trades):
        assert count_round_trips(mixed_trades) == 2
