"""
Tests for walk-forward window generation and the per-symbol runner.
"""

from datetime import timedelta
from decimal import Decimal

import pandas as pd
import pytest

from research.backtesting.engine import BacktestEngine
from research.backtesting.metrics import PerformanceMetrics
from research.backtesting.walk_forward import (
    WalkForwardRunner,
    WindowStatus,
    average_metrics,
    generate_windows,
    symbol_windows_by_oos_start,
)
from src.exceptions import ConfigurationError, NoDataError


class TestGenerateWindows:

    def test_window_count_and_bounds(self):
        windows = generate_windows("2024-01-01", "2024-03-01", 30, 10, 10)

        assert len(windows) == 3
        first = windows[0]
        assert first.in_sample_start == pd.Timestamp("2024-01-01")
        assert first.in_sample_end == pd.Timestamp("2024-01-31")
        assert first.out_sample_start == first.in_sample_end
        assert first.out_sample_end == pd.Timestamp("2024-02-10")
        # Last window ends exactly on the range end
        assert windows[-1].out_sample_end == pd.Timestamp("2024-03-01")

    def test_oos_starts_strictly_increase(self):
        windows = generate_windows("2023-01-01", "2024-12-31", 180, 60, 30)
        starts = [w.out_sample_start for w in windows]
        assert starts == sorted(set(starts))

    def test_segments_do_not_overlap(self):
        for w in generate_windows("2023-01-01", "2024-12-31", 180, 60, 30):
            assert w.in_sample_start < w.in_sample_end <= w.out_sample_start < w.out_sample_end

    def test_range_too_short(self):
        assert generate_windows("2024-01-01", "2024-02-01", 30, 10, 10) == []

    @pytest.mark.parametrize("is_days,oos_days,step", [(0, 10, 10), (30, -1, 10), (30, 10, 0)])
    def test_non_positive_days_rejected(self, is_days, oos_days, step):
        with pytest.raises(ConfigurationError):
            generate_windows("2024-01-01", "2024-12-31", is_days, oos_days, step)

    def test_periods(self):
        window = generate_windows("2024-01-01", "2024-03-01", 30, 10, 10)[0]
        assert window.in_sample_period == "2024-01-01 to 2024-01-31"
        assert window.to_dict()["out_sample_end"] == "2024-02-10T00:00:00"


class TestWalkForwardRunner:

    @pytest.fixture
    def runner(self):
        return WalkForwardRunner(
            engine=BacktestEngine(),
            in_sample_days=30,
            out_sample_days=10,
            step_days=10,
            min_oos_trades=3,
        )

    def test_valid_windows(self, runner, flip_flop, make_bars):
        bars = make_bars([100.0] * 90)
        result = runner.run(flip_flop, bars, "TEST", "2024-01-01", "2024-03-01")

        assert len(result.windows) == 3
        for window in result.windows:
            assert window.oos_trade_count == 5
            assert window.status == WindowStatus.VALID
        assert len(result.valid_windows) == 3
        assert result.strategy_name == "Flip Flop"

    def test_insufficient_trades(self, flip_flop, make_bars):
        runner = WalkForwardRunner(BacktestEngine(), 30, 10, 10, min_oos_trades=6)
        result = runner.run(flip_flop, make_bars([100.0] * 90), "TEST", "2024-01-01", "2024-03-01")

        assert all(w.status == WindowStatus.INSUFFICIENT_TRADES for w in result.windows)
        assert result.valid_windows == []

    def test_oos_metrics_fall_back_to_all_windows(self, runner, never_trade, make_bars):
        result = runner.run(never_trade, make_bars([100.0] * 90), "TEST", "2024-01-01", "2024-03-01")

        assert result.valid_windows == []
        assert result.out_sample_metrics.total_trades == 0
        assert result.out_sample_metrics.total_return == 0.0

    def test_segments_cover_their_own_days(self, runner, flip_flop, make_bars):
        result = runner.run(flip_flop, make_bars([100.0] * 90), "TEST", "2024-01-01", "2024-03-01")

        for window in result.windows:
            oos = window.out_sample_result
            assert len(oos.equity) == 10
            assert oos.start == window.window.out_sample_start
            assert oos.end == window.window.out_sample_end - timedelta(days=1)
            assert len(window.in_sample_result.equity) == 30

    def test_warmup_is_history_only(self, flip_flop, make_bars):
        runner = WalkForwardRunner(BacktestEngine(), 30, 10, 10, warmup_days=5)
        bars = make_bars([100.0] * 120, start="2023-12-01")

        result = runner.run(flip_flop, bars, "TEST", "2024-01-01", "2024-03-01")

        first = result.windows[0]
        assert len(first.in_sample_result.equity) == 30
        assert first.in_sample_result.start == pd.Timestamp("2024-01-01")

    def test_window_without_data_is_skipped(self, flip_flop, make_bars):
        runner = WalkForwardRunner(BacktestEngine(), 20, 10, 10, min_oos_trades=1)
        bars = make_bars([100.0] * 30)  # 2024-01-01 .. 2024-01-30

        result = runner.run(flip_flop, bars, "TEST", "2024-01-01", "2024-02-20")

        assert len(result.windows) == 1
        assert result.windows[0].window.out_sample_start == pd.Timestamp("2024-01-21")

    def test_no_evaluable_window_raises(self, runner, flip_flop, make_bars):
        bars = make_bars([100.0] * 30, start="2022-01-01")
        with pytest.raises(NoDataError):
            runner.run(flip_flop, bars, "TEST", "2024-01-01", "2024-03-01")

    def test_negative_warmup_rejected(self):
        with pytest.raises(ConfigurationError):
            WalkForwardRunner(BacktestEngine(), 30, 10, 10, warmup_days=-1)

    def test_windows_by_oos_start(self, runner, flip_flop, make_bars):
        result = runner.run(flip_flop, make_bars([100.0] * 90), "TEST", "2024-01-01", "2024-03-01")
        index = symbol_windows_by_oos_start(result)

        assert list(index) == [w.window.out_sample_start for w in result.windows]
        assert symbol_windows_by_oos_start(None) == {}


class TestAverageMetrics:

    def test_empty(self):
        assert average_metrics([]) == PerformanceMetrics()

    def test_means_and_sums(self):
        averaged = average_metrics([
            PerformanceMetrics(total_return=2.0, total_trades=4, avg_win=Decimal("10")),
            PerformanceMetrics(total_return=-1.0, total_trades=2, avg_win=Decimal("20")),
        ])
        assert averaged.total_return == pytest.approx(0.5)
        assert averaged.total_trades == 6
        assert averaged.avg_win == Decimal("15")
