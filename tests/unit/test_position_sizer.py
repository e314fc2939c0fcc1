"""
Tests for position sizing.
"""

from decimal import Decimal, DivisionByZero

import pytest

from src.exceptions import PositionSizingError
from src.risk.position_sizer import (
    calculate_fixed_value_position,
    calculate_multiple_risk_sizes,
    calculate_position_size,
)


class TestPositionSizing:

    def test_risk_based_size(self):
        """Risk 1% of 10M = 100,000 over a 5,000 stop distance -> 20 units."""
        result = calculate_position_size(
            account_size=10_000_000,
            risk_pct="0.01",
            entry=100_000,
            stop_loss=95_000,
            max_exposure_pct=None,
        )
        assert result.position_size == Decimal("20")
        assert result.risk_amount == Decimal("100000")
        assert result.max_position_value is None
        assert not result.limited_by_max_exposure

    def test_smaller_account(self):
        result = calculate_position_size(1_000_000, "0.01", 100_000, 95_000, max_exposure_pct=None)
        assert result.position_size == Decimal("2")

    def test_exposure_cap(self):
        """Uncapped 100 units (10M) exceeds the 25% cap of 2.5M -> 25 units."""
        result = calculate_position_size(10_000_000, "0.01", 100_000, 99_000)

        assert result.limited_by_max_exposure
        assert result.position_value == Decimal("2500000")
        assert result.position_size == Decimal("25")

    def test_short_side_stop(self):
        """Stop above entry uses the absolute distance."""
        result = calculate_position_size(10_000_000, "0.01", 100_000, 105_000, max_exposure_pct=None)
        assert result.position_size == Decimal("20")

    def test_zero_stop_distance(self):
        with pytest.raises(PositionSizingError):
            calculate_position_size(10_000_000, "0.01", 100_000, 100_000)

    def test_zero_stop_distance_is_division_by_zero(self):
        with pytest.raises(DivisionByZero):
            calculate_position_size(10_000_000, "0.01", 100_000, 100_000)


class TestHelpers:

    def test_fixed_value_position(self):
        assert calculate_fixed_value_position(1_000_000, 50_000) == Decimal("20")

    def test_multiple_risk_sizes(self):
        results = calculate_multiple_risk_sizes(1_000_000, 100_000, 95_000, ["0.005", "0.01"])
        assert [r.position_size for r in results] == [Decimal("1"), Decimal("2")]
