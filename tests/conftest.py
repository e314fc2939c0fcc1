"""
Pytest configuration and fixtures.

Shared fixtures for all tests.
"""

from typing import Any, Optional

import numpy as np
import pandas as pd
import pytest

from src.data.loader import InMemoryCandleSource
from src.strategy.base import Position, Signal, Strategy


class BuyAndHoldStrategy(Strategy):
    """Buys on the first simulated bar and never sells (engine liquidates at the end)."""

    name = "Buy and Hold"

    def decide(self, bars: pd.DataFrame, position: Optional[Position], state: Any = None) -> Signal:
        if position is None:
            return Signal.buy(reason="enter")
        return Signal.hold()


class FlipFlopStrategy(Strategy):
    """Alternates BUY and SELL every bar: one round trip per two bars."""

    name = "Flip Flop"

    def decide(self, bars: pd.DataFrame, position: Optional[Position], state: Any = None) -> Signal:
        if position is None:
            return Signal.buy(reason="flip")
        return Signal.sell(reason="flop")


class NeverTradeStrategy(Strategy):
    name = "Never Trade"

    def decide(self, bars: pd.DataFrame, position: Optional[Position], state: Any = None) -> Signal:
        return Signal.hold()


def _bars_frame(closes, start, symbol, volume, spread) -> pd.DataFrame:
    closes = np.asarray(closes, dtype=float)
    dates = pd.date_range(start=start, periods=len(closes), freq="D")
    return pd.DataFrame({
        "timestamp": dates,
        "open": closes,
        "high": closes * (1 + spread),
        "low": closes * (1 - spread),
        "close": closes,
        "volume": np.full(len(closes), float(volume)),
        "symbol": symbol,
    })


@pytest.fixture
def make_bars():
    """Factory for daily bars from a close series."""
    def _make(
        closes,
        start: str = "2024-01-01",
        symbol: str = "TEST",
        volume: float = 1_000_000_000,
        spread: float = 0.01,
    ) -> pd.DataFrame:
        return _bars_frame(closes, start, symbol, volume, spread)
    return _make


@pytest.fixture
def sample_bars():
    """Create sample bar data for testing (seeded random walk, fixed dates)."""
    np.random.seed(42)
    n = 300
    prices = 100 + np.cumsum(np.random.randn(n) * 2)
    prices = np.maximum(prices, 5.0)
    return _bars_frame(prices, "2023-01-01", "TEST", 2_000_000, 0.02)


@pytest.fixture
def uptrend_bars():
    """Steady uptrend with small oscillation (300 bars)."""
    x = np.arange(300)
    prices = 100 + x * 0.5 + np.sin(x / 3.0) * 1.5
    return _bars_frame(prices, "2023-01-01", "UP", 5_000_000, 0.01)


@pytest.fixture
def downtrend_bars():
    """Steady downtrend with small oscillation (300 bars)."""
    x = np.arange(300)
    prices = 300 - x * 0.5 + np.sin(x / 3.0) * 1.5
    return _bars_frame(prices, "2023-01-01", "DOWN", 5_000_000, 0.01)


@pytest.fixture
def buy_and_hold():
    return BuyAndHoldStrategy()


@pytest.fixture
def flip_flop():
    return FlipFlopStrategy()


@pytest.fixture
def never_trade():
    return NeverTradeStrategy()


@pytest.fixture
def candle_source():
    """Factory for an in-memory candle source from bars frames keyed by symbol."""
    def _make(frames: dict) -> InMemoryCandleSource:
        return InMemoryCandleSource.from_bars(frames)
    return _make
