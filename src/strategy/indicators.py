"""
Trailing technical indicators.

Every function reads only the tail of the frame it is given, so calling
them on a causal prefix bars[0..i] never looks past bar i.
"""

import numpy as np
import pandas as pd


def sma(bars: pd.DataFrame, period: int) -> float:
    """Simple moving average of the last `period` closes."""
    closes = bars["close"].values[-period:]
    return float(closes.sum() / period)


def _directional_moves(bars: pd.DataFrame) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    +DM, -DM and true range for each bar after the first.

    A move counts only when it is positive and larger than the opposite move.
    """
    high = bars["high"].values.astype(float)
    low = bars["low"].values.astype(float)
    close = bars["close"].values.astype(float)

    up_move = high[1:] - high[:-1]
    down_move = low[:-1] - low[1:]

    plus_dm = np.where((up_move > down_move) & (up_move > 0), up_move, 0.0)
    minus_dm = np.where((down_move > up_move) & (down_move > 0), down_move, 0.0)

    tr1 = high[1:] - low[1:]
    tr2 = np.abs(high[1:] - close[:-1])
    tr3 = np.abs(low[1:] - close[:-1])
    true_range = np.maximum(tr1, np.maximum(tr2, tr3))

    return plus_dm, minus_dm, true_range


def atr(bars: pd.DataFrame, period: int = 14) -> float:
    """
    Average True Range as a simple mean of the last `period` true ranges.

    With fewer than period+1 bars, falls back to the mean high-low range.
    """
    if len(bars) < period + 1:
        recent = bars.iloc[-period:]
        return float((recent["high"] - recent["low"]).mean())

    _, _, true_range = _directional_moves(bars.iloc[-(period + 1):])
    return float(true_range.sum() / period)


def adx_simple(bars: pd.DataFrame, period: int = 14) -> float:
    """
    ADX as the mean of sliding-window DX values.

    Uses the last 2*period+1 bars; each DX is computed from plain sums of
    +DM, -DM and TR over a period+1 bar window.
    """
    if len(bars) < period * 2 + 1:
        return 0.0

    plus_dm, minus_dm, true_range = _directional_moves(bars.iloc[-(period * 2 + 1):])

    dx_values = []
    for end in range(period, len(true_range) + 1):
        tr_sum = true_range[end - period:end].sum()
        if tr_sum == 0:
            dx_values.append(0.0)
            continue

        plus_di = plus_dm[end - period:end].sum() / tr_sum * 100
        minus_di = minus_dm[end - period:end].sum() / tr_sum * 100
        di_sum = plus_di + minus_di
        if di_sum == 0:
            dx_values.append(0.0)
            continue

        dx_values.append(abs(plus_di - minus_di) / di_sum * 100)

    if not dx_values:
        return 0.0
    return float(np.mean(dx_values))


def _wilder_smooth(values: np.ndarray, period: int) -> float:
    """Wilder smoothing: seed with a simple mean, then decay by 1/period."""
    if len(values) < period:
        return 0.0

    smoothed = values[:period].sum() / period
    for value in values[period:]:
        smoothed = (smoothed * (period - 1) + value) / period
    return float(smoothed)


def adx_wilder(bars: pd.DataFrame, period: int = 14) -> float:
    """
    Trend strength from Wilder-smoothed DX over the last 2*period+1 bars.
    """
    if len(bars) < period * 2 + 1:
        return 0.0

    plus_dm, minus_dm, true_range = _directional_moves(bars.iloc[-(period * 2 + 1):])

    smooth_tr = _wilder_smooth(true_range, period)
    if smooth_tr == 0:
        return 0.0

    plus_di = _wilder_smooth(plus_dm, period) / smooth_tr * 100
    minus_di = _wilder_smooth(minus_dm, period) / smooth_tr * 100

    di_sum = plus_di + minus_di
    if di_sum == 0:
        return 0.0
    return float(abs(plus_di - minus_di) / di_sum * 100)


def bollinger_bands(
    bars: pd.DataFrame,
    period: int = 20,
    std_multiplier: float = 2.0,
) -> tuple[float, float, float]:
    """
    Bollinger Bands over the last `period` closes.

    Uses population standard deviation.

    Returns:
        (upper, middle, lower)
    """
    closes = bars["close"].values[-period:].astype(float)
    middle = closes.sum() / period
    std = float(np.sqrt(((closes - middle) ** 2).sum() / period))
    band = std * std_multiplier
    return middle + band, middle, middle - band


def keltner_channel(
    bars: pd.DataFrame,
    period: int = 20,
    multiplier: float = 1.5,
    atr_period: int = 14,
) -> tuple[float, float, float]:
    """
    Keltner Channel with an SMA middle line and ATR bands.

    Returns:
        (upper, middle, lower)
    """
    middle = sma(bars, period)
    band = atr(bars, atr_period) * multiplier
    return middle + band, middle, middle - band


def pct_slope(bars: pd.DataFrame, sma_period: int, window: int) -> float:
    """
    Percentage change of an SMA over the last `window` bars.

    Returns 0 when there is not enough history for both averages.
    """
    if len(bars) < sma_period + window:
        return 0.0

    old = sma(bars.iloc[-(sma_period + window):-window], sma_period)
    recent = sma(bars, sma_period)
    if old == 0:
        return 0.0
    return (recent - old) / old * 100
