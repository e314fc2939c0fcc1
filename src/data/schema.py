"""
Candle schema and symbol resolution.

Candles are immutable and strictly time-ascending within a series.
Strategies and the simulator work on a bars DataFrame with columns:
timestamp, open, high, low, close, volume, symbol.
"""

from dataclasses import dataclass
from datetime import datetime
import re

import pandas as pd

BAR_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume", "symbol"]

# Candle store / asset class identifiers
SOURCE_UPBIT = "upbit"  # crypto (KRW market)
SOURCE_KIS = "kis"      # Korean equities
SOURCE_YF = "yf"        # US equities / ETFs

_KRX_CODE = re.compile(r"^\d{6}$")


def to_timestamp(value) -> pd.Timestamp:
    """Normalize a date-like value to a tz-naive (UTC) pandas Timestamp."""
    ts = pd.Timestamp(value)
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


@dataclass(frozen=True)
class Candle:
    """A single OHLCV bar."""
    symbol: str
    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class SymbolConfig:
    """A resolved symbol and the candle source it lives in."""
    symbol: str
    source: str


def resolve_symbol(raw: str) -> SymbolConfig:
    """
    Normalize a user-supplied symbol and determine its source.

    BTC/ETH shorthands map to the KRW market, six-digit codes are KRX
    listings, anything else is treated as a US ticker.
    """
    s = raw.strip().upper()
    if s == "BTC":
        return SymbolConfig("KRW-BTC", SOURCE_UPBIT)
    if s == "ETH":
        return SymbolConfig("KRW-ETH", SOURCE_UPBIT)
    if s.startswith("KRW-"):
        return SymbolConfig(s, SOURCE_UPBIT)
    if _KRX_CODE.match(s):
        return SymbolConfig(s, SOURCE_KIS)
    return SymbolConfig(s, SOURCE_YF)


def bars_from_candles(candles: list[Candle]) -> pd.DataFrame:
    """
    Build a bars DataFrame from a candle list.

    Raises:
        ValueError: if timestamps are not strictly ascending
    """
    if not candles:
        return pd.DataFrame(columns=BAR_COLUMNS)

    df = pd.DataFrame([
        {
            "timestamp": to_timestamp(c.time),
            "open": float(c.open),
            "high": float(c.high),
            "low": float(c.low),
            "close": float(c.close),
            "volume": float(c.volume),
            "symbol": c.symbol,
        }
        for c in candles
    ])

    if not df["timestamp"].is_monotonic_increasing or df["timestamp"].duplicated().any():
        raise ValueError("Candle series must be strictly time-ascending")

    return df.reset_index(drop=True)


def candles_from_bars(bars: pd.DataFrame) -> list[Candle]:
    """Inverse of bars_from_candles."""
    return [
        Candle(
            symbol=str(row.symbol),
            time=row.timestamp.to_pydatetime(),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in bars.itertuples(index=False)
    ]
