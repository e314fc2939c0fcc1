"""
Candle sources and candle-derived helpers.

The candle store itself is external. This module defines the interface
the engine consumes plus two adapters:
- InMemoryCandleSource: fixtures, tests, pre-fetched data
- DuckDBCandleSource: reads `{source}_candles` tables

Both distinguish "no data" (NoDataError) from "could not query"
(QueryError) so callers can retry only the latter.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Optional, Union
import structlog

import duckdb
import pandas as pd

from src.data.schema import Candle, SOURCE_UPBIT, bars_from_candles, resolve_symbol, to_timestamp
from src.exceptions import NoDataError, QueryError
from src.utils.decimal_utils import HUNDRED, MONEY_CONTEXT, ZERO, to_decimal

logger = structlog.get_logger(__name__)

DateLike = Union[date, datetime, str, pd.Timestamp]

DEFAULT_SPREAD_PCT = Decimal("0.1")


class CandleSource(ABC):
    """Read-only access to ordered historical candles."""

    @abstractmethod
    def load(
        self,
        symbol: str,
        source: str,
        start: DateLike,
        end: DateLike,
    ) -> list[Candle]:
        """
        Load candles for symbol in [start, end], ascending by time.

        Raises:
            NoDataError: no candles in range
            QueryError: the store could not be queried
        """

    def load_bars(
        self,
        symbol: str,
        source: str,
        start: DateLike,
        end: DateLike,
    ) -> pd.DataFrame:
        """Load candles as a bars DataFrame."""
        return bars_from_candles(self.load(symbol, source, start, end))


class InMemoryCandleSource(CandleSource):
    """Candle source backed by in-memory series keyed by symbol."""

    def __init__(self, series: Optional[dict[str, Iterable[Candle]]] = None):
        self._series: dict[str, list[Candle]] = {}
        for symbol, candles in (series or {}).items():
            self.add(symbol, candles)

    def add(self, symbol: str, candles: Iterable[Candle]) -> None:
        """Register (or replace) a candle series."""
        ordered = sorted(candles, key=lambda c: c.time)
        self._series[symbol] = ordered

    @classmethod
    def from_bars(cls, frames: dict[str, pd.DataFrame]) -> "InMemoryCandleSource":
        """Build a source from bars DataFrames keyed by symbol."""
        source = cls()
        for symbol, bars in frames.items():
            source.add(symbol, [
                Candle(
                    symbol=symbol,
                    time=pd.Timestamp(row.timestamp).to_pydatetime(),
                    open=float(row.open),
                    high=float(row.high),
                    low=float(row.low),
                    close=float(row.close),
                    volume=float(row.volume),
                )
                for row in bars.itertuples(index=False)
            ])
        return source

    def load(
        self,
        symbol: str,
        source: str,
        start: DateLike,
        end: DateLike,
    ) -> list[Candle]:
        start_ts = to_timestamp(start)
        end_ts = to_timestamp(end)

        candles = [
            c for c in self._series.get(symbol, [])
            if start_ts <= pd.Timestamp(c.time) <= end_ts
        ]

        if not candles:
            raise NoDataError(
                f"No candles for {symbol} between {start_ts.date()} and {end_ts.date()}",
                symbol=symbol,
            )
        return candles


class DuckDBCandleSource(CandleSource):
    """
    Candle source reading `{source}_candles` tables from DuckDB.

    Upbit tables key rows by `market`, other sources by `symbol`;
    timestamps live in `candle_time_utc`.
    """

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.conn = duckdb.connect(str(self.db_path), read_only=True)

        logger.info("duckdb_candle_source_initialized", path=str(self.db_path))

    def load(
        self,
        symbol: str,
        source: str,
        start: DateLike,
        end: DateLike,
    ) -> list[Candle]:
        table = f"{source}_candles"
        symbol_col = "market" if source == SOURCE_UPBIT else "symbol"

        query = f"""
            SELECT candle_time_utc, open, high, low, close, volume
            FROM {table}
            WHERE {symbol_col} = ?
              AND candle_time_utc >= ?
              AND candle_time_utc <= ?
            ORDER BY candle_time_utc ASC
        """

        try:
            rows = self.conn.execute(
                query,
                [symbol, to_timestamp(start).to_pydatetime(), to_timestamp(end).to_pydatetime()],
            ).fetchall()
        except duckdb.Error as e:
            logger.error("candle_query_failed", symbol=symbol, table=table, error=str(e))
            raise QueryError(f"Candle query failed for {symbol}: {e}", symbol=symbol) from e

        if not rows:
            logger.warning("no_candles_found", symbol=symbol, start=str(start), end=str(end))
            raise NoDataError(f"No candles for {symbol} in {table}", symbol=symbol)

        return [
            Candle(
                symbol=symbol,
                time=to_timestamp(row[0]).to_pydatetime(),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
            )
            for row in rows
        ]

    def close(self) -> None:
        self.conn.close()


def load_symbol_bars(
    candle_source: CandleSource,
    raw_symbol: str,
    start: DateLike,
    end: DateLike,
) -> pd.DataFrame:
    """Resolve a raw symbol and load its bars."""
    resolved = resolve_symbol(raw_symbol)
    return candle_source.load_bars(resolved.symbol, resolved.source, start, end)


def calculate_avg_volume(bars: pd.DataFrame, period: int = 20) -> Decimal:
    """Average volume over the most recent `period` bars."""
    if len(bars) == 0:
        return ZERO

    recent = bars["volume"].iloc[-period:]
    total = sum((to_decimal(float(v)) for v in recent), ZERO)
    return MONEY_CONTEXT.divide(total, Decimal(len(recent)))


def estimate_bid_ask_spread(bars: pd.DataFrame, period: int = 10) -> Decimal:
    """
    Estimate the bid/ask spread (%) from recent bar ranges.

    Uses the mean of (high - low) / close over the last `period` bars.
    """
    if len(bars) == 0:
        return DEFAULT_SPREAD_PCT

    recent = bars.iloc[-period:]
    total = ZERO
    for high, low, close in zip(recent["high"], recent["low"], recent["close"]):
        close_d = to_decimal(float(close))
        if close_d <= 0:
            continue
        total += MONEY_CONTEXT.divide(
            to_decimal(float(high)) - to_decimal(float(low)),
            close_d,
        )

    avg = MONEY_CONTEXT.divide(total, Decimal(len(recent)))
    return MONEY_CONTEXT.multiply(avg, HUNDRED)
