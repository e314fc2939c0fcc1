"""
Error types for the backtesting engine.

Loading failures are split so callers can retry transport problems
but not plain absence of data:
- NoDataError: the query succeeded and returned nothing (do not retry)
- QueryError: storage/transport failure (retryable)
"""

from decimal import DivisionByZero
from typing import Optional


class BacktestError(Exception):
    """Base class for engine errors."""


class CandleLoadError(BacktestError):
    """Base class for candle loading failures."""

    retryable = False

    def __init__(self, message: str, symbol: Optional[str] = None):
        super().__init__(message)
        self.symbol = symbol


class NoDataError(CandleLoadError):
    """No candles exist for the requested symbol/range."""


class QueryError(CandleLoadError):
    """The candle store could not be queried."""

    retryable = True


class InsufficientDataError(BacktestError):
    """Every requested symbol was excluded; nothing left to evaluate."""


class ConfigurationError(BacktestError, ValueError):
    """Invalid run configuration. Fatal at setup time."""


class PositionSizingError(DivisionByZero):
    """Stop-loss distance is zero; position size is undefined."""


class UnknownRegimeError(BacktestError, ValueError):
    """A regime value with no routing rule."""
