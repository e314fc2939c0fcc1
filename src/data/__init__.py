"""
Candle data layer.

Candle schema, symbol resolution, candle sources and the
transaction cost model used by the simulator.
"""

from src.data.schema import Candle, SymbolConfig, resolve_symbol
from src.data.loader import CandleSource, InMemoryCandleSource, DuckDBCandleSource

__all__ = [
    "Candle",
    "SymbolConfig",
    "resolve_symbol",
    "CandleSource",
    "InMemoryCandleSource",
    "DuckDBCandleSource",
]
