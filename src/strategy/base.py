"""
Strategy contract.

A strategy is an immutable configuration object with a pure decision
function. Anything that must survive between bars (a stored entry ATR,
the previous squeeze flag, ...) lives in a state object created by
`initial_state()` and passed back on every call. The simulator creates one
state per (symbol, run), so windows and symbols never share state.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

import pandas as pd

from src.utils.decimal_utils import ZERO


class SignalType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


@dataclass(frozen=True)
class Signal:
    """A strategy decision for the current bar."""
    action: SignalType
    quantity: Optional[Decimal] = None
    reason: str = ""

    @classmethod
    def hold(cls, reason: str = "") -> "Signal":
        return cls(SignalType.HOLD, reason=reason)

    @classmethod
    def buy(cls, reason: str = "", quantity: Optional[Decimal] = None) -> "Signal":
        return cls(SignalType.BUY, quantity=quantity, reason=reason)

    @classmethod
    def sell(cls, reason: str = "") -> "Signal":
        return cls(SignalType.SELL, reason=reason)


@dataclass
class Position:
    """The single open position of a simulation run."""
    symbol: str
    qty: Decimal
    avg_price: Decimal
    entry_time: datetime
    unrealized_pnl: Decimal = ZERO


class Strategy(ABC):
    """Base class for all strategies."""

    name: str = "strategy"

    def initial_state(self) -> Any:
        """Fresh per-run state. Stateless strategies return None."""
        return None

    @abstractmethod
    def decide(
        self,
        bars: pd.DataFrame,
        position: Optional[Position],
        state: Any,
    ) -> Signal:
        """
        Decide what to do on the last bar of `bars`.

        Args:
            bars: Causal prefix of the series (rows 0..i, i = current bar)
            position: Open position, or None when flat
            state: Object returned by initial_state() for this run

        Returns:
            Signal for the current bar
        """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
