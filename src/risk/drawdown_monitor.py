"""
Drawdown throttle for window-by-window portfolio simulation.

Tracks a compounded equity multiplier across OOS windows and decides,
before each window is booked, whether exposure is cut:
- Reduce: drawdown >= reduce threshold -> return scaled by 0.5
- Halt:   drawdown >= halt threshold   -> return zeroed, equity frozen

Halt always takes precedence over reduce. Drawdown is measured over the
full equity history or, with a lookback of N, over the last N+1 points.
"""

from dataclasses import dataclass
from decimal import Decimal, localcontext
from enum import Enum
from typing import Iterable, Optional
import structlog

from src.utils.decimal_utils import HUNDRED, MONEY_CONTEXT, ONE, ZERO, Number, quantize, to_decimal

logger = structlog.get_logger(__name__)

REDUCE_SCALAR = 0.5


class ThrottleAction(str, Enum):
    NONE = "none"
    REDUCE = "reduce"
    HALT = "halt"


@dataclass
class ThrottleDecision:
    """Outcome of the drawdown check for one window."""
    action: ThrottleAction
    portfolio_return: float
    position_scalar: float
    drawdown_pct: float  # drawdown before the window, in percent
    equity_after: Decimal


class DrawdownThrottle:
    """
    Rolling-drawdown exposure control.

    Usage:
        throttle = DrawdownThrottle(reduce_pct=10, halt_pct=20)
        decision = throttle.apply(window_return, can_halt=True, can_reduce=True)
    """

    def __init__(
        self,
        reduce_pct: Number = 0,
        halt_pct: Number = 0,
        lookback: int = 0,
        equities: Optional[Iterable[Number]] = None,
    ):
        """
        Initialize drawdown throttle.

        Args:
            reduce_pct: Drawdown (%) at which exposure is halved; 0 disables
            halt_pct: Drawdown (%) at which the window goes to cash; 0 disables
            lookback: Number of trailing windows for the rolling peak; 0 = full history
            equities: Optional starting equity history (defaults to [1])
        """
        if lookback < 0:
            raise ValueError("Drawdown lookback must be >= 0")

        self.reduce_threshold = to_decimal(reduce_pct) / HUNDRED
        self.halt_threshold = to_decimal(halt_pct) / HUNDRED
        self.lookback = lookback
        self.equities: list[Decimal] = (
            [to_decimal(e) for e in equities] if equities is not None else [ONE]
        )
        if not self.equities:
            self.equities = [ONE]

    @property
    def current_equity(self) -> Decimal:
        return self.equities[-1]

    def current_drawdown(self) -> Decimal:
        """(rolling peak - current) / rolling peak, as a fraction."""
        window = self.equities[-(self.lookback + 1):] if self.lookback > 0 else self.equities
        peak = max(window)
        current = window[-1]
        if peak <= 0:
            return ZERO
        with localcontext(MONEY_CONTEXT):
            return (peak - current) / peak

    def apply(
        self,
        portfolio_return: float,
        can_halt: bool = True,
        can_reduce: bool = True,
    ) -> ThrottleDecision:
        """
        Check drawdown, adjust the window return and book it.

        Args:
            portfolio_return: Unthrottled window return (%)
            can_halt: Whether the window is eligible for a halt
            can_reduce: Whether the window is eligible for a reduction

        Returns:
            ThrottleDecision with the adjusted return
        """
        drawdown = self.current_drawdown()
        action = ThrottleAction.NONE
        scalar = 1.0
        adjusted = portfolio_return

        if can_halt and self.halt_threshold > 0 and drawdown >= self.halt_threshold:
            action = ThrottleAction.HALT
            scalar = 0.0
            adjusted = 0.0
        elif can_reduce and self.reduce_threshold > 0 and drawdown >= self.reduce_threshold:
            action = ThrottleAction.REDUCE
            scalar = REDUCE_SCALAR
            adjusted = portfolio_return * REDUCE_SCALAR

        previous = self.current_equity
        if action == ThrottleAction.HALT:
            equity = previous
        else:
            with localcontext(MONEY_CONTEXT):
                equity = quantize(previous * (ONE + to_decimal(adjusted) / HUNDRED))
        self.equities.append(equity)

        drawdown_pct = float(drawdown * HUNDRED)
        if action != ThrottleAction.NONE:
            logger.info(
                "drawdown_throttle_triggered",
                action=action.value,
                drawdown_pct=round(drawdown_pct, 4),
                equity=str(equity),
            )

        return ThrottleDecision(
            action=action,
            portfolio_return=adjusted,
            position_scalar=scalar,
            drawdown_pct=drawdown_pct,
            equity_after=equity,
        )
