"""
Slippage model.

Converts order size, recent liquidity and spread into an execution-price
penalty (in percent). Three models:
- fixed:  constant percentage (default 0.05%)
- linear: (order_size / avg_volume) * spread
- sqrt:   sqrt(order_size / avg_volume) * spread  (market impact)

A non-zero fixed_pct overrides whichever model is configured. This is how
deterministic stress scenarios (30 / 50 bps) are expressed.
"""

from dataclasses import dataclass, replace
from decimal import Decimal, localcontext
from enum import Enum
from typing import Optional
import structlog

from src.utils.decimal_utils import HUNDRED, MONEY_CONTEXT, ONE, ZERO, Number, to_decimal

logger = structlog.get_logger(__name__)

DEFAULT_FIXED_PCT = Decimal("0.05")


class SlippageModelType(str, Enum):
    FIXED = "fixed"
    LINEAR = "linear"
    SQRT = "sqrt"


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class SlippageParams:
    """Inputs for one slippage calculation."""
    model: SlippageModelType = SlippageModelType.FIXED
    order_size: Decimal = ZERO
    avg_volume: Decimal = ZERO
    bid_ask_spread: Decimal = ZERO
    fixed_pct: Optional[Decimal] = None
    stress_multiplier: Decimal = ONE

    def with_market(
        self,
        order_size: Number,
        avg_volume: Number,
        bid_ask_spread: Number,
    ) -> "SlippageParams":
        """Copy with order/liquidity inputs filled in for a specific fill."""
        return replace(
            self,
            order_size=to_decimal(order_size),
            avg_volume=to_decimal(avg_volume),
            bid_ask_spread=to_decimal(bid_ask_spread),
        )


def calculate_slippage(params: SlippageParams) -> Decimal:
    """
    Slippage percentage for an order.

    Returns:
        Slippage in percent (0.05 means 0.05%)
    """
    stress = to_decimal(params.stress_multiplier)

    with localcontext(MONEY_CONTEXT):
        if params.fixed_pct is not None and to_decimal(params.fixed_pct) != 0:
            base = to_decimal(params.fixed_pct)
        elif params.model == SlippageModelType.FIXED:
            base = DEFAULT_FIXED_PCT
        elif params.model in (SlippageModelType.LINEAR, SlippageModelType.SQRT):
            avg_volume = to_decimal(params.avg_volume)
            if avg_volume <= 0:
                base = ZERO
            else:
                ratio = to_decimal(params.order_size) / avg_volume
                if params.model == SlippageModelType.SQRT:
                    ratio = ratio.sqrt()
                base = ratio * to_decimal(params.bid_ask_spread)
        else:
            raise ValueError(f"Unknown slippage model: {params.model}")

        return base * stress


def apply_slippage(price: Number, slippage_pct: Number, side: OrderSide) -> Decimal:
    """Shift price against the order: BUY fills higher, SELL fills lower."""
    with localcontext(MONEY_CONTEXT):
        shift = to_decimal(slippage_pct) / HUNDRED
        if side == OrderSide.BUY:
            return to_decimal(price) * (ONE + shift)
        return to_decimal(price) * (ONE - shift)


# Per-venue defaults
SLIPPAGE_PRESETS: dict[str, SlippageParams] = {
    "upbit": SlippageParams(model=SlippageModelType.FIXED, fixed_pct=Decimal("0.05")),
    "binance": SlippageParams(model=SlippageModelType.FIXED, fixed_pct=Decimal("0.1")),
    "kis": SlippageParams(model=SlippageModelType.SQRT, fixed_pct=ZERO),
    "yf": SlippageParams(model=SlippageModelType.SQRT, fixed_pct=ZERO),
}


def slippage_for_source(source: str, slippage_bps: Optional[Number] = None) -> SlippageParams:
    """
    Slippage parameters for a candle source, with an optional bps override.

    A positive bps override becomes a fixed model with fixed_pct = bps / 100.
    None or 0 keeps the source preset.
    """
    if slippage_bps is not None and to_decimal(slippage_bps) > 0:
        return SlippageParams(
            model=SlippageModelType.FIXED,
            fixed_pct=MONEY_CONTEXT.divide(to_decimal(slippage_bps), HUNDRED),
        )

    if source not in SLIPPAGE_PRESETS:
        logger.warning("unknown_slippage_source", source=source)
        return SlippageParams()

    return SLIPPAGE_PRESETS[source]
