"""
Fixed-point helpers for money arithmetic.

All cash, quantity, price and PnL bookkeeping goes through Decimal with an
explicit context so cumulative sums carry no binary-float drift. Floats
coming from pandas are converted through repr() to keep the shortest
round-tripping digits.
"""

from decimal import Decimal, Context, ROUND_HALF_EVEN, localcontext
from typing import Union

MONEY_CONTEXT = Context(prec=28, rounding=ROUND_HALF_EVEN)
QUANT = Decimal("1e-10")

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

Number = Union[Decimal, float, int, str]


def to_decimal(value: Number) -> Decimal:
    """Convert a number to Decimal without float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise ValueError(f"Cannot convert non-finite value to Decimal: {value}")
        return Decimal(repr(value))
    return Decimal(value)


def quantize(value: Decimal) -> Decimal:
    """Round a booked amount to the engine's fixed-point grid (half-even)."""
    with localcontext(MONEY_CONTEXT):
        return value.quantize(QUANT)


def money_mul(*values: Number) -> Decimal:
    """Multiply and quantize."""
    with localcontext(MONEY_CONTEXT):
        result = ONE
        for value in values:
            result *= to_decimal(value)
        return result.quantize(QUANT)


def money_div(numerator: Number, denominator: Number) -> Decimal:
    """Divide and quantize. Division by zero raises decimal.DivisionByZero."""
    with localcontext(MONEY_CONTEXT):
        return (to_decimal(numerator) / to_decimal(denominator)).quantize(QUANT)


def pct_change(initial: Decimal, final: Decimal) -> float:
    """Percentage change from initial to final, as a float for reporting."""
    if initial <= 0:
        return 0.0
    with localcontext(MONEY_CONTEXT):
        return float((final - initial) / initial * HUNDRED)
