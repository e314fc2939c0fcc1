"""
Position sizing module.

Risk-based sizing: only a fixed fraction of the account is put at risk
between entry and stop-loss, and the position value is capped at a share
of the account (default 25%).

Used to cross-check commission/slippage math in the simulator and by
callers that want explicit signal quantities.
"""

from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Optional
import structlog

from src.exceptions import PositionSizingError
from src.utils.decimal_utils import MONEY_CONTEXT, Number, to_decimal

logger = structlog.get_logger(__name__)

DEFAULT_MAX_EXPOSURE_PCT = Decimal("0.25")


@dataclass
class PositionSizeResult:
    """Result of position sizing calculation."""
    position_size: Decimal   # units
    position_value: Decimal  # size * entry
    risk_amount: Decimal     # account * risk_pct
    max_position_value: Optional[Decimal]
    limited_by_max_exposure: bool


def calculate_position_size(
    account_size: Number,
    risk_pct: Number,
    entry: Number,
    stop_loss: Number,
    max_exposure_pct: Optional[Number] = DEFAULT_MAX_EXPOSURE_PCT,
) -> PositionSizeResult:
    """
    Size a position so that hitting the stop loses `risk_pct` of the account.

    Args:
        account_size: Account value
        risk_pct: Fraction of the account at risk (0.01 = 1%)
        entry: Entry price
        stop_loss: Stop-loss price
        max_exposure_pct: Cap on position value as a fraction of the
            account; None disables the cap

    Returns:
        PositionSizeResult

    Raises:
        PositionSizingError: entry equals stop_loss
    """
    account = to_decimal(account_size)
    entry_d = to_decimal(entry)
    stop_d = to_decimal(stop_loss)

    with localcontext(MONEY_CONTEXT):
        risk_amount = account * to_decimal(risk_pct)

        stop_distance = abs(entry_d - stop_d)
        if stop_distance == 0:
            raise PositionSizingError(
                f"Stop-loss distance is zero (entry={entry_d}, stop={stop_d})"
            )

        position_size = risk_amount / stop_distance
        position_value = position_size * entry_d

        max_position_value = None
        limited = False
        if max_exposure_pct is not None:
            max_position_value = account * to_decimal(max_exposure_pct)
            if position_value > max_position_value:
                position_value = max_position_value
                position_size = position_value / entry_d
                limited = True

    if limited:
        logger.debug(
            "position_size_capped",
            max_position_value=str(max_position_value),
            position_size=str(position_size),
        )

    return PositionSizeResult(
        position_size=position_size,
        position_value=position_value,
        risk_amount=risk_amount,
        max_position_value=max_position_value,
        limited_by_max_exposure=limited,
    )


def calculate_fixed_value_position(target_value: Number, entry: Number) -> Decimal:
    """Units needed for a fixed position value."""
    with localcontext(MONEY_CONTEXT):
        return to_decimal(target_value) / to_decimal(entry)


def calculate_multiple_risk_sizes(
    account_size: Number,
    entry: Number,
    stop_loss: Number,
    risk_pcts: list[Number],
) -> list[PositionSizeResult]:
    """Size the same trade at several risk levels (for sweeps)."""
    return [
        calculate_position_size(account_size, risk_pct, entry, stop_loss)
        for risk_pct in risk_pcts
    ]
