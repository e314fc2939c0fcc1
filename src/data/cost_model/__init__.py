"""Transaction cost modeling."""

from src.data.cost_model.slippage_model import (
    SlippageModelType,
    SlippageParams,
    OrderSide,
    calculate_slippage,
    apply_slippage,
    slippage_for_source,
    SLIPPAGE_PRESETS,
)

__all__ = [
    "SlippageModelType",
    "SlippageParams",
    "OrderSide",
    "calculate_slippage",
    "apply_slippage",
    "slippage_for_source",
    "SLIPPAGE_PRESETS",
]
