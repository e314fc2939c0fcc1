"""
Portfolio management module.

Handles:
- Equal and inverse-volatility weighting
- Per-symbol weight caps with redistribution
"""

from src.portfolio.allocator import (
    PortfolioAllocator,
    WeightingMode,
    equal_weights,
    inverse_vol_weights,
    apply_cap_and_normalize,
    trailing_volatility,
)

__all__ = [
    "PortfolioAllocator",
    "WeightingMode",
    "equal_weights",
    "inverse_vol_weights",
    "apply_cap_and_normalize",
    "trailing_volatility",
]
