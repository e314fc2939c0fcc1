"""
Risk management module.

Handles:
- Risk-based position sizing (stop distance, exposure cap)
- Drawdown throttling of window-by-window portfolio returns
"""

from src.risk.position_sizer import calculate_position_size, PositionSizeResult
from src.risk.drawdown_monitor import DrawdownThrottle, ThrottleAction, ThrottleDecision

__all__ = [
    "calculate_position_size",
    "PositionSizeResult",
    "DrawdownThrottle",
    "ThrottleAction",
    "ThrottleDecision",
]
