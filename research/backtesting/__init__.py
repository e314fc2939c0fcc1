"""
Backtesting framework with walk-forward validation.

Key principles:
- Causal simulation (no bar is visible before it happens)
- Non-overlapping in-sample / out-of-sample windows
- Transaction costs always applied
- Portfolio selection uses in-sample returns only
"""

from research.backtesting.engine import BacktestEngine, BacktestResult
from research.backtesting.metrics import PerformanceMetrics, calculate_metrics
from research.backtesting.walk_forward import (
    WalkForwardRunner,
    WalkForwardWindow,
    WindowResult,
    WindowStatus,
    generate_windows,
)
from research.backtesting.config import PortfolioWalkForwardConfig, load_config
from research.backtesting.portfolio import (
    PortfolioWalkForward,
    PortfolioWalkForwardResult,
    PortfolioWindowStatus,
)

__all__ = [
    "BacktestEngine",
    "BacktestResult",
    "PerformanceMetrics",
    "calculate_metrics",
    "WalkForwardRunner",
    "WalkForwardWindow",
    "WindowResult",
    "WindowStatus",
    "generate_windows",
    "PortfolioWalkForwardConfig",
    "load_config",
    "PortfolioWalkForward",
    "PortfolioWalkForwardResult",
    "PortfolioWindowStatus",
]
