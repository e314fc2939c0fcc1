"""
Market regime detection module.

Classifies trend state (up / down / sideways / weak) from ADX and
SMA50/SMA200 so the regime-adaptive strategy can route each bar to a
suitable sub-strategy.
"""

from src.regime.detector import (
    RegimeDetector,
    MarketRegime,
    RegimeDetectionResult,
    RECOMMENDED_STRATEGY,
)

__all__ = ["RegimeDetector", "MarketRegime", "RegimeDetectionResult", "RECOMMENDED_STRATEGY"]
