"""
Market regime detector.

Classifies the prevailing trend state from trailing indicators:
- ADX measures trend strength (> 25 strong, < 20 sideways)
- Price vs SMA50/SMA200 and the SMA50 slope give direction

Used by the regime-adaptive strategy to pick a sub-strategy per bar.
Deterministic: the result carries the last bar's timestamp, never
the wall clock.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional
import structlog

import pandas as pd

from src.strategy.indicators import adx_wilder, pct_slope, sma

logger = structlog.get_logger(__name__)

SLOPE_WINDOW = 20


class MarketRegime(str, Enum):
    """Trend state classification."""
    TRENDING_UP = "TRENDING_UP"      # strong uptrend
    TRENDING_DOWN = "TRENDING_DOWN"  # strong downtrend
    SIDEWAYS = "SIDEWAYS"            # ADX < 20, no trend
    WEAK_TREND = "WEAK_TREND"        # mixed or unclear direction


@dataclass
class RegimeMetrics:
    adx: float = 0.0
    sma50: float = 0.0
    sma200: float = 0.0
    price_vs_sma50: float = 0.0   # % above (+) / below (-)
    price_vs_sma200: float = 0.0
    sma50_slope: float = 0.0      # % change over the slope window
    slope_ratio: float = 0.0      # SMA50 slope / SMA200 slope


@dataclass
class RegimeDetectionResult:
    """Regime classification for the last bar of a series."""
    regime: MarketRegime
    confidence: float  # 0.0 - 1.0
    timestamp: Optional[datetime] = None
    metrics: RegimeMetrics = field(default_factory=RegimeMetrics)

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        return {
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "regime": self.regime.value,
            "confidence": self.confidence,
            "adx": self.metrics.adx,
            "sma50": self.metrics.sma50,
            "sma200": self.metrics.sma200,
            "price_vs_sma50": self.metrics.price_vs_sma50,
            "price_vs_sma200": self.metrics.price_vs_sma200,
            "slope_ratio": self.metrics.slope_ratio,
        }


class RegimeDetector:
    """
    ADX + moving-average regime classifier.

    Classification:
    - ADX < sideways threshold: SIDEWAYS
    - ADX > strong threshold: TRENDING_UP / TRENDING_DOWN when price is on
      the same side of both SMAs and the SMA50 slope agrees, else WEAK_TREND
    - otherwise: direction from price vs SMA50 and the slope alone
    """

    def __init__(
        self,
        sma50_period: int = 50,
        sma200_period: int = 200,
        adx_period: int = 14,
        strong_trend_threshold: float = 25.0,
        sideways_threshold: float = 20.0,
    ):
        """
        Initialize regime detector.

        Args:
            sma50_period: Short trend SMA period
            sma200_period: Long trend SMA period
            adx_period: Period for ADX calculation
            strong_trend_threshold: ADX > this = strong trend
            sideways_threshold: ADX < this = sideways
        """
        self.sma50_period = sma50_period
        self.sma200_period = sma200_period
        self.adx_period = adx_period
        self.strong_trend_threshold = strong_trend_threshold
        self.sideways_threshold = sideways_threshold

    @property
    def min_bars(self) -> int:
        return max(self.sma200_period, self.adx_period * 2 + 1)

    def detect_regime(self, bars: pd.DataFrame) -> RegimeDetectionResult:
        """
        Detect the regime at the last bar of `bars`.

        Args:
            bars: DataFrame with columns: timestamp, open, high, low, close, volume

        Returns:
            RegimeDetectionResult (SIDEWAYS with confidence 0 when history is short)
        """
        timestamp = None
        if len(bars) > 0:
            timestamp = pd.Timestamp(bars["timestamp"].iloc[-1]).to_pydatetime()

        if len(bars) < self.min_bars:
            return RegimeDetectionResult(
                regime=MarketRegime.SIDEWAYS,
                confidence=0.0,
                timestamp=timestamp,
            )

        close = float(bars["close"].iloc[-1])

        adx = adx_wilder(bars, self.adx_period)
        sma50 = sma(bars, self.sma50_period)
        sma200 = sma(bars, self.sma200_period)

        price_vs_sma50 = (close - sma50) / sma50 * 100 if sma50 else 0.0
        price_vs_sma200 = (close - sma200) / sma200 * 100 if sma200 else 0.0

        sma50_slope = pct_slope(bars, self.sma50_period, SLOPE_WINDOW)
        sma200_slope = pct_slope(bars, self.sma200_period, SLOPE_WINDOW)
        slope_ratio = sma50_slope / sma200_slope if sma200_slope != 0 else 0.0

        regime, confidence = self._classify(adx, price_vs_sma50, price_vs_sma200, sma50_slope)

        return RegimeDetectionResult(
            regime=regime,
            confidence=confidence,
            timestamp=timestamp,
            metrics=RegimeMetrics(
                adx=adx,
                sma50=sma50,
                sma200=sma200,
                price_vs_sma50=price_vs_sma50,
                price_vs_sma200=price_vs_sma200,
                sma50_slope=sma50_slope,
                slope_ratio=slope_ratio,
            ),
        )

    def _classify(
        self,
        adx: float,
        price_vs_sma50: float,
        price_vs_sma200: float,
        slope: float,
    ) -> tuple[MarketRegime, float]:
        if adx < self.sideways_threshold:
            return MarketRegime.SIDEWAYS, 1 - adx / self.sideways_threshold

        if adx > self.strong_trend_threshold:
            strong_confidence = min((adx - self.strong_trend_threshold) / 20 + 0.5, 1.0)
            if price_vs_sma50 > 0 and price_vs_sma200 > 0 and slope > 0:
                return MarketRegime.TRENDING_UP, strong_confidence
            if price_vs_sma50 < 0 and price_vs_sma200 < 0 and slope < 0:
                return MarketRegime.TRENDING_DOWN, strong_confidence
            # Strong ADX, conflicting direction
            return MarketRegime.WEAK_TREND, 0.3

        if price_vs_sma50 > 0 and slope > 0:
            return MarketRegime.TRENDING_UP, 0.4
        if price_vs_sma50 < 0 and slope < 0:
            return MarketRegime.TRENDING_DOWN, 0.4
        return MarketRegime.WEAK_TREND, 0.3


RECOMMENDED_STRATEGY = {
    MarketRegime.TRENDING_UP: "enhanced-ma",
    MarketRegime.TRENDING_DOWN: "none",
    MarketRegime.SIDEWAYS: "bb-squeeze",
    MarketRegime.WEAK_TREND: "bb-squeeze",
}
