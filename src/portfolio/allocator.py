"""
Portfolio weighting for selected symbols.

Two modes:
- equal:   1/N per selected symbol
- inv_vol: proportional to 1 / trailing daily-return stdev

Both then apply a per-symbol weight cap: excess above the cap is moved to
uncapped symbols (bounded number of passes) and the result is renormalized.
"""

from dataclasses import dataclass
from enum import Enum
from math import isfinite
from typing import Optional
import structlog

import numpy as np
import pandas as pd

logger = structlog.get_logger(__name__)

MAX_CAP_ITERATIONS = 20
EPSILON = 1e-10
MIN_VOL_CANDLES = 5


class WeightingMode(str, Enum):
    EQUAL = "equal"
    INV_VOL = "inv_vol"


def equal_weights(symbols: list[str], max_weight: Optional[float] = None) -> dict[str, float]:
    """1/N weights, then cap and normalize."""
    if not symbols:
        return {}
    weights = {s: 1.0 / len(symbols) for s in symbols}
    return apply_cap_and_normalize(weights, symbols, max_weight)


def inverse_vol_weights(
    symbols: list[str],
    vols: dict[str, Optional[float]],
    max_weight: Optional[float] = None,
) -> dict[str, float]:
    """
    Inverse-volatility weights, then cap and normalize.

    Falls back to equal weights for the whole set when any symbol lacks a
    usable volatility (missing, zero or non-finite).
    """
    if not symbols:
        return {}

    inv_vols = {}
    for s in symbols:
        vol = vols.get(s)
        if vol is None or not isfinite(vol) or vol <= 0:
            logger.debug("inv_vol_fallback_equal", symbol=s, vol=vol)
            return equal_weights(symbols, max_weight)
        inv_vols[s] = 1.0 / vol

    total = sum(inv_vols.values())
    if total <= EPSILON:
        return equal_weights(symbols, max_weight)

    weights = {s: inv_vols[s] / total for s in symbols}
    return apply_cap_and_normalize(weights, symbols, max_weight)


def apply_cap_and_normalize(
    weights: dict[str, float],
    symbols: list[str],
    max_weight: Optional[float] = None,
) -> dict[str, float]:
    """
    Cap each weight at max_weight, redistribute the excess, renormalize.

    Redistribution runs at most MAX_CAP_ITERATIONS passes and stops early
    when the excess is negligible or every symbol is capped. An infeasible
    cap (cap * N < 1) therefore ends with weights above the cap after
    renormalization. A near-zero total falls back to equal weights.
    """
    weights = dict(weights)
    cap = max_weight if max_weight and max_weight > 0 else 0.0

    if cap > 0:
        for _ in range(MAX_CAP_ITERATIONS):
            excess = 0.0
            uncapped = 0
            for s in symbols:
                w = weights.get(s, 0.0)
                if w > cap:
                    excess += w - cap
                    weights[s] = cap
                else:
                    uncapped += 1

            if excess < EPSILON or uncapped == 0:
                break

            add = excess / uncapped
            for s in symbols:
                if weights.get(s, 0.0) < cap:
                    weights[s] = weights.get(s, 0.0) + add

    total = sum(weights.get(s, 0.0) for s in symbols)
    if total <= EPSILON:
        logger.warning("weight_total_near_zero", total=total, symbols=symbols)
        return {s: 1.0 / len(symbols) for s in symbols} if symbols else {}

    return {s: weights.get(s, 0.0) / total for s in symbols}


def trailing_volatility(bars: pd.DataFrame, lookback: int = 30) -> Optional[float]:
    """
    Sample stdev of daily close-to-close returns over the last `lookback` bars.

    Returns None when there are fewer than MIN_VOL_CANDLES bars or fewer
    than two returns.
    """
    recent = bars["close"].values[-lookback:].astype(float)
    if len(recent) < MIN_VOL_CANDLES:
        return None

    prev = recent[:-1]
    curr = recent[1:]
    mask = prev > 0
    returns = (curr[mask] - prev[mask]) / prev[mask]
    if len(returns) < 2:
        return None

    return float(np.std(returns, ddof=1))


@dataclass
class PortfolioAllocator:
    """Weighting policy for one portfolio run."""
    mode: WeightingMode = WeightingMode.EQUAL
    max_symbol_weight: float = 0.0

    def weights(
        self,
        symbols: list[str],
        vols: Optional[dict[str, Optional[float]]] = None,
    ) -> dict[str, float]:
        if self.mode == WeightingMode.INV_VOL:
            return inverse_vol_weights(symbols, vols or {}, self.max_symbol_weight)
        return equal_weights(symbols, self.max_symbol_weight)
