"""
Stress testing framework.

Re-runs the portfolio walk-forward at 0 / 30 / 50 bps of fixed slippage
and reports which windows lose validity and whether the consistency gate
still passes. A strategy that only passes frictionless is rejected.
"""

from research.stress_testing.runner import StressCompareRunner, StressCompareResult, run_from_config

__all__ = ["StressCompareRunner", "StressCompareResult", "run_from_config"]
