"""
Research and backtesting modules.

This layer is for:
- Single-symbol simulation
- Walk-forward validation
- Portfolio walk-forward aggregation
- Stress comparison of slippage assumptions

CRITICAL: Never trust a strategy on in-sample numbers. Only
out-of-sample windows count.
"""
