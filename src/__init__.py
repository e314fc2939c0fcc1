"""
Walk-forward portfolio backtester - core library.

Candle loading, strategies, regime detection, cost modeling and
risk/portfolio primitives. The simulation and walk-forward drivers live
in the research package.

Assumptions:
- Backtests lie unless costs are charged
- In-sample numbers are never evidence
- Most strategies fail out-of-sample
"""

__version__ = "0.1.0"
