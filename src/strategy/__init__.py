"""
Strategy module for trading strategies.

Variants: Simple MA, Enhanced MA, BB Squeeze, Regime-Adaptive.
Build them by name with src.strategy.factory.
"""

from src.strategy.base import Strategy, Signal, SignalType, Position

__all__ = ["Strategy", "Signal", "SignalType", "Position"]
