"""Utility functions and helpers."""

from src.utils.decimal_utils import to_decimal, quantize, money_mul, money_div
from src.utils.logging_config import setup_logging

__all__ = ["to_decimal", "quantize", "money_mul", "money_div", "setup_logging"]
