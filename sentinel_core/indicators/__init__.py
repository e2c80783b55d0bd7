"""Technical indicators (pure math, no I/O)."""

from sentinel_core.indicators.indicators import ema, rsi, trailing_mean

__all__ = [
    "ema",
    "rsi",
    "trailing_mean",
]
