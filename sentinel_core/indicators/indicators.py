"""Technical indicators for signal evaluation.

NumPy implementations operating on float sequences. Every function returns
a list with the same length as its input, padded with NaN where the
indicator is not yet defined.
"""

import math
from typing import Sequence

import numpy as np


def ema(values: Sequence[float], period: int) -> list[float]:
    """
    Calculate Exponential Moving Average.

    Seeded with the simple average of the first ``period`` values, then
    smoothed forward with ``alpha = 2 / (period + 1)``.

    Args:
        values: Sequence of price values
        period: EMA period

    Returns:
        List of EMA values (same length as input, with NaN for initial values)
    """
    if period < 1:
        raise ValueError(f"period must be positive, got {period}")
    if len(values) < period:
        return [math.nan] * len(values)

    arr = np.asarray(values, dtype=np.float64)
    alpha = 2.0 / (period + 1)

    result = np.empty_like(arr)
    result[:period - 1] = np.nan
    result[period - 1] = np.mean(arr[:period])

    # prev + alpha * (x - prev) keeps a flat series exactly flat
    for i in range(period, len(arr)):
        prev = result[i - 1]
        result[i] = prev + alpha * (arr[i] - prev)

    return result.tolist()


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        # No losses: 100 when price rose, neutral 50 when it never moved
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def rsi(values: Sequence[float], period: int = 14) -> list[float]:
    """
    Calculate Relative Strength Index with Wilder smoothing.

    The first average gain/loss is the simple mean of the first ``period``
    close-to-close deltas; later averages use
    ``avg = (prev_avg * (period - 1) + current) / period``.

    Args:
        values: Sequence of closing prices
        period: RSI period

    Returns:
        List of RSI values in [0, 100] (NaN until ``period + 1`` values)
    """
    if period < 1:
        raise ValueError(f"period must be positive, got {period}")

    n = len(values)
    result = [math.nan] * n
    if n <= period:
        return result

    arr = np.asarray(values, dtype=np.float64)
    deltas = np.diff(arr)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(np.mean(gains[:period]))
    avg_loss = float(np.mean(losses[:period]))
    result[period] = _rsi_from_averages(avg_gain, avg_loss)

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + float(gains[i])) / period
        avg_loss = (avg_loss * (period - 1) + float(losses[i])) / period
        result[i + 1] = _rsi_from_averages(avg_gain, avg_loss)

    return result


def trailing_mean(
    values: Sequence[float], window: int, min_samples: int = 1
) -> float:
    """
    Average of the ``window`` values preceding the last one.

    The last value (the current observation) is excluded.

    Args:
        values: Sequence of values, oldest first
        window: Number of completed values to average
        min_samples: Minimum number of values required

    Returns:
        The mean, or 0.0 when fewer than ``min_samples`` values are available
    """
    completed = list(values[:-1])[-window:] if window > 0 else []
    if len(completed) < max(min_samples, 1):
        return 0.0
    return float(np.mean(np.asarray(completed, dtype=np.float64)))
