"""EMA crossover trigger with RSI and optional volume confirmation.

Conditions, evaluated on the newest candle of the history:
1. Fast EMA crosses above slow EMA (previous fast <= previous slow,
   current fast > current slow)
2. RSI above the configured threshold
3. Current volume above ``multiplier`` x trailing average volume
   (only when ``require_volume_spike`` is enabled)

This module is pure: the result depends only on the history and the
configuration passed in.
"""

import math
from typing import Sequence

from sentinel_core.indicators import ema, rsi, trailing_mean
from sentinel_core.models import Candle, EvaluatorConfig, Signal

DEFAULT_CONFIG = EvaluatorConfig()


def _is_crossover(
    prev_fast: float, prev_slow: float, fast: float, slow: float
) -> bool:
    """Strict cross from at-or-below to above."""
    if any(math.isnan(v) for v in (prev_fast, prev_slow, fast, slow)):
        return False
    return prev_fast <= prev_slow and fast > slow


def evaluate(
    history: Sequence[Candle],
    config: EvaluatorConfig | None = None,
) -> Signal | None:
    """Evaluate the trigger on the newest candle of ``history``.

    Args:
        history: Candles ordered oldest to newest
        config: Evaluator parameters (defaults when omitted)

    Returns:
        Signal if every enabled condition holds, None otherwise. Too short a
        history is not an error, it simply yields None.
    """
    config = config or DEFAULT_CONFIG

    if len(history) < config.min_history:
        return None

    closes = [c.close for c in history]
    volumes = [c.volume for c in history]

    fast_series = ema(closes, config.fast_period)
    slow_series = ema(closes, config.slow_period)

    fast_curr, fast_prev = fast_series[-1], fast_series[-2]
    slow_curr, slow_prev = slow_series[-1], slow_series[-2]

    if not _is_crossover(fast_prev, slow_prev, fast_curr, slow_curr):
        return None

    rsi_series = rsi(closes, config.rsi_period)
    rsi_value = rsi_series[-1]
    if math.isnan(rsi_value) or rsi_value <= config.rsi_threshold:
        return None

    current_volume = volumes[-1]
    avg_volume = trailing_mean(
        volumes, config.volume_window, config.volume_min_samples
    )
    volume_spike = avg_volume > 0 and current_volume > avg_volume * config.volume_multiplier

    if config.require_volume_spike and not volume_spike:
        return None

    latest = history[-1]
    return Signal(
        instrument_id=latest.instrument_id,
        timestamp=latest.timestamp,
        price=latest.close,
        fast_ema=fast_curr,
        slow_ema=slow_curr,
        rsi=rsi_value,
        volume=current_volume,
        avg_volume=avg_volume,
        volume_spike=volume_spike,
        volume_filter_active=config.require_volume_spike,
    )
