"""Evaluator configuration model."""

from pydantic import BaseModel, ConfigDict, model_validator


class EvaluatorConfig(BaseModel):
    """Parameters for the EMA crossover / RSI / volume trigger.

    Passed explicitly to every evaluation call.
    """

    model_config = ConfigDict(frozen=True)

    fast_period: int = 9
    slow_period: int = 20
    rsi_period: int = 14
    rsi_threshold: float = 50.0

    # Volume spike filter (off by default)
    require_volume_spike: bool = False
    volume_window: int = 10
    volume_min_samples: int = 5
    volume_multiplier: float = 1.5

    @model_validator(mode="after")
    def _check_periods(self) -> "EvaluatorConfig":
        if self.fast_period < 1 or self.slow_period < 1 or self.rsi_period < 1:
            raise ValueError("indicator periods must be positive")
        if self.fast_period >= self.slow_period:
            raise ValueError("fast_period must be smaller than slow_period")
        return self

    @property
    def min_history(self) -> int:
        """Minimum number of candles needed for a two-point EMA comparison."""
        return self.slow_period + 1
