"""Tests for the EMA crossover / RSI / volume evaluator."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from sentinel_core.evaluator import evaluate
from sentinel_core.models import Candle, EvaluatorConfig

START = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_history(
    closes: list[float],
    volumes: list[float] | None = None,
    instrument_id: str = "MINT",
) -> list[Candle]:
    """Helper to build a candle history, oldest first, 15s apart."""
    volumes = volumes or [0.0] * len(closes)
    return [
        Candle(
            instrument_id=instrument_id,
            timestamp=START + timedelta(seconds=15 * i),
            open=close,
            high=close,
            low=close,
            close=close,
            volume=volume,
        )
        for i, (close, volume) in enumerate(zip(closes, volumes))
    ]


class TestEvaluate:
    """Tests for evaluate()."""

    def test_crossover_produces_signal(self):
        """A jump after a flat series crosses fast above slow with RSI > 50."""
        history = make_history([1.0] * 40 + [2.0])

        signal = evaluate(history, EvaluatorConfig())

        assert signal is not None
        assert signal.fast_ema > signal.slow_ema
        assert signal.rsi > 50
        assert signal.price == 2.0
        assert signal.instrument_id == "MINT"
        assert signal.timestamp == history[-1].timestamp

    def test_flat_series_no_signal(self):
        """No price movement means no crossover."""
        assert evaluate(make_history([1.0] * 50)) is None

    def test_insufficient_history_returns_none(self):
        """Fewer than slow_period + 1 candles is a normal None, not an error."""
        assert evaluate(make_history([1.0] * 19 + [2.0])) is None
        assert evaluate([]) is None

    def test_minimum_history_is_enough(self):
        assert evaluate(make_history([1.0] * 20 + [2.0])) is not None

    def test_already_above_is_not_a_crossover(self):
        """Fast already above slow on the previous candle: no strict cross."""
        history = make_history([1.0] * 40 + [2.0, 3.0])
        assert evaluate(history) is None

    def test_rsi_below_threshold_blocks_signal(self):
        config = EvaluatorConfig(rsi_threshold=100.0)
        assert evaluate(make_history([1.0] * 40 + [2.0]), config) is None

    def test_downward_move_no_signal(self):
        assert evaluate(make_history([2.0] * 40 + [1.0])) is None

    def test_is_pure(self):
        """Same history and config give the same result."""
        history = make_history([1.0] * 40 + [2.0])
        assert evaluate(history) == evaluate(history)


class TestVolumeFilter:
    """Tests for the optional volume spike condition."""

    def test_filter_off_ignores_volume(self):
        history = make_history([1.0] * 40 + [2.0], [10.0] * 41)

        signal = evaluate(history, EvaluatorConfig(require_volume_spike=False))

        assert signal is not None
        assert signal.volume_spike is False
        assert signal.volume_filter_active is False
        assert signal.avg_volume == pytest.approx(10.0)

    def test_filter_on_requires_spike(self):
        config = EvaluatorConfig(require_volume_spike=True)
        history = make_history([1.0] * 40 + [2.0], [10.0] * 41)
        assert evaluate(history, config) is None

    def test_filter_on_with_spike(self):
        config = EvaluatorConfig(require_volume_spike=True)
        history = make_history([1.0] * 40 + [2.0], [10.0] * 40 + [16.0])

        signal = evaluate(history, config)

        assert signal is not None
        assert signal.volume_spike is True
        assert signal.volume_filter_active is True
        assert signal.volume == 16.0

    def test_spike_must_exceed_multiplier(self):
        """Exactly 1.5x the average is not a spike."""
        config = EvaluatorConfig(require_volume_spike=True)
        history = make_history([1.0] * 40 + [2.0], [10.0] * 40 + [15.0])
        assert evaluate(history, config) is None

    def test_zero_volume_never_spikes(self):
        config = EvaluatorConfig(require_volume_spike=True)
        history = make_history([1.0] * 40 + [2.0])
        assert evaluate(history, config) is None


class TestEvaluatorConfig:
    """Tests for configuration validation."""

    def test_defaults(self):
        config = EvaluatorConfig()
        assert config.fast_period == 9
        assert config.slow_period == 20
        assert config.min_history == 21

    def test_fast_must_be_below_slow(self):
        with pytest.raises(ValidationError):
            EvaluatorConfig(fast_period=20, slow_period=9)

    def test_config_is_frozen(self):
        config = EvaluatorConfig()
        with pytest.raises(ValidationError):
            config.fast_period = 5
