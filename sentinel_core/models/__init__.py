"""Data models shared by the core and the live service."""

from sentinel_core.models.backfill import BackfillStatus, BackfillTask
from sentinel_core.models.candle import Candle, OhlcvSample
from sentinel_core.models.config import EvaluatorConfig
from sentinel_core.models.instrument import DiscoveredToken, Instrument
from sentinel_core.models.signal import AlertRecord, Signal

__all__ = [
    "AlertRecord",
    "BackfillStatus",
    "BackfillTask",
    "Candle",
    "OhlcvSample",
    "EvaluatorConfig",
    "DiscoveredToken",
    "Instrument",
    "Signal",
]
