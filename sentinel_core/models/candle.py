"""Candle (OHLCV) data models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class OhlcvSample(BaseModel):
    """One historical OHLCV row as returned by the historical-data source."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class Candle(BaseModel):
    """Persisted candle, immutable once written.

    The natural key is ``(instrument_id, timestamp)``; writing the same key
    twice is a no-op in every store.
    """

    model_config = ConfigDict(frozen=True)

    instrument_id: str
    pool_ref: str | None = None
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @classmethod
    def from_sample(
        cls, instrument_id: str, pool_ref: str | None, sample: OhlcvSample
    ) -> "Candle":
        """Build a candle from a historical sample."""
        return cls(
            instrument_id=instrument_id,
            pool_ref=pool_ref,
            timestamp=sample.timestamp,
            open=sample.open,
            high=sample.high,
            low=sample.low,
            close=sample.close,
            volume=sample.volume,
        )
