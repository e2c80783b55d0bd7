"""Candle aggregator turning live price samples into fixed-width candles.

Each tracked instrument owns one CandleBuffer holding the in-progress
candle. The candle clock calls ``flush()`` once per period boundary; every
non-empty buffer becomes an immutable Candle stamped with the start of the
period that just ended, and the buffer is reset for the next period.

Period boundaries are absolute multiples of the period width since the
Unix epoch, so restarts produce the same grid for every instrument.
"""

import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable

from sentinel_core.models import Candle, Instrument
from sentinel_core.registry import InstrumentRegistry

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_SECONDS = 15

CandleCallback = Callable[[Candle], Awaitable[None]]


def period_start(timestamp: float, period_seconds: int) -> float:
    """Get the start of the period containing ``timestamp``.

    Args:
        timestamp: Unix timestamp in seconds
        period_seconds: Period width in seconds

    Returns:
        Aligned period start timestamp
    """
    return (int(timestamp) // period_seconds) * period_seconds


def seconds_until_boundary(timestamp: float, period_seconds: int) -> float:
    """Seconds from ``timestamp`` to the next period boundary (never 0)."""
    remainder = timestamp % period_seconds
    return period_seconds - remainder


def closed_period_start(now: datetime, period_seconds: int) -> datetime:
    """Start of the period that ended at the boundary at or before ``now``."""
    boundary = period_start(now.timestamp(), period_seconds)
    return datetime.fromtimestamp(boundary - period_seconds, tz=timezone.utc)


@dataclass(slots=True)
class CandleBuffer:
    """In-progress candle for one instrument. Empty until the first sample."""

    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0
    volume: float = 0.0
    sample_count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.sample_count == 0

    def add(self, price: float, volume: float) -> None:
        """Fold one sample into the buffer."""
        if self.sample_count == 0:
            self.open = self.high = self.low = self.close = price
            self.volume = volume
        else:
            self.high = max(self.high, price)
            self.low = min(self.low, price)
            self.close = price
            self.volume += volume
        self.sample_count += 1

    def reset(self) -> None:
        """Empty the buffer for the next period."""
        self.open = self.high = self.low = self.close = 0.0
        self.volume = 0.0
        self.sample_count = 0


class CandleAggregator:
    """Aggregates (instrument, price, volume) samples into OHLCV candles.

    Buffers and the last-price cache are guarded by one lock, so samples
    can be fed from any thread or task. Closed candles are delivered to the
    registered callbacks by ``flush()``; the candle clock is the only
    caller of ``flush()``, one call per period.

    Usage:
        aggregator = CandleAggregator(period_seconds=15)
        aggregator.on_candle(my_callback)
        aggregator.add_token(instrument)
        aggregator.add_sample(instrument.id, 0.0012, 0.0)
        await aggregator.flush(period_start)
    """

    def __init__(
        self,
        registry: InstrumentRegistry | None = None,
        period_seconds: int = DEFAULT_PERIOD_SECONDS,
    ):
        if period_seconds <= 0:
            raise ValueError(f"period_seconds must be positive, got {period_seconds}")

        self.period_seconds = period_seconds
        self.registry = registry if registry is not None else InstrumentRegistry()

        self._buffers: dict[str, CandleBuffer] = {}
        # Survives period closes, read for valuation
        self._last_prices: dict[str, float] = {}
        self._callbacks: list[CandleCallback] = []
        self._lock = threading.Lock()

        logger.info(f"CandleAggregator initialized with {period_seconds}s period")

    def on_candle(self, callback: CandleCallback) -> None:
        """Register a callback for closed candles.

        Args:
            callback: Async function called with each closed candle
        """
        self._callbacks.append(callback)

    # ------------------------------------------------------------------
    # Tracked set
    # ------------------------------------------------------------------

    def add_token(self, instrument: Instrument) -> bool:
        """Start tracking an instrument. Adding a tracked one is a no-op."""
        with self._lock:
            if not self.registry.add(instrument):
                return False
            self._buffers[instrument.id] = CandleBuffer()

        logger.info(f"+Tracking {instrument.display_name}")
        return True

    def remove_token(self, instrument_id: str) -> bool:
        """Stop tracking an instrument, dropping its buffer and last price."""
        with self._lock:
            removed = self.registry.remove(instrument_id)
            self._buffers.pop(instrument_id, None)
            self._last_prices.pop(instrument_id, None)

        if removed is not None:
            logger.info(f"-Tracking {removed.display_name}")
        return removed is not None

    def is_tracked(self, instrument_id: str) -> bool:
        return instrument_id in self.registry

    def tracked_ids(self) -> list[str]:
        return self.registry.ids()

    # ------------------------------------------------------------------
    # Samples
    # ------------------------------------------------------------------

    def add_sample(self, instrument_id: str, price: float, volume: float = 0.0) -> bool:
        """Feed one live price sample.

        Samples for untracked instruments and non-positive or NaN prices are
        dropped silently; another sample will arrive shortly.

        Returns:
            True if the sample was applied
        """
        try:
            price = float(price)
            volume = float(volume or 0.0)
        except (TypeError, ValueError):
            return False
        if math.isnan(price) or price <= 0:
            return False
        if math.isnan(volume) or volume < 0:
            volume = 0.0

        with self._lock:
            buffer = self._buffers.get(instrument_id)
            if buffer is None:
                return False
            self._last_prices[instrument_id] = price
            buffer.add(price, volume)
        return True

    def get_last_price(self, instrument_id: str) -> float | None:
        """Last known price, independent of the buffer lifecycle."""
        with self._lock:
            return self._last_prices.get(instrument_id)

    def get_partial_candle(self, instrument_id: str) -> CandleBuffer | None:
        """Copy of the in-progress buffer, or None if empty or untracked."""
        with self._lock:
            buffer = self._buffers.get(instrument_id)
            if buffer is None or buffer.is_empty:
                return None
            return CandleBuffer(
                open=buffer.open,
                high=buffer.high,
                low=buffer.low,
                close=buffer.close,
                volume=buffer.volume,
                sample_count=buffer.sample_count,
            )

    # ------------------------------------------------------------------
    # Period close
    # ------------------------------------------------------------------

    def close_period(self, period_start_time: datetime) -> list[Candle]:
        """Close the current period for every tracked instrument.

        Instruments without samples in the period emit nothing.

        Args:
            period_start_time: Start of the period being closed

        Returns:
            The closed candles
        """
        closed: list[Candle] = []
        with self._lock:
            for instrument_id, buffer in self._buffers.items():
                if buffer.is_empty:
                    continue
                instrument = self.registry.get(instrument_id)
                closed.append(
                    Candle(
                        instrument_id=instrument_id,
                        pool_ref=instrument.pool_ref if instrument else None,
                        timestamp=period_start_time,
                        open=buffer.open,
                        high=buffer.high,
                        low=buffer.low,
                        close=buffer.close,
                        volume=buffer.volume,
                    )
                )
                buffer.reset()
        return closed

    async def flush(self, period_start_time: datetime) -> list[Candle]:
        """Close the period and deliver each candle to the callbacks.

        A failing callback is logged and does not stop delivery of the
        remaining candles.
        """
        closed = self.close_period(period_start_time)

        for candle in closed:
            for callback in self._callbacks:
                try:
                    await callback(candle)
                except Exception as e:
                    logger.error(f"Candle callback error for {candle.instrument_id}: {e}")

        if closed:
            logger.debug(f"Closed {len(closed)} candle(s) at {period_start_time.isoformat()}")
        return closed
