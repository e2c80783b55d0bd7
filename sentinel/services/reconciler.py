"""Startup and periodic reconciliation of persisted candle coverage."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from sentinel.errors import UpstreamError
from sentinel.services.backfill_queue import BackfillQueue, HistorySource
from sentinel.storage.protocols import CandleStore, InstrumentStore
from sentinel_core.models import Instrument

logger = logging.getLogger(__name__)

GAP_THRESHOLD_SECONDS = 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GapReconciler:
    """Detect missing or stale candle coverage.

    The audit feeds the backfill queue; the startup gap fill talks to the
    historical source directly and relies on idempotent candle writes.
    """

    def __init__(
        self,
        candles: CandleStore,
        instruments: InstrumentStore,
        queue: BackfillQueue,
        source: HistorySource,
        gap_threshold_seconds: float = GAP_THRESHOLD_SECONDS,
        fetch_limit: int = 300,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.candles = candles
        self.instruments = instruments
        self.queue = queue
        self.source = source
        self.gap_threshold = timedelta(seconds=gap_threshold_seconds)
        self.fetch_limit = fetch_limit
        self._clock = clock

    async def audit_and_enqueue_missing(self) -> int:
        """Queue every known instrument that has no persisted candles.

        Covers active and pruned instruments alike. A ``done`` task is
        re-armed; pending and failed tasks are left as they are.

        Returns:
            Number of instruments without candles
        """
        instruments = await self.instruments.list_all()
        missing = 0
        for instrument in instruments:
            if await self.candles.count(instrument.id) > 0:
                continue
            missing += 1
            created = await self.queue.enqueue(
                instrument.id,
                symbol=instrument.symbol,
                name=instrument.name,
                pool_ref=instrument.pool_ref,
            )
            if not created:
                await self.queue.rearm(instrument.id)

        if missing:
            logger.info(f"Audit: {missing} instrument(s) without candles queued for backfill")
        else:
            logger.info(f"Audit: all {len(instruments)} instrument(s) have candle data")
        return missing

    async def gap_fill_on_startup(self) -> int:
        """Re-fetch history for active instruments whose latest candle is stale.

        Instruments without a pool or without any candle are skipped (the
        audit covers the latter). Existing candles are never overwritten.

        Returns:
            Number of instruments re-backfilled
        """
        instruments = [i for i in await self.instruments.list_active() if i.pool_ref]
        if not instruments:
            return 0

        logger.info(f"Gap fill: checking {len(instruments)} instrument(s)")
        now = self._clock()
        filled = 0
        for instrument in instruments:
            try:
                if await self._fill_instrument(instrument, now):
                    filled += 1
            except UpstreamError as e:
                logger.error(f"Gap fill failed for {instrument.display_name}: {e}")
            except Exception as e:
                logger.error(f"Gap fill error for {instrument.display_name}: {e.__class__.__name__}: {e}")

        if filled:
            logger.info(f"Gap fill complete: {filled} instrument(s) re-backfilled")
        else:
            logger.info("Gap fill: no gaps detected")
        return filled

    async def _fill_instrument(self, instrument: Instrument, now: datetime) -> bool:
        """Re-fetch one instrument's history if its latest candle is stale."""
        latest = await self.candles.get_latest_timestamp(instrument.id)
        if latest is None:
            return False
        gap = now - latest
        if gap <= self.gap_threshold:
            return False

        logger.info(
            f"Gap of {gap.total_seconds() / 60:.0f}m for {instrument.display_name}, re-backfilling"
        )
        samples = await self.source.get_ohlcv(instrument.pool_ref, self.fetch_limit)
        if not samples:
            return False

        inserted = await self.candles.save_samples(instrument.id, instrument.pool_ref, samples)
        logger.debug(f"Gap fill stored {inserted} new candle(s) for {instrument.display_name}")
        return True
