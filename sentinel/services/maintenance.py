"""Pruning of dead instruments.

One threshold set is used by every path:

- market-cap floor: discovery filter and candle-close prune
- mature floor: maintenance prune once an instrument is older than
  ``mature_age_hours``
- minimum 5-minute volume: maintenance prune, only when the volume is known
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Protocol

from sentinel.services.backfill_queue import BackfillQueue
from sentinel.storage.protocols import CandleStore, InstrumentStore
from sentinel_core.aggregator import CandleAggregator
from sentinel_core.models import Instrument

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class PruneThresholds:
    """Canonical pruning thresholds (USD)."""

    min_market_cap: float = 2000.0
    mature_min_market_cap: float = 5000.0
    mature_age_hours: float = 2.0
    min_volume_5m: float = 100.0


class MarketDataSource(Protocol):
    async def get_volume_5m(self, addresses: Iterable[str]) -> dict[str, float]:
        ...


class Pruner:
    """Stop tracking an instrument everywhere.

    Removes it from live aggregation, deletes its backfill task, marks it
    inactive in the store and runs any registered hooks (alert history).
    Persisted candles are kept.
    """

    def __init__(
        self,
        aggregator: CandleAggregator,
        queue: BackfillQueue,
        instruments: InstrumentStore,
    ):
        self.aggregator = aggregator
        self.queue = queue
        self.instruments = instruments
        self.pruned_count = 0
        self._hooks: list[Callable[[str], None]] = []

    def on_prune(self, hook: Callable[[str], None]) -> None:
        self._hooks.append(hook)

    async def prune(self, instrument_id: str, reason: str) -> None:
        instrument = self.aggregator.registry.get(instrument_id)
        label = instrument.display_name if instrument else instrument_id[:8]
        logger.info(f"Pruning {label}: {reason}")

        self.aggregator.remove_token(instrument_id)
        for hook in self._hooks:
            hook(instrument_id)
        await self.queue.remove(instrument_id)
        await self.instruments.deactivate(instrument_id)
        self.pruned_count += 1


class MaintenanceService:
    """Hourly check of every tracked instrument against the prune thresholds."""

    def __init__(
        self,
        aggregator: CandleAggregator,
        candles: CandleStore,
        market_data: MarketDataSource,
        pruner: Pruner,
        thresholds: PruneThresholds | None = None,
        token_supply: float = 1_000_000_000,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.aggregator = aggregator
        self.candles = candles
        self.market_data = market_data
        self.pruner = pruner
        self.thresholds = thresholds or PruneThresholds()
        self.token_supply = token_supply
        self._clock = clock

    def prune_reason(
        self,
        instrument: Instrument,
        market_cap: float | None,
        volume_5m: float | None,
        now: datetime,
    ) -> str | None:
        """Why the instrument should be pruned, or None to keep it."""
        if volume_5m is not None and volume_5m < self.thresholds.min_volume_5m:
            return f"low volume (${volume_5m:.2f} in 5m)"

        started = instrument.launched_at or instrument.tracked_since
        age_hours = (now - started).total_seconds() / 3600
        if (
            market_cap is not None
            and market_cap < self.thresholds.mature_min_market_cap
            and age_hours > self.thresholds.mature_age_hours
        ):
            return f"old and low market cap (${market_cap:.0f}, {age_hours:.1f}h)"
        return None

    async def run(self) -> int:
        """Run one maintenance pass. Returns the number of pruned instruments."""
        instruments = self.aggregator.registry.snapshot()
        if not instruments:
            return 0

        logger.info(f"Maintenance: checking {len(instruments)} instrument(s)")
        volumes = await self.market_data.get_volume_5m([i.id for i in instruments])
        now = self._clock()

        pruned = 0
        for instrument in instruments:
            latest = await self.candles.get_latest(instrument.id)
            market_cap = latest.close * self.token_supply if latest and latest.close else None
            reason = self.prune_reason(instrument, market_cap, volumes.get(instrument.id), now)
            if reason:
                await self.pruner.prune(instrument.id, reason)
                pruned += 1

        if pruned:
            logger.info(f"Maintenance: pruned {pruned} instrument(s)")
        else:
            logger.info("Maintenance: no instruments pruned")
        return pruned
