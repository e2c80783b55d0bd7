"""Discovery of newly graduated tokens."""

import logging
from dataclasses import dataclass
from typing import Iterable, Protocol

from sentinel.errors import UpstreamError
from sentinel.services.backfill_queue import BackfillQueue, HistorySource
from sentinel.storage.protocols import CandleStore, InstrumentStore
from sentinel_core.aggregator import CandleAggregator
from sentinel_core.dedup import DedupGate
from sentinel_core.models import DiscoveredToken, OhlcvSample

logger = logging.getLogger(__name__)


class DiscoverySource(Protocol):
    async def get_graduated(self, limit: int = 20) -> list[DiscoveredToken]:
        ...


class MarketCapSource(Protocol):
    async def get_market_caps(self, addresses: Iterable[str]) -> dict[str, float]:
        ...


@dataclass(slots=True)
class DiscoveryResult:
    """Counters for one discovery cycle."""

    polled: int = 0
    candidates: int = 0
    below_floor: int = 0
    tracked: int = 0
    queued: int = 0


class DiscoveryService:
    """One discovery cycle per call to ``run_cycle()``.

    Candidates pass the dedup gate, skip instruments already active, and
    skip (while being marked seen) instruments whose known market cap is
    under the floor. Each remaining candidate gets its pool resolved and
    history fetched; whatever fails there goes to the backfill queue.
    """

    def __init__(
        self,
        source: DiscoverySource,
        market_data: MarketCapSource,
        history: HistorySource,
        candles: CandleStore,
        instruments: InstrumentStore,
        aggregator: CandleAggregator,
        queue: BackfillQueue,
        dedup: DedupGate,
        limit: int = 20,
        min_market_cap: float = 2000.0,
        fetch_limit: int = 300,
    ):
        self.source = source
        self.market_data = market_data
        self.history = history
        self.candles = candles
        self.instruments = instruments
        self.aggregator = aggregator
        self.queue = queue
        self.dedup = dedup
        self.limit = limit
        self.min_market_cap = min_market_cap
        self.fetch_limit = fetch_limit

    async def run_cycle(self) -> DiscoveryResult:
        result = DiscoveryResult()
        self.dedup.check_capacity()

        tokens = await self.source.get_graduated(self.limit)
        result.polled = len(tokens)
        if not tokens:
            logger.info("Discovery: no tokens returned")
            return result

        by_address = {t.address: t for t in tokens if t.address}
        unseen = self.dedup.filter_unseen(by_address)
        if not unseen:
            logger.info("Discovery: all tokens already seen")
            return result

        active = await self.instruments.active_ids(unseen)
        candidates = [by_address[a] for a in unseen if a not in active]
        result.candidates = len(candidates)
        if not candidates:
            return result

        market_caps = await self.market_data.get_market_caps([t.address for t in candidates])
        for token in candidates:
            self.dedup.add(token.address)
            market_cap = market_caps.get(token.address)
            if market_cap is not None and market_cap < self.min_market_cap:
                logger.info(
                    f"Discovery: skipping {token.symbol or token.address[:8]}, "
                    f"market cap ${market_cap:.0f} < ${self.min_market_cap:.0f}"
                )
                result.below_floor += 1
                continue

            tracked, queued = await self.process_candidate(token)
            result.tracked += int(tracked)
            result.queued += int(queued)

        logger.info(
            f"Discovery: {result.polled} polled, {result.candidates} new, "
            f"{result.tracked} tracked, {result.queued} queued, {result.below_floor} below floor"
        )
        return result

    async def process_candidate(self, token: DiscoveredToken) -> tuple[bool, bool]:
        """Resolve, backfill and register one candidate.

        Returns:
            (registered for live tracking, enqueued for backfill)
        """
        label = token.symbol or token.address[:8]
        try:
            pool_ref = await self.history.resolve_pool(token.address)
        except UpstreamError as e:
            logger.info(f"Discovery: pool lookup for {label} failed: {e}")
            pool_ref = None

        if not pool_ref:
            await self.instruments.upsert(token.to_instrument())
            await self.queue.enqueue(token.address, token.symbol, token.name)
            return False, True

        samples: list[OhlcvSample] = []
        try:
            samples = await self.history.get_ohlcv(pool_ref, self.fetch_limit)
        except UpstreamError as e:
            logger.info(f"Discovery: history fetch for {label} failed: {e}")

        if samples:
            await self.candles.save_samples(token.address, pool_ref, samples)

        await self.instruments.upsert(token.to_instrument(pool_ref))
        instrument = await self.instruments.get(token.address) or token.to_instrument(pool_ref)
        self.aggregator.add_token(instrument)

        if not samples:
            await self.queue.enqueue(token.address, token.symbol, token.name, pool_ref)
        return True, not samples
