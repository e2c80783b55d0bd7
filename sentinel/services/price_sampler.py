"""Live price sampler feeding the candle aggregator."""

import logging
from typing import Iterable, Protocol

from sentinel_core.aggregator import CandleAggregator

logger = logging.getLogger(__name__)


class PriceSource(Protocol):
    last_update: float | None

    async def get_prices(self, ids: Iterable[str]) -> dict[str, float]:
        ...


class PriceSampler:
    """Poll prices for every tracked instrument and feed them as samples.

    The source carries no volume, so samples are fed with volume 0.
    """

    def __init__(self, source: PriceSource, aggregator: CandleAggregator):
        self.source = source
        self.aggregator = aggregator
        self.sample_count = 0

    @property
    def last_update(self) -> float | None:
        return self.source.last_update

    async def poll(self) -> int:
        """Run one poll. Returns the number of samples applied."""
        ids = self.aggregator.tracked_ids()
        if not ids:
            return 0

        prices = await self.source.get_prices(ids)
        applied = 0
        for instrument_id, price in prices.items():
            if self.aggregator.add_sample(instrument_id, price, 0.0):
                applied += 1

        self.sample_count += applied
        logger.debug(f"Price poll: {applied}/{len(ids)} sample(s) applied")
        return applied
