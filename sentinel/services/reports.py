"""Periodic top-gainers report and status summary."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sentinel.services.backfill_queue import BackfillQueue
from sentinel.storage.protocols import CandleStore, InstrumentStore
from sentinel_core.aggregator import CandleAggregator
from sentinel_core.models import EvaluatorConfig

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Gainer:
    instrument_id: str
    symbol: str
    gain_pct: float
    market_cap: float


class ReportService:
    """Build report messages from stored candles and last known prices."""

    def __init__(
        self,
        instruments: InstrumentStore,
        candles: CandleStore,
        aggregator: CandleAggregator,
        queue: BackfillQueue,
        config: EvaluatorConfig,
        window_hours: float = 6,
        top_n: int = 5,
        token_supply: float = 1_000_000_000,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.instruments = instruments
        self.candles = candles
        self.aggregator = aggregator
        self.queue = queue
        self.config = config
        self.window = timedelta(hours=window_hours)
        self.top_n = top_n
        self.token_supply = token_supply
        self._clock = clock

    async def top_gainers(self) -> list[Gainer]:
        """Active instruments with the largest positive gain over the window.

        The reference price is the open of the earliest candle inside the
        window; the current price is the last live sample.
        """
        since = self._clock() - self.window
        gainers: list[Gainer] = []
        for instrument in await self.instruments.list_active():
            price = self.aggregator.get_last_price(instrument.id)
            if not price:
                continue
            first = await self.candles.get_first_since(instrument.id, since)
            if first is None or first.open <= 0:
                continue
            gain = (price - first.open) / first.open * 100
            if gain > 0:
                gainers.append(
                    Gainer(
                        instrument_id=instrument.id,
                        symbol=instrument.symbol or "?",
                        gain_pct=gain,
                        market_cap=price * self.token_supply,
                    )
                )

        gainers.sort(key=lambda g: g.gain_pct, reverse=True)
        return gainers[: self.top_n]

    async def gainers_report(self) -> str | None:
        """Markdown report of the top gainers, or None when there are none."""
        gainers = await self.top_gainers()
        if not gainers:
            return None

        hours = self.window.total_seconds() / 3600
        lines = [f"📊 *Top Gainers (Last {hours:g}h)*", "──────────────────"]
        for rank, g in enumerate(gainers, start=1):
            links = (
                f"[Axiom](https://axiom.trade/meme/{g.instrument_id}) · "
                f"[DexS](https://dexscreener.com/solana/{g.instrument_id})"
            )
            lines.append(f"{rank}. *{g.symbol}* (+{g.gain_pct:.1f}%), ${g.market_cap / 1000:.0f}K")
            lines.append(f"   🔗 {links}")
        return "\n".join(lines)

    async def status_summary(self) -> dict:
        status = await self.queue.queue_status()
        return {
            "tracked": len(self.aggregator.registry),
            "volume_filter": self.config.require_volume_spike,
            "queue": status,
        }

    async def status_message(self) -> str:
        summary = await self.status_summary()
        queue = summary["queue"]
        volume = "ON" if summary["volume_filter"] else "OFF"
        return (
            "🤖 *Status*\n"
            f"Tracked: {summary['tracked']}\n"
            f"Volume filter: {volume}\n"
            f"Backfill queue: {queue['pending']} pending | {queue['done']} done | {queue['failed']} failed"
        )
