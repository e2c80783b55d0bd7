"""Tests for pruning, maintenance and reports."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from sentinel.services.maintenance import MaintenanceService, PruneThresholds, Pruner
from sentinel.services.reports import ReportService
from sentinel.storage import MemoryCandleStore, MemoryInstrumentStore
from sentinel_core.aggregator import CandleAggregator
from sentinel_core.models import Candle, EvaluatorConfig, Instrument

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
SUPPLY = 1_000


def make_instrument(instrument_id: str, age_hours: float = 0.5, symbol: str = "") -> Instrument:
    """Helper to create an instrument launched ``age_hours`` ago."""
    return Instrument(
        id=instrument_id,
        symbol=symbol,
        pool_ref=f"POOL-{instrument_id}",
        launched_at=NOW - timedelta(hours=age_hours),
    )


def make_candle(instrument_id: str, timestamp: datetime, price: float) -> Candle:
    return Candle(
        instrument_id=instrument_id,
        timestamp=timestamp,
        open=price,
        high=price,
        low=price,
        close=price,
        volume=1.0,
    )


@pytest.fixture
def queue():
    queue = MagicMock()
    queue.remove = AsyncMock(return_value=True)
    queue.queue_status = AsyncMock(return_value={"pending": 1, "done": 2, "failed": 0, "total": 3})
    return queue


class TestPruner:
    """Tests for Pruner."""

    @pytest.mark.asyncio
    async def test_prune_removes_everywhere(self, queue):
        aggregator = CandleAggregator()
        instruments = MemoryInstrumentStore()
        instrument = make_instrument("A")
        aggregator.add_token(instrument)
        await instruments.upsert(instrument)
        hook = MagicMock()
        pruner = Pruner(aggregator, queue, instruments)
        pruner.on_prune(hook)

        await pruner.prune("A", "test")

        assert not aggregator.is_tracked("A")
        assert not await instruments.is_active("A")
        assert await instruments.get("A") is not None
        queue.remove.assert_awaited_once_with("A")
        hook.assert_called_once_with("A")
        assert pruner.pruned_count == 1


class TestMaintenanceService:
    """Tests for MaintenanceService."""

    @pytest.fixture
    def service(self):
        return MaintenanceService(
            aggregator=CandleAggregator(),
            candles=MemoryCandleStore(),
            market_data=MagicMock(),
            pruner=MagicMock(),
            thresholds=PruneThresholds(),
            token_supply=SUPPLY,
            clock=lambda: NOW,
        )

    def test_low_volume(self, service):
        reason = service.prune_reason(make_instrument("A"), 50_000, 99.0, NOW)
        assert reason is not None and "low volume" in reason

    def test_unknown_volume_is_kept(self, service):
        assert service.prune_reason(make_instrument("A"), 50_000, None, NOW) is None

    def test_young_low_cap_is_kept(self, service):
        assert service.prune_reason(make_instrument("A", age_hours=1), 3000, 500.0, NOW) is None

    def test_mature_low_cap_is_pruned(self, service):
        reason = service.prune_reason(make_instrument("A", age_hours=3), 3000, 500.0, NOW)
        assert reason is not None and "old and low market cap" in reason

    def test_mature_healthy_cap_is_kept(self, service):
        assert service.prune_reason(make_instrument("A", age_hours=3), 6000, 500.0, NOW) is None

    def test_age_falls_back_to_tracked_since(self, service):
        instrument = Instrument(id="A", tracked_since=NOW - timedelta(hours=5))
        assert service.prune_reason(instrument, 3000, None, NOW) is not None

    @pytest.mark.asyncio
    async def test_run_prunes_matching_instruments(self, queue):
        aggregator = CandleAggregator()
        candles = MemoryCandleStore()
        instruments = MemoryInstrumentStore()
        for instrument in (make_instrument("OLD", age_hours=3), make_instrument("OK", age_hours=3)):
            aggregator.add_token(instrument)
            await instruments.upsert(instrument)
        await candles.save(make_candle("OLD", NOW, 3.0))
        await candles.save(make_candle("OK", NOW, 10.0))
        market_data = MagicMock()
        market_data.get_volume_5m = AsyncMock(return_value={"OLD": 500.0, "OK": 500.0})

        service = MaintenanceService(
            aggregator=aggregator,
            candles=candles,
            market_data=market_data,
            pruner=Pruner(aggregator, queue, instruments),
            token_supply=SUPPLY,
            clock=lambda: NOW,
        )

        assert await service.run() == 1
        assert aggregator.tracked_ids() == ["OK"]

    @pytest.mark.asyncio
    async def test_run_without_instruments(self, service):
        assert await service.run() == 0


class TestReportService:
    """Tests for ReportService."""

    @pytest.fixture
    def setup(self, queue):
        aggregator = CandleAggregator()
        candles = MemoryCandleStore()
        instruments = MemoryInstrumentStore()
        service = ReportService(
            instruments=instruments,
            candles=candles,
            aggregator=aggregator,
            queue=queue,
            config=EvaluatorConfig(),
            window_hours=6,
            top_n=2,
            token_supply=SUPPLY,
            clock=lambda: NOW,
        )
        return service, aggregator, candles, instruments

    async def add(self, setup, instrument_id: str, first_open: float, last_price: float, symbol: str = ""):
        service, aggregator, candles, instruments = setup
        instrument = make_instrument(instrument_id, symbol=symbol)
        await instruments.upsert(instrument)
        aggregator.add_token(instrument)
        await candles.save(make_candle(instrument_id, NOW - timedelta(hours=8), first_open / 10))
        await candles.save(make_candle(instrument_id, NOW - timedelta(hours=5), first_open))
        aggregator.add_sample(instrument_id, last_price)

    @pytest.mark.asyncio
    async def test_top_gainers_sorted_and_limited(self, setup):
        service = setup[0]
        await self.add(setup, "A", 1.0, 1.5, "AAA")
        await self.add(setup, "B", 1.0, 3.0, "BBB")
        await self.add(setup, "C", 1.0, 2.0, "CCC")
        await self.add(setup, "D", 1.0, 0.5, "DDD")

        gainers = await service.top_gainers()

        assert [g.symbol for g in gainers] == ["BBB", "CCC"]
        assert gainers[0].gain_pct == pytest.approx(200.0)
        assert gainers[0].market_cap == pytest.approx(3000.0)

    @pytest.mark.asyncio
    async def test_window_uses_first_candle_inside(self, setup):
        """The 8h-old candle is outside the 6h window."""
        service = setup[0]
        await self.add(setup, "A", 2.0, 3.0)

        gainers = await service.top_gainers()

        assert gainers[0].gain_pct == pytest.approx(50.0)

    @pytest.mark.asyncio
    async def test_report_none_without_gainers(self, setup):
        assert await setup[0].gainers_report() is None

    @pytest.mark.asyncio
    async def test_report_text(self, setup):
        service = setup[0]
        await self.add(setup, "A", 1.0, 2.0, "AAA")

        report = await service.gainers_report()

        assert "Top Gainers (Last 6h)" in report
        assert "*AAA* (+100.0%)" in report
        assert "dexscreener.com/solana/A" in report

    @pytest.mark.asyncio
    async def test_status_summary(self, setup):
        service, aggregator, _, _ = setup
        aggregator.add_token(make_instrument("A"))

        summary = await service.status_summary()

        assert summary["tracked"] == 1
        assert summary["volume_filter"] is False
        assert summary["queue"]["done"] == 2
        assert "Volume filter: OFF" in await service.status_message()
