"""Tests for the closed-candle consumer."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from sentinel.services.candle_processor import CandleProcessor
from sentinel.services.maintenance import Pruner
from sentinel.storage import MemoryCandleStore, MemoryInstrumentStore
from sentinel_core.aggregator import CandleAggregator
from sentinel_core.models import Candle, EvaluatorConfig, Instrument

START = datetime(2026, 1, 1, tzinfo=timezone.utc)
SUPPLY = 1_000


def make_candle(index: int, close: float, instrument_id: str = "MINT") -> Candle:
    """Helper to create a flat 15s candle at position ``index``."""
    return Candle(
        instrument_id=instrument_id,
        pool_ref="POOL",
        timestamp=START + timedelta(seconds=15 * index),
        open=close,
        high=close,
        low=close,
        close=close,
        volume=1.0,
    )


async def seed_history(candles: MemoryCandleStore, closes: list[float]) -> None:
    for i, close in enumerate(closes):
        await candles.save(make_candle(i, close))


class TestCandleProcessor:
    """Tests for CandleProcessor."""

    @pytest.fixture
    def candles(self):
        return MemoryCandleStore()

    @pytest.fixture
    def instruments(self):
        return MemoryInstrumentStore()

    @pytest.fixture
    def aggregator(self):
        aggregator = CandleAggregator()
        aggregator.add_token(Instrument(id="MINT", symbol="MNT", pool_ref="POOL"))
        return aggregator

    @pytest.fixture
    def queue(self):
        queue = MagicMock()
        queue.remove = AsyncMock(return_value=True)
        return queue

    @pytest.fixture
    def sink(self):
        sink = MagicMock()
        sink.send_signal = AsyncMock(return_value=True)
        return sink

    @pytest.fixture
    def processor(self, candles, instruments, aggregator, queue, sink):
        pruner = Pruner(aggregator, queue, instruments)
        return CandleProcessor(
            candles=candles,
            instruments=instruments,
            aggregator=aggregator,
            pruner=pruner,
            sink=sink,
            config=EvaluatorConfig(),
            token_supply=SUPPLY,
            min_market_cap=2000.0,
            alert_min_market_cap=5000.0,
        )

    @pytest.mark.asyncio
    async def test_candle_is_persisted(self, processor, candles, sink):
        candle = make_candle(0, 10.0)

        assert await processor.handle(candle) is None

        assert await candles.get_latest("MINT") == candle
        sink.send_signal.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_candle_ignored(self, processor, candles):
        candle = make_candle(0, 10.0)

        await processor.handle(candle)
        await processor.handle(candle)

        assert await candles.count("MINT") == 1

    @pytest.mark.asyncio
    async def test_signal_delivered(self, processor, candles, sink):
        await seed_history(candles, [10.0] * 40)

        signal = await processor.handle(make_candle(40, 20.0))

        assert signal is not None
        assert signal.price == 20.0
        assert processor.signal_count == 1
        assert processor.last_signal == signal
        sink.send_signal.assert_awaited_once()
        sent_signal, instrument = sink.send_signal.await_args.args
        assert sent_signal == signal
        assert instrument.symbol == "MNT"

    @pytest.mark.asyncio
    async def test_signal_below_alert_floor_dropped(self, processor, candles, sink):
        """A 4000 USD cap is above the prune floor but below the alert floor."""
        await seed_history(candles, [3.0] * 40)

        assert await processor.handle(make_candle(40, 4.0)) is None

        assert processor.signal_count == 0
        sink.send_signal.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_low_market_cap_prunes(self, processor, aggregator, instruments, queue, sink):
        await instruments.upsert(Instrument(id="MINT", pool_ref="POOL"))

        assert await processor.handle(make_candle(0, 1.0)) is None

        assert not aggregator.is_tracked("MINT")
        assert not await instruments.is_active("MINT")
        queue.remove.assert_awaited_once_with("MINT")
        assert processor.pruner.pruned_count == 1
        sink.send_signal.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pruned_candle_still_persisted(self, processor, candles):
        await processor.handle(make_candle(0, 1.0))
        assert await candles.count("MINT") == 1

    @pytest.mark.asyncio
    async def test_sink_failure_is_logged(self, processor, candles, sink, caplog):
        sink.send_signal.side_effect = RuntimeError("telegram down")
        await seed_history(candles, [10.0] * 40)

        signal = await processor.handle(make_candle(40, 20.0))

        assert signal is not None
        assert "telegram down" in caplog.text

    @pytest.mark.asyncio
    async def test_unregistered_instrument_uses_store(self, processor, candles, instruments, aggregator, sink):
        aggregator.remove_token("MINT")
        await instruments.upsert(Instrument(id="MINT", symbol="STORED", pool_ref="POOL"))
        await seed_history(candles, [10.0] * 40)

        await processor.handle(make_candle(40, 20.0))

        _, instrument = sink.send_signal.await_args.args
        assert instrument.symbol == "STORED"
