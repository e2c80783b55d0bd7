"""Tests for the in-memory stores."""

from datetime import datetime, timedelta, timezone

import pytest

from sentinel.storage import MemoryBackfillTaskStore, MemoryCandleStore, MemoryInstrumentStore
from sentinel.storage.protocols import BackfillTaskStore, CandleStore, InstrumentStore
from sentinel_core.models import AlertRecord, BackfillStatus, BackfillTask, Candle, Instrument

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_candle(offset: int, close: float = 1.0, instrument_id: str = "A") -> Candle:
    """Helper to create a candle ``offset`` periods after T0."""
    return Candle(
        instrument_id=instrument_id,
        timestamp=T0 + timedelta(seconds=15 * offset),
        open=close,
        high=close,
        low=close,
        close=close,
    )


class TestProtocols:
    def test_memory_stores_satisfy_protocols(self):
        assert isinstance(MemoryCandleStore(), CandleStore)
        assert isinstance(MemoryInstrumentStore(), InstrumentStore)
        assert isinstance(MemoryBackfillTaskStore(), BackfillTaskStore)


class TestMemoryCandleStore:
    """Tests for MemoryCandleStore."""

    @pytest.mark.asyncio
    async def test_first_write_wins(self):
        store = MemoryCandleStore()

        assert await store.save(make_candle(0, close=1.0))
        assert not await store.save(make_candle(0, close=2.0))

        assert await store.count("A") == 1
        assert (await store.get_latest("A")).close == 1.0

    @pytest.mark.asyncio
    async def test_recent_is_oldest_first(self):
        store = MemoryCandleStore()
        for offset in (3, 1, 2, 0):
            await store.save(make_candle(offset, close=float(offset)))

        recent = await store.get_recent("A", limit=3)

        assert [c.close for c in recent] == [1.0, 2.0, 3.0]
        assert await store.get_latest_timestamp("A") == T0 + timedelta(seconds=45)
        assert await store.get_recent("B") == []

    @pytest.mark.asyncio
    async def test_first_since(self):
        store = MemoryCandleStore()
        for offset in range(4):
            await store.save(make_candle(offset, close=float(offset)))

        first = await store.get_first_since("A", T0 + timedelta(seconds=20))

        assert first.close == 2.0
        assert await store.get_first_since("A", T0 + timedelta(hours=1)) is None


class TestMemoryInstrumentStore:
    """Tests for MemoryInstrumentStore."""

    @pytest.mark.asyncio
    async def test_upsert_keeps_first_seen_fields(self):
        store = MemoryInstrumentStore()
        first = Instrument(id="A", pool_ref="POOL", launched_at=T0, tracked_since=T0)
        await store.upsert(first)
        await store.deactivate("A")

        await store.upsert(Instrument(id="A", symbol="AAA", tracked_since=T0 + timedelta(days=1)))

        stored = await store.get("A")
        assert stored.symbol == "AAA"
        assert stored.pool_ref == "POOL"
        assert stored.launched_at == T0
        assert stored.tracked_since == T0
        assert await store.is_active("A")

    @pytest.mark.asyncio
    async def test_active_filters(self):
        store = MemoryInstrumentStore()
        await store.upsert(Instrument(id="A"))
        await store.upsert(Instrument(id="B"))
        await store.deactivate("B")

        assert [i.id for i in await store.list_active()] == ["A"]
        assert [i.id for i in await store.list_all()] == ["A", "B"]
        assert await store.active_ids(["A", "B", "C"]) == {"A"}

    @pytest.mark.asyncio
    async def test_alert_history(self):
        """Alerts of known instruments are kept until the instrument is pruned."""
        store = MemoryInstrumentStore()
        await store.upsert(Instrument(id="A"))
        await store.upsert(Instrument(id="B"))
        record = AlertRecord(market_cap=20_000, sent_at=200.0, first_market_cap=10_000, first_sent_at=100.0)

        await store.save_alert("A", record)
        await store.save_alert("B", record)
        await store.save_alert("UNKNOWN", record)
        await store.deactivate("B")
        await store.upsert(Instrument(id="B"))

        assert await store.load_alerts() == {"A": record}


class TestMemoryBackfillTaskStore:
    """Tests for MemoryBackfillTaskStore."""

    @pytest.mark.asyncio
    async def test_returned_tasks_are_copies(self):
        store = MemoryBackfillTaskStore()
        await store.insert_if_absent(BackfillTask(instrument_id="A", enqueued_at=T0))

        task = await store.get("A")
        task.attempts = 99

        assert (await store.get("A")).attempts == 0

    @pytest.mark.asyncio
    async def test_select_ready_skips_terminal_and_recent(self):
        store = MemoryBackfillTaskStore()
        for instrument_id in ("DONE", "FAILED", "RECENT", "READY"):
            await store.insert_if_absent(BackfillTask(instrument_id=instrument_id, enqueued_at=T0))
        await store.mark_done("DONE", T0)
        await store.mark_failed("FAILED", "gave up")
        await store.record_attempt("RECENT", T0 + timedelta(minutes=5))

        ready = await store.select_ready(10, T0 + timedelta(minutes=1))

        assert [t.instrument_id for t in ready] == ["READY"]

    @pytest.mark.asyncio
    async def test_record_attempt_unknown_task(self):
        with pytest.raises(KeyError):
            await MemoryBackfillTaskStore().record_attempt("missing", T0)

    @pytest.mark.asyncio
    async def test_count_by_status(self):
        store = MemoryBackfillTaskStore()
        await store.insert_if_absent(BackfillTask(instrument_id="A"))
        await store.insert_if_absent(BackfillTask(instrument_id="B"))
        await store.mark_done("B", T0)

        counts = await store.count_by_status()

        assert counts[BackfillStatus.PENDING] == 1
        assert counts[BackfillStatus.DONE] == 1
        assert counts[BackfillStatus.FAILED] == 0
