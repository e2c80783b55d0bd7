"""Tests for the persistent backfill retry queue."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from sentinel.errors import TransientUpstreamError
from sentinel.services.backfill_queue import BackfillQueue
from sentinel.storage import MemoryBackfillTaskStore, MemoryCandleStore, MemoryInstrumentStore
from sentinel_core.aggregator import CandleAggregator
from sentinel_core.models import BackfillStatus, Instrument, OhlcvSample

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_samples(count: int = 30, start: datetime = T0 - timedelta(hours=1)) -> list[OhlcvSample]:
    """Helper to create 1-minute OHLCV samples, oldest first."""
    return [
        OhlcvSample(
            timestamp=start + timedelta(minutes=i),
            open=1.0,
            high=1.1,
            low=0.9,
            close=1.0,
            volume=10.0,
        )
        for i in range(count)
    ]


class TestBackfillQueue:
    """Tests for BackfillQueue."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def source(self):
        source = MagicMock()
        source.resolve_pool = AsyncMock(return_value="POOL")
        source.get_ohlcv = AsyncMock(return_value=make_samples())
        return source

    @pytest.fixture
    def stores(self):
        return MemoryBackfillTaskStore(), MemoryCandleStore(), MemoryInstrumentStore()

    @pytest.fixture
    def aggregator(self):
        return CandleAggregator()

    @pytest.fixture
    def queue(self, stores, source, aggregator, clock):
        tasks, candles, instruments = stores
        return BackfillQueue(
            tasks=tasks,
            candles=candles,
            instruments=instruments,
            source=source,
            aggregator=aggregator,
            max_attempts=5,
            retry_cooldown_seconds=120,
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_enqueue_twice_is_idempotent(self, queue, stores):
        tasks, _, _ = stores

        assert await queue.enqueue("MINT", "SYM")
        assert not await queue.enqueue("MINT", "SYM")

        assert len(tasks) == 1
        task = await tasks.get("MINT")
        assert task.attempts == 0
        assert task.status == BackfillStatus.PENDING

    @pytest.mark.asyncio
    async def test_enqueue_never_resets_existing_task(self, queue, stores, source):
        tasks, _, _ = stores
        source.resolve_pool.return_value = None
        await queue.enqueue("MINT")
        await queue.drain()

        await queue.enqueue("MINT", pool_ref="POOL")

        task = await tasks.get("MINT")
        assert task.attempts == 1
        assert task.pool_ref is None

    @pytest.mark.asyncio
    async def test_successful_drain(self, queue, stores, source, aggregator):
        tasks, candles, instruments = stores
        await queue.enqueue("MINT", "SYM", "Name")

        result = await queue.drain(5)

        assert result.selected == 1
        assert result.done == 1
        task = await tasks.get("MINT")
        assert task.status == BackfillStatus.DONE
        assert task.pool_ref == "POOL"
        assert task.completed_at == T0
        assert await candles.count("MINT") == 30
        assert aggregator.is_tracked("MINT")
        assert aggregator.registry.get("MINT").pool_ref == "POOL"
        assert await instruments.is_active("MINT")
        source.resolve_pool.assert_awaited_once_with("MINT")

    @pytest.mark.asyncio
    async def test_known_pool_skips_resolution(self, queue, source):
        await queue.enqueue("MINT", pool_ref="KNOWN")

        await queue.drain()

        source.resolve_pool.assert_not_awaited()
        source.get_ohlcv.assert_awaited_once_with("KNOWN", 300)

    @pytest.mark.asyncio
    async def test_no_pool_counts_as_attempt(self, queue, stores, source):
        tasks, candles, _ = stores
        source.resolve_pool.return_value = None
        await queue.enqueue("MINT")

        result = await queue.drain()

        assert result.done == 0
        task = await tasks.get("MINT")
        assert task.attempts == 1
        assert task.status == BackfillStatus.PENDING
        assert task.last_attempt_at == T0
        assert "no pool" in task.error
        source.get_ohlcv.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_history_counts_as_attempt(self, queue, stores, source, aggregator):
        tasks, _, _ = stores
        source.get_ohlcv.return_value = []
        await queue.enqueue("MINT")

        await queue.drain()

        task = await tasks.get("MINT")
        assert task.attempts == 1
        assert task.status == BackfillStatus.PENDING
        assert task.pool_ref == "POOL"
        assert not aggregator.is_tracked("MINT")

    @pytest.mark.asyncio
    async def test_cooldown_excludes_recent_attempts(self, queue, source, clock):
        source.resolve_pool.return_value = None
        await queue.enqueue("MINT")
        await queue.drain()

        clock.advance(60)
        assert (await queue.drain()).selected == 0

        clock.advance(61)
        assert (await queue.drain()).selected == 1

    @pytest.mark.asyncio
    async def test_max_attempts_marks_failed(self, queue, stores, source, clock):
        """Five consecutive failures make the task terminal."""
        tasks, _, _ = stores
        source.resolve_pool.side_effect = TransientUpstreamError("HTTP 429", status_code=429)
        await queue.enqueue("MINT")

        for _ in range(5):
            await queue.drain()
            clock.advance(121)

        task = await tasks.get("MINT")
        assert task.status == BackfillStatus.FAILED
        assert task.attempts == 5
        assert task.error.startswith("Exhausted 5 attempts")

        source.resolve_pool.reset_mock()
        result = await queue.drain()
        assert result.selected == 0
        source.resolve_pool.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_maybe_mark_failed_below_ceiling(self, queue, stores):
        tasks, _, _ = stores
        await queue.enqueue("MINT")
        task = await tasks.record_attempt("MINT", T0)

        assert not await queue.maybe_mark_failed(task, "nope")

        stored = await tasks.get("MINT")
        assert stored.status == BackfillStatus.PENDING
        assert stored.error == "nope"

    @pytest.mark.asyncio
    async def test_drain_order_fewest_attempts_first(self, queue, stores, source, clock):
        tasks, _, _ = stores
        source.resolve_pool.return_value = None
        await queue.enqueue("OLD")
        await queue.drain()
        clock.advance(200)
        await queue.enqueue("NEW1")
        clock.advance(1)
        await queue.enqueue("NEW2")

        ready = await tasks.select_ready(10, clock() - timedelta(seconds=120))

        assert [t.instrument_id for t in ready] == ["NEW1", "NEW2", "OLD"]

    @pytest.mark.asyncio
    async def test_drain_respects_batch_size(self, queue, source):
        for i in range(4):
            await queue.enqueue(f"MINT{i}")

        result = await queue.drain(batch_size=3)

        assert result.selected == 3
        assert source.get_ohlcv.await_count == 3

    @pytest.mark.asyncio
    async def test_failing_task_does_not_abort_batch(self, queue, stores, source):
        tasks, _, _ = stores

        async def resolve(address):
            if address == "BAD":
                raise RuntimeError("unexpected")
            return f"POOL-{address}"

        source.resolve_pool.side_effect = resolve
        await queue.enqueue("BAD")
        await queue.enqueue("GOOD")

        result = await queue.drain()

        assert result.selected == 2
        assert result.done == 1
        assert (await tasks.get("GOOD")).status == BackfillStatus.DONE
        bad = await tasks.get("BAD")
        assert bad.status == BackfillStatus.PENDING
        assert "RuntimeError" in bad.error

    @pytest.mark.asyncio
    async def test_concurrent_drain_is_skipped(self, queue, source):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_fetch(pool_ref, limit):
            started.set()
            await release.wait()
            return make_samples()

        source.get_ohlcv.side_effect = slow_fetch
        await queue.enqueue("MINT")

        first = asyncio.create_task(queue.drain())
        await started.wait()
        assert queue.is_draining

        second = await queue.drain()
        assert second.skipped

        release.set()
        result = await first
        assert result.done == 1
        assert not queue.is_draining
        assert source.get_ohlcv.await_count == 1

    @pytest.mark.asyncio
    async def test_pruned_instrument_not_registered(self, queue, stores, aggregator):
        _, _, instruments = stores
        await instruments.upsert(Instrument(id="MINT"))
        await instruments.deactivate("MINT")
        await queue.enqueue("MINT")

        result = await queue.drain()

        assert result.done == 1
        assert not aggregator.is_tracked("MINT")

    @pytest.mark.asyncio
    async def test_retry_failed(self, queue, stores, source, clock):
        tasks, _, _ = stores
        source.resolve_pool.return_value = None
        await queue.enqueue("MINT")
        for _ in range(5):
            await queue.drain()
            clock.advance(121)
        assert (await tasks.get("MINT")).status == BackfillStatus.FAILED

        assert await queue.retry_failed("MINT")

        task = await tasks.get("MINT")
        assert task.status == BackfillStatus.PENDING
        assert task.attempts == 0
        assert task.error is None
        assert not await queue.retry_failed("MINT")

    @pytest.mark.asyncio
    async def test_queue_status_and_remove(self, queue, source):
        source.resolve_pool.return_value = None
        await queue.enqueue("A")
        await queue.enqueue("B")

        assert await queue.queue_status() == {"pending": 2, "done": 0, "failed": 0, "total": 2}

        assert await queue.remove("A")
        assert not await queue.remove("A")
        assert (await queue.queue_status())["total"] == 1

    @pytest.mark.asyncio
    async def test_store_error_does_not_abort_batch(self, stores, source, aggregator, clock):
        """A task whose bookkeeping write fails is skipped, the rest still run."""
        _, candles, instruments = stores
        tasks = FlakyTaskStore(failing_id="BAD")
        queue = BackfillQueue(
            tasks=tasks,
            candles=candles,
            instruments=instruments,
            source=source,
            aggregator=aggregator,
            clock=clock,
        )
        await queue.enqueue("BAD")
        await queue.enqueue("GOOD")

        result = await queue.drain()

        assert result.selected == 2
        assert result.done == 1
        assert (await tasks.get("GOOD")).status == BackfillStatus.DONE
        assert (await tasks.get("BAD")).status == BackfillStatus.PENDING
        assert not queue.is_draining


class FlakyTaskStore(MemoryBackfillTaskStore):
    """Task store whose attempt write fails for one instrument."""

    def __init__(self, failing_id: str):
        super().__init__()
        self.failing_id = failing_id

    async def record_attempt(self, instrument_id, attempted_at):
        if instrument_id == self.failing_id:
            raise ConnectionError("db connection reset")
        return await super().record_attempt(instrument_id, attempted_at)
