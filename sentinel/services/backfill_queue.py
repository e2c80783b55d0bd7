"""Persistent backfill retry queue.

Every tracked instrument should end up with historical candles even when
discovery could not resolve its pool or fetch its history (rate limits,
pools not indexed yet). Such instruments are enqueued here and retried by
``drain()``, which runs after each discovery cycle:

- Tasks are processed one at a time; the historical source enforces a
  single shared request spacing, so a drain never issues two fetches at
  once.
- Tasks with the fewest attempts go first, oldest enqueue time breaking
  ties, so a task that keeps failing cannot starve new ones.
- A task attempted less than the retry cooldown ago is left for a later
  drain.
- Once a task reaches ``max_attempts`` it becomes ``failed`` and is never
  retried automatically; ``retry_failed()`` re-arms it manually.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from sentinel.errors import ExhaustedRetries, NotFoundError, UpstreamError
from sentinel.storage.protocols import BackfillTaskStore, CandleStore, InstrumentStore
from sentinel_core.aggregator import CandleAggregator
from sentinel_core.models import BackfillStatus, BackfillTask, Instrument, OhlcvSample

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
RETRY_COOLDOWN_SECONDS = 120


class HistorySource(Protocol):
    """Pool resolver and historical OHLCV fetch (GeckoTerminal)."""

    async def resolve_pool(self, address: str) -> str | None:
        ...

    async def get_ohlcv(self, pool_ref: str, limit: int = 300) -> list[OhlcvSample]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class DrainResult:
    """Outcome of one drain call."""

    selected: int = 0
    done: int = 0
    skipped: bool = False

    @property
    def retried(self) -> int:
        return self.selected - self.done


class BackfillQueue:
    """Bounded-retry backfill queue over a BackfillTaskStore."""

    def __init__(
        self,
        tasks: BackfillTaskStore,
        candles: CandleStore,
        instruments: InstrumentStore,
        source: HistorySource,
        aggregator: CandleAggregator,
        max_attempts: int = MAX_ATTEMPTS,
        retry_cooldown_seconds: float = RETRY_COOLDOWN_SECONDS,
        fetch_limit: int = 300,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")

        self.tasks = tasks
        self.candles = candles
        self.instruments = instruments
        self.source = source
        self.aggregator = aggregator
        self.max_attempts = max_attempts
        self.retry_cooldown = timedelta(seconds=retry_cooldown_seconds)
        self.fetch_limit = fetch_limit
        self._clock = clock
        self._draining = False

    @property
    def is_draining(self) -> bool:
        return self._draining

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        instrument_id: str,
        symbol: str = "",
        name: str = "",
        pool_ref: str | None = None,
    ) -> bool:
        """Queue an instrument for backfill.

        Insert-if-absent: an existing task keeps its status and attempts,
        whatever they are.

        Returns:
            True if a new task was created
        """
        task = BackfillTask(
            instrument_id=instrument_id,
            symbol=symbol,
            name=name,
            pool_ref=pool_ref,
            enqueued_at=self._clock(),
        )
        inserted = await self.tasks.insert_if_absent(task)
        if inserted:
            logger.info(f"Queued {task.label} for backfill")
        return inserted

    async def remove(self, instrument_id: str) -> bool:
        """Delete an instrument's task, whatever its status."""
        return await self.tasks.remove(instrument_id)

    async def rearm(self, instrument_id: str) -> bool:
        """Return a ``done`` task to pending with fresh priority.

        Failed and pending tasks are left alone.
        """
        task = await self.tasks.get(instrument_id)
        if task is None or task.status != BackfillStatus.DONE:
            return False
        return await self.tasks.reset(instrument_id, self._clock())

    async def retry_failed(self, instrument_id: str) -> bool:
        """Manually re-enqueue a ``failed`` task with zero attempts."""
        task = await self.tasks.get(instrument_id)
        if task is None or task.status != BackfillStatus.FAILED:
            return False
        reset = await self.tasks.reset(instrument_id, self._clock())
        if reset:
            logger.info(f"Re-armed failed backfill task for {task.label}")
        return reset

    async def queue_status(self) -> dict[str, int]:
        """Task counts per status plus the total."""
        counts = await self.tasks.count_by_status()
        status = {s.value: counts.get(s, 0) for s in BackfillStatus}
        status["total"] = sum(status.values())
        return status

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    async def drain(self, batch_size: int = 5) -> DrainResult:
        """Process up to ``batch_size`` ready tasks, sequentially.

        A call made while another drain is in flight returns immediately
        with ``skipped=True``.
        """
        if self._draining:
            logger.info("Drain already in progress, skipping")
            return DrainResult(skipped=True)

        self._draining = True
        try:
            retry_before = self._clock() - self.retry_cooldown
            ready = await self.tasks.select_ready(batch_size, retry_before)
            if not ready:
                logger.debug("No pending backfill tasks to drain")
                return DrainResult()

            logger.info(f"Draining {len(ready)} backfill task(s)")
            result = DrainResult(selected=len(ready))
            for task in ready:
                try:
                    if await self.process_task(task):
                        result.done += 1
                except Exception as e:
                    logger.error(f"Backfill bookkeeping failed for {task.label}: {e}")

            status = await self.queue_status()
            logger.info(
                f"Drain complete: {result.done}/{result.selected} done | "
                f"pending {status['pending']} | done {status['done']} | failed {status['failed']}"
            )
            return result
        finally:
            self._draining = False

    async def process_task(self, task: BackfillTask) -> bool:
        """Run one attempt for a task: resolve, fetch, persist, register, mark done.

        Upstream and processing failures are converted into attempt
        bookkeeping. Only a failing store call on the bookkeeping itself
        propagates; ``drain()`` logs it and moves on to the next task.

        Returns:
            True if the task is now done
        """
        attempt = await self.tasks.record_attempt(task.instrument_id, self._clock())
        label = attempt.label
        logger.info(f"Backfilling {label} (attempt {attempt.attempts}/{self.max_attempts})")

        try:
            pool_ref = attempt.pool_ref
            if not pool_ref:
                pool_ref = await self.source.resolve_pool(attempt.instrument_id)
                if not pool_ref:
                    raise NotFoundError(f"no pool for {attempt.instrument_id}")
                await self.tasks.set_pool_ref(attempt.instrument_id, pool_ref)
                await self.instruments.set_pool_ref(attempt.instrument_id, pool_ref)
                self.aggregator.registry.update_pool_ref(attempt.instrument_id, pool_ref)

            samples = await self.source.get_ohlcv(pool_ref, self.fetch_limit)
            if not samples:
                raise NotFoundError(f"no OHLCV data for pool {pool_ref}")

            inserted = await self.candles.save_samples(attempt.instrument_id, pool_ref, samples)
            await self._register(attempt, pool_ref)
            await self.tasks.mark_done(attempt.instrument_id, self._clock())
        except UpstreamError as e:
            logger.info(f"Backfill of {label} not possible yet: {e}")
            await self.maybe_mark_failed(attempt, str(e))
            return False
        except Exception as e:
            logger.error(f"Error backfilling {label}: {e}")
            await self.maybe_mark_failed(attempt, f"{e.__class__.__name__}: {e}")
            return False

        logger.info(f"Backfilled {label}: {len(samples)} candles ({inserted} new)")
        return True

    async def maybe_mark_failed(self, task: BackfillTask, error: str) -> bool:
        """Fail the task if its (already incremented) attempts hit the ceiling.

        Below the ceiling the error is recorded and the task stays pending.

        Returns:
            True if the task is now failed
        """
        if task.attempts < self.max_attempts:
            await self.tasks.set_error(task.instrument_id, error)
            return False

        exhausted = ExhaustedRetries(task.instrument_id, task.attempts, error)
        await self.tasks.mark_failed(task.instrument_id, str(exhausted))
        logger.warning(f"Backfill of {task.label} failed permanently: {exhausted}")
        return True

    async def _register(self, task: BackfillTask, pool_ref: str) -> None:
        """Register the instrument for live aggregation if it is not yet.

        Instruments pruned from the store stay untracked.
        """
        if self.aggregator.is_tracked(task.instrument_id):
            self.aggregator.registry.update_pool_ref(task.instrument_id, pool_ref)
            return

        stored = await self.instruments.get(task.instrument_id)
        if stored is None:
            instrument = Instrument(
                id=task.instrument_id,
                symbol=task.symbol,
                name=task.name,
                pool_ref=pool_ref,
            )
            await self.instruments.upsert(instrument)
        elif await self.instruments.is_active(task.instrument_id):
            instrument = stored.model_copy(update={"pool_ref": pool_ref})
        else:
            logger.info(f"{task.label} was pruned, not registering for live tracking")
            return

        self.aggregator.add_token(instrument)
