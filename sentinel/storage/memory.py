"""In-memory stores with the same semantics as the PostgreSQL repositories.

Used by the test suite and by ``database_url = "memory://"`` runs. Nothing
survives a restart. None of the methods awaits between reading and writing
its state, so each call is atomic on the event loop.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import replace
from datetime import datetime
from typing import Sequence

from sentinel.errors import PersistenceConflict
from sentinel_core.models import (
    AlertRecord,
    BackfillStatus,
    BackfillTask,
    Candle,
    Instrument,
    OhlcvSample,
)

logger = logging.getLogger(__name__)


class MemoryCandleStore:
    """Candles per instrument, kept sorted by timestamp."""

    def __init__(self):
        self._candles: dict[str, list[Candle]] = {}
        self._timestamps: dict[str, list[datetime]] = {}

    def _insert(self, candle: Candle) -> None:
        timestamps = self._timestamps.setdefault(candle.instrument_id, [])
        candles = self._candles.setdefault(candle.instrument_id, [])
        index = bisect.bisect_left(timestamps, candle.timestamp)
        if index < len(timestamps) and timestamps[index] == candle.timestamp:
            raise PersistenceConflict(
                f"candle {candle.instrument_id}@{candle.timestamp.isoformat()} exists"
            )
        timestamps.insert(index, candle.timestamp)
        candles.insert(index, candle)

    async def save(self, candle: Candle) -> bool:
        try:
            self._insert(candle)
        except PersistenceConflict:
            return False
        return True

    async def save_samples(
        self, instrument_id: str, pool_ref: str | None, samples: Sequence[OhlcvSample]
    ) -> int:
        inserted = 0
        for sample in samples:
            try:
                self._insert(Candle.from_sample(instrument_id, pool_ref, sample))
                inserted += 1
            except PersistenceConflict:
                continue
        if inserted:
            logger.debug(f"Stored {inserted}/{len(samples)} candles for {instrument_id}")
        return inserted

    async def get_recent(self, instrument_id: str, limit: int = 60) -> list[Candle]:
        candles = self._candles.get(instrument_id, [])
        return list(candles[-limit:]) if limit > 0 else []

    async def get_latest(self, instrument_id: str) -> Candle | None:
        candles = self._candles.get(instrument_id)
        return candles[-1] if candles else None

    async def get_latest_timestamp(self, instrument_id: str) -> datetime | None:
        latest = await self.get_latest(instrument_id)
        return latest.timestamp if latest else None

    async def get_first_since(self, instrument_id: str, since: datetime) -> Candle | None:
        timestamps = self._timestamps.get(instrument_id, [])
        index = bisect.bisect_left(timestamps, since)
        if index >= len(timestamps):
            return None
        return self._candles[instrument_id][index]

    async def count(self, instrument_id: str) -> int:
        return len(self._candles.get(instrument_id, []))

    def total(self) -> int:
        """Total number of stored candles across instruments."""
        return sum(len(c) for c in self._candles.values())


class MemoryInstrumentStore:
    """Instrument records with an active flag."""

    def __init__(self):
        self._instruments: dict[str, Instrument] = {}
        self._active: dict[str, bool] = {}
        self._alerts: dict[str, AlertRecord] = {}

    async def upsert(self, instrument: Instrument) -> None:
        existing = self._instruments.get(instrument.id)
        if existing is not None:
            instrument = instrument.model_copy(
                update={
                    "launched_at": existing.launched_at or instrument.launched_at,
                    "tracked_since": existing.tracked_since,
                    "pool_ref": instrument.pool_ref or existing.pool_ref,
                }
            )
        self._instruments[instrument.id] = instrument
        self._active[instrument.id] = True

    async def get(self, instrument_id: str) -> Instrument | None:
        return self._instruments.get(instrument_id)

    async def is_active(self, instrument_id: str) -> bool:
        return self._active.get(instrument_id, False)

    async def list_all(self) -> list[Instrument]:
        return list(self._instruments.values())

    async def list_active(self) -> list[Instrument]:
        return [i for i in self._instruments.values() if self._active.get(i.id)]

    async def active_ids(self, instrument_ids: Sequence[str]) -> set[str]:
        return {i for i in instrument_ids if self._active.get(i)}

    async def set_pool_ref(self, instrument_id: str, pool_ref: str) -> None:
        existing = self._instruments.get(instrument_id)
        if existing is not None:
            self._instruments[instrument_id] = existing.model_copy(update={"pool_ref": pool_ref})

    async def deactivate(self, instrument_id: str) -> None:
        if instrument_id in self._active:
            self._active[instrument_id] = False
        self._alerts.pop(instrument_id, None)

    async def save_alert(self, instrument_id: str, record: AlertRecord) -> None:
        if instrument_id in self._instruments:
            self._alerts[instrument_id] = replace(record)

    async def load_alerts(self) -> dict[str, AlertRecord]:
        return {
            instrument_id: replace(record)
            for instrument_id, record in self._alerts.items()
            if self._active.get(instrument_id)
        }


class MemoryBackfillTaskStore:
    """Backfill tasks keyed by instrument id."""

    def __init__(self):
        self._tasks: dict[str, BackfillTask] = {}

    def _require(self, instrument_id: str) -> BackfillTask:
        task = self._tasks.get(instrument_id)
        if task is None:
            raise KeyError(f"no backfill task for {instrument_id}")
        return task

    async def insert_if_absent(self, task: BackfillTask) -> bool:
        if task.instrument_id in self._tasks:
            return False
        self._tasks[task.instrument_id] = task.model_copy()
        return True

    async def get(self, instrument_id: str) -> BackfillTask | None:
        task = self._tasks.get(instrument_id)
        return task.model_copy() if task else None

    async def select_ready(self, limit: int, retry_before: datetime) -> list[BackfillTask]:
        ready = [t for t in self._tasks.values() if t.is_ready(retry_before)]
        ready.sort(key=lambda t: (t.attempts, t.enqueued_at))
        return [t.model_copy() for t in ready[:limit]]

    async def record_attempt(self, instrument_id: str, attempted_at: datetime) -> BackfillTask:
        task = self._require(instrument_id)
        task.attempts += 1
        task.last_attempt_at = attempted_at
        return task.model_copy()

    async def set_pool_ref(self, instrument_id: str, pool_ref: str) -> None:
        self._require(instrument_id).pool_ref = pool_ref

    async def set_error(self, instrument_id: str, error: str) -> None:
        self._require(instrument_id).error = error

    async def mark_done(self, instrument_id: str, completed_at: datetime) -> None:
        task = self._require(instrument_id)
        task.status = BackfillStatus.DONE
        task.completed_at = completed_at
        task.error = None

    async def mark_failed(self, instrument_id: str, error: str) -> None:
        task = self._require(instrument_id)
        task.status = BackfillStatus.FAILED
        task.error = error

    async def reset(self, instrument_id: str, enqueued_at: datetime) -> bool:
        task = self._tasks.get(instrument_id)
        if task is None:
            return False
        task.status = BackfillStatus.PENDING
        task.attempts = 0
        task.last_attempt_at = None
        task.error = None
        task.completed_at = None
        task.enqueued_at = enqueued_at
        return True

    async def remove(self, instrument_id: str) -> bool:
        return self._tasks.pop(instrument_id, None) is not None

    async def count_by_status(self) -> dict[BackfillStatus, int]:
        counts = {status: 0 for status in BackfillStatus}
        for task in self._tasks.values():
            counts[task.status] += 1
        return counts

    def __len__(self) -> int:
        return len(self._tasks)
