"""Store protocols for candles, instruments, and backfill tasks.

Any storage backend (PostgreSQL repositories, in-memory stores) can
implement these protocols to be used by the services.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence, runtime_checkable

from sentinel_core.models import (
    AlertRecord,
    BackfillStatus,
    BackfillTask,
    Candle,
    Instrument,
    OhlcvSample,
)


@runtime_checkable
class CandleStore(Protocol):
    """Candle persistence. Writes are idempotent on (instrument_id, timestamp)."""

    async def save(self, candle: Candle) -> bool:
        """Persist one candle. Returns False if the key already existed."""
        ...

    async def save_samples(
        self, instrument_id: str, pool_ref: str | None, samples: Sequence[OhlcvSample]
    ) -> int:
        """Persist historical samples, skipping existing timestamps.

        Returns the number of newly inserted candles.
        """
        ...

    async def get_recent(self, instrument_id: str, limit: int = 60) -> list[Candle]:
        """The ``limit`` most recent candles, oldest first."""
        ...

    async def get_latest(self, instrument_id: str) -> Candle | None:
        ...

    async def get_latest_timestamp(self, instrument_id: str) -> datetime | None:
        ...

    async def get_first_since(self, instrument_id: str, since: datetime) -> Candle | None:
        """Earliest candle at or after ``since``."""
        ...

    async def count(self, instrument_id: str) -> int:
        ...


@runtime_checkable
class InstrumentStore(Protocol):
    """Persistent instrument records (active and pruned)."""

    async def upsert(self, instrument: Instrument) -> None:
        """Insert or refresh an instrument and mark it active.

        ``launched_at`` and ``tracked_since`` of an existing record are kept.
        """
        ...

    async def get(self, instrument_id: str) -> Instrument | None:
        ...

    async def is_active(self, instrument_id: str) -> bool:
        ...

    async def list_all(self) -> list[Instrument]:
        ...

    async def list_active(self) -> list[Instrument]:
        ...

    async def active_ids(self, instrument_ids: Sequence[str]) -> set[str]:
        """Subset of ``instrument_ids`` that are stored and active."""
        ...

    async def set_pool_ref(self, instrument_id: str, pool_ref: str) -> None:
        ...

    async def deactivate(self, instrument_id: str) -> None:
        """Mark an instrument as pruned and drop its alert history."""
        ...

    async def save_alert(self, instrument_id: str, record: AlertRecord) -> None:
        """Persist the latest alert record of an instrument."""
        ...

    async def load_alerts(self) -> dict[str, AlertRecord]:
        """Alert records of active instruments that have been alerted."""
        ...


@runtime_checkable
class BackfillTaskStore(Protocol):
    """Persistent backfill queue."""

    async def insert_if_absent(self, task: BackfillTask) -> bool:
        """Insert the task unless one exists for the instrument.

        Returns True if inserted. An existing task is never modified.
        """
        ...

    async def get(self, instrument_id: str) -> BackfillTask | None:
        ...

    async def select_ready(self, limit: int, retry_before: datetime) -> list[BackfillTask]:
        """Pending tasks never attempted or last attempted before ``retry_before``.

        Ordered by (attempts asc, enqueued_at asc).
        """
        ...

    async def record_attempt(self, instrument_id: str, attempted_at: datetime) -> BackfillTask:
        """Increment attempts and stamp the attempt time. Returns the updated task."""
        ...

    async def set_pool_ref(self, instrument_id: str, pool_ref: str) -> None:
        ...

    async def set_error(self, instrument_id: str, error: str) -> None:
        ...

    async def mark_done(self, instrument_id: str, completed_at: datetime) -> None:
        ...

    async def mark_failed(self, instrument_id: str, error: str) -> None:
        ...

    async def reset(self, instrument_id: str, enqueued_at: datetime) -> bool:
        """Return a task to pending with zero attempts. False if absent."""
        ...

    async def remove(self, instrument_id: str) -> bool:
        ...

    async def count_by_status(self) -> dict[BackfillStatus, int]:
        ...
