"""Backfill task repository."""

from datetime import datetime

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert

from sentinel.storage.database import BackfillTaskTable, get_database
from sentinel_core.models import BackfillStatus, BackfillTask


def _row_to_task(row: BackfillTaskTable) -> BackfillTask:
    return BackfillTask(
        instrument_id=row.instrument_id,
        symbol=row.symbol or "",
        name=row.name or "",
        pool_ref=row.pool_ref,
        status=BackfillStatus(row.status),
        attempts=row.attempts,
        last_attempt_at=row.last_attempt_at,
        error=row.error,
        enqueued_at=row.enqueued_at,
        completed_at=row.completed_at,
    )


class BackfillTaskRepository:
    """Repository for the persistent backfill queue."""

    async def insert_if_absent(self, task: BackfillTask) -> bool:
        """Insert a task unless one exists. Returns True if inserted."""
        async with get_database().session() as session:
            stmt = (
                insert(BackfillTaskTable)
                .values(
                    instrument_id=task.instrument_id,
                    symbol=task.symbol,
                    name=task.name,
                    pool_ref=task.pool_ref,
                    status=task.status.value,
                    attempts=task.attempts,
                    last_attempt_at=task.last_attempt_at,
                    error=task.error,
                    enqueued_at=task.enqueued_at,
                    completed_at=task.completed_at,
                )
                .on_conflict_do_nothing(index_elements=["instrument_id"])
                .returning(BackfillTaskTable.instrument_id)
            )
            result = await session.execute(stmt)
            return result.first() is not None

    async def get(self, instrument_id: str) -> BackfillTask | None:
        async with get_database().session() as session:
            stmt = select(BackfillTaskTable).where(
                BackfillTaskTable.instrument_id == instrument_id
            )
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            return _row_to_task(row) if row else None

    async def select_ready(self, limit: int, retry_before: datetime) -> list[BackfillTask]:
        """Pending tasks due for an attempt, fewest attempts and oldest first."""
        async with get_database().session() as session:
            stmt = (
                select(BackfillTaskTable)
                .where(
                    BackfillTaskTable.status == BackfillStatus.PENDING.value,
                    or_(
                        BackfillTaskTable.last_attempt_at.is_(None),
                        BackfillTaskTable.last_attempt_at < retry_before,
                    ),
                )
                .order_by(
                    BackfillTaskTable.attempts.asc(),
                    BackfillTaskTable.enqueued_at.asc(),
                )
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_row_to_task(row) for row in result.scalars().all()]

    async def record_attempt(self, instrument_id: str, attempted_at: datetime) -> BackfillTask:
        async with get_database().session() as session:
            stmt = (
                update(BackfillTaskTable)
                .where(BackfillTaskTable.instrument_id == instrument_id)
                .values(
                    attempts=BackfillTaskTable.attempts + 1,
                    last_attempt_at=attempted_at,
                )
                .returning(BackfillTaskTable)
            )
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            if row is None:
                raise KeyError(f"no backfill task for {instrument_id}")
            return _row_to_task(row)

    async def _update(self, instrument_id: str, **values) -> int:
        async with get_database().session() as session:
            stmt = (
                update(BackfillTaskTable)
                .where(BackfillTaskTable.instrument_id == instrument_id)
                .values(**values)
            )
            result = await session.execute(stmt)
            return result.rowcount

    async def set_pool_ref(self, instrument_id: str, pool_ref: str) -> None:
        await self._update(instrument_id, pool_ref=pool_ref)

    async def set_error(self, instrument_id: str, error: str) -> None:
        await self._update(instrument_id, error=error)

    async def mark_done(self, instrument_id: str, completed_at: datetime) -> None:
        await self._update(
            instrument_id,
            status=BackfillStatus.DONE.value,
            completed_at=completed_at,
            error=None,
        )

    async def mark_failed(self, instrument_id: str, error: str) -> None:
        await self._update(instrument_id, status=BackfillStatus.FAILED.value, error=error)

    async def reset(self, instrument_id: str, enqueued_at: datetime) -> bool:
        updated = await self._update(
            instrument_id,
            status=BackfillStatus.PENDING.value,
            attempts=0,
            last_attempt_at=None,
            error=None,
            completed_at=None,
            enqueued_at=enqueued_at,
        )
        return updated > 0

    async def remove(self, instrument_id: str) -> bool:
        async with get_database().session() as session:
            stmt = (
                delete(BackfillTaskTable)
                .where(BackfillTaskTable.instrument_id == instrument_id)
                .returning(BackfillTaskTable.instrument_id)
            )
            result = await session.execute(stmt)
            return result.first() is not None

    async def count_by_status(self) -> dict[BackfillStatus, int]:
        async with get_database().session() as session:
            stmt = select(BackfillTaskTable.status, func.count()).group_by(
                BackfillTaskTable.status
            )
            result = await session.execute(stmt)
            counts = {status: 0 for status in BackfillStatus}
            for status, count in result.all():
                counts[BackfillStatus(status)] = count
            return counts
