"""Candle data repository."""

from datetime import datetime
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert

from sentinel.storage.database import CandleTable, get_database
from sentinel_core.models import Candle, OhlcvSample


def _row_to_candle(row: CandleTable) -> Candle:
    return Candle(
        instrument_id=row.instrument_id,
        pool_ref=row.pool_ref,
        timestamp=row.timestamp,
        open=row.open,
        high=row.high,
        low=row.low,
        close=row.close,
        volume=row.volume,
    )


def _candle_values(candle: Candle) -> dict:
    return {
        "instrument_id": candle.instrument_id,
        "pool_ref": candle.pool_ref,
        "timestamp": candle.timestamp,
        "open": candle.open,
        "high": candle.high,
        "low": candle.low,
        "close": candle.close,
        "volume": candle.volume,
    }


class CandleRepository:
    """Repository for candle operations.

    Candles are never overwritten: a second write of the same
    (instrument_id, timestamp) key does nothing.
    """

    async def save(self, candle: Candle) -> bool:
        """Save a single candle. Returns False if it already existed."""
        async with get_database().session() as session:
            stmt = (
                insert(CandleTable)
                .values(**_candle_values(candle))
                .on_conflict_do_nothing(index_elements=["instrument_id", "timestamp"])
                .returning(CandleTable.timestamp)
            )
            result = await session.execute(stmt)
            return result.first() is not None

    async def save_samples(
        self,
        instrument_id: str,
        pool_ref: str | None,
        samples: Sequence[OhlcvSample],
        chunk_size: int = 1000,
    ) -> int:
        """Save historical samples, skipping timestamps already stored.

        Args:
            instrument_id: Instrument the samples belong to
            pool_ref: Pool the samples were fetched from
            samples: OHLCV rows, any order
            chunk_size: Maximum rows per insert (PostgreSQL parameter limit)

        Returns:
            Number of newly inserted candles
        """
        if not samples:
            return 0

        inserted = 0
        async with get_database().session() as session:
            for i in range(0, len(samples), chunk_size):
                chunk = samples[i:i + chunk_size]
                values = [
                    _candle_values(Candle.from_sample(instrument_id, pool_ref, s))
                    for s in chunk
                ]
                stmt = (
                    insert(CandleTable)
                    .values(values)
                    .on_conflict_do_nothing(index_elements=["instrument_id", "timestamp"])
                    .returning(CandleTable.timestamp)
                )
                result = await session.execute(stmt)
                inserted += len(result.all())
        return inserted

    async def get_recent(self, instrument_id: str, limit: int = 60) -> list[Candle]:
        """Get the most recent candles, oldest first."""
        async with get_database().session() as session:
            stmt = (
                select(CandleTable)
                .where(CandleTable.instrument_id == instrument_id)
                .order_by(CandleTable.timestamp.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            rows = result.scalars().all()
            return [_row_to_candle(row) for row in reversed(rows)]

    async def get_latest(self, instrument_id: str) -> Candle | None:
        recent = await self.get_recent(instrument_id, limit=1)
        return recent[0] if recent else None

    async def get_latest_timestamp(self, instrument_id: str) -> datetime | None:
        async with get_database().session() as session:
            stmt = select(func.max(CandleTable.timestamp)).where(
                CandleTable.instrument_id == instrument_id
            )
            result = await session.execute(stmt)
            return result.scalar()

    async def get_first_since(self, instrument_id: str, since: datetime) -> Candle | None:
        async with get_database().session() as session:
            stmt = (
                select(CandleTable)
                .where(
                    CandleTable.instrument_id == instrument_id,
                    CandleTable.timestamp >= since,
                )
                .order_by(CandleTable.timestamp.asc())
                .limit(1)
            )
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            return _row_to_candle(row) if row else None

    async def count(self, instrument_id: str) -> int:
        async with get_database().session() as session:
            stmt = select(func.count()).select_from(CandleTable).where(
                CandleTable.instrument_id == instrument_id
            )
            result = await session.execute(stmt)
            return result.scalar() or 0
