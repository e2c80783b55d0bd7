"""Instrument repository."""

from typing import Sequence

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert

from sentinel.storage.database import InstrumentTable, get_database
from sentinel_core.models import AlertRecord, Instrument


def _row_to_instrument(row: InstrumentTable) -> Instrument:
    return Instrument(
        id=row.id,
        symbol=row.symbol or "",
        name=row.name or "",
        pool_ref=row.pool_ref,
        launched_at=row.launched_at,
        tracked_since=row.tracked_since,
    )


class InstrumentRepository:
    """Repository for tracked instruments."""

    async def upsert(self, instrument: Instrument) -> None:
        """Insert or refresh an instrument and mark it active."""
        async with get_database().session() as session:
            stmt = insert(InstrumentTable).values(
                id=instrument.id,
                symbol=instrument.symbol,
                name=instrument.name,
                pool_ref=instrument.pool_ref,
                launched_at=instrument.launched_at,
                tracked_since=instrument.tracked_since,
                active=True,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={
                    "symbol": stmt.excluded.symbol,
                    "name": stmt.excluded.name,
                    "pool_ref": func.coalesce(stmt.excluded.pool_ref, InstrumentTable.pool_ref),
                    "launched_at": func.coalesce(InstrumentTable.launched_at, stmt.excluded.launched_at),
                    "active": True,
                },
            )
            await session.execute(stmt)

    async def get(self, instrument_id: str) -> Instrument | None:
        async with get_database().session() as session:
            stmt = select(InstrumentTable).where(InstrumentTable.id == instrument_id)
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            return _row_to_instrument(row) if row else None

    async def is_active(self, instrument_id: str) -> bool:
        async with get_database().session() as session:
            stmt = select(InstrumentTable.active).where(InstrumentTable.id == instrument_id)
            result = await session.execute(stmt)
            return bool(result.scalar())

    async def list_all(self) -> list[Instrument]:
        async with get_database().session() as session:
            result = await session.execute(select(InstrumentTable))
            return [_row_to_instrument(row) for row in result.scalars().all()]

    async def list_active(self) -> list[Instrument]:
        async with get_database().session() as session:
            stmt = (
                select(InstrumentTable)
                .where(InstrumentTable.active.is_(True))
                .order_by(InstrumentTable.tracked_since.asc())
            )
            result = await session.execute(stmt)
            return [_row_to_instrument(row) for row in result.scalars().all()]

    async def active_ids(self, instrument_ids: Sequence[str]) -> set[str]:
        if not instrument_ids:
            return set()
        async with get_database().session() as session:
            stmt = select(InstrumentTable.id).where(
                InstrumentTable.id.in_(list(instrument_ids)),
                InstrumentTable.active.is_(True),
            )
            result = await session.execute(stmt)
            return set(result.scalars().all())

    async def set_pool_ref(self, instrument_id: str, pool_ref: str) -> None:
        async with get_database().session() as session:
            stmt = (
                update(InstrumentTable)
                .where(InstrumentTable.id == instrument_id)
                .values(pool_ref=pool_ref)
            )
            await session.execute(stmt)

    async def deactivate(self, instrument_id: str) -> None:
        """Mark an instrument as pruned. Its candles are kept, its alert history is not."""
        async with get_database().session() as session:
            stmt = (
                update(InstrumentTable)
                .where(InstrumentTable.id == instrument_id)
                .values(
                    active=False,
                    alert_market_cap=None,
                    alert_sent_at=None,
                    first_alert_market_cap=None,
                    first_alert_sent_at=None,
                )
            )
            await session.execute(stmt)

    async def save_alert(self, instrument_id: str, record: AlertRecord) -> None:
        async with get_database().session() as session:
            stmt = (
                update(InstrumentTable)
                .where(InstrumentTable.id == instrument_id)
                .values(
                    alert_market_cap=record.market_cap,
                    alert_sent_at=record.sent_at,
                    first_alert_market_cap=record.first_market_cap,
                    first_alert_sent_at=record.first_sent_at,
                )
            )
            await session.execute(stmt)

    async def load_alerts(self) -> dict[str, AlertRecord]:
        async with get_database().session() as session:
            stmt = select(InstrumentTable).where(
                InstrumentTable.active.is_(True),
                InstrumentTable.alert_sent_at.is_not(None),
            )
            result = await session.execute(stmt)
            return {
                row.id: AlertRecord(
                    market_cap=row.alert_market_cap,
                    sent_at=row.alert_sent_at,
                    first_market_cap=row.first_alert_market_cap,
                    first_sent_at=row.first_alert_sent_at,
                )
                for row in result.scalars().all()
            }
