"""Database connection and table definitions."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from sentinel.config import get_settings

Base = declarative_base()

# Columns added after the first release; create_all never alters existing tables
_ADDED_COLUMNS = [
    "ALTER TABLE instruments ADD COLUMN IF NOT EXISTS alert_market_cap DOUBLE PRECISION",
    "ALTER TABLE instruments ADD COLUMN IF NOT EXISTS alert_sent_at DOUBLE PRECISION",
    "ALTER TABLE instruments ADD COLUMN IF NOT EXISTS first_alert_market_cap DOUBLE PRECISION",
    "ALTER TABLE instruments ADD COLUMN IF NOT EXISTS first_alert_sent_at DOUBLE PRECISION",
]


class InstrumentTable(Base):
    """Tracked instruments, including pruned ones (``active = false``)."""

    __tablename__ = "instruments"

    id = Column(String(64), primary_key=True)
    symbol = Column(String(64), nullable=False, default="")
    name = Column(String(128), nullable=False, default="")
    pool_ref = Column(String(128), nullable=True)
    launched_at = Column(DateTime(timezone=True), nullable=True)
    tracked_since = Column(DateTime(timezone=True), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    # Alert history, epoch seconds; null until the first delivered alert
    alert_market_cap = Column(Float, nullable=True)
    alert_sent_at = Column(Float, nullable=True)
    first_alert_market_cap = Column(Float, nullable=True)
    first_alert_sent_at = Column(Float, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=text("NOW()"), onupdate=text("NOW()"))

    __table_args__ = (
        Index("idx_instruments_active", "active"),
    )


class CandleTable(Base):
    """Candle data, one row per (instrument, period start)."""

    __tablename__ = "candles"

    instrument_id = Column(String(64), primary_key=True)
    timestamp = Column(DateTime(timezone=True), primary_key=True)
    pool_ref = Column(String(128), nullable=True)
    open = Column(Float, nullable=False)
    high = Column(Float, nullable=False)
    low = Column(Float, nullable=False)
    close = Column(Float, nullable=False)
    volume = Column(Float, nullable=False, default=0.0)


class BackfillTaskTable(Base):
    """Persistent backfill queue, at most one row per instrument."""

    __tablename__ = "backfill_tasks"

    instrument_id = Column(String(64), primary_key=True)
    symbol = Column(String(64), nullable=False, default="")
    name = Column(String(128), nullable=False, default="")
    pool_ref = Column(String(128), nullable=True)
    status = Column(String(10), nullable=False, default="pending")  # pending | done | failed
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    enqueued_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_backfill_tasks_status_attempts", "status", "attempts"),
    )


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        settings = get_settings()
        url = database_url or settings.database_url

        # Convert postgresql:// to postgresql+asyncpg://
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

        self.engine = create_async_engine(
            url,
            echo=settings.debug,
            pool_size=10,
            max_overflow=10,
            pool_pre_ping=True,
            pool_recycle=3600,
            pool_timeout=30,
            connect_args={
                "timeout": 10,
                "command_timeout": 60,
            },
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self) -> None:
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            for statement in _ADDED_COLUMNS:
                await conn.execute(text(statement))

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connection."""
        await self.engine.dispose()


# Global database instance
_db: Database | None = None


def get_database() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db


async def init_database() -> Database:
    """Initialize the database and create tables."""
    db = get_database()
    await db.create_tables()
    return db
