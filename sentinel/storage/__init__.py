"""Data storage layer."""

from sentinel.storage.backfill_repo import BackfillTaskRepository
from sentinel.storage.candle_repo import CandleRepository
from sentinel.storage.database import Database, get_database, init_database
from sentinel.storage.instrument_repo import InstrumentRepository
from sentinel.storage.memory import (
    MemoryBackfillTaskStore,
    MemoryCandleStore,
    MemoryInstrumentStore,
)
from sentinel.storage.protocols import BackfillTaskStore, CandleStore, InstrumentStore

__all__ = [
    "Database",
    "get_database",
    "init_database",
    "CandleRepository",
    "InstrumentRepository",
    "BackfillTaskRepository",
    "MemoryCandleStore",
    "MemoryInstrumentStore",
    "MemoryBackfillTaskStore",
    "CandleStore",
    "InstrumentStore",
    "BackfillTaskStore",
]
