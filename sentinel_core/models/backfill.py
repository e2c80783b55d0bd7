"""Backfill task model."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class BackfillStatus(str, Enum):
    """Backfill task status.

    pending -> done, or pending -> failed once attempts reach the ceiling.
    """

    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class BackfillTask(BaseModel):
    """Persisted request to backfill historical candles for one instrument."""

    model_config = ConfigDict(frozen=False)

    instrument_id: str
    symbol: str = ""
    name: str = ""
    pool_ref: str | None = None
    status: BackfillStatus = BackfillStatus.PENDING
    attempts: int = 0
    last_attempt_at: datetime | None = None
    error: str | None = None
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None

    @property
    def label(self) -> str:
        """Short label for log lines."""
        return self.symbol or self.instrument_id[:8]

    def is_ready(self, retry_before: datetime) -> bool:
        """Check if the task may be picked up by a drain."""
        if self.status != BackfillStatus.PENDING:
            return False
        return self.last_attempt_at is None or self.last_attempt_at < retry_before
