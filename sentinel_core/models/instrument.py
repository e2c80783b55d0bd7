"""Tracked instrument models."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Instrument(BaseModel):
    """An instrument tracked for live aggregation.

    ``id`` is the token address; ``pool_ref`` is the external pool needed
    to fetch historical data and stays ``None`` until it is resolved.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    symbol: str = ""
    name: str = ""
    pool_ref: str | None = None
    launched_at: datetime | None = None
    tracked_since: datetime = Field(default_factory=_utcnow)

    @property
    def display_name(self) -> str:
        """Symbol if known, otherwise a shortened address."""
        return self.symbol or self.id[:8]


class DiscoveredToken(BaseModel):
    """A candidate instrument reported by the discovery source."""

    model_config = ConfigDict(frozen=True)

    address: str
    symbol: str = ""
    name: str = ""
    created_at: datetime | None = None

    def to_instrument(self, pool_ref: str | None = None) -> Instrument:
        """Convert the candidate into a tracked instrument."""
        return Instrument(
            id=self.address,
            symbol=self.symbol,
            name=self.name,
            pool_ref=pool_ref,
            launched_at=self.created_at or _utcnow(),
        )
