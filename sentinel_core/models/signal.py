"""Signal model produced by the indicator evaluator, and alert history."""

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Signal(BaseModel):
    """Snapshot of the indicator values at the moment a trigger fired.

    Signals are ephemeral: they are handed to the notification sink and
    never persisted.
    """

    model_config = ConfigDict(frozen=True)

    instrument_id: str
    timestamp: datetime
    price: float
    fast_ema: float
    slow_ema: float
    rsi: float
    volume: float
    avg_volume: float
    volume_spike: bool = False
    volume_filter_active: bool = False


@dataclass(slots=True)
class AlertRecord:
    """Market cap and time of the first and latest alert for one instrument.

    Times are epoch seconds. Persisted on the instrument record so market
    cap deltas survive a restart.
    """

    market_cap: float
    sent_at: float
    first_market_cap: float
    first_sent_at: float
