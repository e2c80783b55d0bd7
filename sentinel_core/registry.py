"""Registry of instruments tracked for live aggregation."""

import threading

from sentinel_core.models import Instrument


class InstrumentRegistry:
    """The set of currently tracked instruments and their metadata.

    Every operation takes the registry lock, so readers always see either
    the state before or after a mutation. ``snapshot()`` returns a copy that
    callers may iterate while the registry keeps changing.
    """

    def __init__(self):
        self._instruments: dict[str, Instrument] = {}
        self._lock = threading.RLock()

    def add(self, instrument: Instrument) -> bool:
        """Register an instrument.

        Returns:
            True if added, False if it was already tracked (no-op)
        """
        with self._lock:
            if instrument.id in self._instruments:
                return False
            self._instruments[instrument.id] = instrument
            return True

    def remove(self, instrument_id: str) -> Instrument | None:
        """Unregister an instrument, returning it if it was tracked."""
        with self._lock:
            return self._instruments.pop(instrument_id, None)

    def update_pool_ref(self, instrument_id: str, pool_ref: str) -> bool:
        """Record a newly resolved pool reference for a tracked instrument."""
        with self._lock:
            instrument = self._instruments.get(instrument_id)
            if instrument is None:
                return False
            self._instruments[instrument_id] = instrument.model_copy(
                update={"pool_ref": pool_ref}
            )
            return True

    def get(self, instrument_id: str) -> Instrument | None:
        with self._lock:
            return self._instruments.get(instrument_id)

    def snapshot(self) -> list[Instrument]:
        """Copy of all tracked instruments, in registration order."""
        with self._lock:
            return list(self._instruments.values())

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._instruments.keys())

    def __contains__(self, instrument_id: object) -> bool:
        with self._lock:
            return instrument_id in self._instruments

    def __len__(self) -> int:
        with self._lock:
            return len(self._instruments)
