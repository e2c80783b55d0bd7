"""Bounded memory of discovery candidates already processed."""

import logging
from typing import Iterable

logger = logging.getLogger(__name__)

DEFAULT_CAP = 5000


class DedupGate:
    """Set of candidate ids already seen by the discovery loop.

    Memory is bounded by clearing the whole set once it grows past ``cap``
    (checked once per discovery cycle), not by evicting old entries. The
    set therefore never holds more than ``cap`` plus one discovery batch,
    and right after a reset every candidate is processed once more.
    """

    def __init__(self, cap: int = DEFAULT_CAP):
        if cap <= 0:
            raise ValueError(f"cap must be positive, got {cap}")
        self.cap = cap
        self.reset_count = 0
        self._seen: set[str] = set()

    def check_capacity(self) -> bool:
        """Clear the set if it exceeds the cap.

        Returns:
            True if the set was cleared
        """
        if len(self._seen) <= self.cap:
            return False
        logger.info(f"Dedup gate cleared (size {len(self._seen)} > cap {self.cap})")
        self._seen.clear()
        self.reset_count += 1
        return True

    def add(self, candidate_id: str) -> None:
        self._seen.add(candidate_id)

    def add_many(self, candidate_ids: Iterable[str]) -> None:
        self._seen.update(candidate_ids)

    def filter_unseen(self, candidate_ids: Iterable[str]) -> list[str]:
        """Candidates not seen yet, in input order, without duplicates."""
        result: list[str] = []
        for candidate_id in candidate_ids:
            if candidate_id and candidate_id not in self._seen and candidate_id not in result:
                result.append(candidate_id)
        return result

    def __contains__(self, candidate_id: object) -> bool:
        return candidate_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)
