"""
Short-lived in-process cache for execution contribution totals.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    totals: Dict[str, float]
    stored_at: float


class ProgressCache:
    """
    TTL-bounded memoization of per-goal totals keyed by execution record id.

    Entries are dropped explicitly whenever the ledgers change; the TTL only
    bounds how stale a burst of reads can get.
    """

    def __init__(
        self,
        ttl_seconds: float = settings.PROGRESS_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}

    def get(self, record_id: str) -> Optional[Dict[str, float]]:
        entry = self._entries.get(record_id)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self._ttl_seconds:
            del self._entries[record_id]
            return None
        return dict(entry.totals)

    def set(self, record_id: str, totals: Dict[str, float]) -> None:
        self._entries[record_id] = _Entry(totals=dict(totals), stored_at=self._clock())

    def invalidate(self, record_id: str) -> None:
        self._entries.pop(record_id, None)

    def invalidate_all(self) -> None:
        if self._entries:
            logger.debug("Invalidating %d cached progress entries", len(self._entries))
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
