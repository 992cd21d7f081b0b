"""
Servicer name -> id cache.

Bounded in size and in age so a renamed or re-created team member is picked
up again after the TTL. Passed into TaskService explicitly rather than held
as module state.
"""

import logging
import time
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300  # 5 minutes
MAX_ENTRIES = 256


class ServicerCache:
    """In-memory TTL cache for servicer id lookups"""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, max_entries: int = MAX_ENTRIES,
                 clock: Callable[[], float] = time.monotonic):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}  # name -> (id, expires_at)
        self._lock = Lock()
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "evictions": 0}

    def get(self, name: str) -> Optional[str]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(name)
            if entry and entry[1] > now:
                self._stats["hits"] += 1
                return entry[0]
            if entry:
                # Expired
                del self._entries[name]
            self._stats["misses"] += 1
            return None

    def set(self, name: str, servicer_id: str) -> None:
        with self._lock:
            self._entries.pop(name, None)
            self._entries[name] = (servicer_id, self._clock() + self.ttl_seconds)
            self._stats["sets"] += 1
            self._enforce_limit()

    def _enforce_limit(self) -> None:
        # dicts keep insertion order, so the first key is the oldest write
        while len(self._entries) > self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            self._stats["evictions"] += 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("🧹 Servicer cache cleared")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    @property
    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats, size=len(self._entries))
