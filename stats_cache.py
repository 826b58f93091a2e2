# Workspace Snapshot Cache

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from config import STATS_CACHE_TTL_SEC


@dataclass
class CacheEntry:
    data: Dict[str, Any]
    last_fetched: float
    time_filter: str
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.last_fetched < self.ttl


class SnapshotCache:
    """In-process TTL cache of workspace snapshots, one entry per time filter.

    Expired entries are dropped lazily on read. Only successful snapshots should be
    stored; last writer wins per key.
    """

    def __init__(self, ttl: float = STATS_CACHE_TTL_SEC, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, time_filter: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(time_filter)
        if entry is None:
            return None
        if not entry.is_fresh(self.clock()):
            del self._entries[time_filter]
            return None
        return entry.data

    def put(self, time_filter: str, data: Dict[str, Any]) -> CacheEntry:
        entry = CacheEntry(data=data, last_fetched=self.clock(), time_filter=time_filter, ttl=self.ttl)
        self._entries[time_filter] = entry
        return entry

    def __len__(self):
        return len(self._entries)
