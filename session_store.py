# Expiring Session / OTP Store

import asyncio
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from api_client import log


@dataclass
class StoredItem:
    value: Any
    expires_at: float


class ExpiringStore:
    """Keyed in-memory records with a per-entry TTL.

    Reads expire lazily; ``sweep()`` purges everything already expired and is run on a
    timer by the app so abandoned entries do not accumulate.
    """

    def __init__(self, name: str, default_ttl: float, clock: Callable[[], float] = time.time):
        self.name = name
        self.default_ttl = default_ttl
        self.clock = clock
        self._items: Dict[str, StoredItem] = {}

    def set(self, key: str, value: Any, ttl: float = None) -> float:
        expires_at = self.clock() + (ttl if ttl is not None else self.default_ttl)
        self._items[key] = StoredItem(value, expires_at)
        return expires_at

    def _live(self, key: str) -> Optional[StoredItem]:
        item = self._items.get(key)
        if item is None:
            return None
        if self.clock() >= item.expires_at:
            del self._items[key]
            return None
        return item

    def get(self, key: str) -> Any:
        item = self._live(key)
        return item.value if item else None

    def pop(self, key: str) -> Any:
        item = self._live(key)
        if item is None:
            return None
        del self._items[key]
        return item.value

    def is_expired(self, key: str) -> bool:
        """True when the key exists but its TTL has passed (entry is left in place)."""
        item = self._items.get(key)
        return item is not None and self.clock() >= item.expires_at

    def discard(self, key: str):
        self._items.pop(key, None)

    def expires_at(self, key: str) -> Optional[float]:
        item = self._live(key)
        return item.expires_at if item else None

    def sweep(self) -> int:
        now = self.clock()
        expired = [k for k, item in self._items.items() if now >= item.expires_at]
        for k in expired:
            del self._items[k]
        return len(expired)

    def __contains__(self, key: str) -> bool:
        return self._live(key) is not None

    def __len__(self):
        return len(self._items)


def new_token(nbytes: int = 32) -> str:
    return secrets.token_urlsafe(nbytes)


async def sweep_forever(stores, interval: float):
    """Background task: periodically purge expired entries from every store."""
    while True:
        await asyncio.sleep(interval)
        for store in stores:
            removed = store.sweep()
            if removed:
                log(f"[AUTH] Swept {removed} expired {store.name} entries")
