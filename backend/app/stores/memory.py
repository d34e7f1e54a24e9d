"""In-memory KeyValueStore backend.

Process-local and volatile: fine for local development and tests, wrong
for multi-worker deployments, where every worker would count and cache
on its own. Use STORE_BACKEND=database there.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from app.stores.base import Clock, system_clock


@dataclass(slots=True)
class _Entry:
    value: str | None = None
    counter: int = 0
    expires_at: float | None = None


class InMemoryKeyValueStore:
    """Thread-safe dict-backed store with lazy expiry.

    Usage:
        store = InMemoryKeyValueStore("cache")
        await store.put("abc", "{}", ttl_seconds=60)
        await store.get("abc")
    """

    def __init__(self, namespace: str, clock: Clock = system_clock) -> None:
        self.namespace = namespace
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> _Entry | None:
        """Return the entry if present and unexpired; drop it otherwise. Lock held."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: int | None) -> float | None:
        return None if ttl_seconds is None else self._clock() + ttl_seconds

    async def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key)
            return entry.value if entry is not None else None

    async def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._expiry(ttl_seconds))

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    async def get_counter(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            return entry.counter if entry is not None else 0

    async def increment(self, key: str, ttl_seconds: int, amount: int = 1) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                entry = _Entry(expires_at=self._expiry(ttl_seconds))
                self._entries[key] = entry
            entry.counter += amount
            return entry.counter

    async def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [
                key for key, entry in self._entries.items()
                if entry.expires_at is not None and entry.expires_at <= now
            ]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
