"""Protocol for the shared key-value store.

The proxy keeps no state between requests except what lives here. The
interface is the minimum three concerns need:

  • rate limiting — get + increment (atomic where the backend allows)
  • caching       — get / put-with-TTL / delete
  • usage ledger  — get / put-with-TTL (read-modify-write, not CAS)

Each concern gets its own store instance bound to its own namespace, so
their TTL and consistency needs can diverge without touching the others.
"""

from __future__ import annotations

import time
from typing import Callable, Protocol, runtime_checkable

Clock = Callable[[], float]

system_clock: Clock = time.time


@runtime_checkable
class KeyValueStore(Protocol):
    """Async key-value store with per-key expiry.

    Keys are plain strings local to the store's namespace. Expired keys
    behave exactly like absent keys.
    """

    namespace: str

    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if absent or expired."""
        ...

    async def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store value, replacing any previous one. ttl_seconds=None never expires."""
        ...

    async def delete(self, key: str) -> bool:
        """Remove key. Returns True if something was deleted."""
        ...

    async def get_counter(self, key: str) -> int:
        """Current counter value; 0 if absent or expired."""
        ...

    async def increment(self, key: str, ttl_seconds: int, amount: int = 1) -> int:
        """
        Add amount to the counter and return the new value.

        A missing or expired counter starts from zero and receives
        ttl_seconds of life. An existing counter keeps its expiry.
        """
        ...

    async def purge_expired(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        ...
