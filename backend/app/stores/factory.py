"""
Store wiring.

Builds the three logically separate stores (rate limit, cache, usage)
from settings. They share one physical backend but never one namespace.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.core.config import Settings
from app.stores.base import Clock, KeyValueStore, system_clock
from app.stores.memory import InMemoryKeyValueStore

logger = logging.getLogger(__name__)

RATE_LIMIT_NAMESPACE = "rate_limit"
CACHE_NAMESPACE = "cache"
USAGE_NAMESPACE = "usage"


@dataclass(frozen=True, slots=True)
class Stores:
    rate_limit: KeyValueStore
    cache: KeyValueStore
    usage: KeyValueStore

    def all(self) -> tuple[KeyValueStore, ...]:
        return (self.rate_limit, self.cache, self.usage)


def build_memory_stores(clock: Clock = system_clock) -> Stores:
    return Stores(
        rate_limit=InMemoryKeyValueStore(RATE_LIMIT_NAMESPACE, clock),
        cache=InMemoryKeyValueStore(CACHE_NAMESPACE, clock),
        usage=InMemoryKeyValueStore(USAGE_NAMESPACE, clock),
    )


def build_stores(settings: Settings) -> Stores:
    """
    Build stores for STORE_BACKEND.

    Raises:
        ValueError: On an unknown backend name.
    """
    backend = settings.STORE_BACKEND.lower()

    if backend == "memory":
        logger.warning("Using in-memory stores — state is per-process and lost on restart")
        return build_memory_stores()

    if backend == "database":
        # Imported lazily so the memory backend never builds an engine
        from app.core.database import async_session_factory, engine
        from app.stores.database import SqlKeyValueStore

        dialect = engine.dialect.name
        return Stores(
            rate_limit=SqlKeyValueStore(async_session_factory, RATE_LIMIT_NAMESPACE, dialect=dialect),
            cache=SqlKeyValueStore(async_session_factory, CACHE_NAMESPACE, dialect=dialect),
            usage=SqlKeyValueStore(async_session_factory, USAGE_NAMESPACE, dialect=dialect),
        )

    raise ValueError(f"Unknown STORE_BACKEND '{settings.STORE_BACKEND}' (expected 'database' or 'memory')")
