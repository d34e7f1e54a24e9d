"""
SQL-backed KeyValueStore over the kv_entries table.

Design decisions:
  • Atomic upsert — INSERT … ON CONFLICT DO UPDATE increments counters
    without a read-then-write gap and returns the new value in the same
    round trip. PostgreSQL in production, SQLite in tests; both dialects
    expose the same on_conflict_do_update() API.
  • Expiry is a column, not a database feature — reads filter on
    expires_at and purge_expired() deletes leftovers (at startup and on the
    sweeper interval).
  • One short-lived session per operation; the store never holds a
    connection between requests.
"""

from __future__ import annotations

import logging

from sqlalchemy import and_, case, delete, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.kv_entry import KVEntry
from app.stores.base import Clock, system_clock

logger = logging.getLogger(__name__)

_UPSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class SqlKeyValueStore:
    """KeyValueStore bound to one namespace of kv_entries."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        namespace: str,
        *,
        dialect: str = "postgresql",
        clock: Clock = system_clock,
    ) -> None:
        if dialect not in _UPSERTS:
            raise ValueError(
                f"Unsupported dialect '{dialect}'. "
                f"Supported: {', '.join(sorted(_UPSERTS))}"
            )
        self.namespace = namespace
        self._session_factory = session_factory
        self._insert = _UPSERTS[dialect]
        self._clock = clock

    # ── Helpers ─────────────────────────────────────────────
    def _match(self, key: str):  # type: ignore[no-untyped-def]
        return and_(KVEntry.namespace == self.namespace, KVEntry.key == key)

    @staticmethod
    def _live(now: float):  # type: ignore[no-untyped-def]
        return or_(KVEntry.expires_at.is_(None), KVEntry.expires_at > now)

    def _expiry(self, now: float, ttl_seconds: int | None) -> float | None:
        return None if ttl_seconds is None else now + ttl_seconds

    # ── Values ──────────────────────────────────────────────
    async def get(self, key: str) -> str | None:
        now = self._clock()
        stmt = select(KVEntry.value).where(self._match(key), self._live(now))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        now = self._clock()
        stmt = self._insert(KVEntry).values(
            namespace=self.namespace,
            key=key,
            value=value,
            counter=0,
            expires_at=self._expiry(now, ttl_seconds),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["namespace", "key"],
            set_={
                "value": stmt.excluded.value,
                "counter": 0,
                "expires_at": stmt.excluded.expires_at,
            },
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def delete(self, key: str) -> bool:
        stmt = delete(KVEntry).where(self._match(key))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return (result.rowcount or 0) > 0

    # ── Counters ────────────────────────────────────────────
    async def get_counter(self, key: str) -> int:
        now = self._clock()
        stmt = select(KVEntry.counter).where(self._match(key), self._live(now))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            value = result.scalar_one_or_none()
            return value if value is not None else 0

    async def increment(self, key: str, ttl_seconds: int, amount: int = 1) -> int:
        """Atomically add amount; an expired row restarts from amount."""
        now = self._clock()
        stmt = self._insert(KVEntry).values(
            namespace=self.namespace,
            key=key,
            value=None,
            counter=amount,
            expires_at=now + ttl_seconds,
        )
        expired = and_(KVEntry.expires_at.is_not(None), KVEntry.expires_at <= now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["namespace", "key"],
            set_={
                "counter": case(
                    (expired, stmt.excluded.counter),
                    else_=KVEntry.counter + stmt.excluded.counter,
                ),
                "expires_at": case(
                    (expired, stmt.excluded.expires_at),
                    else_=KVEntry.expires_at,
                ),
            },
        ).returning(KVEntry.counter)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            count = result.scalar_one()
            await session.commit()
        return int(count)

    # ── Maintenance ─────────────────────────────────────────
    async def purge_expired(self) -> int:
        now = self._clock()
        stmt = delete(KVEntry).where(
            KVEntry.namespace == self.namespace,
            KVEntry.expires_at.is_not(None),
            KVEntry.expires_at <= now,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info("Purged %d expired '%s' entries", removed, self.namespace)
        return removed
