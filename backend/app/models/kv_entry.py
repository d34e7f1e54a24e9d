"""
Key-value entry model backing the shared store.

One table serves three logical stores, partitioned by `namespace`:
  • 'rate_limit' — per-IP window counters (uses `counter`)
  • 'cache'      — upstream responses + hit/miss counters
  • 'usage'      — monthly usage ledgers (JSON in `value`)

Composite PK: (namespace, key).

Expiry is an epoch-seconds float so the same comparison works on
PostgreSQL and SQLite. Rows past `expires_at` are invisible to reads
and removed by the expiry sweeper via SqlKeyValueStore.purge_expired().
"""

from sqlalchemy import BigInteger, Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class KVEntry(Base):
    """One namespaced key with an optional JSON value and counter."""

    __tablename__ = "kv_entries"

    namespace: Mapped[str] = mapped_column(String(32), primary_key=True)
    key: Mapped[str] = mapped_column(String(255), primary_key=True)

    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    counter: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        server_default="0",
    )
    expires_at: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (
        Index("ix_kv_entries_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<KVEntry {self.namespace}:{self.key} "
            f"counter={self.counter} expires_at={self.expires_at}>"
        )
