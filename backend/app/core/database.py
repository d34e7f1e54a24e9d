"""
Async engine and ORM base for the kv_entries store.

  • The proxy only reaches the database through SqlKeyValueStore, which
    opens one short-lived session per operation; there is no
    request-scoped session.
  • PostgreSQL (asyncpg) in production. SQLite (aiosqlite) works for
    local runs, so engine options depend on the backend.
  • One declarative Base, so Alembic sees kv_entries through a single
    metadata object.
"""

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings

logger = logging.getLogger(__name__)


def engine_options(url: str, *, echo: bool = False) -> dict[str, Any]:
    """create_async_engine kwargs for url's backend."""
    options: dict[str, Any] = {"echo": echo}
    if make_url(url).get_backend_name() != "sqlite":
        # Server databases drop idle connections; check before reuse
        options["pool_pre_ping"] = True
        options["pool_recycle"] = 1800
    return options


# ── Engine ──────────────────────────────────────────────────
engine: AsyncEngine = create_async_engine(
    settings.DATABASE_URL,
    **engine_options(settings.DATABASE_URL, echo=settings.DEBUG),
)

# ── Session factory ─────────────────────────────────────────
async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── ORM Base ────────────────────────────────────────────────
class Base(DeclarativeBase):
    """Shared declarative base for all SQLAlchemy models."""


async def check_connection(bind: AsyncEngine = engine) -> bool:
    """SELECT 1 against bind. Logs and returns False instead of raising."""
    try:
        async with bind.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Database at %s is not reachable", bind.url.render_as_string(hide_password=True))
        return False
    return True
