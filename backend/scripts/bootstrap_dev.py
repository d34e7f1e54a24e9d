"""
Dev bootstrap script — generate a client credential for local development.

Usage:
    python -m scripts.bootstrap_dev            # memory store
    python -m scripts.bootstrap_dev --database # kv_entries via DATABASE_URL

This will:
  1. Generate a shared client credential (CLIENT_API_KEY)
  2. Print the .env lines the proxy needs
  3. With --database, check that the kv_entries table is reachable

The proxy only ever compares against CLIENT_API_KEY; nothing is stored.
"""

import asyncio
import sys

# Ensure the project root is on the path
sys.path.insert(0, ".")

from app.auth.hashing import generate_client_key
from app.services.validators import validate_credential_format


async def check_database() -> bool:
    from sqlalchemy import func, select

    from app.core.database import async_session_factory, engine
    from app.models.kv_entry import KVEntry

    try:
        async with async_session_factory() as session:
            rows = (await session.execute(select(func.count()).select_from(KVEntry))).scalar_one()
        print(f"  kv_entries reachable ({rows} rows)")
        return True
    except Exception as exc:  # noqa: BLE001
        print(f"  ✗ kv_entries not reachable: {exc}")
        print("    Run `alembic upgrade head` from backend/ first.")
        return False
    finally:
        await engine.dispose()


async def main(use_database: bool) -> int:
    client_key = generate_client_key()
    assert validate_credential_format(client_key), "generated key fails format check"

    # ── Print results ───────────────────────────────────────
    print()
    print("=" * 60)
    print("  Dev Bootstrap Complete")
    print("=" * 60)
    print()
    print("  Add to backend/.env:")
    print()
    print(f"    CLIENT_API_KEY={client_key}")
    print(f"    STORE_BACKEND={'database' if use_database else 'memory'}")
    print("    OPENROUTER_API_KEY=<your OpenRouter key>")
    print()
    print("  Send it from the UI as the X-API-Key header.")
    print("=" * 60)
    print()

    if use_database:
        return 0 if await check_database() else 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main("--database" in sys.argv[1:])))
