"""
Background expiry sweeper.

Reads already ignore expired rows, but nothing else removes them: every
rate-limit window leaves one row per IP behind. The sweeper purges each
store on a fixed interval for the lifetime of the app.

    sweeper = ExpirySweeper(stores.all(), interval_seconds=60)
    await sweeper.sweep()   # once, at startup
    sweeper.start()         # then periodically
    ...
    await sweeper.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterable

from app.services.best_effort import best_effort
from app.stores.base import KeyValueStore

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@best_effort("expiry sweep", default=0)
async def _purge(store: KeyValueStore) -> int:
    return await store.purge_expired()


class ExpirySweeper:
    def __init__(
        self,
        stores: Iterable[KeyValueStore],
        interval_seconds: float = 60.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._stores = tuple(stores)
        self.interval_seconds = interval_seconds
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> int:
        """Purge every store once; a failing store is logged and skipped."""
        removed = 0
        for store in self._stores:
            removed += await _purge(store)
        return removed

    async def run(self) -> None:
        while True:
            await self._sleep(self.interval_seconds)
            removed = await self.sweep()
            if removed:
                logger.debug("Expiry sweep removed %d entries", removed)

    def start(self) -> asyncio.Task[None]:
        if self.running:
            raise RuntimeError("Sweeper already running")
        self._task = asyncio.create_task(self.run(), name="expiry-sweeper")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
