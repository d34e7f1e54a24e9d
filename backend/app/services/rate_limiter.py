"""
Per-IP rate limiter on the shared store.

Fixed, clock-aligned windows: the counter key is `{ip}:{window_start}`
with window_start = floor(now / window) * window. A counter lives until
its window ends and is never refreshed, so each window is exactly
`window_seconds` long and a new one always starts from zero.

Design decisions:
  • Check BEFORE increment — rejected (429) requests don't inflate counters.
  • Atomic increment where the backend supports it (SQL upsert). Check
    and increment are two steps, so concurrent requests at the edge can
    overshoot the ceiling by a few; acceptable for abuse protection.
  • Fail open — if the store is down the request goes through (logged).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from app.core.errors import RateLimitExceeded
from app.services.best_effort import best_effort
from app.services.validators import validate_client_ip
from app.stores.base import Clock, KeyValueStore, system_clock

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100          # requests per window per IP
DEFAULT_WINDOW_SECONDS = 60


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    count: int
    retry_after: int


class RateLimiter:
    """Fixed-window request counter keyed by client IP."""

    def __init__(
        self,
        store: KeyValueStore,
        limit: int = DEFAULT_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        clock: Clock = system_clock,
    ) -> None:
        self._store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock

    def window_start(self, now: float) -> int:
        """Floor a timestamp to the start of its window."""
        return int(now // self.window_seconds) * self.window_seconds

    def _seconds_left(self, now: float) -> int:
        return max(1, math.ceil(self.window_start(now) + self.window_seconds - now))

    @best_effort("rate limiting", default=None)
    async def _consume(self, client_ip: str) -> RateLimitDecision:
        now = self._clock()
        key = f"{client_ip}:{self.window_start(now)}"
        seconds_left = self._seconds_left(now)

        # ── Check (read-only) ───────────────────────────────
        count = await self._store.get_counter(key)
        if count > self.limit:
            return RateLimitDecision(allowed=False, count=count, retry_after=seconds_left)

        # ── Increment (only after the check passes) ─────────
        count = await self._store.increment(key, ttl_seconds=seconds_left)
        return RateLimitDecision(allowed=True, count=count, retry_after=seconds_left)

    async def check(self, client_ip: str | None) -> RateLimitDecision | None:
        """
        Count one request for client_ip.

        Returns the decision, or None when the limiter was skipped
        (no client IP) or the store failed.

        Raises:
            RateLimitExceeded: When the IP is already over the limit for this window.
        """
        ip_check = validate_client_ip(client_ip)
        if not ip_check:
            logger.warning("%s: %r", ip_check.error, client_ip)
            if not client_ip:
                return None

        decision = await self._consume(client_ip)
        if decision is None or decision.allowed:
            return decision

        logger.warning("Rate limit exceeded for %s (%d requests)", client_ip, decision.count)
        raise RateLimitExceeded(
            f"Rate limit exceeded ({self.limit} requests per {self.window_seconds} seconds)",
            details={
                "currentRequests": decision.count,
                "limit": self.limit,
                "windowSeconds": self.window_seconds,
                "retryAfter": decision.retry_after,
            },
            headers={"Retry-After": str(decision.retry_after)},
        )
