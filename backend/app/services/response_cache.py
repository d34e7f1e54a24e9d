"""
Upstream response cache.

Only deterministic, cheap-to-recompute task classes are cached:
  • extraction        — 2h  (same phrasing → same structured output)
  • price correction  — 30m (more context-sensitive)
and only when temperature ≤ 0.5, max_tokens ≤ 2000 and the serialized
contents stay within 10,000 characters.

Keys are full SHA-256 digests of a canonical JSON document, so identical
requests always collide and different ones practically never do.

Expiry is enforced twice: the store TTL, and an expires_at check on read
that deletes the stale entry. Every method is best-effort; a broken
cache is a miss, never an error.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from app.schemas.proxy import GenerateRequest
from app.services.best_effort import best_effort
from app.services.model_router import TaskType
from app.stores.base import Clock, KeyValueStore, system_clock

logger = logging.getLogger(__name__)

# ── Eligibility / TTL policy ────────────────────────────────
CACHE_TTLS: dict[TaskType, int] = {
    TaskType.EXTRACTION: 7200,
    TaskType.PRICE_CORRECTION: 1800,
}
MAX_CACHEABLE_TEMPERATURE = 0.5
MAX_CACHEABLE_TOKENS = 2000
MAX_CACHEABLE_CONTENT_CHARS = 10_000

STATS_TTL_SECONDS = 86_400
_HITS_KEY = "stats:hits"
_MISSES_KEY = "stats:misses"


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _contents_payload(request: GenerateRequest) -> list[dict[str, Any]]:
    return [content.model_dump(exclude_none=True) for content in request.contents]


def fingerprint(request: GenerateRequest, model: str) -> str:
    """
    Cache key for (contents, generationConfig, systemInstruction, taskType, model).

    Returns a 64-char hex SHA-256 digest.
    """
    config = request.generation_config
    document = {
        "contents": _contents_payload(request),
        "generationConfig": (
            config.model_dump(by_alias=True, exclude_none=True) if config is not None else None
        ),
        "systemInstruction": request.system_instruction,
        "taskType": request.task_type,
        "model": model,
    }
    return hashlib.sha256(_canonical(document).encode("utf-8")).hexdigest()


def is_cacheable(request: GenerateRequest, task: TaskType) -> bool:
    """True only for low-temperature, bounded extraction / price-correction requests."""
    config = request.generation_config
    if config is not None:
        if config.temperature is not None and config.temperature > MAX_CACHEABLE_TEMPERATURE:
            return False
        if config.max_tokens is not None and config.max_tokens > MAX_CACHEABLE_TOKENS:
            return False

    if len(_canonical(_contents_payload(request))) > MAX_CACHEABLE_CONTENT_CHARS:
        return False

    return task in CACHE_TTLS


class CacheEntry(BaseModel):
    """Stored form of a cached response."""

    response: dict[str, Any]
    task: str
    created_at: float
    expires_at: float
    ttl: int


@dataclass(frozen=True, slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class ResponseCache:
    """Fingerprint → response store on top of a KeyValueStore."""

    def __init__(self, store: KeyValueStore, clock: Clock = system_clock) -> None:
        self._store = store
        self._clock = clock

    @staticmethod
    def _entry_key(key: str) -> str:
        return f"entry:{key}"

    @best_effort("cache lookup", default=None)
    async def lookup(self, key: str) -> dict[str, Any] | None:
        """Return the cached response payload, or None on miss."""
        raw = await self._store.get(self._entry_key(key))
        if raw is None:
            return None

        entry = CacheEntry.model_validate_json(raw)
        if entry.expires_at <= self._clock():
            await self._store.delete(self._entry_key(key))
            logger.debug("Cache entry %s expired; deleted", key[:12])
            return None

        logger.info("Cache hit for key %s", key[:12])
        await self._count(_HITS_KEY)
        return entry.response

    @best_effort("cache store", default=False)
    async def store(self, key: str, response: dict[str, Any], task: TaskType) -> bool:
        """Persist a fresh upstream response. Only for cacheable tasks."""
        ttl = CACHE_TTLS.get(task)
        if ttl is None:
            return False

        now = self._clock()
        entry = CacheEntry(
            response=response,
            task=task.value,
            created_at=now,
            expires_at=now + ttl,
            ttl=ttl,
        )
        await self._store.put(self._entry_key(key), entry.model_dump_json(), ttl_seconds=ttl)
        # Written on the miss path, so misses count cold keys only
        await self._count(_MISSES_KEY)
        logger.info("Cached response for key %s (ttl=%ds)", key[:12], ttl)
        return True

    @best_effort("cache stats update", default=None)
    async def _count(self, stats_key: str) -> None:
        await self._store.increment(stats_key, STATS_TTL_SECONDS)

    @best_effort("cache stats read", default=CacheStats())
    async def stats(self) -> CacheStats:
        return CacheStats(
            hits=await self._store.get_counter(_HITS_KEY),
            misses=await self._store.get_counter(_MISSES_KEY),
        )
