"""
Monthly usage ledger.

After every upstream call that reports usage, the current month's ledger
(key `YYYY-MM` in the 'usage' store) is read, updated and written back
with a 30-day TTL.

The update is read-modify-write, not compare-and-swap: two concurrent
calls can lose one update. The ledger is telemetry, not billing, so that
is accepted. Recording failures are logged and never reach the caller.
"""

from __future__ import annotations

import datetime
import logging
from decimal import Decimal

from app.schemas.usage import UsageLedger
from app.services.best_effort import best_effort
from app.services.cost_calculator import calculate_cost
from app.services.llm_client import UpstreamResult
from app.services.model_router import Route
from app.stores.base import Clock, KeyValueStore, system_clock

logger = logging.getLogger(__name__)

LEDGER_TTL_SECONDS = 30 * 24 * 3600
HIGH_USAGE_TOKENS = 10_000


def month_key(timestamp: float) -> str:
    """UTC calendar month of an epoch timestamp, e.g. '2026-10'."""
    return datetime.datetime.fromtimestamp(timestamp, tz=datetime.timezone.utc).strftime("%Y-%m")


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> Decimal:
    """calculate_cost, but unknown models cost nothing instead of raising."""
    try:
        return calculate_cost(model, input_tokens, output_tokens)
    except ValueError:
        logger.warning("No pricing for model '%s'; recording zero cost", model)
        return Decimal("0")


class UsageRecorder:
    """Accumulates token and cost totals per month, model and task type."""

    def __init__(self, store: KeyValueStore, clock: Clock = system_clock) -> None:
        self._store = store
        self._clock = clock

    async def get_ledger(self, month: str | None = None) -> UsageLedger:
        """Ledger for month (default: current month); empty if none stored."""
        month = month or month_key(self._clock())
        raw = await self._store.get(month)
        if raw is None:
            return UsageLedger(month=month)
        return UsageLedger.model_validate_json(raw)

    @best_effort("usage recording", default=None)
    async def record(self, route: Route, result: UpstreamResult) -> UsageLedger | None:
        """Add one call to the current month's ledger. Skips calls without usage."""
        if not result.has_usage:
            return None

        input_tokens = result.prompt_tokens
        output_tokens = result.completion_tokens
        total = input_tokens + output_tokens
        task = route.task.value

        ledger = await self.get_ledger()
        ledger.total_tokens += total
        ledger.input_tokens += input_tokens
        ledger.output_tokens += output_tokens
        ledger.requests += 1
        ledger.cost_usd += estimate_cost(route.model, input_tokens, output_tokens)
        ledger.models[route.model] = ledger.models.get(route.model, 0) + total
        ledger.task_types[task] = ledger.task_types.get(task, 0) + total

        await self._store.put(ledger.month, ledger.model_dump_json(), ttl_seconds=LEDGER_TTL_SECONDS)

        if total > HIGH_USAGE_TOKENS:
            logger.warning("High token usage: %d tokens for %s on %s", total, task, route.model)
        return ledger
