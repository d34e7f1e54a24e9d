"""
Pydantic v2 schemas for usage accounting.

UsageLedger is both the stored form (JSON in the 'usage' store) and the
body of GET /usage. Token buckets are plain dicts so new models or task
types need no schema change.
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field


class UsageLedger(BaseModel):
    """Aggregate usage for one calendar month (UTC)."""

    month: str = Field(..., pattern=r"^\d{4}-\d{2}$", examples=["2026-10"])
    total_tokens: int = Field(default=0, ge=0)
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    requests: int = Field(default=0, ge=0)
    cost_usd: Decimal = Field(
        default=Decimal("0"),
        description="Estimated USD cost; advisory, not a billing source.",
    )
    models: dict[str, int] = Field(
        default_factory=dict,
        description="Total tokens per upstream model id.",
    )
    task_types: dict[str, int] = Field(
        default_factory=dict,
        description="Total tokens per task class.",
    )


class CacheStatsOut(BaseModel):
    hits: int
    misses: int
    hit_rate: float


class UsageReport(BaseModel):
    """Response of GET /usage."""

    ledger: UsageLedger
    cache: CacheStatsOut
