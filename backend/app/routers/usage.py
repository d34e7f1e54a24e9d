"""
Usage router — monthly token/cost ledger and cache counters.

GET /usage?month=YYYY-MM
  Requires X-API-Key and counts against the caller's rate limit.
  Defaults to the current UTC month. A month with no traffic returns
  an all-zero ledger rather than 404.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from app.auth.rate_limit import enforce_rate_limit
from app.schemas.usage import CacheStatsOut, UsageReport
from app.services.pipeline import ProxyPipeline, get_pipeline

router = APIRouter(tags=["Usage"])

Pipeline = Annotated[ProxyPipeline, Depends(get_pipeline)]


@router.get(
    "/usage",
    response_model=UsageReport,
    summary="Monthly usage ledger",
    dependencies=[Depends(enforce_rate_limit)],
)
async def get_usage(
    pipeline: Pipeline,
    month: str | None = Query(
        default=None,
        pattern=r"^\d{4}-\d{2}$",
        description="Calendar month (UTC), defaults to the current one",
        examples=["2026-10"],
    ),
) -> UsageReport:
    ledger = await pipeline.usage.get_ledger(month)
    stats = await pipeline.cache.stats()
    return UsageReport(
        ledger=ledger,
        cache=CacheStatsOut(hits=stats.hits, misses=stats.misses, hit_rate=stats.hit_rate),
    )
