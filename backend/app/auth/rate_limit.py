"""
FastAPI dependency for rate limit enforcement on auxiliary routes.

Depends on require_api_key (auth runs first), then counts the request
against the same per-IP window as the proxy route.
Order in request pipeline: AUTH → RATE LIMIT → ROUTER LOGIC.

On limit exceeded, RateLimitExceeded is rendered as 429 with Retry-After.
"""

from __future__ import annotations

from fastapi import Depends, Request

from app.auth.dependencies import require_api_key
from app.core.config import settings
from app.services.pipeline import ProxyPipeline, get_pipeline, resolve_client_ip


async def enforce_rate_limit(
    request: Request,
    _api_key: str = Depends(require_api_key),
    pipeline: ProxyPipeline = Depends(get_pipeline),
) -> None:
    """Count this request; fails open if the store is unavailable."""
    await pipeline.rate_limiter.check(resolve_client_ip(request, settings.CLIENT_IP_HEADER))
