"""
FastAPI dependency for X-API-Key authentication on auxiliary routes.

The proxy route runs the Authenticator inside the pipeline (validation
must come first there); routes such as GET /usage use this dependency
instead so they share the same secret and the same 401 body.

Usage in routers:
    Auth = Annotated[str, Depends(require_api_key)]
"""

from __future__ import annotations

from fastapi import Depends, Header

from app.services.pipeline import ProxyPipeline, get_pipeline


async def require_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    pipeline: ProxyPipeline = Depends(get_pipeline),
) -> str:
    """
    Resolve and check the caller credential.

    Raises AuthenticationError (rendered as 401) for missing, malformed
    or wrong keys.
    """
    pipeline.authenticator.authenticate(x_api_key)
    return x_api_key  # type: ignore[return-value]
