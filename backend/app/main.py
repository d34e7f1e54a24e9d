"""
FastAPI application entrypoint.

Lifespan:
  • On startup: build the three stores (rate limit, cache, usage), verify
    DB connectivity, purge expired entries and start the periodic
    expiry sweeper, build the proxy pipeline with one shared httpx client.
  • On shutdown: stop the sweeper, close the HTTP client, dispose the engine cleanly.

Routers:
  • /health — shallow liveness probe (never touches store or upstream)
  • /usage  — monthly ledger + cache counters
  • /*      — the LLM proxy (mounted last; catch-all)
"""

import datetime
import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import ProxyError, RequestValidationFailed
from app.routers.proxy import router as proxy_router
from app.routers.usage import router as usage_router
from app.schemas.proxy import HealthResponse
from app.services.pipeline import build_pipeline
from app.stores.factory import build_stores
from app.stores.sweeper import ExpirySweeper

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

_USES_DATABASE = settings.STORE_BACKEND.lower() == "database"


# ── Lifespan ────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""

    stores = build_stores(settings)

    # Startup — verify DB is reachable
    if _USES_DATABASE:
        from app.core.database import check_connection

        if await check_connection():
            logger.info("Database connection verified ✓")
        else:
            logger.warning(
                "Could not reach the database on startup. "
                "The proxy will start and fail open on rate limiting, "
                "caching and usage until the DB is available."
            )

    # Startup — drop entries whose TTL passed while we were down, then keep
    # purging on an interval
    sweeper = ExpirySweeper(stores.all(), settings.STORE_SWEEP_INTERVAL_SECONDS)
    await sweeper.sweep()
    sweeper.start()
    app.state.sweeper = sweeper

    http_client = httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT_SECONDS)
    app.state.pipeline = build_pipeline(settings, stores, http_client=http_client)
    logger.info("Proxy pipeline ready (store backend: %s) ✓", settings.STORE_BACKEND)

    yield  # ← application runs here

    # Shutdown — stop the sweeper, clean up connection pools
    await sweeper.stop()
    await http_client.aclose()
    if _USES_DATABASE:
        from app.core.database import engine

        await engine.dispose()
        logger.info("Database engine disposed ✓")


# ── App ─────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.SERVICE_VERSION,
    description=(
        "Edge proxy for the packaging cost assistant — "
        "validation, auth, rate limiting, caching and usage accounting "
        "in front of the upstream LLM."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    expose_headers=["X-Cache", "X-Cache-Key", "Retry-After"],
)


# ── Error rendering ─────────────────────────────────────────
@app.exception_handler(ProxyError)
async def proxy_error_handler(_request: Request, exc: ProxyError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed: %d %s", exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    error = RequestValidationFailed(
        details={
            "errors": [
                {"loc": [str(part) for part in err["loc"]], "msg": err["msg"]}
                for err in exc.errors()
            ]
        }
    )
    return JSONResponse(status_code=error.status_code, content=error.to_body())


# ── Health check ────────────────────────────────────────────
@app.get(
    "/health",
    tags=["System"],
    summary="Liveness probe",
    response_model=HealthResponse,
)
async def health_check() -> HealthResponse:
    """Shallow health check — confirms the process is alive."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
        service=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
    )


# Mount routers — proxy last, its catch-all path matches everything
app.include_router(usage_router)
app.include_router(proxy_router)
