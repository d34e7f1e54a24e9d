"""
The proxy request pipeline.

Stage order (a failing stage ends the request with its ProxyError):

  1. Validate   — method, URL, headers, JSON body           → 405 / 400
  2. Auth       — X-API-Key vs CLIENT_API_KEY              → 401
  3. Rate limit — per-IP fixed window                      → 429 (fail-open)
  4. Route      — task class → model + system instruction  (never fails)
  5. Cache      — lookup; a hit returns immediately        (fail-open)
  6. Upstream   — OpenRouter chat completion               → 503 / passthrough / 500
  7. Usage      — monthly ledger update                    (fail-open)
  8. Cache      — store eligible responses                 (fail-open)

Routing runs before the cache lookup because the cache key includes the
selected model; it is pure, so the order has no observable effect.
"""

from __future__ import annotations

import datetime
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx
from fastapi import Request
from pydantic import ValidationError

from app.auth.authenticator import API_KEY_HEADER, Authenticator
from app.core.config import Settings
from app.core.errors import MethodNotAllowed, ProxyError, RequestValidationFailed
from app.schemas.proxy import GenerateRequest
from app.services import validators
from app.services.best_effort import best_effort
from app.services.llm_client import UpstreamClient
from app.services.model_router import ModelRouter, Route
from app.services.rate_limiter import RateLimiter
from app.services.response_cache import ResponseCache, fingerprint, is_cacheable
from app.services.usage_recorder import UsageRecorder
from app.stores.factory import Stores

logger = logging.getLogger(__name__)

CACHE_HIT = "HIT"
CACHE_MISS = "MISS"


# ── Envelope ────────────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class RequestEnvelope:
    """One inbound call, detached from the web framework."""

    method: str
    url: str
    headers: Mapping[str, str]
    body: bytes
    client_ip: str | None = None

    @property
    def api_key(self) -> str | None:
        for name, value in self.headers.items():
            if name.lower() == API_KEY_HEADER.lower():
                return value
        return None


def resolve_client_ip(request: Request, ip_header: str) -> str | None:
    """
    Caller IP: first hop of ip_header (e.g. X-Forwarded-For / CF-Connecting-IP),
    else the socket peer.
    """
    forwarded = request.headers.get(ip_header) if ip_header else None
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


async def envelope_from_request(request: Request, ip_header: str) -> RequestEnvelope:
    return RequestEnvelope(
        method=request.method,
        url=str(request.url),
        headers=dict(request.headers),
        body=await request.body(),
        client_ip=resolve_client_ip(request, ip_header),
    )


@dataclass(frozen=True, slots=True)
class ProxyResult:
    body: dict[str, Any]
    cache_status: str
    cache_key: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    def response_headers(self) -> dict[str, str]:
        return {
            **self.headers,
            "X-Cache": self.cache_status,
            "X-Cache-Key": self.cache_key or "none",
        }


@dataclass(frozen=True, slots=True)
class CachePlan:
    key: str | None
    cacheable: bool


_NO_CACHE = CachePlan(key=None, cacheable=False)


# ── Pipeline ────────────────────────────────────────────────
class ProxyPipeline:
    """All collaborators are injected; the pipeline holds no request state."""

    def __init__(
        self,
        authenticator: Authenticator,
        rate_limiter: RateLimiter,
        router: ModelRouter,
        cache: ResponseCache,
        upstream: UpstreamClient,
        usage: UsageRecorder,
    ) -> None:
        self.authenticator = authenticator
        self.rate_limiter = rate_limiter
        self.router = router
        self.cache = cache
        self.upstream = upstream
        self.usage = usage

    async def handle(self, envelope: RequestEnvelope) -> ProxyResult:
        """
        Run one request through every stage.

        Raises:
            ProxyError: Any terminating stage failure. Unexpected
                exceptions are logged and converted to a generic 500.
        """
        try:
            return await self._run(envelope)
        except ProxyError:
            raise
        except Exception as exc:
            logger.exception("Unexpected proxy error")
            raise ProxyError(
                details={
                    "error": type(exc).__name__,
                    "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
                }
            ) from exc

    async def _run(self, envelope: RequestEnvelope) -> ProxyResult:
        # ── 1. Validate ─────────────────────────────────────
        self._validate_envelope(envelope)
        request = self._parse_body(envelope.body)

        # ── 2. Authenticate ─────────────────────────────────
        self.authenticator.authenticate(envelope.api_key)

        # ── 3. Rate limit ───────────────────────────────────
        await self.rate_limiter.check(envelope.client_ip)

        # ── 4. Route ────────────────────────────────────────
        route = self.router.route(request)

        # ── 5. Cache lookup ─────────────────────────────────
        plan = self._plan_cache(request, route)
        if plan.cacheable and plan.key is not None:
            cached = await self.cache.lookup(plan.key)
            if cached is not None:
                return ProxyResult(body=cached, cache_status=CACHE_HIT, cache_key=plan.key)

        # ── 6. Upstream ─────────────────────────────────────
        result = await self.upstream.complete(request, route)
        body = result.to_response().to_wire()

        # ── 7. Usage ────────────────────────────────────────
        await self.usage.record(route, result)

        # ── 8. Cache store ──────────────────────────────────
        if plan.cacheable and plan.key is not None:
            await self.cache.store(plan.key, body, route.task)

        return ProxyResult(body=body, cache_status=CACHE_MISS, cache_key=plan.key)

    # ── Stage helpers ───────────────────────────────────────
    @staticmethod
    def _validate_envelope(envelope: RequestEnvelope) -> None:
        check = validators.validate_method(envelope.method)
        if not check:
            raise MethodNotAllowed(check.error, details={"method": envelope.method})

        check = validators.validate_url(envelope.url)
        if not check:
            raise RequestValidationFailed(check.error, details={"field": check.field, "url": envelope.url})

        check = validators.validate_headers(envelope.headers)
        if not check:
            raise RequestValidationFailed(check.error, details={"field": check.field})

    @staticmethod
    def _parse_body(raw: bytes) -> GenerateRequest:
        try:
            body = json.loads(raw)
        except ValueError as exc:
            raise RequestValidationFailed(
                "Invalid JSON in request body",
                details={"field": "body", "error": str(exc)},
            ) from exc

        check = validators.validate_body(body)
        if not check:
            raise RequestValidationFailed(check.error, details={"field": check.field})

        try:
            return GenerateRequest.model_validate(body)
        except ValidationError as exc:
            raise RequestValidationFailed(
                "Request body does not match the expected schema",
                details={
                    "field": "body",
                    "errors": [
                        {"loc": [str(part) for part in err["loc"]], "msg": err["msg"]}
                        for err in exc.errors()
                    ],
                },
            ) from exc

    @best_effort("cache planning", default=_NO_CACHE)
    def _plan_cache(self, request: GenerateRequest, route: Route) -> CachePlan:
        return CachePlan(
            key=fingerprint(request, route.model),
            cacheable=is_cacheable(request, route.task),
        )


# ── Wiring ──────────────────────────────────────────────────
def build_pipeline(
    settings: Settings,
    stores: Stores,
    http_client: httpx.AsyncClient | None = None,
) -> ProxyPipeline:
    """Assemble a pipeline from settings and already-built stores."""
    return ProxyPipeline(
        authenticator=Authenticator(settings.CLIENT_API_KEY),
        rate_limiter=RateLimiter(
            stores.rate_limit,
            limit=settings.RATE_LIMIT_REQUESTS,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        ),
        router=ModelRouter(settings.FAST_MODEL, settings.SMART_MODEL),
        cache=ResponseCache(stores.cache),
        upstream=UpstreamClient(
            settings.OPENROUTER_API_KEY,
            settings.OPENROUTER_BASE_URL,
            timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
            referer=settings.OPENROUTER_REFERER,
            title=settings.OPENROUTER_TITLE,
            http_client=http_client,
        ),
        usage=UsageRecorder(stores.usage),
    )


def get_pipeline(request: Request) -> ProxyPipeline:
    """FastAPI dependency — the pipeline built during lifespan startup."""
    return request.app.state.pipeline
