"""
Shared fixtures.

Settings are read at import time, so the environment is pinned before
anything from app is imported. No test touches the network: the
upstream is an httpx.MockTransport and the stores are in-memory with a
controllable clock.
"""

import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CLIENT_API_KEY", "test_client_key_0001")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("OPENROUTER_API_KEY", "sk-or-test")

import httpx
import pytest
from fastapi.testclient import TestClient

from app.auth.authenticator import Authenticator
from app.main import app
from app.services.llm_client import UpstreamClient
from app.services.model_router import ModelRouter
from app.services.pipeline import ProxyPipeline, get_pipeline
from app.services.rate_limiter import RateLimiter
from app.services.response_cache import ResponseCache
from app.services.usage_recorder import UsageRecorder
from app.stores.factory import Stores, build_memory_stores

CLIENT_KEY = "test_client_key_0001"
FAST_MODEL = "anthropic/claude-3-haiku"
SMART_MODEL = "anthropic/claude-3-5-sonnet"
UPSTREAM_BASE_URL = "https://upstream.test/api/v1"

# 2025-10-09T09:00:00Z, aligned to a 60 s window
START_TIME = 1_760_000_400.0


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class UpstreamStub:
    """Records every upstream call and answers with a canned completion."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.body: object = completion_body("ok")
        self.raw: bytes | None = None
        self.error: Exception | None = None

    def respond(self, text: str, prompt_tokens: int = 10, completion_tokens: int = 5) -> None:
        self.status_code = 200
        self.body = completion_body(text, prompt_tokens, completion_tokens)
        self.raw = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.raw is not None:
            return httpx.Response(self.status_code, content=self.raw)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def calls(self) -> int:
        return len(self.requests)

    @property
    def payloads(self) -> list[dict]:
        return [json.loads(request.content) for request in self.requests]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def completion_body(text: str, prompt_tokens: int = 10, completion_tokens: int = 5) -> dict:
    return {
        "id": "gen-test",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": text}}],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


def generate_body(text: str = "Привет", **extra) -> dict:
    return {"contents": [{"role": "user", "parts": [{"text": text}]}], **extra}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stores(clock) -> Stores:
    return build_memory_stores(clock)


@pytest.fixture
def upstream() -> UpstreamStub:
    return UpstreamStub()


@pytest.fixture
def router() -> ModelRouter:
    return ModelRouter(FAST_MODEL, SMART_MODEL)


@pytest.fixture
def pipeline(stores, clock, upstream, router) -> ProxyPipeline:
    return ProxyPipeline(
        authenticator=Authenticator(CLIENT_KEY),
        rate_limiter=RateLimiter(stores.rate_limit, limit=100, window_seconds=60, clock=clock),
        router=router,
        cache=ResponseCache(stores.cache, clock=clock),
        upstream=UpstreamClient(
            "sk-or-test",
            UPSTREAM_BASE_URL,
            referer="https://packaging-calculator.com",
            title="Packaging Calculator",
            http_client=upstream.client(),
        ),
        usage=UsageRecorder(stores.usage, clock=clock),
    )


@pytest.fixture
def client(pipeline):
    """TestClient without lifespan; the pipeline comes from the fixture above."""
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"X-API-Key": CLIENT_KEY, "X-Forwarded-For": "203.0.113.7"}


@pytest.fixture
def make_body():
    return generate_body
