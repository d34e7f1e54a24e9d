"""
End-to-end tests through the FastAPI app.

The upstream is mocked, so every assertion about "no upstream call" is
checked against the stub's request log.
"""
import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.services.model_router import SYSTEM_INSTRUCTIONS, TaskType
from app.services.rate_limiter import RateLimiter
from app.services.response_cache import ResponseCache
from app.services.usage_recorder import UsageRecorder

EXTRACTION_TEXT = "Извлеки параметры из запроса клиента. структура: productType, size, quantity"
COST_TEXT = "Используя база знаний и правила ценообразования, рассчитай стоимость"


class BrokenStore:
    """Every operation fails as if the backing database were unreachable."""

    namespace = "broken"

    async def get(self, key):
        raise ConnectionError("store down")

    async def put(self, key, value, ttl_seconds=None):
        raise ConnectionError("store down")

    async def delete(self, key):
        raise ConnectionError("store down")

    async def get_counter(self, key):
        raise ConnectionError("store down")

    async def increment(self, key, ttl_seconds, amount=1):
        raise ConnectionError("store down")

    async def purge_expired(self):
        raise ConnectionError("store down")


class TestSystemRoutes:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["service"] == "packaging-calculator-api"
        assert body["version"] == "1.0.0"
        assert body["timestamp"]

    def test_health_with_lifespan(self):
        with TestClient(app) as client:
            assert client.get("/health").json()["status"] == "healthy"
            assert app.state.pipeline is not None
            assert app.state.sweeper.running
        assert not app.state.sweeper.running

    def test_preflight(self, client, upstream):
        response = client.options("/")
        assert response.status_code == 204
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "X-API-Key" in response.headers["Access-Control-Allow-Headers"]
        assert upstream.calls == 0


class TestValidationAndAuth:
    """Requests rejected before any upstream call."""

    @pytest.mark.parametrize(
        "body",
        [
            {"contents": []},
            {"contents": "text"},
            {"contents": [{"parts": [{"text": ""}]}]},
            {"contents": [{"parts": [{"text": "<script>alert(1)</script>"}]}]},
            {"contents": [{"parts": [{"text": "ok"}]}], "generationConfig": {"temperature": 3}},
            {"contents": [{"parts": [{"text": "ok"}]}], "taskType": "translation"},
        ],
    )
    def test_invalid_body_is_400(self, client, upstream, auth_headers, body):
        response = client.post("/", json=body, headers=auth_headers)
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == 400
        assert error["message"]
        assert upstream.calls == 0

    def test_invalid_json_is_400(self, client, upstream, auth_headers):
        response = client.post(
            "/",
            content=b'{"contents": [',
            headers={**auth_headers, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid JSON in request body"
        assert upstream.calls == 0

    def test_non_json_content_type_is_400(self, client, auth_headers):
        response = client.post(
            "/",
            content=b"hello",
            headers={**auth_headers, "Content-Type": "text/plain"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "Content-Type"

    def test_validation_runs_before_auth(self, client, make_body):
        response = client.post("/", json={"contents": []})
        assert response.status_code == 400

    def test_wrong_key_is_401(self, client, upstream, make_body):
        response = client.post(
            "/",
            json=make_body(),
            headers={"X-API-Key": "pk_live_not_the_right_one_5678"},
        )
        assert response.status_code == 401
        assert response.json()["error"]["details"] == {"providedKey": "***5678"}
        assert upstream.calls == 0

    def test_missing_key_is_401(self, client, upstream, make_body):
        response = client.post("/", json=make_body())
        assert response.status_code == 401
        assert response.json()["error"]["details"] == {"providedKey": "none"}
        assert upstream.calls == 0

    def test_trace_is_405(self, client, auth_headers):
        response = client.request("TRACE", "/", headers=auth_headers)
        assert response.status_code == 405
        assert response.json()["error"]["code"] == 405

    def test_get_without_body_is_400(self, client, auth_headers):
        assert client.get("/", headers=auth_headers).status_code == 400


class TestProxying:
    """Upstream calls, routing and caching."""

    def test_extraction_round_trip(self, client, upstream, auth_headers, make_body):
        upstream.respond('[{"productType":"Коробка"}]', prompt_tokens=50, completion_tokens=20)

        response = client.post("/", json=make_body(EXTRACTION_TEXT), headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {
            "candidates": [{"content": {"parts": [{"text": '[{"productType":"Коробка"}]'}]}}],
            "usage": {"promptTokenCount": 50, "candidatesTokenCount": 20},
        }
        assert response.headers["X-Cache"] == "MISS"
        assert len(response.headers["X-Cache-Key"]) == 64

        payload = upstream.payloads[0]
        assert payload["model"] == "anthropic/claude-3-haiku"
        assert payload["messages"][0] == {
            "role": "system",
            "content": SYSTEM_INSTRUCTIONS[TaskType.EXTRACTION],
        }
        assert payload["messages"][1] == {"role": "user", "content": EXTRACTION_TEXT}

    def test_second_identical_request_is_a_cache_hit(self, client, upstream, auth_headers, make_body):
        upstream.respond('[{"productType":"Пакет"}]')
        body = make_body(EXTRACTION_TEXT, generationConfig={"temperature": 0.2})

        first = client.post("/", json=body, headers=auth_headers)
        second = client.post("/", json=body, headers=auth_headers)

        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        assert second.headers["X-Cache-Key"] == first.headers["X-Cache-Key"]
        assert second.json() == first.json()
        assert upstream.calls == 1

    def test_high_temperature_is_never_cached(self, client, upstream, auth_headers, make_body):
        body = make_body(EXTRACTION_TEXT, generationConfig={"temperature": 0.8})

        for _ in range(2):
            response = client.post("/", json=body, headers=auth_headers)
            assert response.headers["X-Cache"] == "MISS"
        assert upstream.calls == 2

    def test_general_chat_is_not_cached(self, client, upstream, auth_headers, make_body):
        for _ in range(2):
            assert client.post("/", json=make_body("Привет!"), headers=auth_headers).headers["X-Cache"] == "MISS"
        assert upstream.calls == 2

    def test_cost_estimation_uses_the_smart_model(self, client, upstream, auth_headers, make_body):
        client.post("/", json=make_body(COST_TEXT), headers=auth_headers)
        assert upstream.payloads[0]["model"] == "anthropic/claude-3-5-sonnet"

    def test_explicit_task_type(self, client, upstream, auth_headers, make_body):
        client.post("/", json=make_body(COST_TEXT, taskType="extraction"), headers=auth_headers)
        assert upstream.payloads[0]["model"] == "anthropic/claude-3-haiku"

    def test_upstream_error_status_is_passed_through(self, client, upstream, auth_headers, make_body):
        upstream.status_code = 402
        upstream.body = {"error": {"message": "Insufficient credits"}}

        response = client.post("/", json=make_body(), headers=auth_headers)

        assert response.status_code == 402
        assert "Insufficient funds" in response.json()["error"]["message"]

    def test_upstream_unreachable_is_503(self, client, upstream, auth_headers, make_body):
        upstream.error = httpx.ConnectError("refused")
        response = client.post("/", json=make_body(), headers=auth_headers)
        assert response.status_code == 503

    def test_failed_upstream_call_is_not_cached(self, client, upstream, auth_headers, make_body):
        body = make_body(EXTRACTION_TEXT)
        upstream.status_code = 500
        upstream.body = {"error": "boom"}
        assert client.post("/", json=body, headers=auth_headers).status_code == 500

        upstream.respond("[]")
        response = client.post("/", json=body, headers=auth_headers)
        assert response.status_code == 200
        assert response.headers["X-Cache"] == "MISS"

    def test_unexpected_error_is_a_structured_500(self, client, pipeline, auth_headers, make_body):
        class BrokenRouter:
            def route(self, request):
                raise RuntimeError("router exploded")

        pipeline.router = BrokenRouter()
        response = client.post("/", json=make_body(), headers=auth_headers)

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == 500
        assert error["details"]["error"] == "RuntimeError"
        assert "timestamp" in error["details"]

    def test_store_outage_still_serves_requests(self, client, pipeline, upstream, clock, auth_headers, make_body):
        pipeline.rate_limiter = RateLimiter(BrokenStore(), clock=clock)
        pipeline.cache = ResponseCache(BrokenStore(), clock=clock)
        pipeline.usage = UsageRecorder(BrokenStore(), clock=clock)
        upstream.respond('[{"productType":"Коробка"}]')
        body = make_body(EXTRACTION_TEXT)

        for _ in range(2):
            response = client.post("/", json=body, headers=auth_headers)
            assert response.status_code == 200
            assert response.headers["X-Cache"] == "MISS"
            assert response.json()["candidates"][0]["content"]["parts"][0]["text"] == '[{"productType":"Коробка"}]'

        assert upstream.calls == 2


class TestRateLimiting:
    def test_first_request_past_the_limit_is_rejected_per_ip(self, client, pipeline, upstream, auth_headers, make_body):
        pipeline.rate_limiter.limit = 2

        for _ in range(3):
            assert client.post("/", json=make_body(), headers=auth_headers).status_code == 200

        response = client.post("/", json=make_body(), headers=auth_headers)
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.json()["error"]["details"]["currentRequests"] == 3
        assert upstream.calls == 3

        other_ip = {**auth_headers, "X-Forwarded-For": "198.51.100.9, 10.0.0.1"}
        assert client.post("/", json=make_body(), headers=other_ip).status_code == 200

    def test_window_rollover(self, client, pipeline, clock, auth_headers, make_body):
        pipeline.rate_limiter.limit = 1
        assert client.post("/", json=make_body(), headers=auth_headers).status_code == 200
        assert client.post("/", json=make_body(), headers=auth_headers).status_code == 200
        assert client.post("/", json=make_body(), headers=auth_headers).status_code == 429

        clock.advance(60)
        assert client.post("/", json=make_body(), headers=auth_headers).status_code == 200


class TestUsageEndpoint:
    def test_usage_reflects_traffic(self, client, upstream, auth_headers, make_body):
        upstream.respond("[]", prompt_tokens=50, completion_tokens=20)
        body = make_body(EXTRACTION_TEXT)
        client.post("/", json=body, headers=auth_headers)
        client.post("/", json=body, headers=auth_headers)

        response = client.get("/usage", headers=auth_headers)

        assert response.status_code == 200
        report = response.json()
        assert report["ledger"]["month"] == "2025-10"
        assert report["ledger"]["total_tokens"] == 70
        assert report["ledger"]["requests"] == 1
        assert report["ledger"]["models"] == {"anthropic/claude-3-haiku": 70}
        assert report["ledger"]["task_types"] == {"extraction": 70}
        assert report["cache"] == {"hits": 1, "misses": 1, "hit_rate": 0.5}

    def test_other_month_is_empty(self, client, auth_headers):
        response = client.get("/usage", params={"month": "2024-01"}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["ledger"]["total_tokens"] == 0

    def test_requires_key(self, client):
        assert client.get("/usage").status_code == 401

    def test_bad_month_is_400(self, client, auth_headers):
        response = client.get("/usage", params={"month": "october"}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == 400
