"""
Tests for the fail-open stage decorator.
"""
import logging

import pytest

from app.core.errors import RateLimitExceeded
from app.services.best_effort import best_effort


class TestBestEffort:
    def test_sync_failure_returns_default(self, caplog):
        @best_effort("sync stage", default="fallback")
        def stage():
            raise RuntimeError("boom")

        with caplog.at_level(logging.ERROR):
            assert stage() == "fallback"
        assert "sync stage failed" in caplog.text

    def test_sync_success_passes_through(self):
        @best_effort("sync stage", default=0)
        def stage(x, *, y):
            return x + y

        assert stage(1, y=2) == 3
        assert stage.__name__ == "stage"

    @pytest.mark.asyncio
    async def test_async_failure_returns_default(self):
        @best_effort("async stage", default=[])
        async def stage():
            raise ConnectionError("down")

        assert await stage() == []

    @pytest.mark.asyncio
    async def test_async_success_passes_through(self):
        @best_effort("async stage")
        async def stage():
            return "value"

        assert await stage() == "value"

    @pytest.mark.asyncio
    async def test_proxy_errors_propagate(self):
        @best_effort("rate limiting")
        async def stage():
            raise RateLimitExceeded()

        with pytest.raises(RateLimitExceeded):
            await stage()

    def test_proxy_errors_propagate_sync(self):
        @best_effort("rate limiting")
        def stage():
            raise RateLimitExceeded()

        with pytest.raises(RateLimitExceeded):
            stage()
