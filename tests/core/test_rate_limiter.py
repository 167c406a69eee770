"""Tests for the inference rate limiter."""

import asyncio

import pytest

from reqconflict.core.config import Settings
from reqconflict.core.rate_limiter import RateLimiter, RateLimiterConfig


class TestRateLimiterConfig:
    def test_from_settings_clamps_values(self) -> None:
        settings = Settings(
            inference_max_concurrent_requests=0,
            inference_min_request_delay=-1.0,
        )

        config = RateLimiterConfig.from_settings(settings)

        assert config.max_concurrent == 1
        assert config.min_delay_seconds == 0.0


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_caps_concurrency(self) -> None:
        limiter = RateLimiter("test", RateLimiterConfig(max_concurrent=2))
        active = 0
        peak = 0

        async def work() -> None:
            nonlocal active, peak
            async with limiter:
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(work() for _ in range(6)))

        assert peak == 2
        assert limiter.get_stats()["total_requests"] == 6

    @pytest.mark.asyncio
    async def test_counts_failed_requests(self) -> None:
        limiter = RateLimiter("test")

        with pytest.raises(RuntimeError):
            async with limiter:
                raise RuntimeError("boom")

        stats = limiter.get_stats()
        assert stats["total_requests"] == 1
        assert stats["failed_requests"] == 1
        assert stats["name"] == "test"
