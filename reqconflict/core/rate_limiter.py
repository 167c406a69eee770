"""Application-level throttling for inference backend calls.

The hosted inference API answers bursts with 429s long before a pairwise run
finishes, so every backend request goes through a limiter:

- asyncio.Semaphore caps concurrent requests
- a minimum delay between request starts spreads load

Limiters hold asyncio primitives, so create one per event loop (each
scorer owns its own).
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import structlog

from reqconflict.core.config import Settings, get_settings

logger = structlog.get_logger(__name__)


@dataclass
class RateLimiterConfig:
    """Configuration for a rate limiter.

    Attributes:
        max_concurrent: Maximum concurrent requests allowed.
        min_delay_seconds: Minimum delay between request starts.
    """

    max_concurrent: int = 4
    min_delay_seconds: float = 0.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RateLimiterConfig":
        settings = settings or get_settings()
        return cls(
            max_concurrent=max(1, settings.inference_max_concurrent_requests),
            min_delay_seconds=max(0.0, settings.inference_min_request_delay),
        )


@dataclass
class RateLimiter:
    """Concurrency and pacing limiter for one inference backend.

    Example:
        >>> limiter = RateLimiter("huggingface")
        >>> async with limiter:
        ...     response = await caller.call(url, payload, api_key=key)
    """

    name: str
    config: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    _semaphore: asyncio.Semaphore = field(init=False)
    _lock: asyncio.Lock = field(init=False)
    _last_request_time: float = field(default=0.0, init=False)
    _request_count: int = field(default=0, init=False)
    _failed_count: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent)
        self._lock = asyncio.Lock()
        logger.debug(
            "inference_rate_limiter_created",
            name=self.name,
            max_concurrent=self.config.max_concurrent,
            min_delay_seconds=self.config.min_delay_seconds,
        )

    async def __aenter__(self) -> "RateLimiter":
        """Acquire semaphore and enforce minimum delay."""
        await self._semaphore.acquire()

        try:
            async with self._lock:
                if self.config.min_delay_seconds > 0:
                    elapsed = time.monotonic() - self._last_request_time
                    if elapsed < self.config.min_delay_seconds:
                        await asyncio.sleep(self.config.min_delay_seconds - elapsed)

                self._last_request_time = time.monotonic()
                self._request_count += 1
        except BaseException:
            self._semaphore.release()
            raise

        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Release semaphore."""
        self._semaphore.release()
        if exc_type is not None:
            self._failed_count += 1

    def get_stats(self) -> dict[str, Any]:
        """Get limiter statistics.

        Returns:
            Dictionary with request counts and limits.
        """
        return {
            "name": self.name,
            "max_concurrent": self.config.max_concurrent,
            "min_delay_seconds": self.config.min_delay_seconds,
            "total_requests": self._request_count,
            "failed_requests": self._failed_count,
        }
