"""Minimum-interval gates for sensitive commands."""

from __future__ import annotations

import abc
import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from .config import RateLimitConfig
from .constants import COMMAND_MIN_INTERVAL_SECONDS, REDIS_RATE_LIMIT_PREFIX
from .errors import RateLimitedError

logger = logging.getLogger(__name__)


class BaseRateLimiter(metaclass=abc.ABCMeta):
    """Allows one invocation per ``min_interval`` seconds for each key."""

    def __init__(self, min_interval: float = COMMAND_MIN_INTERVAL_SECONDS) -> None:
        self.min_interval = min_interval

    @abc.abstractmethod
    async def try_acquire(self, key: str = "global") -> bool:
        """Record an invocation and return ``True`` if it is allowed."""
        raise NotImplementedError

    @abc.abstractmethod
    async def retry_after(self, key: str = "global") -> float:
        """Seconds until ``key`` may be invoked again."""
        raise NotImplementedError

    async def acquire(self, key: str = "global") -> None:
        """Like ``try_acquire`` but raises ``RateLimitedError`` when denied."""
        if not await self.try_acquire(key):
            wait = await self.retry_after(key)
            logger.info(f"Rate limited key={key} retry_after={wait:.2f}s")
            raise RateLimitedError(key, wait)


class InMemoryRateLimiter(BaseRateLimiter):
    """Per-instance gate; only limits callers hitting this server."""

    def __init__(
        self,
        min_interval: float = COMMAND_MIN_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(min_interval)
        self._clock = clock
        self._last: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def try_acquire(self, key: str = "global") -> bool:
        async with self._lock:
            now = self._clock()
            last = self._last.get(key)
            if last is not None and now - last < self.min_interval:
                return False
            self._last[key] = now
            return True

    async def retry_after(self, key: str = "global") -> float:
        last = self._last.get(key)
        if last is None:
            return 0.0
        return max(0.0, self.min_interval - (self._clock() - last))


class RedisRateLimiter(BaseRateLimiter):
    """Gate shared by every server instance through ``SET NX PX``."""

    def __init__(
        self,
        min_interval: float = COMMAND_MIN_INTERVAL_SECONDS,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        client: Any = None,
    ) -> None:
        super().__init__(min_interval)
        if client is None and redis is None:
            raise ImportError("redis package is required for RedisRateLimiter")
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = client

    def _client(self) -> Any:
        if self._redis is None:
            self._redis = redis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                decode_responses=True,
            )
        return self._redis

    async def try_acquire(self, key: str = "global") -> bool:
        acquired = await self._client().set(
            f"{REDIS_RATE_LIMIT_PREFIX}{key}",
            "1",
            nx=True,
            px=int(self.min_interval * 1000),
        )
        return bool(acquired)

    async def retry_after(self, key: str = "global") -> float:
        ttl_ms = await self._client().pttl(f"{REDIS_RATE_LIMIT_PREFIX}{key}")
        return max(0.0, ttl_ms / 1000) if ttl_ms and ttl_ms > 0 else 0.0

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def get_rate_limiter(config: Optional[RateLimitConfig] = None) -> BaseRateLimiter:
    """Factory function to get the configured rate limiter."""
    config = config or RateLimitConfig()
    backend = config.backend.lower()
    if backend == "inmemory":
        return InMemoryRateLimiter(config.min_interval_seconds)
    elif backend == "redis":
        return RedisRateLimiter(
            config.min_interval_seconds,
            host=config.redis.host,
            port=config.redis.port,
            db=config.redis.db,
            password=config.redis.password,
        )
    else:
        raise ValueError(f"Unsupported rate limit backend: {backend}")
