"""Fan-out factory and initialization."""

from __future__ import annotations

from typing import Optional

from ..config import FanoutConfig
from .base import BaseFanout, Channel, FanoutEvent
from .inmemory import InMemoryFanout
from .stream import format_sse, stream_events


def get_fanout(
    backend: Optional[str] = None, config: Optional[FanoutConfig] = None
) -> BaseFanout:
    """Factory function to get the configured fan-out."""

    config = config or FanoutConfig()
    backend = (backend or config.backend).lower()

    if backend == "inmemory":
        return InMemoryFanout()
    elif backend == "redis":
        from .redis import RedisFanout

        return RedisFanout(
            host=config.redis.host,
            port=config.redis.port,
            db=config.redis.db,
            password=config.redis.password,
        )
    else:
        raise ValueError(f"Unsupported fan-out backend: {backend}")


__all__ = [
    "BaseFanout",
    "Channel",
    "FanoutEvent",
    "InMemoryFanout",
    "format_sse",
    "get_fanout",
    "stream_events",
]
