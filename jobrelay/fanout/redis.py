"""Redis pub/sub fan-out for multi-instance deployments."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..constants import REDIS_BROADCAST_CHANNEL, REDIS_CHANNEL_PREFIX
from .base import BaseFanout, FanoutEvent, to_jsonable

logger = logging.getLogger(__name__)


class RedisFanout(BaseFanout):
    """Publishes through Redis so every instance reaches its own channels.

    Frames for user ``u`` go to ``jobrelay:user:<u>``; a listener task in
    each instance pattern-subscribes to all user channels and hands frames
    to the locally registered sinks.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisFanout")
        super().__init__()
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None
        self._pubsub: Optional[Any] = None
        self._listener: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        """Connect to Redis and start the listener task."""
        if self._redis is not None:
            return
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()
        self._pubsub = self._redis.pubsub()
        await self._pubsub.psubscribe(f"{REDIS_CHANNEL_PREFIX}*")
        await self._pubsub.subscribe(REDIS_BROADCAST_CHANNEL)
        self._listener = asyncio.create_task(self._listen())
        logger.info(f"Redis fan-out connected to {self.host}:{self.port}/{self.db}")

    async def disconnect(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, user_id: str, event_type: str, payload: Any = None) -> None:
        if self._redis is None:
            await self.connect()
        frame = FanoutEvent(event=event_type, data=to_jsonable(payload))
        await self._redis.publish(f"{REDIS_CHANNEL_PREFIX}{user_id}", frame.model_dump_json())

    async def broadcast(self, event_type: str, payload: Any = None) -> None:
        if self._redis is None:
            await self.connect()
        frame = FanoutEvent(event=event_type, data=to_jsonable(payload))
        await self._redis.publish(REDIS_BROADCAST_CHANNEL, frame.model_dump_json())

    async def _listen(self) -> None:
        while True:
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True, timeout=1.0
            )
            if message is None:
                continue
            self.handle_message(message)

    def handle_message(self, message: dict) -> None:
        """Route one pub/sub message to the local channels."""
        try:
            frame = FanoutEvent.model_validate(json.loads(message["data"]))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to parse fan-out message: {e}")
            return
        channel = message.get("channel", "")
        if channel == REDIS_BROADCAST_CHANNEL:
            self.deliver_local_all(frame)
        elif channel.startswith(REDIS_CHANNEL_PREFIX):
            self.deliver_local(channel[len(REDIS_CHANNEL_PREFIX):], frame)
