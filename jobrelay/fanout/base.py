"""Base fan-out interface for live client connections."""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any, Callable, Dict, List, Tuple

from pydantic import BaseModel, Field

from ..constants import CHANNEL_MAX_BUFFER
from ..persistence.models import new_id

logger = logging.getLogger(__name__)


class FanoutEvent(BaseModel):
    """One frame delivered to a live connection."""

    event: str
    data: Any = None


def to_jsonable(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    return payload


class Channel:
    """Output sink owned by a single open client connection."""

    def __init__(self, user_id: str, maxsize: int = CHANNEL_MAX_BUFFER) -> None:
        self.id = new_id()
        self.user_id = user_id
        self._queue: asyncio.Queue[FanoutEvent] = asyncio.Queue(maxsize=maxsize)

    def put(self, event: FanoutEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Dropping {event.event} frame for user_id={self.user_id}: buffer full")

    async def get(self) -> FanoutEvent:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()


class BaseFanout(metaclass=abc.ABCMeta):
    """Per-user registry of live channels.

    Sinks always live in this process; backends differ only in how a
    published frame reaches the process that holds the sink.
    """

    def __init__(self) -> None:
        self._channels: Dict[str, List[Channel]] = {}

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    def subscribe(self, user_id: str) -> Tuple[Channel, Callable[[], None]]:
        """Register a new channel for ``user_id``.

        Returns the channel and a callable that removes it again. Calling
        the callable more than once is harmless.
        """
        channel = Channel(user_id)
        self._channels.setdefault(user_id, []).append(channel)
        logger.debug(f"Subscribed channel {channel.id} for user_id={user_id}")

        def unsubscribe() -> None:
            channels = self._channels.get(user_id)
            if not channels or channel not in channels:
                return
            channels.remove(channel)
            if not channels:
                del self._channels[user_id]
            logger.debug(f"Unsubscribed channel {channel.id} for user_id={user_id}")

        return channel, unsubscribe

    def subscriber_count(self, user_id: str) -> int:
        return len(self._channels.get(user_id, ()))

    def connected_users(self) -> List[str]:
        return list(self._channels)

    def deliver_local(self, user_id: str, event: FanoutEvent) -> int:
        """Put ``event`` on every channel of ``user_id`` held by this process."""
        channels = list(self._channels.get(user_id, ()))
        for channel in channels:
            channel.put(event)
        return len(channels)

    def deliver_local_all(self, event: FanoutEvent) -> int:
        delivered = 0
        for user_id in list(self._channels):
            delivered += self.deliver_local(user_id, event)
        return delivered

    @abc.abstractmethod
    async def publish(self, user_id: str, event_type: str, payload: Any = None) -> None:
        """Deliver a frame to every live channel of ``user_id``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def broadcast(self, event_type: str, payload: Any = None) -> None:
        """Deliver a frame to every live channel of every user."""
        raise NotImplementedError
