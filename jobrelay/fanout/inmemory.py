"""In-process fan-out for single-instance deployments and tests."""

from __future__ import annotations

import logging
from typing import Any

from .base import BaseFanout, FanoutEvent, to_jsonable

logger = logging.getLogger(__name__)


class InMemoryFanout(BaseFanout):
    """Delivers straight to the channels registered in this process."""

    async def publish(self, user_id: str, event_type: str, payload: Any = None) -> None:
        delivered = self.deliver_local(
            user_id, FanoutEvent(event=event_type, data=to_jsonable(payload))
        )
        if not delivered:
            logger.debug(f"No live connection for user_id={user_id}, dropped {event_type}")

    async def broadcast(self, event_type: str, payload: Any = None) -> None:
        self.deliver_local_all(FanoutEvent(event=event_type, data=to_jsonable(payload)))
