from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Optional, Set

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[BaseException], Awaitable[None]]


class BackgroundRunner:
    """Runs fire-and-forget coroutines that outlive the request.

    Tasks are kept referenced until they finish. An exception raised by a
    task is logged and handed to its ``on_error`` coroutine.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        on_error: Optional[ErrorHandler] = None,
        name: Optional[str] = None,
    ) -> asyncio.Task:
        task = asyncio.create_task(self._run(coro, on_error), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self, coro: Coroutine[Any, Any, Any], on_error: Optional[ErrorHandler]
    ) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Background task failed: {e}")
            if on_error is not None:
                try:
                    await on_error(e)
                except Exception:
                    logger.exception("Background error handler failed")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
