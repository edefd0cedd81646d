"""Supersede-on-new-request task runner.

A UI component (identified by a client-supplied key) only cares about the result
of its latest request. ``SupersedingRunner.run(key, coro)`` cancels the previous
still-pending operation for ``key`` before starting the new one. The superseded
caller receives ``OperationSuperseded``; because the cancellation is delivered
inside the operation, any cache write scheduled after its awaits never runs.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from kitchenpal.utils.logger import logger

T = TypeVar("T")


class OperationSuperseded(Exception):
    """The operation was cancelled because a newer one for the same key started."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Operation for '{key}' superseded by a newer request")


class SupersedingRunner:
    """Keeps at most one in-flight task per key."""

    def __init__(self, name: str = "runner") -> None:
        self.name = name
        self._tasks: dict[str, asyncio.Task] = {}

    def pending(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    async def run(self, key: Optional[str], operation: Awaitable[T]) -> T:
        """Await ``operation``; with a key, cancel the previous pending one first.

        Raises:
            OperationSuperseded: A newer call with the same key cancelled this one.
        """
        if not key:
            return await operation

        previous = self._tasks.get(key)
        if previous is not None and not previous.done():
            logger.info(f"{self.name}: superseding pending request for {key}")
            previous.cancel()

        task = asyncio.ensure_future(operation)
        self._tasks[key] = task
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and self._tasks.get(key) is not task:
                raise OperationSuperseded(key) from None
            # The awaiting request itself was cancelled (client disconnected)
            task.cancel()
            raise
        finally:
            if self._tasks.get(key) is task:
                del self._tasks[key]
