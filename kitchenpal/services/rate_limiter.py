"""Sliding-window rate limiter with a FIFO wait queue.

``RateLimiter.execute(fn)`` runs ``fn`` as soon as the rolling window has spare
capacity. Otherwise the caller waits in a FIFO queue that a single drain task
serves in submission order as grants expire from the window. A queued caller
gives up after ``queue_timeout`` seconds with a RATE_LIMITED error; a full queue
rejects immediately with ``QueueFullError``.

Instances are created by the application factory and shared through
``app.state``. All state changes happen on the event loop without awaiting in
between, so no extra locking is needed.
"""

import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, TypeVar

from kitchenpal.services.errors import ErrorKind, QueueFullError, ServiceError
from kitchenpal.utils.logger import logger

T = TypeVar("T")


class RateLimiter:
    """Allow at most ``max_requests`` grants in any ``window_seconds`` interval."""

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60.0,
        max_queue_size: int = 100,
        queue_timeout: Optional[float] = 30.0,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError(f"max_requests must be at least 1, got: {max_requests}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got: {window_seconds}")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_queue_size = max_queue_size
        self.queue_timeout = queue_timeout
        self.name = name
        self._clock = clock
        self._grants: Deque[float] = deque()
        self._waiters: Deque[asyncio.Future] = deque()
        self._drainer: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Window bookkeeping
    # ------------------------------------------------------------------

    def _purge(self) -> None:
        cutoff = self._clock() - self.window_seconds
        while self._grants and self._grants[0] <= cutoff:
            self._grants.popleft()

    def _has_capacity(self) -> bool:
        self._purge()
        return len(self._grants) < self.max_requests

    def remaining(self) -> int:
        self._purge()
        return max(self.max_requests - len(self._grants), 0)

    def is_rate_limited(self) -> bool:
        return not self._has_capacity()

    def time_until_reset(self) -> float:
        """Seconds until the oldest grant leaves the window (0 if capacity is free)."""
        if self._has_capacity():
            return 0.0
        return max(self._grants[0] + self.window_seconds - self._clock(), 0.0)

    @property
    def queue_length(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    # ------------------------------------------------------------------
    # Queue handling
    # ------------------------------------------------------------------

    def _ensure_drainer(self) -> None:
        if self._drainer is None or self._drainer.done():
            self._drainer = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._waiters:
            waiter = self._waiters[0]
            if waiter.done():
                # Timed out or cancelled while waiting
                self._waiters.popleft()
                continue
            if self._has_capacity():
                self._waiters.popleft()
                self._grants.append(self._clock())
                waiter.set_result(None)
                continue
            await asyncio.sleep(max(self.time_until_reset(), 0.001))

    async def acquire(self) -> None:
        """Wait for a slot in the window, preserving submission order."""
        if not self._waiters and self._has_capacity():
            self._grants.append(self._clock())
            return

        if self.max_queue_size and self.queue_length >= self.max_queue_size:
            logger.warning(f"Rate limiter '{self.name}' queue full ({self.max_queue_size})")
            raise QueueFullError(self.max_queue_size)

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self._ensure_drainer()
        logger.debug(f"Rate limiter '{self.name}' queued request (position {self.queue_length})")

        try:
            await asyncio.wait_for(waiter, timeout=self.queue_timeout)
        except asyncio.TimeoutError as e:
            if waiter.done() and not waiter.cancelled():
                # Granted in the same tick the timeout fired; the slot is already counted
                waiter.result()
                return
            raise ServiceError(
                ErrorKind.RATE_LIMITED,
                f"Rate limiter '{self.name}' queue wait exceeded {self.queue_timeout}s",
                original=e,
            ) from e

    async def execute(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn(*args, **kwargs)`` once the window has capacity."""
        await self.acquire()
        return await fn(*args, **kwargs)

    def clear_queue(self) -> None:
        """Reject every queued caller with RATE_LIMITED."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(ServiceError(ErrorKind.RATE_LIMITED, f"Rate limiter '{self.name}' queue cleared"))

    def reset(self) -> None:
        """Forget all grants and queued callers."""
        self.clear_queue()
        self._grants.clear()
        if self._drainer is not None and not self._drainer.done():
            self._drainer.cancel()
        self._drainer = None
