"""
Settlement Engine - Request Scheduler.

============================================================
PURPOSE
============================================================
Per-channel throttling of exchange requests.

CHANNELS:
- quotes: quote requests
- orders: order creation and cancellation
- reads:  compliance, pair bounds, coin list, order status

Each channel enforces a minimum spacing between request
starts and a maximum number of requests in flight. One
scheduler instance is shared by every settlement in the
process; it is injected, never a module-level singleton.

============================================================
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from .config import ChannelLimit, RateLimitConfig


logger = logging.getLogger(__name__)

T = TypeVar("T")


class Channel:
    """One throttled request channel."""

    def __init__(
        self,
        name: str,
        limit: ChannelLimit,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self._limit = limit
        self._clock = clock
        self._sleep = sleep
        # Created on first use so they bind to the running loop
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._spacing_lock: Optional[asyncio.Lock] = None
        self._last_start: Optional[float] = None
        self._in_flight = 0
        self._total = 0

    def _primitives(self) -> Tuple[asyncio.Semaphore, asyncio.Lock]:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(max(1, self._limit.max_concurrency))
            self._spacing_lock = asyncio.Lock()
        return self._semaphore, self._spacing_lock

    async def _wait_for_slot(self, spacing_lock: asyncio.Lock) -> None:
        async with spacing_lock:
            now = self._clock()
            if self._last_start is not None:
                wait = self._last_start + self._limit.min_interval_seconds - now
                if wait > 0:
                    logger.debug(f"Channel {self.name}: waiting {wait:.2f}s")
                    await self._sleep(wait)
                    now = self._clock()
            self._last_start = now

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run `operation` once a slot is free."""
        semaphore, spacing_lock = self._primitives()
        async with semaphore:
            await self._wait_for_slot(spacing_lock)
            self._in_flight += 1
            self._total += 1
            try:
                return await operation()
            finally:
                self._in_flight -= 1

    def get_status(self) -> Dict[str, float]:
        return {
            "min_interval_seconds": self._limit.min_interval_seconds,
            "max_concurrency": self._limit.max_concurrency,
            "in_flight": self._in_flight,
            "total_requests": self._total,
        }


class RequestScheduler:
    """
    Scheduler with one throttled channel per request class.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        config = config or RateLimitConfig()
        self._channels: Dict[str, Channel] = {
            name: Channel(name, limit, clock=clock, sleep=sleep)
            for name, limit in config.channels().items()
        }

    async def run(self, channel: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run `operation` on the named channel."""
        try:
            target = self._channels[channel]
        except KeyError:
            raise ValueError(f"Unknown channel: {channel}")
        return await target.run(operation)

    def get_status(self) -> Dict[str, Dict[str, float]]:
        return {name: ch.get_status() for name, ch in self._channels.items()}


class NoOpScheduler:
    """Scheduler that runs everything immediately. For tests."""

    def __init__(self):
        self.calls: Dict[str, int] = {}

    async def run(self, channel: str, operation: Callable[[], Awaitable[T]]) -> T:
        self.calls[channel] = self.calls.get(channel, 0) + 1
        return await operation()
