"""Shared concurrency primitives.

Two small building blocks used across the services:

1. **RateLimitGate** -- enforces a minimum interval between calls that
   hit the inference service.  One gate instance is shared by every
   evaluation worker so a wide worker pool cannot burst past the
   provider's requests-per-minute budget.

2. **KeyedLocks** -- a registry of ``asyncio.Lock`` objects keyed by id.
   The interactive session manager takes the lock for a session id around
   every read-modify-write so two requests against the same session can
   never interleave.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


class RateLimitGate:
    """Global minimum-interval throttle shared by concurrent workers.

    Parameters
    ----------
    requests_per_minute:
        Maximum sustained rate.  ``0`` (or negative) disables throttling.
    """

    def __init__(self, requests_per_minute: float = 30.0) -> None:
        self._min_interval = 60.0 / requests_per_minute if requests_per_minute > 0 else 0.0
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def wait(self) -> None:
        """Block until the caller may issue its next request."""
        if self._min_interval <= 0:
            return
        # The lock serialises waiters so each one observes the previous
        # waiter's timestamp, not a stale one.
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if self._last_request_time > 0 and elapsed < self._min_interval:
                delay = self._min_interval - elapsed
                _logger.debug("rate_limit_wait", delay_s=round(delay, 3))
                await asyncio.sleep(delay)
            self._last_request_time = time.monotonic()


class KeyedLocks:
    """Lazily created ``asyncio.Lock`` per key."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Async context manager that holds the lock for *key*."""
        async with self.get(key):
            yield

    def discard(self, key: str) -> None:
        """Forget the lock for *key* if nobody holds it."""
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
