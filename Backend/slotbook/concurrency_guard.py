"""
Concurrency Guard

Bounds how many booking attempts a single requester (normalized phone) may
have in flight at once. This shrinks, but does not close, the window in
which one requester's overlapping read-then-write attempts race each other.
It does nothing about different requesters racing on the same slot.

Counters are per process; horizontal scaling weakens the ceiling.

Usage:
    guard = ConcurrencyGuard(max_concurrent=3)
    async with guard.permit(phone):
        ...  # raises RateLimitedError when the ceiling is reached
"""

import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator

from .core.errors import RateLimitedError

logger = logging.getLogger(__name__)


class ConcurrencyGuard:
    DEFAULT_MAX_CONCURRENT = 3

    def __init__(self, max_concurrent: int = None):
        self.max_concurrent = max_concurrent or self.DEFAULT_MAX_CONCURRENT
        self._lock = threading.Lock()
        self._active: dict[str, int] = {}

    def try_acquire(self, identity: str) -> bool:
        """Take a permit for `identity`; False (and no permit held) at the ceiling."""
        with self._lock:
            count = self._active.get(identity, 0)
            if count >= self.max_concurrent:
                logger.warning(f"[CONCURRENCY] Rejected attempt for {identity}: {count}/{self.max_concurrent} in flight")
                return False
            self._active[identity] = count + 1
        logger.debug(f"[CONCURRENCY] Active attempts for {identity}: {count + 1}")
        return True

    def release(self, identity: str) -> None:
        with self._lock:
            count = self._active.get(identity, 0)
            if count <= 1:
                # Drop zeroed entries so the map only holds in-flight identities.
                self._active.pop(identity, None)
            else:
                self._active[identity] = count - 1

    def active(self, identity: str) -> int:
        with self._lock:
            return self._active.get(identity, 0)

    def total_active(self) -> int:
        with self._lock:
            return sum(self._active.values())

    @asynccontextmanager
    async def permit(self, identity: str) -> AsyncIterator[None]:
        """Hold a permit for the duration of the block; released on every exit path."""
        if not self.try_acquire(identity):
            raise RateLimitedError("Too many concurrent requests.")
        try:
            yield
        finally:
            self.release(identity)
