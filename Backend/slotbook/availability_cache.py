"""
Availability Cache

Process-wide, time-boxed snapshot of the grouped availability listing.
Populated on read-miss by the Availability Reader and cleared wholesale
after every successful booking, cancellation or admin write, so the next
listing always reflects the write.

One instance per process, owned by the app (see main.py) and passed to the
services that need it. Not shared across replicas.

Usage:
    cache = AvailabilityCache(ttl_seconds=30)
    listing = cache.get()
    if listing is None:
        generation = cache.generation
        listing = await build_listing()
        cache.set(listing, generation=generation)  # dropped if invalidated meanwhile
"""

import logging
import threading
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class AvailabilityCache:
    """Single-entry cache with a fixed TTL measured from the last `set`."""

    DEFAULT_TTL_SECONDS = 30.0

    def __init__(self, ttl_seconds: float = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds or self.DEFAULT_TTL_SECONDS
        self._clock = clock
        self._lock = threading.Lock()
        self._payload: Optional[Any] = None
        self._expires_at = 0.0
        # Bumped by every invalidate(); lets a reader detect a write that
        # landed while it was fetching.
        self._generation = 0

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self) -> Optional[Any]:
        """Return the cached payload, or None when empty or expired."""
        with self._lock:
            if self._payload is not None and self._clock() < self._expires_at:
                logger.debug("Availability cache HIT")
                return self._payload
            if self._payload is not None:
                # Expired: drop it so the stale payload isn't held in memory.
                self._payload = None
                self._expires_at = 0.0
        logger.debug("Availability cache MISS")
        return None

    def set(self, payload: Any, generation: Optional[int] = None) -> bool:
        """
        Store `payload`. When `generation` is given and an invalidation has
        happened since it was read, the payload is stale and is dropped.

        Returns True if the payload was stored.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug("Availability cache SKIPPED stale payload")
                return False
            self._payload = payload
            self._expires_at = self._clock() + self.ttl_seconds
        logger.debug("Availability cache UPDATED")
        return True

    def invalidate(self) -> None:
        with self._lock:
            self._generation += 1
            self._payload = None
            self._expires_at = 0.0
        logger.info("Availability cache INVALIDATED")
