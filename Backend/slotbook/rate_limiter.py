"""
Rate Limiting

Per-client sliding-window limiter for the write endpoints (booking and
cancellation). Complements the Concurrency Guard: the guard bounds one
phone's simultaneous attempts, this bounds one client's request rate.

Usage:
    @router.post("/slots", dependencies=[Depends(rate_limit)])
    async def create_booking(...):
        ...
"""

import logging
import threading
import time
from collections import defaultdict
from typing import Callable, Dict, Tuple

from fastapi import Request

from .core.errors import RateLimitedError

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────
# In-Memory Rate Limiter
# ────────────────────────────────────────────────────────────────

class RateLimiter:
    """
    Simple in-memory rate limiter using a sliding window.

    Process-local; multiple replicas each enforce their own window.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # Structure: {client_id: [timestamp, ...]}
        self.requests: Dict[str, list[float]] = defaultdict(list)
        self.cleanup_interval = 300  # Cleanup every 5 minutes
        self.last_cleanup = clock()

    @staticmethod
    def client_id(request: Request) -> str:
        """
        Extract client IP from request.

        Checks X-Forwarded-For header first (for proxied requests),
        then falls back to client.host.
        """
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            # X-Forwarded-For can contain multiple IPs, take the first one
            return forwarded.split(",")[0].strip()

        if request.client:
            return request.client.host

        return "unknown"

    def _cleanup_old_requests(self, now: float) -> None:
        """Drop timestamps outside the window to prevent memory bloat."""
        if now - self.last_cleanup < self.cleanup_interval:
            return

        cutoff = now - self.window_seconds
        for client in list(self.requests.keys()):
            recent = [ts for ts in self.requests[client] if ts > cutoff]
            if recent:
                self.requests[client] = recent
            else:
                del self.requests[client]

        self.last_cleanup = now
        logger.debug(f"Rate limiter cleanup: {len(self.requests)} clients tracked")

    def check(self, client: str) -> Tuple[bool, int]:
        """
        Record a request for `client` if within the limit.

        Returns:
            (is_allowed, retry_after_seconds)
        """
        now = self._clock()
        with self._lock:
            self._cleanup_old_requests(now)
            window_start = now - self.window_seconds
            recent = [ts for ts in self.requests[client] if ts > window_start]

            if len(recent) >= self.max_requests:
                self.requests[client] = recent
                retry_after = max(1, int(min(recent) + self.window_seconds - now))
                return False, retry_after

            recent.append(now)
            self.requests[client] = recent
            return True, 0

    def clear(self, client: str = None) -> None:
        with self._lock:
            if client:
                self.requests.pop(client, None)
            else:
                self.requests.clear()


# ────────────────────────────────────────────────────────────────
# FastAPI Dependency
# ────────────────────────────────────────────────────────────────

async def rate_limit(request: Request) -> None:
    """Enforce the app's RateLimiter for the calling client."""
    limiter: RateLimiter = request.app.state.services.rate_limiter
    client = limiter.client_id(request)
    allowed, retry_after = limiter.check(client)
    if not allowed:
        logger.warning(
            f"[RATE_LIMIT] Blocked request from {client} to {request.url.path}: "
            f"limit {limiter.max_requests} per {limiter.window_seconds}s"
        )
        raise RateLimitedError(
            f"Too many requests. Limit: {limiter.max_requests} per {limiter.window_seconds}s",
            retry_after=retry_after,
        )
