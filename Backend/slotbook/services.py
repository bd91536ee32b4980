"""
Process-wide service wiring.

The availability cache, concurrency guard, rate limiter and row store are
constructed once per app and shared by reference; tests build their own
`Services` per case for isolation.
"""

from dataclasses import dataclass

from fastapi import Request

from .admin import SlotAdmin
from .availability import AvailabilityReader
from .availability_cache import AvailabilityCache
from .booking import BookingAllocator
from .cancellation import CancellationProcessor
from .concurrency_guard import ConcurrencyGuard
from .core.config import Settings
from .rate_limiter import RateLimiter
from .sheets import RowStore


@dataclass
class Services:
    settings: Settings
    store: RowStore
    cache: AvailabilityCache
    guard: ConcurrencyGuard
    rate_limiter: RateLimiter
    reader: AvailabilityReader
    allocator: BookingAllocator
    canceller: CancellationProcessor
    admin: SlotAdmin

    @classmethod
    def build(cls, settings: Settings, store: RowStore) -> "Services":
        cache = AvailabilityCache(ttl_seconds=settings.cache_ttl_seconds)
        guard = ConcurrencyGuard(max_concurrent=settings.max_concurrent_bookings)
        reader = AvailabilityReader(store, cache, timezone=settings.timezone)
        return cls(
            settings=settings,
            store=store,
            cache=cache,
            guard=guard,
            rate_limiter=RateLimiter(
                max_requests=settings.rate_limit_max_requests,
                window_seconds=settings.rate_limit_window_seconds,
            ),
            reader=reader,
            allocator=BookingAllocator(store, cache, guard, settings),
            canceller=CancellationProcessor(store, cache),
            admin=SlotAdmin(store, cache, reader),
        )


def get_services(request: Request) -> Services:
    return request.app.state.services
