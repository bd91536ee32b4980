import asyncio

import pytest

from slotbook.concurrency_guard import ConcurrencyGuard
from slotbook.core.errors import RateLimitedError


def test_ceiling_is_per_identity():
    guard = ConcurrencyGuard(max_concurrent=2)
    assert guard.try_acquire("5551234567")
    assert guard.try_acquire("5551234567")
    assert not guard.try_acquire("5551234567")
    # A rejected attempt holds no permit.
    assert guard.active("5551234567") == 2
    assert guard.try_acquire("5559876543")


def test_release_returns_counter_to_zero():
    guard = ConcurrencyGuard(max_concurrent=2)
    guard.try_acquire("5551234567")
    guard.try_acquire("5551234567")
    guard.release("5551234567")
    guard.release("5551234567")
    assert guard.active("5551234567") == 0
    assert guard.total_active() == 0


def test_release_without_permit_does_not_go_negative():
    guard = ConcurrencyGuard()
    guard.release("5551234567")
    assert guard.active("5551234567") == 0


@pytest.mark.asyncio
async def test_permit_releases_on_error():
    guard = ConcurrencyGuard(max_concurrent=1)
    with pytest.raises(ValueError):
        async with guard.permit("5551234567"):
            raise ValueError("boom")
    assert guard.total_active() == 0


@pytest.mark.asyncio
async def test_excess_simultaneous_permits_are_rate_limited():
    guard = ConcurrencyGuard(max_concurrent=3)
    release = asyncio.Event()

    async def attempt():
        async with guard.permit("5551234567"):
            await release.wait()

    holders = [asyncio.create_task(attempt()) for _ in range(3)]
    await asyncio.sleep(0)
    assert guard.active("5551234567") == 3

    with pytest.raises(RateLimitedError) as exc_info:
        async with guard.permit("5551234567"):
            pass
    assert exc_info.value.status_code == 429

    release.set()
    await asyncio.gather(*holders)
    assert guard.total_active() == 0
