"""
Cancellation Processor: ownership, idempotence and capacity release.
"""
from datetime import datetime, timezone

import pytest

from conftest import FUTURE_DAY, OTHER_PHONE, PHONE, signup_row
from slotbook.availability_cache import AvailabilityCache
from slotbook.cancellation import CancellationProcessor
from slotbook.core.errors import (
    AlreadyCancelledError,
    BookingValidationError,
    NotFoundError,
    OwnershipError,
    StoreError,
)
from slotbook.models import SignupStatus, signups_from_rows
from slotbook.sheets import SIGNUPS_TABLE, SLOTS_TABLE, InMemoryRowStore

NOW = datetime(2099, 1, 6, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryRowStore({
        SLOTS_TABLE.name: [
            [FUTURE_DAY, "10:00 AM - 11:00 AM", 2, 2],
            [FUTURE_DAY, "11:00 AM - 12:00 PM", 2, 0],
        ],
        SIGNUPS_TABLE.name: [
            signup_row(1, phone="555-123-4567"),
            signup_row(1, phone=OTHER_PHONE),
            signup_row(2, phone=PHONE, label="11:00 AM - 12:00 PM"),
            signup_row(9, phone=PHONE, label="Removed slot"),
        ],
    })


@pytest.fixture
def cache():
    cache = AvailabilityCache()
    cache.set("listing")
    return cache


@pytest.fixture
def canceller(store, cache):
    return CancellationProcessor(store, cache, now=lambda: NOW)


def status_of(store, signup_id):
    return signups_from_rows(store.rows(SIGNUPS_TABLE))[signup_id - 1].status


def taken(store, slot_id):
    return store.rows(SLOTS_TABLE)[slot_id - 1][3]


@pytest.mark.asyncio
async def test_cancel_flips_status_and_releases_seat(store, cache, canceller):
    result = await canceller.cancel(signup_row_id=1, slot_row_id=1, phone="(555) 123-4567")

    assert result.new_taken == 1
    assert result.cancelled_slot() == {
        "slotRowId": 1,
        "date": FUTURE_DAY,
        "slotLabel": "10:00 AM - 11:00 AM",
    }
    assert status_of(store, 1) == SignupStatus.cancelled(NOW)
    assert store.rows(SIGNUPS_TABLE)[0][9] == "CANCELLED:2099-01-06T15:00:00+00:00"
    assert taken(store, 1) == 1
    assert len(store.applied_batches) == 1
    assert cache.get() is None


@pytest.mark.asyncio
async def test_taken_never_goes_negative(store, canceller):
    # Slot 2 records taken = 0 even though signup 3 is active.
    result = await canceller.cancel(signup_row_id=3, slot_row_id=2, phone=PHONE)
    assert result.new_taken == 0
    assert taken(store, 2) == 0


@pytest.mark.asyncio
async def test_second_cancel_fails_and_does_not_decrement_again(store, canceller):
    await canceller.cancel(signup_row_id=1, slot_row_id=1, phone=PHONE)

    with pytest.raises(AlreadyCancelledError) as exc_info:
        await canceller.cancel(signup_row_id=1, slot_row_id=1, phone=PHONE)

    assert exc_info.value.status_code == 409
    assert taken(store, 1) == 1
    assert len(store.applied_batches) == 1


@pytest.mark.asyncio
async def test_phone_mismatch_is_forbidden(store, cache, canceller):
    with pytest.raises(OwnershipError) as exc_info:
        await canceller.cancel(signup_row_id=2, slot_row_id=1, phone=PHONE)

    assert exc_info.value.status_code == 403
    assert store.applied_batches == []
    assert status_of(store, 2).is_active
    assert cache.get() == "listing"


@pytest.mark.asyncio
async def test_missing_signup(canceller):
    with pytest.raises(NotFoundError) as exc_info:
        await canceller.cancel(signup_row_id=40, slot_row_id=1, phone=PHONE)
    assert exc_info.value.message == "Booking not found."


@pytest.mark.asyncio
async def test_slot_must_match_booking(store, canceller):
    with pytest.raises(BookingValidationError) as exc_info:
        await canceller.cancel(signup_row_id=1, slot_row_id=2, phone=PHONE)
    assert exc_info.value.message == "Slot does not match booking."
    assert store.applied_batches == []


@pytest.mark.asyncio
async def test_removed_slot_still_cancels_signup(store, canceller):
    result = await canceller.cancel(signup_row_id=4, slot_row_id=9, phone=PHONE)

    assert status_of(store, 4).is_cancelled
    assert result.label == "Removed slot"
    # Only the status cell was written; no row was materialized for slot 9.
    assert len(store.applied_batches[0]) == 1
    assert len(store.rows(SLOTS_TABLE)) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "fields, message",
    [
        ({"signup_row_id": None, "slot_row_id": 1, "phone": PHONE}, "Missing signupRowId, slotRowId, or phone."),
        ({"signup_row_id": 1, "slot_row_id": 1, "phone": ""}, "Missing signupRowId, slotRowId, or phone."),
        ({"signup_row_id": "1", "slot_row_id": 1, "phone": PHONE}, "Invalid signupRowId or slotRowId."),
        ({"signup_row_id": 1, "slot_row_id": -1, "phone": PHONE}, "Invalid signupRowId or slotRowId."),
        ({"signup_row_id": 1, "slot_row_id": 1, "phone": "555"}, "Invalid 10-digit phone number."),
    ],
)
async def test_input_is_validated_before_store_access(store, canceller, fields, message):
    with pytest.raises(BookingValidationError) as exc_info:
        await canceller.cancel(**fields)
    assert exc_info.value.message == message
    assert store.applied_batches == []


@pytest.mark.asyncio
async def test_store_failure_is_reported(cache):
    class FailingWriteStore(InMemoryRowStore):
        async def batch_update(self, mutations):
            raise StoreError("Row store unavailable")

    store = FailingWriteStore({
        SLOTS_TABLE.name: [[FUTURE_DAY, "10 AM", 2, 1]],
        SIGNUPS_TABLE.name: [signup_row(1)],
    })
    with pytest.raises(StoreError) as exc_info:
        await CancellationProcessor(store, cache).cancel(signup_row_id=1, slot_row_id=1, phone=PHONE)

    assert exc_info.value.message == "Cancellation failed. Please try again."
    assert cache.get() == "listing"


@pytest.mark.asyncio
async def test_integral_float_ids_are_accepted(store, canceller):
    result = await canceller.cancel(signup_row_id=1.0, slot_row_id=1.0, phone=PHONE)
    assert result.slot_id == 1
    assert type(result.slot_id) is int
    assert status_of(store, 1).is_cancelled
    assert taken(store, 1) == 1
