"""
Cancellation Processor

Cancels one signup on behalf of the phone that made it:

    1. read the signup row and the slot row in parallel
    2. 404 if the signup is absent, 403 if the phone doesn't match,
       409 if it is already cancelled
    3. one batch_update: status -> "CANCELLED:<now>", slot taken -> max(0, taken - 1)
    4. invalidate the availability cache

No concurrency guard: re-cancelling fails cleanly and a caller can only
touch signups owned by their own phone.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from .availability_cache import AvailabilityCache
from .core.errors import (
    AlreadyCancelledError,
    BookingValidationError,
    NotFoundError,
    OwnershipError,
    StoreError,
)
from .models import Signup, SignupColumn, SignupId, SignupStatus, Slot, SlotColumn, SlotId
from .sheets import SIGNUPS_TABLE, SLOTS_TABLE, Mutation, RowRange, RowStore, UpdateCell
from .validation import coerce_row_id, require_valid_phone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancellationResult:
    signup_id: SignupId
    slot_id: SlotId
    date: str
    label: str
    new_taken: int

    def cancelled_slot(self) -> dict:
        return {"slotRowId": self.slot_id, "date": self.date, "slotLabel": self.label}


class CancellationProcessor:
    def __init__(
        self,
        store: RowStore,
        cache: AvailabilityCache,
        now: Callable[[], datetime] = None,
    ):
        self.store = store
        self.cache = cache
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def cancel(self, *, signup_row_id: Any, slot_row_id: Any, phone: Any) -> CancellationResult:
        if not signup_row_id or not slot_row_id or not phone:
            raise BookingValidationError("Missing signupRowId, slotRowId, or phone.")
        signup_number = coerce_row_id(signup_row_id)
        slot_number = coerce_row_id(slot_row_id)
        if signup_number is None or slot_number is None:
            raise BookingValidationError("Invalid signupRowId or slotRowId.")
        normalized_phone = require_valid_phone(phone)

        signup_id = SignupId(signup_number)
        slot_id = SlotId(slot_number)

        try:
            signup_rows, slot_rows = await asyncio.gather(
                self.store.get(RowRange(SIGNUPS_TABLE, signup_id)),
                self.store.get(RowRange(SLOTS_TABLE, slot_id)),
            )
        except StoreError as e:
            logger.error(f"Cancel read failed for signup {signup_id}: {e}")
            raise StoreError("Cancellation failed. Please try again.") from e

        signup = Signup.from_row(signup_id, signup_rows[0] if signup_rows else None)
        if signup is None:
            raise NotFoundError("Booking not found.")
        if signup.normalized_phone != normalized_phone:
            logger.warning(f"Cancel rejected for signup {signup_id}: phone mismatch")
            raise OwnershipError()
        if signup.status.is_cancelled:
            raise AlreadyCancelledError()
        if signup.slot_id is not None and signup.slot_id != slot_id:
            raise BookingValidationError("Slot does not match booking.")

        mutations: list[Mutation] = [
            UpdateCell(
                SIGNUPS_TABLE,
                signup_id,
                int(SignupColumn.STATUS),
                SignupStatus.cancelled(self._now()).serialize(),
            )
        ]

        slot = Slot.from_row(slot_id, slot_rows[0] if slot_rows else None)
        new_taken = 0
        if slot is None:
            # Slot row was removed or is malformed; release the signup without
            # writing a count into a row that no longer describes a slot.
            logger.warning(f"Cancelling signup {signup_id}: slot {slot_id} not found, taken left untouched")
        else:
            new_taken = max(0, slot.taken - 1)
            mutations.append(UpdateCell(SLOTS_TABLE, slot_id, int(SlotColumn.TAKEN), new_taken))

        try:
            await self.store.batch_update(mutations)
        except StoreError as e:
            logger.error(f"Cancel write failed for signup {signup_id}: {e}")
            raise StoreError("Cancellation failed. Please try again.") from e

        self.cache.invalidate()
        logger.info(f"Cancellation successful: signup {signup_id}, slot {slot_id}, taken -> {new_taken}")
        return CancellationResult(
            signup_id=signup_id,
            slot_id=slot_id,
            date=signup.date or (slot.date if slot else ""),
            label=signup.slot_label or (slot.label if slot else ""),
            new_taken=new_taken,
        )
