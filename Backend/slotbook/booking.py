"""
Booking Allocator

Turns a validated booking request into one all-or-nothing batch mutation:

    1. hold a concurrency permit for the requester's normalized phone
    2. re-read every requested slot row and the full signups table (in parallel,
       bypassing the availability cache)
    3. classify each slot in request order: not found -> duplicate -> full -> bookable
    4. any conflict rejects the whole request, nothing is written
    5. otherwise append one ACTIVE signup per slot and set each slot's `taken`
       to its re-read value + 1, all in a single batch_update call
    6. invalidate the availability cache

Known limitation: the read in (2) and the write in (5) are separate store
calls. Two requesters booking the last seat of the same slot concurrently can
both read `taken = capacity - 1`, both write `taken = capacity`, and both get
a signup. The per-phone concurrency guard narrows this for a single
requester only.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Sequence
from zoneinfo import ZoneInfo

from .availability_cache import AvailabilityCache
from .concurrency_guard import ConcurrencyGuard
from .core.config import Settings
from .core.errors import BookingConflictError, StoreError
from .models import (
    Signup,
    SignupStatus,
    Slot,
    SlotColumn,
    SlotId,
    signups_from_rows,
)
from .sheets import (
    SIGNUPS_TABLE,
    SLOTS_TABLE,
    Mutation,
    RowRange,
    RowStore,
    UpdateCell,
    append_rows,
)
from .validation import BookingRequest, validate_booking_request

logger = logging.getLogger(__name__)


class ConflictReason(str, Enum):
    NOT_FOUND = "Slot not found"
    ALREADY_BOOKED = "Already booked"
    FULL = "Slot is full"


@dataclass(frozen=True)
class SlotDecision:
    """Write-time verdict for one requested slot."""

    slot_id: SlotId
    slot: Optional[Slot] = None
    reason: Optional[ConflictReason] = None

    @property
    def is_bookable(self) -> bool:
        return self.reason is None

    @property
    def new_taken(self) -> Optional[int]:
        if not self.is_bookable:
            return None
        return self.slot.taken + 1

    def to_dict(self) -> dict:
        data = {
            "slotId": self.slot_id,
            "date": self.slot.date if self.slot else "Unknown",
            "label": self.slot.label if self.slot else "Unknown",
            "status": "valid" if self.is_bookable else "conflict",
            "reason": self.reason.value if self.reason else None,
        }
        if self.reason is ConflictReason.FULL:
            data["capacity"] = self.slot.capacity
            data["taken"] = self.slot.taken
        return data


@dataclass
class BookingResult:
    booked: list[Slot] = field(default_factory=list)

    @property
    def message(self) -> str:
        count = len(self.booked)
        return f"Booked {count} slot{'' if count == 1 else 's'} successfully!"

    def booked_slots(self) -> list[dict]:
        return [
            {"slotRowId": slot.id, "date": slot.date, "slotLabel": slot.label}
            for slot in self.booked
        ]


def classify_slots(
    slot_ids: Sequence[SlotId],
    slot_rows: Sequence[Sequence[Sequence[Any]]],
    signups: Sequence[Signup],
    phone: str,
) -> list[SlotDecision]:
    """
    Classify each requested slot against freshly read data.

    `slot_rows[i]` is the batch_get result for `slot_ids[i]`. `phone` is
    already normalized. Capacity uses `taken >= capacity`, so a slot at
    exactly its capacity is full.
    """
    already_booked = {
        s.slot_id
        for s in signups
        if s.status.is_active and s.slot_id is not None and s.normalized_phone == phone
    }

    decisions = []
    for slot_id, rows in zip(slot_ids, slot_rows):
        slot = Slot.from_row(slot_id, rows[0] if rows else None)
        if slot is None:
            decisions.append(SlotDecision(slot_id, reason=ConflictReason.NOT_FOUND))
        elif slot_id in already_booked:
            decisions.append(SlotDecision(slot_id, slot, ConflictReason.ALREADY_BOOKED))
        elif slot.is_full:
            decisions.append(SlotDecision(slot_id, slot, ConflictReason.FULL))
        else:
            decisions.append(SlotDecision(slot_id, slot))
    return decisions


def build_booking_mutations(
    decisions: Sequence[SlotDecision],
    request: BookingRequest,
    timestamp: str,
) -> list[Mutation]:
    """One append for all signup rows plus one `taken` update per slot."""
    signup_rows = [
        Signup(
            id=None,
            timestamp=timestamp,
            date=d.slot.date,
            slot_label=d.slot.label,
            name=request.name,
            email=request.email,
            phone=request.phone,
            category=request.category,
            notes=request.notes,
            slot_id=d.slot_id,
            status=SignupStatus.active(),
        ).to_row()
        for d in decisions
    ]
    mutations: list[Mutation] = [append_rows(SIGNUPS_TABLE, signup_rows)]
    mutations.extend(
        UpdateCell(SLOTS_TABLE, d.slot_id, int(SlotColumn.TAKEN), d.new_taken)
        for d in decisions
    )
    return mutations


class BookingAllocator:
    def __init__(
        self,
        store: RowStore,
        cache: AvailabilityCache,
        guard: ConcurrencyGuard,
        settings: Settings,
        now: Callable[[], datetime] = None,
    ):
        self.store = store
        self.cache = cache
        self.guard = guard
        self.settings = settings
        tz = ZoneInfo(settings.timezone)
        self._now = now or (lambda: datetime.now(tz))

    async def book(
        self,
        *,
        name: Any = None,
        phone: Any = None,
        email: Any = None,
        category: Any = None,
        notes: Any = None,
        slot_ids: Any = None,
    ) -> BookingResult:
        """Validate raw request fields, then allocate. See module docstring."""
        request = validate_booking_request(
            self.settings,
            name=name,
            phone=phone,
            email=email,
            category=category,
            notes=notes,
            slot_ids=slot_ids,
        )
        return await self.allocate(request)

    async def allocate(self, request: BookingRequest) -> BookingResult:
        async with self.guard.permit(request.phone):
            slot_ids = [SlotId(i) for i in request.slot_ids]
            try:
                slot_rows, signup_rows = await asyncio.gather(
                    self.store.batch_get([RowRange(SLOTS_TABLE, i) for i in slot_ids]),
                    self.store.get(RowRange(SIGNUPS_TABLE)),
                )
            except StoreError as e:
                logger.error(f"Booking read failed for {request.phone}: {e}")
                raise StoreError("Booking failed. Please try again.") from e

            decisions = classify_slots(slot_ids, slot_rows, signups_from_rows(signup_rows), request.phone)
            conflicts = [d for d in decisions if not d.is_bookable]
            if conflicts:
                bookable = len(decisions) - len(conflicts)
                logger.info(
                    f"Booking conflicts for {request.phone}: {len(conflicts)}/{len(decisions)} "
                    f"({', '.join(f'{d.slot_id}={d.reason.value}' for d in conflicts)})"
                )
                raise BookingConflictError([d.to_dict() for d in decisions], valid_slots=bookable)

            timestamp = self._now().isoformat(timespec="seconds")
            mutations = build_booking_mutations(decisions, request, timestamp)
            try:
                await self.store.batch_update(mutations)
            except StoreError as e:
                logger.error(f"Booking write failed for {request.phone}: {e}")
                raise StoreError("Booking failed. Please try again.") from e

            self.cache.invalidate()
            logger.info(f"Booking successful for {request.phone}: {len(decisions)} slots")
            return BookingResult(booked=[d.slot for d in decisions])
