"""
Availability Reader

Serves the grouped listing of open, upcoming slots (through the
Availability Cache) and requester history lookups (always live).

Listing rules:
- malformed rows (blank date/label, non-positive capacity, non-ISO date) are dropped
- only slots dated today-or-later (in the configured time zone) with
  `available > 0` are listed
- dates ascend; slots within a date sort by label
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from .availability_cache import AvailabilityCache
from .core.errors import StoreError
from .models import Signup, Slot, signups_from_rows, slots_from_rows
from .sheets import SIGNUPS_TABLE, SLOTS_TABLE, RowRange, RowStore
from .validation import normalize_email, normalize_phone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityListing:
    """Open slots grouped by ISO date, in display order."""

    dates: dict[str, tuple[Slot, ...]] = field(default_factory=dict)

    @property
    def slot_count(self) -> int:
        return sum(len(slots) for slots in self.dates.values())

    def find(self, slot_id: int) -> Optional[Slot]:
        for slots in self.dates.values():
            for slot in slots:
                if slot.id == slot_id:
                    return slot
        return None

    def to_dict(self) -> dict:
        return {day: [slot.to_dict() for slot in slots] for day, slots in self.dates.items()}


def _slot_day(slot: Slot) -> Optional[date]:
    try:
        return date.fromisoformat(slot.date)
    except ValueError:
        return None


def group_open_slots(slots: list[Slot], today: date) -> AvailabilityListing:
    grouped: dict[str, list[Slot]] = {}
    for slot in slots:
        day = _slot_day(slot)
        if day is None:
            logger.debug(f"Skipping slot {slot.id}: unparseable date {slot.date!r}")
            continue
        if day < today or slot.available <= 0:
            continue
        grouped.setdefault(day.isoformat(), []).append(slot)

    return AvailabilityListing(
        dates={
            day: tuple(sorted(grouped[day], key=lambda s: s.label))
            for day in sorted(grouped)
        }
    )


class AvailabilityReader:
    def __init__(
        self,
        store: RowStore,
        cache: AvailabilityCache,
        timezone: str = "America/New_York",
        now: Callable[[], datetime] = None,
    ):
        self.store = store
        self.cache = cache
        self.tz = ZoneInfo(timezone)
        self._now = now or (lambda: datetime.now(self.tz))

    def today(self) -> date:
        return self._now().date()

    async def fetch_slots(self) -> list[Slot]:
        """Every well-formed slot row, unfiltered. Always live."""
        rows = await self.store.get(RowRange(SLOTS_TABLE))
        logger.info(f"Fetched {len(rows)} slot rows")
        return slots_from_rows(rows)

    async def fetch_signups(self) -> list[Signup]:
        rows = await self.store.get(RowRange(SIGNUPS_TABLE))
        return signups_from_rows(rows)

    async def list_available(self) -> AvailabilityListing:
        cached = self.cache.get()
        if cached is not None:
            return cached

        generation = self.cache.generation
        try:
            slots = await self.fetch_slots()
        except StoreError as e:
            logger.error(f"Slots fetch failed: {e}")
            raise StoreError("Slots not available.") from e

        listing = group_open_slots(slots, self.today())
        logger.info(f"Grouped {listing.slot_count} open slots into {len(listing.dates)} dates")
        self.cache.set(listing, generation=generation)
        return listing

    async def _lookup(self, matches: Callable[[Signup], bool]) -> list[Signup]:
        try:
            signups = await self.fetch_signups()
        except StoreError as e:
            logger.error(f"Signup lookup failed: {e}")
            raise StoreError("Failed to fetch bookings.") from e
        return [s for s in signups if s.status.is_active and matches(s)]

    async def lookup_by_phone(self, phone: str) -> list[Signup]:
        """Active signups for a phone, compared in normalized form. No cache, no cap."""
        normalized = normalize_phone(phone)
        bookings = await self._lookup(lambda s: s.normalized_phone == normalized)
        logger.info(f"Found {len(bookings)} active bookings for {normalized}")
        return bookings

    async def lookup_by_email(self, email: str) -> list[Signup]:
        normalized = normalize_email(email)
        return await self._lookup(lambda s: normalize_email(s.email) == normalized)
