"""
Domain records for slots and signups.

Rows come back from the row store as lists of cells (strings or numbers).
Each record is parsed once at the boundary via `from_row` and serialized once
via `to_row`; business logic only ever sees the typed records below.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, NewType, Optional, Sequence

from .validation import normalize_phone

# Stable record identifiers. These are 1-based record numbers within a table;
# translating them to physical sheet rows (header offset) is the gateway's job.
SlotId = NewType("SlotId", int)
SignupId = NewType("SignupId", int)


class SlotColumn(IntEnum):
    DATE = 0
    LABEL = 1
    CAPACITY = 2
    TAKEN = 3
    NOTES = 4


class SignupColumn(IntEnum):
    TIMESTAMP = 0
    DATE = 1
    SLOT_LABEL = 2
    NAME = 3
    EMAIL = 4
    PHONE = 5
    CATEGORY = 6
    NOTES = 7
    SLOT_ROW_ID = 8
    STATUS = 9


SLOT_WIDTH = len(SlotColumn)
SIGNUP_WIDTH = len(SignupColumn)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_int(value: Any) -> int:
    """Lenient integer parse: numbers pass through, strings use their leading digits, else 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        if match:
            return int(match.group(1))
    return 0


def _cell(row: Sequence[Any], index: int) -> Any:
    return row[index] if index < len(row) else ""


def _text(row: Sequence[Any], index: int) -> str:
    value = _cell(row, index)
    return "" if value is None else str(value).strip()


# ────────────────────────────────────────────────────────────────
# Signup status
# ────────────────────────────────────────────────────────────────

class SignupState(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class SignupStatus:
    """
    Parsed form of the status cell.

    Stored as "ACTIVE" (or blank, or anything starting with "ACTIVE") and
    "CANCELLED:<ISO timestamp>". Anything else is kept verbatim as UNKNOWN.
    """

    state: SignupState
    cancelled_at: Optional[str] = None
    raw: str = ""

    @classmethod
    def active(cls) -> "SignupStatus":
        return cls(SignupState.ACTIVE, raw=SignupState.ACTIVE.value)

    @classmethod
    def cancelled(cls, at: datetime) -> "SignupStatus":
        stamp = at.isoformat()
        return cls(SignupState.CANCELLED, cancelled_at=stamp, raw=f"CANCELLED:{stamp}")

    @classmethod
    def parse(cls, raw: Any) -> "SignupStatus":
        text = "" if raw is None else str(raw).strip()
        if not text or text.startswith(SignupState.ACTIVE.value):
            return cls(SignupState.ACTIVE, raw=text)
        if text.startswith(SignupState.CANCELLED.value):
            _, _, stamp = text.partition(":")
            return cls(SignupState.CANCELLED, cancelled_at=stamp or None, raw=text)
        return cls(SignupState.UNKNOWN, raw=text)

    @property
    def is_active(self) -> bool:
        return self.state is SignupState.ACTIVE

    @property
    def is_cancelled(self) -> bool:
        return self.state is SignupState.CANCELLED

    def serialize(self) -> str:
        if self.state is SignupState.ACTIVE:
            return SignupState.ACTIVE.value
        if self.state is SignupState.CANCELLED:
            return f"CANCELLED:{self.cancelled_at}" if self.cancelled_at else SignupState.CANCELLED.value
        return self.raw


# ────────────────────────────────────────────────────────────────
# Slot
# ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Slot:
    """A bookable time window. `taken` is clamped into [0, capacity] on parse."""

    id: SlotId
    date: str
    label: str
    capacity: int
    taken: int

    @classmethod
    def from_row(cls, slot_id: SlotId, row: Optional[Sequence[Any]]) -> Optional["Slot"]:
        """Parse a slot row; returns None for blank or malformed rows."""
        if not row:
            return None
        date = _text(row, SlotColumn.DATE)
        label = _text(row, SlotColumn.LABEL)
        capacity = parse_int(_cell(row, SlotColumn.CAPACITY))
        if not date or not label or capacity <= 0:
            return None
        taken = min(max(0, parse_int(_cell(row, SlotColumn.TAKEN))), capacity)
        return cls(id=slot_id, date=date, label=label, capacity=capacity, taken=taken)

    @staticmethod
    def new_row(date: str, label: str, capacity: int) -> list[Any]:
        return [date, label, capacity, 0, ""]

    @property
    def available(self) -> int:
        return max(0, self.capacity - self.taken)

    @property
    def is_full(self) -> bool:
        return self.taken >= self.capacity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.date,
            "slotLabel": self.label,
            "capacity": self.capacity,
            "taken": self.taken,
            "available": self.available,
        }


# ────────────────────────────────────────────────────────────────
# Signup
# ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Signup:
    """One reserved seat in one slot. Only `status` changes after creation."""

    id: Optional[SignupId]
    timestamp: str
    date: str
    slot_label: str
    name: str
    email: str
    phone: str
    category: str
    notes: str
    slot_id: Optional[SlotId]
    status: SignupStatus

    @classmethod
    def from_row(cls, signup_id: SignupId, row: Optional[Sequence[Any]]) -> Optional["Signup"]:
        if not row or not any(str(cell).strip() for cell in row if cell is not None):
            return None
        slot_row = parse_int(_cell(row, SignupColumn.SLOT_ROW_ID))
        return cls(
            id=signup_id,
            timestamp=_text(row, SignupColumn.TIMESTAMP),
            date=_text(row, SignupColumn.DATE),
            slot_label=_text(row, SignupColumn.SLOT_LABEL),
            name=_text(row, SignupColumn.NAME),
            email=_text(row, SignupColumn.EMAIL),
            phone=_text(row, SignupColumn.PHONE),
            category=_text(row, SignupColumn.CATEGORY),
            notes=_text(row, SignupColumn.NOTES),
            slot_id=SlotId(slot_row) if slot_row > 0 else None,
            status=SignupStatus.parse(_cell(row, SignupColumn.STATUS)),
        )

    @property
    def normalized_phone(self) -> str:
        return normalize_phone(self.phone)

    def to_row(self) -> list[Any]:
        return [
            self.timestamp,
            self.date,
            self.slot_label,
            self.name,
            self.email,
            self.phone,
            self.category,
            self.notes,
            self.slot_id if self.slot_id is not None else "",
            self.status.serialize(),
        ]

    def to_dict(self) -> dict:
        return {
            "signupRowId": self.id,
            "timestamp": self.timestamp,
            "date": self.date,
            "slotLabel": self.slot_label,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "category": self.category,
            "notes": self.notes,
            "slotRowId": self.slot_id,
            "status": self.status.serialize(),
        }


def slots_from_rows(rows: Sequence[Sequence[Any]]) -> list[Slot]:
    """Parse a full slots table; malformed rows are skipped but keep their ids."""
    slots = []
    for index, row in enumerate(rows):
        slot = Slot.from_row(SlotId(index + 1), row)
        if slot is not None:
            slots.append(slot)
    return slots


def signups_from_rows(rows: Sequence[Sequence[Any]]) -> list[Signup]:
    signups = []
    for index, row in enumerate(rows):
        signup = Signup.from_row(SignupId(index + 1), row)
        if signup is not None:
            signups.append(signup)
    return signups
