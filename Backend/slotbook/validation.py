"""
Input normalization and validation helpers.

The normalized phone (exactly 10 digits) is the requester's identity key for
duplicate detection, the concurrency guard and cancellation ownership.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

from .core.config import Settings
from .core.errors import BookingValidationError

PHONE_DIGITS = 10
MIN_NAME_LENGTH = 2

_NON_DIGITS = re.compile(r"\D")
_ANGLE_BRACKETS = re.compile(r"[<>]")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_phone(phone: Any) -> str:
    """Strip everything but digits. Non-strings normalize to ""."""
    if not phone or not isinstance(phone, str):
        return ""
    return _NON_DIGITS.sub("", phone)


def is_valid_phone(phone: Any) -> bool:
    return len(normalize_phone(phone)) == PHONE_DIGITS


def normalize_email(email: Optional[str]) -> str:
    if not email:
        return ""
    return email.strip().lower()


def is_valid_email(email: Optional[str], max_length: int = 254) -> bool:
    """Empty is valid (email is optional); otherwise basic shape + length."""
    if not email:
        return True
    return bool(_EMAIL.match(email)) and len(email) <= max_length


def sanitize_input(value: Any, max_length: int) -> str:
    """Trim, drop angle brackets, and truncate to `max_length`."""
    if value is None or value == "":
        return ""
    return _ANGLE_BRACKETS.sub("", str(value).strip())[:max_length]


def coerce_row_id(value: Any) -> Optional[int]:
    """Positive integral number as an int (JSON may send 3.0 for 3), else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and value > 0:
        return value
    return None


@dataclass
class BookingRequest:
    """A booking request that passed validation, with every field sanitized."""

    name: str
    phone: str
    email: str
    category: str
    notes: str
    slot_ids: list[int] = field(default_factory=list)


def validate_booking_request(
    settings: Settings,
    *,
    name: Any = None,
    phone: Any = None,
    email: Any = None,
    category: Any = None,
    notes: Any = None,
    slot_ids: Any = None,
) -> BookingRequest:
    """
    Validate and sanitize a booking request.

    Collects every problem before failing so the client can fix them all at
    once. Raises BookingValidationError; never touches the store.
    """
    errors: list[str] = []

    clean_name = sanitize_input(name, settings.max_name_length)
    if len(clean_name) < MIN_NAME_LENGTH:
        errors.append(
            f"Name is required (min {MIN_NAME_LENGTH}, max {settings.max_name_length} characters)."
        )

    if (
        not isinstance(phone, str)
        or len(phone) > settings.max_phone_length
        or not is_valid_phone(phone)
    ):
        errors.append("Valid 10-digit phone number is required.")

    if email and (not isinstance(email, str) or not is_valid_email(email.strip(), settings.max_email_length)):
        errors.append("Invalid email address.")

    if (
        not isinstance(category, str)
        or not category.strip()
        or len(category) > settings.max_category_length
    ):
        errors.append("Valid category selection is required.")

    if notes and (not isinstance(notes, str) or len(notes) > settings.max_notes_length):
        errors.append(f"Notes must be less than {settings.max_notes_length} characters.")

    if not isinstance(slot_ids, list) or not slot_ids:
        errors.append("At least one slot must be selected.")
    else:
        if len(slot_ids) > settings.max_slots_per_booking:
            errors.append(f"Only up to {settings.max_slots_per_booking} slots allowed.")
        row_ids = [coerce_row_id(slot_id) for slot_id in slot_ids]
        if None in row_ids:
            errors.append("Invalid slot IDs provided.")
        elif len(set(row_ids)) != len(row_ids):
            errors.append("Duplicate slot IDs provided.")

    if errors:
        raise BookingValidationError(errors)

    return BookingRequest(
        name=clean_name,
        phone=normalize_phone(phone),
        email=normalize_email(sanitize_input(email, settings.max_email_length)),
        category=sanitize_input(category, settings.max_category_length),
        notes=sanitize_input(notes, settings.max_notes_length),
        slot_ids=[coerce_row_id(slot_id) for slot_id in slot_ids],
    )


def require_valid_phone(phone: Any) -> str:
    """Return the normalized phone or raise BookingValidationError."""
    if not isinstance(phone, str) or not is_valid_phone(phone):
        raise BookingValidationError("Invalid 10-digit phone number.")
    return normalize_phone(phone)
