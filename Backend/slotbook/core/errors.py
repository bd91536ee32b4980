"""
Error taxonomy for the booking engine.

Core services raise these; the HTTP layer only maps them to a status code
and the `{"ok": false, "error": ...}` envelope (see main.py).

    BookingValidationError  400  malformed or missing input, no store access
    UnauthorizedError       401  admin routes only
    SlotInUseError          400  admin delete of slots with active signups
    OwnershipError          403  cancellation phone mismatch
    NotFoundError           404  signup/slot row absent
    BookingConflictError    409  slot not found / duplicate / full at write time
    AlreadyCancelledError   409  signup already cancelled
    RateLimitedError        429  concurrency ceiling or request limiter
    StoreError              500  network/quota/auth failure against the row store
"""

from typing import Any, Optional


class SlotbookError(Exception):
    """Base class for every error the service reports to a client."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def payload(self) -> dict[str, Any]:
        """Extra response fields beyond `ok` and `error`."""
        return {}


class BookingValidationError(SlotbookError):
    status_code = 400

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class UnauthorizedError(SlotbookError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class OwnershipError(SlotbookError):
    status_code = 403

    def __init__(self, message: str = "Phone mismatch. Cannot cancel."):
        super().__init__(message)


class NotFoundError(SlotbookError):
    status_code = 404


class BookingConflictError(SlotbookError):
    """Raised when any requested slot fails write-time re-validation."""

    status_code = 409

    def __init__(self, slot_status: list[dict[str, Any]], valid_slots: int):
        self.slot_status = slot_status
        self.valid_slots = valid_slots
        conflicts = [s for s in slot_status if s["status"] == "conflict"]
        self.conflicts = conflicts
        super().__init__(f"{len(conflicts)} of {len(slot_status)} slots unavailable")

    def payload(self) -> dict[str, Any]:
        return {"validSlots": self.valid_slots, "slotStatus": self.slot_status}


class AlreadyCancelledError(SlotbookError):
    status_code = 409

    def __init__(self, message: str = "Booking already cancelled."):
        super().__init__(message)


class RateLimitedError(SlotbookError):
    status_code = 429

    def __init__(self, message: str = "Too many concurrent requests.", retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(message)


class StoreError(SlotbookError):
    """Wraps any failure talking to the row store. Never retried by the core."""

    status_code = 500


class SlotInUseError(SlotbookError):
    """Admin tried to remove slots that still hold active signups."""

    status_code = 400

    def __init__(self, affected_count: int):
        self.affected_count = affected_count
        super().__init__(
            f"Cannot delete: {affected_count} active booking(s) exist. "
            "Cancel bookings first or contact users."
        )

    def payload(self) -> dict[str, Any]:
        return {"affectedCount": self.affected_count}
