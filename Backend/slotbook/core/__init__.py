"""
Core module - configuration, error taxonomy, and response formatting.
"""
from .config import Settings, get_settings
from .errors import (
    AlreadyCancelledError,
    BookingConflictError,
    BookingValidationError,
    NotFoundError,
    OwnershipError,
    RateLimitedError,
    SlotbookError,
    SlotInUseError,
    StoreError,
    UnauthorizedError,
)
from .responses import error_response, success_response

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Errors
    "SlotbookError",
    "SlotInUseError",
    "BookingValidationError",
    "UnauthorizedError",
    "OwnershipError",
    "NotFoundError",
    "BookingConflictError",
    "AlreadyCancelledError",
    "RateLimitedError",
    "StoreError",
    # Responses
    "success_response",
    "error_response",
]
