"""
Public booking API.

    GET   /slots               -> grouped open slots
    GET   /slots?phone=...     -> active bookings for a phone (email= also accepted)
    POST  /slots               -> book one or more slots, all or nothing
    PATCH /slots               -> cancel one booking owned by the caller's phone

Handlers only translate HTTP to service calls; every failure is raised as a
SlotbookError and rendered by the handlers registered in main.py.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from .core.errors import BookingValidationError
from .core.responses import success_response
from .rate_limiter import rate_limit
from .services import Services, get_services
from .validation import is_valid_email, require_valid_phone

logger = logging.getLogger(__name__)

router = APIRouter(tags=["slots"])


class BookingPayload(BaseModel):
    # Checked by validate_booking_request, not by pydantic.
    model_config = ConfigDict(populate_by_name=True)

    name: Any = None
    phone: Any = None
    email: Any = None
    category: Any = None
    notes: Any = None
    slot_ids: Any = Field(default=None, alias="slotIds")


class CancelPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    signup_row_id: Any = Field(default=None, alias="signupRowId")
    slot_row_id: Any = Field(default=None, alias="slotRowId")
    phone: Any = None


@router.get("/slots")
async def list_slots(
    phone: Optional[str] = None,
    email: Optional[str] = None,
    services: Services = Depends(get_services),
):
    if phone:
        normalized = require_valid_phone(phone)
        bookings = await services.reader.lookup_by_phone(normalized)
        return success_response(bookings=[b.to_dict() for b in bookings])

    if email:
        if not is_valid_email(email.strip(), services.settings.max_email_length):
            raise BookingValidationError("Invalid email address.")
        bookings = await services.reader.lookup_by_email(email)
        return success_response(bookings=[b.to_dict() for b in bookings])

    listing = await services.reader.list_available()
    return success_response(dates=listing.to_dict())


@router.post("/slots", dependencies=[Depends(rate_limit)])
async def create_booking(payload: BookingPayload, services: Services = Depends(get_services)):
    result = await services.allocator.book(
        name=payload.name,
        phone=payload.phone,
        email=payload.email,
        category=payload.category,
        notes=payload.notes,
        slot_ids=payload.slot_ids,
    )
    return success_response(message=result.message, bookedSlots=result.booked_slots())


@router.patch("/slots", dependencies=[Depends(rate_limit)])
async def cancel_booking(payload: CancelPayload, services: Services = Depends(get_services)):
    result = await services.canceller.cancel(
        signup_row_id=payload.signup_row_id,
        slot_row_id=payload.slot_row_id,
        phone=payload.phone,
    )
    return success_response(message="Cancelled successfully.", cancelledSlot=result.cancelled_slot())


@router.get("/health")
async def healthcheck(services: Services = Depends(get_services)):
    return {"ok": True, "rowStore": services.store.name}
