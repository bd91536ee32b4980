"""
Administrative slot management.

Bearer-password protected (ADMIN_PASSWORD). Every successful write
invalidates the availability cache.

    GET    /admin/slots   -> every slot row, unfiltered
    POST   /admin/slots   -> {newSlotsData: [{date, slots: [{label, capacity}]}]}
    DELETE /admin/slots   -> {rowIds: [...]}
"""

import logging
import secrets
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field

from .availability import AvailabilityReader
from .availability_cache import AvailabilityCache
from .core.errors import (
    BookingValidationError,
    SlotInUseError,
    StoreError,
    UnauthorizedError,
)
from .core.responses import success_response
from .models import Slot, parse_int, signups_from_rows
from .sheets import SIGNUPS_TABLE, SLOTS_TABLE, ClearRows, RowRange, RowStore, append_rows
from .validation import coerce_row_id, sanitize_input

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 6
MIN_CAPACITY = 1
MAX_CAPACITY = 99
MAX_LABEL_LENGTH = 100


def require_admin(request: Request, authorization: Optional[str] = Header(default=None)) -> None:
    """Dependency: reject unless `Authorization: Bearer <ADMIN_PASSWORD>`."""
    password = request.app.state.services.settings.admin_password
    if not password or not authorization:
        raise UnauthorizedError()
    if not secrets.compare_digest(authorization.encode(), f"Bearer {password}".encode()):
        logger.warning("Admin request rejected: bad credentials")
        raise UnauthorizedError()


def coerce_capacity(value: Any) -> int:
    """Unparsable or zero -> default; otherwise clamp into 1..99."""
    capacity = parse_int(value) or DEFAULT_CAPACITY
    return max(MIN_CAPACITY, min(MAX_CAPACITY, capacity))


def _is_iso_date(value: Any) -> bool:
    if not isinstance(value, str) or len(value) != 10:
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


class SlotAdmin:
    def __init__(self, store: RowStore, cache: AvailabilityCache, reader: AvailabilityReader):
        self.store = store
        self.cache = cache
        self.reader = reader

    async def list_slots(self) -> list[Slot]:
        try:
            return await self.reader.fetch_slots()
        except StoreError as e:
            raise StoreError("Failed to fetch slots") from e

    async def add_slots(self, new_slots_data: Any) -> tuple[int, int]:
        """
        Append every slot in the batch with one store call.

        Returns (slots_added, dates). Any invalid item rejects the whole batch.
        """
        if not isinstance(new_slots_data, list) or not new_slots_data:
            raise BookingValidationError("Missing or invalid newSlotsData array")

        new_rows = []
        for item in new_slots_data:
            slot_date = item.get("date") if isinstance(item, dict) else None
            slots = item.get("slots") if isinstance(item, dict) else None
            if not _is_iso_date(slot_date) or not isinstance(slots, list) or not slots:
                logger.error(f"Batch item failed validation: {item!r}")
                raise BookingValidationError("Invalid item found in batch payload (missing date or slots)")
            for slot in slots:
                label = sanitize_input(slot.get("label") if isinstance(slot, dict) else None, MAX_LABEL_LENGTH)
                if not label:
                    raise BookingValidationError(f"Slot label is required for {slot_date}")
                new_rows.append(Slot.new_row(slot_date, label, coerce_capacity(slot.get("capacity"))))

        try:
            await self.store.batch_update([append_rows(SLOTS_TABLE, new_rows)])
        except StoreError as e:
            logger.error(f"Error adding slot batch: {e}")
            raise StoreError("Failed to add slot batch") from e

        self.cache.invalidate()
        logger.info(f"Added {len(new_rows)} slots across {len(new_slots_data)} date(s)")
        return len(new_rows), len(new_slots_data)

    async def delete_slots(self, row_ids: Any) -> int:
        """Clear slot rows that hold no active signups. Returns the number cleared."""
        if not isinstance(row_ids, list) or not row_ids:
            raise BookingValidationError("Missing or invalid rowIds array")

        valid_ids = sorted({coerce_row_id(row_id) for row_id in row_ids} - {None})
        if not valid_ids:
            raise BookingValidationError("No valid row IDs provided")

        try:
            signups = signups_from_rows(await self.store.get(RowRange(SIGNUPS_TABLE)))
        except StoreError as e:
            raise StoreError("Failed to delete slots") from e

        targets = set(valid_ids)
        affected = [s for s in signups if s.status.is_active and s.slot_id in targets]
        if affected:
            logger.warning(f"Cannot delete slots: {len(affected)} active bookings exist")
            raise SlotInUseError(len(affected))

        try:
            await self.store.batch_update([ClearRows(SLOTS_TABLE, tuple(valid_ids))])
        except StoreError as e:
            logger.error(f"Error deleting slot batch: {e}")
            raise StoreError("Failed to delete slots") from e

        self.cache.invalidate()
        logger.info(f"Deleted {len(valid_ids)} slot(s)")
        return len(valid_ids)


# ────────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────────

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class AddSlotsPayload(BaseModel):
    new_slots_data: Optional[list[Any]] = Field(default=None, alias="newSlotsData")


class DeleteSlotsPayload(BaseModel):
    row_ids: Optional[list[Any]] = Field(default=None, alias="rowIds")


def _admin(request: Request) -> SlotAdmin:
    return request.app.state.services.admin


@router.get("/slots")
async def admin_list_slots(admin: SlotAdmin = Depends(_admin)):
    slots = await admin.list_slots()
    return success_response(slots=[slot.to_dict() for slot in slots])


@router.post("/slots")
async def admin_add_slots(payload: AddSlotsPayload, admin: SlotAdmin = Depends(_admin)):
    added, dates = await admin.add_slots(payload.new_slots_data)
    return success_response(message=f"Successfully added {added} slots across {dates} date(s).")


@router.delete("/slots")
async def admin_delete_slots(payload: DeleteSlotsPayload, admin: SlotAdmin = Depends(_admin)):
    deleted = await admin.delete_slots(payload.row_ids)
    return success_response(message=f"Successfully deleted {deleted} slot(s).")
