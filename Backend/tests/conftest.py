"""
Pytest configuration and shared fixtures.

Every test gets its own in-memory row store, cache, guard and limiter, so no
state leaks between cases. HTTP tests drive the FastAPI app in-process
through httpx's ASGI transport.
"""
import pytest
from httpx import ASGITransport, AsyncClient

from slotbook.core.config import Settings
from slotbook.services import Services
from slotbook.sheets import SIGNUPS_TABLE, SLOTS_TABLE, InMemoryRowStore

FUTURE_DAY = "2099-01-10"
NEXT_DAY = "2099-01-11"
PAST_DAY = "2000-01-01"

PHONE = "5551234567"
OTHER_PHONE = "5559876543"
ADMIN_PASSWORD = "letmein"

# Slot ids are 1-based record numbers: row 0 below is slot 1.
SLOT_ROWS = [
    [FUTURE_DAY, "10:00 AM - 11:00 AM", 2, 0, ""],  # 1: open
    [FUTURE_DAY, "09:00 AM - 10:00 AM", 3, 1, ""],  # 2: open, sorts first
    [NEXT_DAY, "01:00 PM - 02:00 PM", 1, 1, ""],    # 3: full
    [PAST_DAY, "09:00 AM - 10:00 AM", 5, 0, ""],    # 4: past
    [NEXT_DAY, "03:00 PM - 04:00 PM", 1, 0, ""],    # 5: last seat
]


def signup_row(slot_id, phone=PHONE, status="ACTIVE", label="10:00 AM - 11:00 AM", day=FUTURE_DAY, email=""):
    return [
        "2098-12-01T09:00:00-05:00",
        day,
        label,
        "Jane Doe",
        email,
        phone,
        "General",
        "",
        slot_id,
        status,
    ]


def make_settings(**overrides) -> Settings:
    values = {
        "row_store": "memory",
        "admin_password": ADMIN_PASSWORD,
        "timezone": "America/New_York",
        "cache_ttl_seconds": 30,
        "max_concurrent_bookings": 3,
        "max_slots_per_booking": 10,
        "rate_limit_max_requests": 50,
    }
    values.update(overrides)
    return Settings(**values)


def booking_body(slot_ids, phone=PHONE, **overrides):
    body = {
        "name": "Jane Doe",
        "phone": phone,
        "email": "Jane@Example.com",
        "category": "General",
        "notes": "",
        "slotIds": slot_ids,
    }
    body.update(overrides)
    return body


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store():
    return InMemoryRowStore({SLOTS_TABLE.name: SLOT_ROWS, SIGNUPS_TABLE.name: []})


@pytest.fixture
def services(settings, store):
    return Services.build(settings, store)


@pytest.fixture
def app(settings, store):
    from slotbook.main import create_app

    return create_app(settings=settings, store=store)


@pytest.fixture
async def client(app):
    """AsyncClient bound to the app; services are wired without the lifespan."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
