"""
Administrative slot management, through the service and over HTTP.
"""
import pytest

from conftest import ADMIN_PASSWORD, FUTURE_DAY, signup_row
from slotbook.admin import coerce_capacity
from slotbook.core.errors import BookingValidationError, SlotInUseError
from slotbook.sheets import SIGNUPS_TABLE, SLOTS_TABLE

AUTH = {"Authorization": f"Bearer {ADMIN_PASSWORD}"}


def test_capacity_coercion():
    assert coerce_capacity("4") == 4
    assert coerce_capacity(None) == 6
    assert coerce_capacity("lots") == 6
    assert coerce_capacity(0) == 6
    assert coerce_capacity(-5) == 1
    assert coerce_capacity(250) == 99


class TestSlotAdmin:
    @pytest.mark.asyncio
    async def test_add_appends_every_slot_in_one_call(self, services, store):
        services.cache.set("listing")
        added, dates = await services.admin.add_slots([
            {"date": "2099-03-01", "slots": [{"label": "9 AM", "capacity": 4}, {"label": "<b>10 AM</b>"}]},
            {"date": "2099-03-02", "slots": [{"label": "9 AM", "capacity": "2"}]},
        ])

        assert (added, dates) == (3, 2)
        assert store.rows(SLOTS_TABLE)[-3:] == [
            ["2099-03-01", "9 AM", 4, 0, ""],
            ["2099-03-01", "b10 AM/b", 6, 0, ""],
            ["2099-03-02", "9 AM", 2, 0, ""],
        ]
        assert len(store.applied_batches) == 1
        assert services.cache.get() is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            None,
            [],
            [{"date": "2099-03-01", "slots": []}],
            [{"slots": [{"label": "9 AM"}]}],
            [{"date": "March 1", "slots": [{"label": "9 AM"}]}],
            [{"date": "2099-03-01", "slots": [{"label": "  "}]}],
        ],
    )
    async def test_any_invalid_item_rejects_the_batch(self, services, store, payload):
        before = [list(row) for row in store.rows(SLOTS_TABLE)]
        with pytest.raises(BookingValidationError):
            await services.admin.add_slots(payload)
        assert store.rows(SLOTS_TABLE) == before
        assert store.applied_batches == []

    @pytest.mark.asyncio
    async def test_delete_clears_rows_in_place(self, services, store):
        deleted = await services.admin.delete_slots([2, 4, "x", 0])

        assert deleted == 2
        rows = store.rows(SLOTS_TABLE)
        assert rows[1] == [] and rows[3] == []
        # Remaining slots keep their ids.
        assert [s.id for s in await services.admin.list_slots()] == [1, 3, 5]

    @pytest.mark.asyncio
    async def test_delete_refuses_slots_with_active_signups(self, services, store):
        store.rows(SIGNUPS_TABLE).extend([
            signup_row(1),
            signup_row(2, status="CANCELLED:2099-01-01T00:00:00+00:00"),
        ])

        with pytest.raises(SlotInUseError) as exc_info:
            await services.admin.delete_slots([1, 2])
        assert exc_info.value.affected_count == 1
        assert store.applied_batches == []

        assert await services.admin.delete_slots([2]) == 1

    @pytest.mark.asyncio
    async def test_delete_accepts_integral_float_ids(self, services, store):
        assert await services.admin.delete_slots([2.0, 2, 4.0]) == 2
        assert store.applied_batches[0][0].row_ids == (2, 4)

    @pytest.mark.asyncio
    async def test_delete_requires_a_valid_id(self, services):
        with pytest.raises(BookingValidationError) as exc_info:
            await services.admin.delete_slots(["a", -1])
        assert exc_info.value.message == "No valid row IDs provided"


class TestAdminRoutes:
    @pytest.mark.asyncio
    async def test_requires_bearer_password(self, client):
        assert (await client.get("/admin/slots")).status_code == 401
        response = await client.get("/admin/slots", headers={"Authorization": "Bearer wrong"})
        assert response.status_code == 401
        assert response.json() == {"ok": False, "error": "Unauthorized"}

    @pytest.mark.asyncio
    async def test_empty_password_disables_admin(self, app, client):
        app.state.services.settings.admin_password = ""
        response = await client.get("/admin/slots", headers={"Authorization": "Bearer anything"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_list_includes_full_and_past_slots(self, client):
        response = await client.get("/admin/slots", headers=AUTH)
        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert [s["id"] for s in body["slots"]] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_added_slots_show_up_in_listing(self, client):
        await client.get("/slots")
        response = await client.post(
            "/admin/slots",
            headers=AUTH,
            json={"newSlotsData": [{"date": FUTURE_DAY, "slots": [{"label": "08:00 AM - 09:00 AM", "capacity": 1}]}]},
        )
        assert response.status_code == 200
        assert response.json() == {"ok": True, "message": "Successfully added 1 slots across 1 date(s)."}

        listing = (await client.get("/slots")).json()["dates"][FUTURE_DAY]
        assert listing[0]["slotLabel"] == "08:00 AM - 09:00 AM"

    @pytest.mark.asyncio
    async def test_delete_in_use_reports_affected_count(self, client, store):
        store.rows(SIGNUPS_TABLE).append(signup_row(1))
        response = await client.request("DELETE", "/admin/slots", headers=AUTH, json={"rowIds": [1]})
        assert response.status_code == 400
        assert response.json()["affectedCount"] == 1

    @pytest.mark.asyncio
    async def test_delete(self, client):
        response = await client.request("DELETE", "/admin/slots", headers=AUTH, json={"rowIds": [2]})
        assert response.status_code == 200
        assert response.json()["message"] == "Successfully deleted 1 slot(s)."
