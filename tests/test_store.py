from __future__ import annotations

from dataclasses import replace

import pytest

from hostel.domain.errors import NotFoundError, StoreWriteError
from hostel.repository.change_feed import DELETE, INSERT, UPDATE
from hostel.repository.store import Guard, SQLiteStore
from hostel.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(get_settings(), database_path=tmp_path / filename)


def _build_store(tmp_path) -> SQLiteStore:
    store = SQLiteStore(_build_test_settings(tmp_path, "store.db"))
    store.initialize_database()
    store.seed_demo_data()
    return store


def _room_id(store: SQLiteStore, room_number: str) -> int:
    return int(store.get("rooms", {"room_number": room_number})["id"])


def test_seed_is_idempotent(tmp_path):
    store = _build_store(tmp_path)

    assert store.count("rooms") == 6
    assert store.seed_demo_data() == 0
    assert store.count("rooms") == 6
    assert store.get("profiles", {"id": "admin-0001"})["role"] == "admin"


def test_boolean_columns_round_trip_as_bool(tmp_path):
    store = _build_store(tmp_path)
    room = store.get("rooms", {"room_number": "R101"})

    assert room["is_occupied"] is False
    assert store.count("rooms", {"is_occupied": False}) == 6


def test_get_missing_record_raises_not_found(tmp_path):
    store = _build_store(tmp_path)
    with pytest.raises(NotFoundError):
        store.get("rooms", {"room_number": "Z999"})


def test_unknown_table_or_column_is_rejected(tmp_path):
    store = _build_store(tmp_path)
    with pytest.raises(ValueError):
        store.select("bookings")
    with pytest.raises(ValueError):
        store.select("rooms", {"colour": "blue"})
    with pytest.raises(ValueError, match="Unknown table"):
        store.get("sqlite_master", {})
    with pytest.raises(ValueError, match="Unknown table"):
        store.delete("sqlite_master", {"name": "rooms"})
    assert store.count("rooms") == 6


def test_guarded_update_reports_zero_rows_when_guard_fails(tmp_path):
    store = _build_store(tmp_path)
    room_id = _room_id(store, "R101")

    assert store.update("rooms", room_id, {"is_occupied": True}, guard=Guard("is_occupied", False)) == 1
    assert store.update("rooms", room_id, {"is_occupied": True}, guard=Guard("is_occupied", False)) == 0
    assert store.get("rooms", {"id": room_id})["is_occupied"] is True


def test_only_one_active_allocation_per_room(tmp_path):
    store = _build_store(tmp_path)
    room_id = _room_id(store, "R102")
    allocation = {
        "student_id": "a1b2c3d4-0001",
        "room_id": room_id,
        "start_date": "2026-03-01T00:00:00+00:00",
        "status": "active",
    }
    store.insert("room_allocations", allocation)

    with pytest.raises(StoreWriteError):
        store.insert("room_allocations", {**allocation, "student_id": "b2c3d4e5-0002"})

    # Inactive history rows do not collide with the active one.
    store.insert(
        "room_allocations",
        {**allocation, "student_id": "b2c3d4e5-0002", "status": "inactive"},
    )
    assert store.count("room_allocations", {"room_id": room_id}) == 2


def test_check_constraint_violation_becomes_write_error(tmp_path):
    store = _build_store(tmp_path)
    with pytest.raises(StoreWriteError):
        store.insert(
            "payments",
            {
                "student_id": "a1b2c3d4-0001",
                "amount": 0,
                "status": "pending",
                "payment_date": "2026-03-01T00:00:00+00:00",
                "payment_method": "mpesa",
                "reference_number": "PAY-X",
                "month": "2026-03",
            },
        )


def test_select_attaches_relations_and_orders(tmp_path):
    store = _build_store(tmp_path)
    room_id = _room_id(store, "R201")
    for student_id, when in (
        ("a1b2c3d4-0001", "2026-03-01T08:00:00+00:00"),
        ("b2c3d4e5-0002", "2026-03-02T08:00:00+00:00"),
    ):
        store.insert(
            "booking_requests",
            {"student_id": student_id, "room_id": room_id, "request_date": when, "status": "pending"},
        )

    records = store.select(
        "booking_requests",
        {"status": "pending"},
        order_by="request_date",
        descending=True,
        relations=("profiles", "rooms"),
    )

    assert [record["profiles"]["full_name"] for record in records] == ["Brian Otieno", "Amina Wanjiru"]
    assert records[0]["rooms"]["room_number"] == "R201"

    joined = store.get_joined("booking_requests", {"id": records[1]["id"]}, ("rooms",))
    assert joined["rooms"]["id"] == room_id


def test_delete_requires_filters(tmp_path):
    store = _build_store(tmp_path)
    with pytest.raises(ValueError):
        store.delete("rooms", {})


def test_subscription_receives_matching_events_only(tmp_path):
    store = _build_store(tmp_path)

    with store.subscribe("notifications", (INSERT,), {"student_id": "a1b2c3d4-0001"}) as feed:
        for student_id in ("a1b2c3d4-0001", "b2c3d4e5-0002"):
            store.insert(
                "notifications",
                {
                    "student_id": student_id,
                    "title": "Hello",
                    "message": "Welcome",
                    "type": "info",
                    "read": False,
                    "created_at": "2026-03-01T00:00:00+00:00",
                },
            )
        events = feed.drain()

    assert len(events) == 1
    assert events[0].event_type == INSERT
    assert events[0].new["student_id"] == "a1b2c3d4-0001"
    assert events[0].new["read"] is False


def test_update_and_delete_events_carry_old_and_new_rows(tmp_path):
    store = _build_store(tmp_path)
    room_id = _room_id(store, "R103")
    created = store.insert(
        "room_allocations",
        {
            "student_id": "a1b2c3d4-0001",
            "room_id": room_id,
            "start_date": "2026-03-01T00:00:00+00:00",
            "status": "active",
        },
    )

    rooms_feed = store.subscribe("rooms", (UPDATE,))
    allocations_feed = store.subscribe("room_allocations", (DELETE,))
    store.update("rooms", room_id, {"is_occupied": True})
    store.delete("room_allocations", {"id": created["id"]})

    update_event = rooms_feed.poll()
    assert update_event.old["is_occupied"] is False
    assert update_event.new["is_occupied"] is True

    delete_event = allocations_feed.poll()
    assert delete_event.new is None
    assert delete_event.old["id"] == created["id"]

    rooms_feed.close()
    store.update("rooms", room_id, {"is_occupied": False})
    assert rooms_feed.poll() is None
