"""Booking approval saga: happy path, conflicts and compensation on partial failure."""

from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from hostel.domain.errors import ConflictError, InputValidationError, NotFoundError, StoreWriteError
from hostel.domain.models import RequestContext
from hostel.repository.store import SQLiteStore
from hostel.services.allocation_service import BookingApprovalService, BookingQuery
from hostel.services.notification_service import NotificationService
from hostel.utils.config import get_settings


AMINA = "a1b2c3d4-0001"
BRIAN = "b2c3d4e5-0002"


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self._now = start
        self._monotonic = 0.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def sleep(self, seconds: float) -> None:
        self._monotonic += seconds
        self._now += timedelta(seconds=seconds)

    def advance(self, seconds: float) -> None:
        self.sleep(seconds)


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(get_settings(), database_path=tmp_path / filename)


def _build_service(tmp_path) -> tuple[BookingApprovalService, SQLiteStore, FakeClock]:
    settings = _build_test_settings(tmp_path, "booking_approval.db")
    store = SQLiteStore(settings)
    store.initialize_database()
    store.seed_demo_data()
    clock = FakeClock(datetime(2026, 3, 15, 9, 0, tzinfo=timezone.utc))
    notifications = NotificationService(store=store, settings=settings, clock=clock)
    service = BookingApprovalService(store=store, notification_service=notifications, clock=clock)
    return service, store, clock


def _room_id(store: SQLiteStore, room_number: str) -> int:
    return int(store.get("rooms", {"room_number": room_number})["id"])


def _pending_booking(store: SQLiteStore, student_id: str, room_id: int, when: str) -> int:
    record = store.insert(
        "booking_requests",
        {"student_id": student_id, "room_id": room_id, "request_date": when, "status": "pending"},
    )
    return int(record["id"])


def _state(store: SQLiteStore, booking_id: int, room_id: int) -> tuple[str, bool, int]:
    return (
        store.get("booking_requests", {"id": booking_id})["status"],
        store.get("rooms", {"id": room_id})["is_occupied"],
        store.count("room_allocations", {"room_id": room_id}),
    )


def test_two_bookings_for_same_room_only_first_approval_wins(tmp_path):
    service, store, _ = _build_service(tmp_path)
    r101 = _room_id(store, "R101")
    b1 = _pending_booking(store, AMINA, r101, "2026-03-10T08:00:00+00:00")
    b2 = _pending_booking(store, BRIAN, r101, "2026-03-11T08:00:00+00:00")

    remaining = service.approve(b1)

    assert _state(store, b1, r101) == ("approved", True, 1)
    allocation = store.get("room_allocations", {"room_id": r101})
    assert allocation["student_id"] == AMINA
    assert allocation["status"] == "active"
    assert [view.booking.id for view in remaining] == [b2]

    with pytest.raises(ConflictError) as excinfo:
        service.approve(b2)

    assert excinfo.value.kind == "conflict"
    assert store.get("booking_requests", {"id": b2})["status"] == "pending"
    assert store.count("room_allocations", {"room_id": r101}) == 1
    assert [view.booking.id for view in excinfo.value.snapshot] == [b2]


def test_reapproving_same_booking_conflicts_without_new_allocation(tmp_path):
    service, store, _ = _build_service(tmp_path)
    r102 = _room_id(store, "R102")
    booking_id = _pending_booking(store, AMINA, r102, "2026-03-10T08:00:00+00:00")

    service.approve(booking_id)
    with pytest.raises(ConflictError):
        service.approve(booking_id)

    assert _state(store, booking_id, r102) == ("approved", True, 1)


def test_booking_no_longer_pending_is_a_conflict_even_if_room_is_free(tmp_path):
    service, store, _ = _build_service(tmp_path)
    r103 = _room_id(store, "R103")
    booking_id = _pending_booking(store, AMINA, r103, "2026-03-10T08:00:00+00:00")
    store.update("booking_requests", booking_id, {"status": "rejected"})

    with pytest.raises(ConflictError):
        service.approve(booking_id)

    assert _state(store, booking_id, r103) == ("rejected", False, 0)


def test_occupied_room_rejects_approval_with_no_side_effects(tmp_path):
    service, store, _ = _build_service(tmp_path)
    r201 = _room_id(store, "R201")
    store.update("rooms", r201, {"is_occupied": True})
    booking_id = _pending_booking(store, AMINA, r201, "2026-03-10T08:00:00+00:00")

    with pytest.raises(ConflictError, match="already occupied"):
        service.approve(booking_id)

    assert _state(store, booking_id, r201) == ("pending", True, 0)


def test_room_update_failure_compensates_allocation_and_booking(tmp_path, monkeypatch):
    service, store, _ = _build_service(tmp_path)
    r202 = _room_id(store, "R202")
    booking_id = _pending_booking(store, AMINA, r202, "2026-03-10T08:00:00+00:00")
    before = _state(store, booking_id, r202)

    original_update = store.update

    def failing_update(table, record_id, patch, guard=None):
        if table == "rooms":
            raise StoreWriteError("disk I/O error")
        return original_update(table, record_id, patch, guard=guard)

    monkeypatch.setattr(store, "update", failing_update)

    with pytest.raises(StoreWriteError, match="Failed to update room status"):
        service.approve(booking_id)

    assert _state(store, booking_id, r202) == before == ("pending", False, 0)


def test_room_taken_between_check_and_update_compensates(tmp_path, monkeypatch):
    service, store, _ = _build_service(tmp_path)
    r203 = _room_id(store, "R203")
    booking_id = _pending_booking(store, AMINA, r203, "2026-03-10T08:00:00+00:00")

    original_update = store.update

    def racing_update(table, record_id, patch, guard=None):
        if table == "rooms":
            return 0
        return original_update(table, record_id, patch, guard=guard)

    monkeypatch.setattr(store, "update", racing_update)

    with pytest.raises(ConflictError, match="just taken"):
        service.approve(booking_id)

    assert store.get("booking_requests", {"id": booking_id})["status"] == "pending"
    assert store.count("room_allocations", {"room_id": r203}) == 0


def test_allocation_insert_failure_reverts_booking(tmp_path, monkeypatch):
    service, store, _ = _build_service(tmp_path)
    r101 = _room_id(store, "R101")
    booking_id = _pending_booking(store, AMINA, r101, "2026-03-10T08:00:00+00:00")

    original_insert = store.insert

    def failing_insert(table, record):
        if table == "room_allocations":
            raise StoreWriteError("constraint failed")
        return original_insert(table, record)

    monkeypatch.setattr(store, "insert", failing_insert)

    with pytest.raises(StoreWriteError, match="Failed to create room allocation"):
        service.approve(booking_id)

    assert _state(store, booking_id, r101) == ("pending", False, 0)


def test_approve_unknown_booking_is_not_found(tmp_path):
    service, _, _ = _build_service(tmp_path)
    with pytest.raises(NotFoundError) as excinfo:
        service.approve(999)
    assert excinfo.value.snapshot == []


def test_approval_notifies_student(tmp_path):
    service, store, _ = _build_service(tmp_path)
    r101 = _room_id(store, "R101")
    booking_id = _pending_booking(store, AMINA, r101, "2026-03-10T08:00:00+00:00")

    service.approve(booking_id)

    notifications = store.select("notifications", {"student_id": AMINA})
    assert len(notifications) == 1
    assert notifications[0]["type"] == "success"
    assert "R101" in notifications[0]["message"]


def test_reject_moves_pending_to_rejected_once(tmp_path):
    service, store, _ = _build_service(tmp_path)
    r102 = _room_id(store, "R102")
    booking_id = _pending_booking(store, BRIAN, r102, "2026-03-10T08:00:00+00:00")

    assert service.reject(booking_id) == []
    assert store.get("booking_requests", {"id": booking_id})["status"] == "rejected"
    assert store.count("notifications", {"student_id": BRIAN, "type": "warning"}) == 1

    with pytest.raises(ConflictError):
        service.reject(booking_id)
    with pytest.raises(NotFoundError):
        service.reject(424242)


def test_list_bookings_filters_searches_and_sorts(tmp_path):
    service, store, _ = _build_service(tmp_path)
    b_old = _pending_booking(store, AMINA, _room_id(store, "R201"), "2026-03-01T08:00:00+00:00")
    b_new = _pending_booking(store, BRIAN, _room_id(store, "R102"), "2026-03-05T08:00:00+00:00")
    b_rejected = _pending_booking(store, BRIAN, _room_id(store, "R103"), "2026-03-06T08:00:00+00:00")
    store.update("booking_requests", b_rejected, {"status": "rejected"})

    newest_first = service.list_bookings(BookingQuery())
    assert [view.booking.id for view in newest_first] == [b_new, b_old]
    assert newest_first[0].student.full_name == "Brian Otieno"

    by_room = service.list_bookings(BookingQuery(sort_field="room_number", sort_order="asc"))
    assert [view.room.room_number for view in by_room] == ["R102", "R201"]

    assert [view.booking.id for view in service.list_bookings(BookingQuery(search="amina"))] == [b_old]
    assert [view.booking.id for view in service.list_bookings(BookingQuery(search="sct221-0002"))] == [b_new]
    assert [view.booking.id for view in service.list_bookings(BookingQuery(status="rejected"))] == [b_rejected]
    assert len(service.list_bookings(BookingQuery(status="all"))) == 3

    with pytest.raises(InputValidationError):
        service.list_bookings(BookingQuery(status="archived"))
    with pytest.raises(InputValidationError):
        service.list_bookings(BookingQuery(sort_field="price"))


def test_submit_booking_enforces_single_pending_and_free_room(tmp_path):
    service, store, _ = _build_service(tmp_path)
    amina = RequestContext(user_id=AMINA)
    r101 = _room_id(store, "R101")

    booking = service.submit_booking(amina, r101, "Near the stairs please")
    assert booking.status == "pending"
    assert booking.notes == "Near the stairs please"

    status = service.get_room_status(amina)
    assert status.allocation is None
    assert status.has_pending_booking is True

    with pytest.raises(ConflictError, match="pending"):
        service.submit_booking(amina, _room_id(store, "R102"))

    store.update("rooms", _room_id(store, "R103"), {"is_occupied": True})
    with pytest.raises(ConflictError, match="occupied"):
        service.submit_booking(RequestContext(user_id=BRIAN), _room_id(store, "R103"))
    with pytest.raises(NotFoundError):
        service.submit_booking(RequestContext(user_id=BRIAN), 999)


def test_room_status_after_approval(tmp_path):
    service, store, _ = _build_service(tmp_path)
    amina = RequestContext(user_id=AMINA)
    r201 = _room_id(store, "R201")
    booking = service.submit_booking(amina, r201)

    service.approve(booking.id)

    status = service.get_room_status(amina)
    assert status.has_pending_booking is False
    assert status.allocation.room.room_number == "R201"
    assert status.allocation.room.price_per_month == 8500.0
    assert "R201" not in [room.room_number for room in service.list_available_rooms()]

    with pytest.raises(ConflictError, match="active room allocation"):
        service.submit_booking(amina, _room_id(store, "R202"))


@pytest.mark.parametrize(
    "reread_error",
    [StoreWriteError("database is locked"), sqlite3.OperationalError("disk I/O error")],
)
def test_failed_reread_keeps_original_decision_error(tmp_path, monkeypatch, reread_error):
    service, store, _ = _build_service(tmp_path)
    r201 = _room_id(store, "R201")
    booking_id = _pending_booking(store, AMINA, r201, "2026-03-10T08:00:00+00:00")
    service.approve(booking_id)

    def failing_list(query=None):
        raise reread_error

    monkeypatch.setattr(service, "list_bookings", failing_list)

    with pytest.raises(ConflictError) as approve_error:
        service.approve(booking_id)
    assert approve_error.value.snapshot is None

    with pytest.raises(ConflictError) as reject_error:
        service.reject(booking_id)
    assert reject_error.value.snapshot is None
    assert store.get("booking_requests", {"id": booking_id})["status"] == "approved"
