from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from hostel.domain.errors import NotFoundError
from hostel.domain.models import RequestContext
from hostel.repository.store import SQLiteStore
from hostel.services.allocation_service import BookingApprovalService
from hostel.services.laundry_service import LaundryService
from hostel.services.notification_service import NotificationService
from hostel.services.payment_service import PaymentWorkflowService
from hostel.services.student_service import StudentService
from hostel.utils.config import get_settings


AMINA = RequestContext(user_id="a1b2c3d4-0001")
BRIAN = RequestContext(user_id="b2c3d4e5-0002")
NOW = datetime(2026, 3, 15, 9, 0, tzinfo=timezone.utc)


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


class FakeGateway:
    def initiate(self, amount, phone_number, account_reference, description):
        raise AssertionError("dashboard reads must not reach the gateway")

    def poll_status(self, checkout_request_id):
        raise AssertionError("dashboard reads must not reach the gateway")


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(get_settings(), database_path=tmp_path / filename)


def _build_service(tmp_path) -> tuple[StudentService, LaundryService, NotificationService, SQLiteStore]:
    settings = _build_test_settings(tmp_path, "students.db")
    store = SQLiteStore(settings)
    store.initialize_database()
    store.seed_demo_data()
    clock = FakeClock(NOW)
    notifications = NotificationService(store=store, settings=settings, clock=clock)
    laundry = LaundryService(store=store, notification_service=notifications, clock=clock)
    service = StudentService(
        store=store,
        allocation_service=BookingApprovalService(
            store=store, notification_service=notifications, clock=clock
        ),
        payment_service=PaymentWorkflowService(
            store=store,
            gateway=FakeGateway(),
            notification_service=notifications,
            settings=settings,
            clock=clock,
        ),
        notification_service=notifications,
        laundry_service=laundry,
    )
    return service, laundry, notifications, store


def _payment(store: SQLiteStore, student_id: str, status: str, paid_at: str, month: str) -> int:
    record = store.insert(
        "payments",
        {
            "student_id": student_id,
            "amount": 8000.0,
            "status": status,
            "payment_date": paid_at,
            "payment_method": "mpesa",
            "reference_number": f"PAY-{month}",
            "month": month,
        },
    )
    return int(record["id"])


def test_profile_is_read_for_students_only(tmp_path):
    service, _, _, _ = _build_service(tmp_path)

    profile = service.get_profile(AMINA)

    assert profile.full_name == "Amina Wanjiru"
    assert profile.registration_number == "SCT221-0001/2024"
    assert profile.phone == "0712345678"

    with pytest.raises(NotFoundError, match="Profile not found"):
        service.get_profile(RequestContext(user_id="admin-0001"))
    with pytest.raises(NotFoundError, match="Profile not found"):
        service.get_profile(RequestContext(user_id="ghost"))


def test_dashboard_for_new_student_is_empty(tmp_path):
    service, _, _, _ = _build_service(tmp_path)

    dashboard = service.get_dashboard(BRIAN)

    assert dashboard.profile.full_name == "Brian Otieno"
    assert dashboard.room_status.allocation is None
    assert dashboard.room_status.has_pending_booking is False
    assert dashboard.latest_payment is None
    assert dashboard.unread_notifications == 0
    assert dashboard.open_laundry_requests == 0


def test_dashboard_summarises_room_payment_inbox_and_laundry(tmp_path):
    service, laundry, notifications, store = _build_service(tmp_path)
    room = store.get("rooms", {"room_number": "R202"})
    store.insert(
        "room_allocations",
        {
            "student_id": AMINA.user_id,
            "room_id": room["id"],
            "start_date": "2026-02-01T00:00:00+00:00",
            "status": "active",
        },
    )
    _payment(store, AMINA.user_id, "completed", "2026-02-03T10:00:00+00:00", "2026-02")
    latest = _payment(store, AMINA.user_id, "failed", "2026-03-02T10:00:00+00:00", "2026-03")
    _payment(store, BRIAN.user_id, "completed", "2026-03-10T10:00:00+00:00", "2026-03")
    notifications.notify(AMINA.user_id, "Welcome", "Room ready")
    read = notifications.notify(AMINA.user_id, "Older", "Already seen")
    notifications.mark_read(AMINA, read.id)
    first = laundry.submit(AMINA, 5, NOW + timedelta(hours=2))
    laundry.submit(AMINA, 3, NOW + timedelta(hours=4))
    for _ in range(3):
        laundry.advance(first.id)

    dashboard = service.get_dashboard(AMINA)

    assert dashboard.room_status.allocation.room.room_number == "R202"
    assert dashboard.latest_payment.id == latest
    assert dashboard.latest_payment.status == "failed"
    assert dashboard.unread_notifications == 2
    assert dashboard.open_laundry_requests == 1
