from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from hostel.domain.errors import ConflictError, InputValidationError, NotFoundError
from hostel.domain.models import RequestContext
from hostel.repository.store import SQLiteStore
from hostel.services.laundry_service import LaundryService
from hostel.services.notification_service import NotificationService
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


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(get_settings(), database_path=tmp_path / filename, notification_page_size=3)


def _build_services(tmp_path) -> tuple[LaundryService, NotificationService, SQLiteStore, FakeClock]:
    settings = _build_test_settings(tmp_path, "laundry.db")
    store = SQLiteStore(settings)
    store.initialize_database()
    store.seed_demo_data()
    clock = FakeClock(NOW)
    notifications = NotificationService(store=store, settings=settings, clock=clock)
    laundry = LaundryService(store=store, notification_service=notifications, clock=clock)
    return laundry, notifications, store, clock


def _allocate(store: SQLiteStore, student_id: str, room_number: str) -> None:
    room = store.get("rooms", {"room_number": room_number})
    store.insert(
        "room_allocations",
        {
            "student_id": student_id,
            "room_id": room["id"],
            "start_date": "2026-03-01T00:00:00+00:00",
            "status": "active",
        },
    )


# --- laundry ---

def test_submit_copies_room_number_from_active_allocation(tmp_path):
    laundry, _, store, _ = _build_services(tmp_path)
    _allocate(store, AMINA.user_id, "R102")

    request = laundry.submit(AMINA, 6, NOW + timedelta(hours=3), "Separate whites")

    assert request.room_number == "R102"
    assert request.status == "pending"
    assert request.special_instructions == "Separate whites"
    assert [item.id for item in laundry.list_for_student(AMINA)] == [request.id]
    assert laundry.list_for_student(BRIAN) == []


def test_submit_without_allocation_is_not_found(tmp_path):
    laundry, _, _, _ = _build_services(tmp_path)
    with pytest.raises(NotFoundError):
        laundry.submit(BRIAN, 2, NOW + timedelta(hours=1))


def test_submit_validates_input(tmp_path):
    laundry, _, store, _ = _build_services(tmp_path)
    _allocate(store, AMINA.user_id, "R101")

    with pytest.raises(InputValidationError):
        laundry.submit(AMINA, 0, NOW + timedelta(hours=1))
    with pytest.raises(InputValidationError):
        laundry.submit(AMINA, 3, NOW - timedelta(hours=1))
    assert store.count("laundry_requests") == 0


def test_advance_walks_the_lifecycle_and_notifies_when_ready(tmp_path):
    laundry, notifications, store, _ = _build_services(tmp_path)
    _allocate(store, AMINA.user_id, "R201")
    request = laundry.submit(AMINA, 4, NOW + timedelta(hours=1))

    statuses = [laundry.advance(request.id).status for _ in range(3)]

    assert statuses == ["processing", "ready", "collected"]
    titles = [item.title for item in notifications.list_recent(AMINA)]
    assert titles == ["Laundry ready"]

    with pytest.raises(ConflictError, match="collected"):
        laundry.advance(request.id)
    with pytest.raises(NotFoundError):
        laundry.advance(999)


def test_admin_list_includes_student_names(tmp_path):
    laundry, _, store, clock = _build_services(tmp_path)
    _allocate(store, AMINA.user_id, "R101")
    _allocate(store, BRIAN.user_id, "R102")
    laundry.submit(AMINA, 3, NOW + timedelta(hours=2))
    clock.sleep(60)
    laundry.submit(BRIAN, 5, NOW + timedelta(hours=2))

    names = [item.student_name for item in laundry.list_all()]

    assert names == ["Brian Otieno", "Amina Wanjiru"]


# --- notifications ---

def test_recent_notifications_are_paged_newest_first(tmp_path):
    _, notifications, _, clock = _build_services(tmp_path)
    for index in range(5):
        notifications.notify(AMINA.user_id, f"Notice {index}", "body")
        clock.sleep(1)
    notifications.notify(BRIAN.user_id, "Other", "body")

    recent = notifications.list_recent(AMINA)

    assert [item.title for item in recent] == ["Notice 4", "Notice 3", "Notice 2"]
    assert len(notifications.list_recent(AMINA, limit=10)) == 5
    assert notifications.unread_count(AMINA) == 5
    with pytest.raises(InputValidationError):
        notifications.list_recent(AMINA, limit=0)


def test_mark_read_is_scoped_to_owner(tmp_path):
    _, notifications, _, _ = _build_services(tmp_path)
    created = notifications.notify(AMINA.user_id, "Hello", "body", "warning")

    with pytest.raises(NotFoundError):
        notifications.mark_read(BRIAN, created.id)

    updated = notifications.mark_read(AMINA, created.id)
    assert updated.read is True
    assert notifications.unread_count(AMINA) == 0


def test_unknown_notification_type_is_rejected(tmp_path):
    _, notifications, _, _ = _build_services(tmp_path)
    with pytest.raises(InputValidationError):
        notifications.notify(AMINA.user_id, "Hello", "body", "urgent")


def test_notify_quietly_swallows_workflow_errors(tmp_path):
    _, notifications, store, _ = _build_services(tmp_path)

    notifications.notify_quietly(AMINA.user_id, "Hello", "body", "urgent")

    assert store.count("notifications") == 0


def test_feed_delivers_only_callers_new_notifications(tmp_path):
    _, notifications, _, _ = _build_services(tmp_path)

    with notifications.open_feed(AMINA) as feed:
        notifications.notify(BRIAN.user_id, "For Brian", "body")
        notifications.notify(AMINA.user_id, "For Amina", "body")
        event = feed.poll(timeout=0.1)
        assert feed.poll() is None

    assert event is not None
    assert event.new["title"] == "For Amina"
