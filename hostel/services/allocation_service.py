"""Booking approval workflow and the student-facing booking operations.

Approval is a saga over the store client: the booking status flip, the
allocation insert and the room occupancy flag are three separate guarded
writes, so partial failure is repaired by explicit compensation rather than by
a database transaction. After every terminal outcome the booking list is read
again from the store instead of trusting what the caller last saw.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from hostel.domain.errors import (
    ConflictError,
    InputValidationError,
    NotFoundError,
    StoreWriteError,
    WorkflowError,
)
from hostel.domain.models import (
    ALLOCATION_ACTIVE,
    BOOKING_APPROVED,
    BOOKING_PENDING,
    BOOKING_REJECTED,
    BOOKING_STATUSES,
    BookingRequest,
    BookingView,
    RequestContext,
    Room,
    RoomAllocation,
    RoomStatus,
)
from hostel.domain.saga import Saga, SagaContext
from hostel.repository.store import Guard, StoreClient
from hostel.services.notification_service import NotificationService
from hostel.utils.clock import Clock, SystemClock
from hostel.utils.logger import get_logger


logger = get_logger(__name__)

SORT_FIELDS = ("request_date", "room_number")
SORT_ORDERS = ("asc", "desc")


@dataclass(frozen=True)
class BookingQuery:
    status: str = BOOKING_PENDING
    sort_field: str = "request_date"
    sort_order: str = "desc"
    search: str = ""

    def validate(self) -> None:
        if self.status != "all" and self.status not in BOOKING_STATUSES:
            raise InputValidationError(f"Unknown booking status filter: {self.status}")
        if self.sort_field not in SORT_FIELDS:
            raise InputValidationError(f"sort_field must be one of {SORT_FIELDS}")
        if self.sort_order not in SORT_ORDERS:
            raise InputValidationError(f"sort_order must be one of {SORT_ORDERS}")


def _matches_search(view: BookingView, term: str) -> bool:
    haystack = [
        view.student.full_name if view.student else "",
        view.student.registration_number if view.student else "",
        view.room.room_number if view.room else "",
    ]
    return any(term in value.lower() for value in haystack)


class BookingApprovalService:
    """Coordinates booking submission, approval/rejection and room status reads."""

    def __init__(
        self,
        store: StoreClient,
        notification_service: Optional[NotificationService] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._notifications = notification_service or NotificationService(
            store=store,
            clock=self._clock,
        )

    # ------------------------------------------------------------------ admin

    def list_bookings(self, query: Optional[BookingQuery] = None) -> list[BookingView]:
        query = query or BookingQuery()
        query.validate()
        filters = None if query.status == "all" else {"status": query.status}
        descending = query.sort_order == "desc"
        records = self._store.select(
            "booking_requests",
            filters,
            order_by="request_date",
            descending=descending,
            relations=("profiles", "rooms"),
        )
        views = [BookingView.from_record(record) for record in records]

        term = query.search.strip().lower()
        if term:
            views = [view for view in views if _matches_search(view, term)]
        if query.sort_field == "room_number":
            views.sort(
                key=lambda view: view.room.room_number if view.room else "",
                reverse=descending,
            )
        return views

    def _snapshot(self, query: Optional[BookingQuery]) -> Optional[list[BookingView]]:
        # Best effort: the decision error is what the caller must see.
        try:
            return self.list_bookings(query)
        except Exception:
            logger.exception("Could not re-read booking list after a failed decision")
            return None

    def approve(
        self,
        booking_id: int,
        query: Optional[BookingQuery] = None,
    ) -> list[BookingView]:
        """Approve a pending booking and return the refreshed booking list."""
        try:
            booking = self._run_approval(booking_id)
        except WorkflowError as exc:
            logger.warning("Approval of booking %s failed: %s", booking_id, exc.message)
            exc.snapshot = self._snapshot(query)
            raise

        logger.info(
            "Booking %s approved; room %s allocated to student %s",
            booking_id,
            booking["room_id"],
            booking["student_id"],
        )
        room_number = (booking.get("rooms") or {}).get("room_number", booking["room_id"])
        self._notifications.notify_quietly(
            booking["student_id"],
            "Booking approved",
            f"Your booking request for room {room_number} has been approved.",
            "success",
        )
        return self.list_bookings(query)

    def reject(
        self,
        booking_id: int,
        query: Optional[BookingQuery] = None,
    ) -> list[BookingView]:
        try:
            booking = self._store.get("booking_requests", {"id": booking_id})
            affected = self._store.update(
                "booking_requests",
                booking_id,
                {"status": BOOKING_REJECTED, "updated_at": self._clock.now().isoformat()},
                guard=Guard("status", BOOKING_PENDING),
            )
            if affected == 0:
                raise ConflictError(
                    f"Booking request {booking_id} is no longer pending"
                )
        except WorkflowError as exc:
            logger.warning("Rejection of booking %s failed: %s", booking_id, exc.message)
            exc.snapshot = self._snapshot(query)
            raise

        logger.info("Booking %s rejected", booking_id)
        self._notifications.notify_quietly(
            booking["student_id"],
            "Booking rejected",
            "Your booking request has been rejected. Please choose another room.",
            "warning",
        )
        return self.list_bookings(query)

    def _run_approval(self, booking_id: int) -> dict[str, Any]:
        try:
            booking = self._store.get_joined(
                "booking_requests",
                {"id": booking_id},
                ("rooms",),
            )
        except NotFoundError as exc:
            raise NotFoundError(f"Booking request {booking_id} not found") from exc

        room = booking.get("rooms")
        if room is None:
            raise NotFoundError(f"Room {booking['room_id']} for booking {booking_id} not found")
        if room["is_occupied"]:
            raise ConflictError("This room is already occupied")

        student_id = booking["student_id"]
        room_id = booking["room_id"]

        def approve_booking(_: SagaContext) -> None:
            affected = self._store.update(
                "booking_requests",
                booking_id,
                {"status": BOOKING_APPROVED, "updated_at": self._clock.now().isoformat()},
                guard=Guard("status", BOOKING_PENDING),
            )
            if affected == 0:
                raise ConflictError(f"Booking request {booking_id} is no longer pending")

        def revert_booking(_: SagaContext) -> None:
            affected = self._store.update(
                "booking_requests",
                booking_id,
                {"status": BOOKING_PENDING, "updated_at": self._clock.now().isoformat()},
                guard=Guard("status", BOOKING_APPROVED),
            )
            if affected == 0:
                logger.warning("Booking %s was not approved when reverting", booking_id)

        def create_allocation(_: SagaContext) -> dict[str, Any]:
            try:
                return self._store.insert(
                    "room_allocations",
                    {
                        "student_id": student_id,
                        "room_id": room_id,
                        "start_date": self._clock.now().isoformat(),
                        "end_date": None,
                        "status": ALLOCATION_ACTIVE,
                    },
                )
            except StoreWriteError as exc:
                raise StoreWriteError(f"Failed to create room allocation: {exc.message}") from exc

        def delete_allocation(context: SagaContext) -> None:
            allocation = context["create_allocation"]
            self._store.delete("room_allocations", {"id": allocation["id"]})

        def occupy_room(_: SagaContext) -> None:
            try:
                affected = self._store.update(
                    "rooms",
                    room_id,
                    {"is_occupied": True},
                    guard=Guard("is_occupied", False),
                )
            except StoreWriteError as exc:
                raise StoreWriteError(f"Failed to update room status: {exc.message}") from exc
            if affected == 0:
                raise ConflictError("This room was just taken")

        saga = Saga(f"approve-booking-{booking_id}")
        saga.add_step("approve_booking", approve_booking, revert_booking)
        saga.add_step("create_allocation", create_allocation, delete_allocation)
        saga.add_step("occupy_room", occupy_room)
        saga.run()
        return booking

    # ---------------------------------------------------------------- student

    def list_available_rooms(self) -> list[Room]:
        records = self._store.select(
            "rooms",
            {"is_occupied": False},
            order_by="room_number",
        )
        return [Room.from_record(record) for record in records]

    def submit_booking(
        self,
        context: RequestContext,
        room_id: int,
        notes: Optional[str] = None,
    ) -> BookingRequest:
        try:
            room = self._store.get("rooms", {"id": room_id})
        except NotFoundError as exc:
            raise NotFoundError(f"Room {room_id} not found") from exc
        if room["is_occupied"]:
            raise ConflictError("This room is already occupied")

        if self._store.count(
            "room_allocations",
            {"student_id": context.user_id, "status": ALLOCATION_ACTIVE},
        ):
            raise ConflictError("You already have an active room allocation")
        if self._store.count(
            "booking_requests",
            {"student_id": context.user_id, "status": BOOKING_PENDING},
        ):
            raise ConflictError("You already have a pending booking request")

        record = self._store.insert(
            "booking_requests",
            {
                "student_id": context.user_id,
                "room_id": room_id,
                "request_date": self._clock.now().isoformat(),
                "status": BOOKING_PENDING,
                "notes": notes,
            },
        )
        logger.info("Student %s requested room %s", context.user_id, room["room_number"])
        return BookingRequest(
            id=int(record["id"]),
            student_id=str(record["student_id"]),
            room_id=int(record["room_id"]),
            request_date=str(record["request_date"]),
            status=str(record["status"]),
            notes=record.get("notes"),
        )

    def get_active_allocation(self, context: RequestContext) -> Optional[RoomAllocation]:
        records = self._store.select(
            "room_allocations",
            {"student_id": context.user_id, "status": ALLOCATION_ACTIVE},
            order_by="start_date",
            descending=True,
            limit=1,
            relations=("rooms",),
        )
        if not records:
            return None
        return RoomAllocation.from_record(records[0])

    def get_room_status(self, context: RequestContext) -> RoomStatus:
        allocation = self.get_active_allocation(context)
        if allocation is not None:
            return RoomStatus(allocation=allocation, has_pending_booking=False)
        pending = self._store.count(
            "booking_requests",
            {"student_id": context.user_id, "status": BOOKING_PENDING},
        )
        return RoomStatus(allocation=None, has_pending_booking=pending > 0)
