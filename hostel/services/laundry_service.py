"""Laundry pickup requests and their admin-driven status lifecycle."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from hostel.domain.constraints import validate_laundry_request
from hostel.domain.errors import ConflictError, NotFoundError
from hostel.domain.models import (
    ALLOCATION_ACTIVE,
    LAUNDRY_FLOW,
    LaundryRequest,
    RequestContext,
    RoomAllocation,
)
from hostel.repository.store import Guard, StoreClient
from hostel.services.notification_service import NotificationService
from hostel.utils.clock import Clock, SystemClock
from hostel.utils.logger import get_logger


logger = get_logger(__name__)


class LaundryService:
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

    def submit(
        self,
        context: RequestContext,
        number_of_clothes: int,
        pickup_time: datetime,
        special_instructions: str = "",
    ) -> LaundryRequest:
        now = self._clock.now()
        validate_laundry_request(number_of_clothes, pickup_time, now)

        allocations = self._store.select(
            "room_allocations",
            {"student_id": context.user_id, "status": ALLOCATION_ACTIVE},
            limit=1,
            relations=("rooms",),
        )
        allocation = RoomAllocation.from_record(allocations[0]) if allocations else None
        if allocation is None or allocation.room is None:
            raise NotFoundError("No active room allocation found")

        record = self._store.insert(
            "laundry_requests",
            {
                "student_id": context.user_id,
                "room_number": allocation.room.room_number,
                "number_of_clothes": number_of_clothes,
                "special_instructions": special_instructions or "",
                "pickup_time": pickup_time.isoformat(),
                "status": "pending",
                "created_at": now.isoformat(),
            },
        )
        logger.info("Laundry request %s submitted by %s", record["id"], context.user_id)
        return LaundryRequest.from_record(record)

    def list_for_student(self, context: RequestContext) -> list[LaundryRequest]:
        records = self._store.select(
            "laundry_requests",
            {"student_id": context.user_id},
            order_by="created_at",
            descending=True,
        )
        return [LaundryRequest.from_record(record) for record in records]

    def count_open(self, context: RequestContext) -> int:
        """Requests not yet collected."""
        return sum(
            self._store.count("laundry_requests", {"student_id": context.user_id, "status": status})
            for status, next_status in LAUNDRY_FLOW.items()
            if next_status is not None
        )

    def list_all(self) -> list[LaundryRequest]:
        records = self._store.select(
            "laundry_requests",
            order_by="created_at",
            descending=True,
            relations=("profiles",),
        )
        return [LaundryRequest.from_record(record) for record in records]

    def advance(self, request_id: int) -> LaundryRequest:
        """Move a request one step along pending -> processing -> ready -> collected."""
        try:
            current = LaundryRequest.from_record(
                self._store.get("laundry_requests", {"id": request_id})
            )
        except NotFoundError as exc:
            raise NotFoundError(f"Laundry request {request_id} not found") from exc

        next_status = current.next_status
        if next_status is None:
            raise ConflictError(f"Laundry request {request_id} is already {current.status}")

        affected = self._store.update(
            "laundry_requests",
            request_id,
            {"status": next_status},
            guard=Guard("status", current.status),
        )
        if affected == 0:
            raise ConflictError(f"Laundry request {request_id} was updated concurrently")

        logger.info("Laundry request %s moved %s -> %s", request_id, current.status, next_status)
        if next_status == "ready":
            self._notifications.notify_quietly(
                current.student_id,
                "Laundry ready",
                "Your laundry is ready for collection.",
                "info",
            )
        return LaundryRequest.from_record(
            self._store.get("laundry_requests", {"id": request_id})
        )
