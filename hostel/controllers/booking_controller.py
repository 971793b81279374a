"""HTTP controller layer for room booking, approval and room status."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from hostel.controllers.dependencies import (
    get_allocation_service,
    get_student_context,
    require_admin,
    workflow_http_error,
)
from hostel.domain.errors import WorkflowError
from hostel.domain.models import BookingView, RequestContext, Room, RoomAllocation
from hostel.services.allocation_service import BookingApprovalService, BookingQuery
from hostel.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["bookings"])


class RoomResponse(BaseModel):
    id: int = Field(gt=0)
    room_number: str
    floor: int
    capacity: int = Field(gt=0)
    type: str
    price_per_month: float = Field(ge=0.0)
    is_occupied: bool


class StudentResponse(BaseModel):
    id: str
    full_name: str
    registration_number: str
    email: str


class BookingResponse(BaseModel):
    id: int = Field(gt=0)
    student_id: str
    room_id: int = Field(gt=0)
    request_date: str
    status: str
    notes: Optional[str] = None
    student: Optional[StudentResponse] = None
    room: Optional[RoomResponse] = None


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]


class BookingSubmitRequest(BaseModel):
    room_id: int = Field(gt=0)
    notes: Optional[str] = Field(default=None, max_length=500)


class AllocationResponse(BaseModel):
    id: int = Field(gt=0)
    room_id: int = Field(gt=0)
    start_date: str
    end_date: Optional[str] = None
    status: str
    room: Optional[RoomResponse] = None


class RoomStatusResponse(BaseModel):
    allocation: Optional[AllocationResponse] = None
    has_pending_booking: bool


class AvailableRoomsResponse(BaseModel):
    rooms: list[RoomResponse]


def room_response(room: Room) -> RoomResponse:
    return RoomResponse(
        id=room.id,
        room_number=room.room_number,
        floor=room.floor,
        capacity=room.capacity,
        type=room.type,
        price_per_month=room.price_per_month,
        is_occupied=room.is_occupied,
    )


def _booking_response(view: BookingView) -> BookingResponse:
    student = None
    if view.student is not None:
        student = StudentResponse(
            id=view.student.id,
            full_name=view.student.full_name,
            registration_number=view.student.registration_number,
            email=view.student.email,
        )
    return BookingResponse(
        id=view.booking.id,
        student_id=view.booking.student_id,
        room_id=view.booking.room_id,
        request_date=view.booking.request_date,
        status=view.booking.status,
        notes=view.booking.notes,
        student=student,
        room=room_response(view.room) if view.room is not None else None,
    )


def allocation_response(allocation: RoomAllocation) -> AllocationResponse:
    return AllocationResponse(
        id=allocation.id,
        room_id=allocation.room_id,
        start_date=allocation.start_date,
        end_date=allocation.end_date,
        status=allocation.status,
        room=room_response(allocation.room) if allocation.room is not None else None,
    )


def _decision_error(exc: WorkflowError) -> HTTPException:
    """Failed decisions carry the freshly re-read list so the console can re-render."""
    bookings = [
        _booking_response(view).model_dump() for view in (exc.snapshot or [])
    ]
    return workflow_http_error(exc, bookings=bookings)


def _booking_query(
    status_filter: str = Query(default="pending", alias="status"),
    sort_field: str = Query(default="request_date"),
    sort_order: str = Query(default="desc"),
    search: str = Query(default="", max_length=100),
) -> BookingQuery:
    return BookingQuery(
        status=status_filter,
        sort_field=sort_field,
        sort_order=sort_order,
        search=search,
    )


@router.get(
    "/admin/bookings",
    response_model=BookingListResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def list_bookings(
    query: BookingQuery = Depends(_booking_query),
    service: BookingApprovalService = Depends(get_allocation_service),
) -> BookingListResponse:
    try:
        views = service.list_bookings(query)
        return BookingListResponse(bookings=[_booking_response(view) for view in views])
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking list failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load booking requests",
        ) from exc


@router.post(
    "/admin/bookings/{booking_id}/approve",
    response_model=BookingListResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def approve_booking(
    booking_id: int,
    query: BookingQuery = Depends(_booking_query),
    service: BookingApprovalService = Depends(get_allocation_service),
) -> BookingListResponse:
    """Approve a pending booking: allocation and room occupancy are applied as a saga."""
    try:
        views = service.approve(booking_id, query)
        return BookingListResponse(bookings=[_booking_response(view) for view in views])
    except WorkflowError as exc:
        raise _decision_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking approval failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to approve booking request",
        ) from exc


@router.post(
    "/admin/bookings/{booking_id}/reject",
    response_model=BookingListResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def reject_booking(
    booking_id: int,
    query: BookingQuery = Depends(_booking_query),
    service: BookingApprovalService = Depends(get_allocation_service),
) -> BookingListResponse:
    try:
        views = service.reject(booking_id, query)
        return BookingListResponse(bookings=[_booking_response(view) for view in views])
    except WorkflowError as exc:
        raise _decision_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking rejection failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reject booking request",
        ) from exc


@router.get(
    "/rooms/available",
    response_model=AvailableRoomsResponse,
    status_code=status.HTTP_200_OK,
)
async def available_rooms(
    _: RequestContext = Depends(get_student_context),
    service: BookingApprovalService = Depends(get_allocation_service),
) -> AvailableRoomsResponse:
    return AvailableRoomsResponse(
        rooms=[room_response(room) for room in service.list_available_rooms()]
    )


@router.post(
    "/bookings",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_booking(
    payload: BookingSubmitRequest,
    context: RequestContext = Depends(get_student_context),
    service: BookingApprovalService = Depends(get_allocation_service),
) -> BookingResponse:
    try:
        booking = service.submit_booking(context, payload.room_id, payload.notes)
        return BookingResponse(
            id=booking.id,
            student_id=booking.student_id,
            room_id=booking.room_id,
            request_date=booking.request_date,
            status=booking.status,
            notes=booking.notes,
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking submission failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to submit booking request",
        ) from exc


@router.get(
    "/me/room",
    response_model=RoomStatusResponse,
    status_code=status.HTTP_200_OK,
)
async def room_status(
    context: RequestContext = Depends(get_student_context),
    service: BookingApprovalService = Depends(get_allocation_service),
) -> RoomStatusResponse:
    try:
        result = service.get_room_status(context)
        return RoomStatusResponse(
            allocation=(
                allocation_response(result.allocation)
                if result.allocation is not None
                else None
            ),
            has_pending_booking=result.has_pending_booking,
        )
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected room status failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch room status",
        ) from exc
