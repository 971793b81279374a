"""HTTP controller layer for the student's own profile and dashboard."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from hostel.controllers.booking_controller import AllocationResponse, allocation_response
from hostel.controllers.dependencies import (
    get_student_context,
    get_student_service,
    workflow_http_error,
)
from hostel.controllers.payment_controller import PaymentRow, payment_row
from hostel.domain.errors import WorkflowError
from hostel.domain.models import Profile, RequestContext
from hostel.services.student_service import StudentService
from hostel.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["students"])


class ProfileResponse(BaseModel):
    id: str
    full_name: str
    registration_number: str
    email: str
    phone: Optional[str] = None


class DashboardResponse(BaseModel):
    profile: ProfileResponse
    allocation: Optional[AllocationResponse] = None
    has_pending_booking: bool
    latest_payment: Optional[PaymentRow] = None
    unread_notifications: int = Field(ge=0)
    open_laundry_requests: int = Field(ge=0)


def _profile_response(profile: Profile) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        full_name=profile.full_name,
        registration_number=profile.registration_number,
        email=profile.email,
        phone=profile.phone,
    )


@router.get("/me/profile", response_model=ProfileResponse, status_code=status.HTTP_200_OK)
async def my_profile(
    context: RequestContext = Depends(get_student_context),
    service: StudentService = Depends(get_student_service),
) -> ProfileResponse:
    try:
        return _profile_response(service.get_profile(context))
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc


@router.get("/me/dashboard", response_model=DashboardResponse, status_code=status.HTTP_200_OK)
async def my_dashboard(
    context: RequestContext = Depends(get_student_context),
    service: StudentService = Depends(get_student_service),
) -> DashboardResponse:
    try:
        dashboard = service.get_dashboard(context)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected dashboard failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load dashboard",
        ) from exc

    allocation = dashboard.room_status.allocation
    return DashboardResponse(
        profile=_profile_response(dashboard.profile),
        allocation=allocation_response(allocation) if allocation is not None else None,
        has_pending_booking=dashboard.room_status.has_pending_booking,
        latest_payment=(
            payment_row(dashboard.latest_payment)
            if dashboard.latest_payment is not None
            else None
        ),
        unread_notifications=dashboard.unread_notifications,
        open_laundry_requests=dashboard.open_laundry_requests,
    )
