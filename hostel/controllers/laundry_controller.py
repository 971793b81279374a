"""Controller layer for laundry requests (student submission, admin progression)."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from hostel.controllers.dependencies import (
    get_laundry_service,
    get_student_context,
    require_admin,
    workflow_http_error,
)
from hostel.domain.errors import WorkflowError
from hostel.domain.models import LaundryRequest, RequestContext
from hostel.services.laundry_service import LaundryService
from hostel.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["laundry"])


class LaundrySubmitRequest(BaseModel):
    number_of_clothes: int = Field(gt=0, le=200)
    pickup_time: datetime
    special_instructions: str = Field(default="", max_length=500)


class LaundryRow(BaseModel):
    id: int = Field(gt=0)
    student_id: str
    student_name: Optional[str] = None
    room_number: str
    number_of_clothes: int = Field(gt=0)
    special_instructions: str
    pickup_time: str
    status: str
    created_at: str


class LaundryListResponse(BaseModel):
    requests: list[LaundryRow]


def _laundry_row(request: LaundryRequest) -> LaundryRow:
    return LaundryRow(
        id=request.id,
        student_id=request.student_id,
        student_name=request.student_name,
        room_number=request.room_number,
        number_of_clothes=request.number_of_clothes,
        special_instructions=request.special_instructions,
        pickup_time=request.pickup_time,
        status=request.status,
        created_at=request.created_at,
    )


@router.post("/laundry", response_model=LaundryRow, status_code=status.HTTP_201_CREATED)
async def submit_laundry(
    payload: LaundrySubmitRequest,
    context: RequestContext = Depends(get_student_context),
    service: LaundryService = Depends(get_laundry_service),
) -> LaundryRow:
    try:
        request = service.submit(
            context,
            payload.number_of_clothes,
            payload.pickup_time,
            payload.special_instructions,
        )
        return _laundry_row(request)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected laundry submission failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to submit laundry request",
        ) from exc


@router.get("/laundry", response_model=LaundryListResponse, status_code=status.HTTP_200_OK)
async def list_my_laundry(
    context: RequestContext = Depends(get_student_context),
    service: LaundryService = Depends(get_laundry_service),
) -> LaundryListResponse:
    return LaundryListResponse(
        requests=[_laundry_row(request) for request in service.list_for_student(context)]
    )


@router.get(
    "/admin/laundry",
    response_model=LaundryListResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def list_all_laundry(
    service: LaundryService = Depends(get_laundry_service),
) -> LaundryListResponse:
    return LaundryListResponse(
        requests=[_laundry_row(request) for request in service.list_all()]
    )


@router.post(
    "/admin/laundry/{request_id}/advance",
    response_model=LaundryRow,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def advance_laundry(
    request_id: int,
    service: LaundryService = Depends(get_laundry_service),
) -> LaundryRow:
    try:
        return _laundry_row(service.advance(request_id))
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected laundry status failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update laundry request",
        ) from exc
