"""Controller layer for student notifications."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from hostel.controllers.dependencies import (
    get_notification_service,
    get_student_context,
    workflow_http_error,
)
from hostel.domain.errors import WorkflowError
from hostel.domain.models import Notification, RequestContext
from hostel.services.notification_service import NotificationService
from hostel.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["notifications"])


class NotificationRow(BaseModel):
    id: int = Field(gt=0)
    title: str
    message: str
    type: str
    read: bool
    created_at: str
    link: Optional[str] = None


class NotificationListResponse(BaseModel):
    notifications: list[NotificationRow]
    unread_count: int = Field(ge=0)


def _notification_row(notification: Notification) -> NotificationRow:
    return NotificationRow(
        id=notification.id,
        title=notification.title,
        message=notification.message,
        type=notification.type,
        read=notification.read,
        created_at=notification.created_at,
        link=notification.link,
    )


@router.get(
    "/notifications",
    response_model=NotificationListResponse,
    status_code=status.HTTP_200_OK,
)
async def list_notifications(
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    context: RequestContext = Depends(get_student_context),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationListResponse:
    try:
        return NotificationListResponse(
            notifications=[
                _notification_row(item) for item in service.list_recent(context, limit)
            ],
            unread_count=service.unread_count(context),
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc


@router.post(
    "/notifications/{notification_id}/read",
    response_model=NotificationRow,
    status_code=status.HTTP_200_OK,
)
async def mark_notification_read(
    notification_id: int,
    context: RequestContext = Depends(get_student_context),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationRow:
    try:
        return _notification_row(service.mark_read(context, notification_id))
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected notification update failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update notification",
        ) from exc
