"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from hostel.domain.errors import WorkflowError
from hostel.domain.models import RequestContext
from hostel.services.allocation_service import BookingApprovalService
from hostel.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
    UnknownStudentError,
)
from hostel.services.laundry_service import LaundryService
from hostel.services.notification_service import NotificationService
from hostel.services.payment_service import PaymentWorkflowService
from hostel.services.student_service import StudentService
from hostel.utils.config import Settings, get_settings


bearer_scheme = HTTPBearer(auto_error=False)

ERROR_STATUS_CODES = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "validation": status.HTTP_400_BAD_REQUEST,
    "gateway": status.HTTP_502_BAD_GATEWAY,
    "write": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "timeout": status.HTTP_504_GATEWAY_TIMEOUT,
}


def workflow_http_error(exc: WorkflowError, **extra: Any) -> HTTPException:
    """Translate a workflow failure into a structured HTTP error."""
    detail = exc.to_detail()
    detail.update(extra)
    return HTTPException(
        status_code=ERROR_STATUS_CODES.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=detail,
    )


def _service_from_state(request: Request, attribute: str, label: str) -> Any:
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_auth_service(request: Request) -> AuthService:
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = AuthService(
            settings=get_app_settings(request),
            store=getattr(request.app.state, "store", None),
        )
        request.app.state.auth_service = service
    return service


def get_allocation_service(request: Request) -> BookingApprovalService:
    return _service_from_state(request, "allocation_service", "Allocation service")


def get_payment_service(request: Request) -> PaymentWorkflowService:
    return _service_from_state(request, "payment_service", "Payment service")


def get_laundry_service(request: Request) -> LaundryService:
    return _service_from_state(request, "laundry_service", "Laundry service")


def get_notification_service(request: Request) -> NotificationService:
    return _service_from_state(request, "notification_service", "Notification service")


def get_student_service(request: Request) -> StudentService:
    return _service_from_state(request, "student_service", "Student service")


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> RequestContext | None:
    if not auth_service.auth_enabled:
        return None
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
        )
    try:
        return auth_service.validate_bearer_token(credentials.credentials)
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


def get_student_context(
    x_student_id: str | None = Header(default=None),
    auth_service: AuthService = Depends(get_auth_service),
) -> RequestContext:
    """Caller identity as asserted by the upstream identity provider."""
    if not x_student_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Student-Id header is required",
        )
    try:
        return auth_service.resolve_student(x_student_id)
    except UnknownStudentError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(exc),
        ) from exc
