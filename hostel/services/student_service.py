"""Student profile and landing-page summary reads."""

from __future__ import annotations

from hostel.domain.errors import NotFoundError
from hostel.domain.models import ROLE_STUDENT, Profile, RequestContext, StudentDashboard
from hostel.repository.store import StoreClient
from hostel.services.allocation_service import BookingApprovalService
from hostel.services.laundry_service import LaundryService
from hostel.services.notification_service import NotificationService
from hostel.services.payment_service import PaymentWorkflowService
from hostel.utils.logger import get_logger


logger = get_logger(__name__)


class StudentService:
    """Read-only views over the caller's own records."""

    def __init__(
        self,
        store: StoreClient,
        allocation_service: BookingApprovalService,
        payment_service: PaymentWorkflowService,
        notification_service: NotificationService,
        laundry_service: LaundryService,
    ) -> None:
        self._store = store
        self._allocations = allocation_service
        self._payments = payment_service
        self._notifications = notification_service
        self._laundry = laundry_service

    def get_profile(self, context: RequestContext) -> Profile:
        try:
            record = self._store.get("profiles", {"id": context.user_id, "role": ROLE_STUDENT})
        except NotFoundError as exc:
            raise NotFoundError("Profile not found") from exc
        return Profile.from_record(record)

    def get_dashboard(self, context: RequestContext) -> StudentDashboard:
        profile = self.get_profile(context)
        dashboard = StudentDashboard(
            profile=profile,
            room_status=self._allocations.get_room_status(context),
            latest_payment=self._payments.latest_payment(context),
            unread_notifications=self._notifications.unread_count(context),
            open_laundry_requests=self._laundry.count_open(context),
        )
        logger.debug("Dashboard built for %s", context.user_id)
        return dashboard
