"""Student notifications: listing, read state and a live insert feed."""

from __future__ import annotations

from typing import Optional

from hostel.domain.errors import InputValidationError, NotFoundError, WorkflowError
from hostel.domain.models import NOTIFICATION_TYPES, Notification, RequestContext
from hostel.repository.change_feed import INSERT, Subscription
from hostel.repository.store import StoreClient
from hostel.utils.clock import Clock, SystemClock
from hostel.utils.config import Settings, get_settings
from hostel.utils.logger import get_logger


logger = get_logger(__name__)


class NotificationService:
    def __init__(
        self,
        store: StoreClient,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._clock = clock or SystemClock()

    def notify(
        self,
        student_id: str,
        title: str,
        message: str,
        type: str = "info",
        link: Optional[str] = None,
    ) -> Notification:
        if type not in NOTIFICATION_TYPES:
            raise InputValidationError(f"Unknown notification type: {type}")
        record = self._store.insert(
            "notifications",
            {
                "student_id": student_id,
                "title": title,
                "message": message,
                "type": type,
                "read": False,
                "created_at": self._clock.now().isoformat(),
                "link": link,
            },
        )
        return Notification.from_record(record)

    def notify_quietly(self, student_id: str, title: str, message: str, type: str = "info") -> None:
        """Post a notification as a side effect; failures are logged, never raised."""
        try:
            self.notify(student_id, title, message, type)
        except WorkflowError:
            logger.warning(
                "Could not notify student %s (%s)", student_id, title, exc_info=True
            )

    def list_recent(
        self,
        context: RequestContext,
        limit: Optional[int] = None,
    ) -> list[Notification]:
        page_size = limit if limit is not None else self._settings.notification_page_size
        if page_size <= 0:
            raise InputValidationError("limit must be > 0")
        records = self._store.select(
            "notifications",
            {"student_id": context.user_id},
            order_by="created_at",
            descending=True,
            limit=page_size,
        )
        return [Notification.from_record(record) for record in records]

    def unread_count(self, context: RequestContext) -> int:
        return self._store.count(
            "notifications",
            {"student_id": context.user_id, "read": False},
        )

    def mark_read(self, context: RequestContext, notification_id: int) -> Notification:
        try:
            self._store.get(
                "notifications",
                {"id": notification_id, "student_id": context.user_id},
            )
        except NotFoundError as exc:
            raise NotFoundError(f"Notification {notification_id} not found") from exc
        self._store.update("notifications", notification_id, {"read": True})
        return Notification.from_record(
            self._store.get("notifications", {"id": notification_id})
        )

    def open_feed(self, context: RequestContext) -> Subscription:
        """Subscribe to new notifications addressed to the caller."""
        return self._store.subscribe(
            "notifications",
            (INSERT,),
            {"student_id": context.user_id},
        )
