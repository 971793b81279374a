"""Admin token authentication and caller identity resolution."""

from __future__ import annotations

import secrets
from typing import Optional

from hostel.domain.errors import NotFoundError
from hostel.domain.models import ROLE_ADMIN, ROLE_STUDENT, RequestContext
from hostel.repository.store import StoreClient
from hostel.utils.config import Settings, get_settings


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when provided token is invalid."""


class UnknownStudentError(AuthenticationError):
    """Raised when the asserted student identity has no student profile."""


class AuthService:
    """Validates admin login/bearer tokens and builds explicit request contexts."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[StoreClient] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._session_token: str | None = None

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.admin_token)

    def _expected_token(self) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        return self._settings.admin_token

    def login(self, provided_admin_token: str) -> str:
        expected = self._expected_token()
        if not secrets.compare_digest(provided_admin_token, expected):
            raise InvalidAdminTokenError("Invalid admin token")
        self._session_token = secrets.token_urlsafe(32)
        return self._session_token

    def validate_bearer_token(self, bearer_token: str) -> RequestContext:
        admin = RequestContext(user_id=ROLE_ADMIN, role=ROLE_ADMIN)
        if not self.auth_enabled:
            return admin
        if self._session_token is None:
            raise InvalidAdminTokenError("No active session. Login first.")
        if not secrets.compare_digest(bearer_token, self._session_token):
            raise InvalidAdminTokenError("Invalid bearer token")
        return admin

    def resolve_student(self, student_id: str) -> RequestContext:
        """Turn an identity asserted by the upstream provider into a RequestContext."""
        student_id = (student_id or "").strip()
        if not student_id:
            raise UnknownStudentError("Student identity is required")
        if self._store is not None:
            try:
                profile = self._store.get("profiles", {"id": student_id})
            except NotFoundError as exc:
                raise UnknownStudentError(f"Unknown student {student_id}") from exc
            if profile.get("role") != ROLE_STUDENT:
                raise UnknownStudentError("Unauthorized: Student access only")
        return RequestContext(user_id=student_id, role=ROLE_STUDENT)
