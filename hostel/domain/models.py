"""Domain records for bookings, allocations, payments, laundry and notifications."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional


BOOKING_PENDING = "pending"
BOOKING_APPROVED = "approved"
BOOKING_REJECTED = "rejected"
BOOKING_STATUSES = (BOOKING_PENDING, BOOKING_APPROVED, BOOKING_REJECTED)

ALLOCATION_ACTIVE = "active"
ALLOCATION_INACTIVE = "inactive"

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"

LAUNDRY_FLOW = {
    "pending": "processing",
    "processing": "ready",
    "ready": "collected",
    "collected": None,
}

NOTIFICATION_TYPES = ("info", "warning", "success", "error")

ROLE_STUDENT = "student"
ROLE_ADMIN = "admin"


@dataclass(frozen=True)
class RequestContext:
    """Caller identity supplied explicitly to every student-scoped call."""

    user_id: str
    role: str = ROLE_STUDENT


@dataclass(frozen=True)
class Room:
    id: int
    room_number: str
    floor: int
    capacity: int
    type: str
    price_per_month: float
    is_occupied: bool

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Room":
        return cls(
            id=int(record["id"]),
            room_number=str(record["room_number"]),
            floor=int(record["floor"]),
            capacity=int(record["capacity"]),
            type=str(record["type"]),
            price_per_month=float(record["price_per_month"]),
            is_occupied=bool(record["is_occupied"]),
        )


@dataclass(frozen=True)
class Profile:
    id: str
    full_name: str
    registration_number: str
    email: str
    role: str
    phone: Optional[str] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Profile":
        return cls(
            id=str(record["id"]),
            full_name=str(record.get("full_name") or ""),
            registration_number=str(record.get("registration_number") or ""),
            email=str(record.get("email") or ""),
            role=str(record.get("role") or ROLE_STUDENT),
            phone=record.get("phone"),
        )


@dataclass(frozen=True)
class BookingRequest:
    id: int
    student_id: str
    room_id: int
    request_date: str
    status: str
    notes: Optional[str]


@dataclass(frozen=True)
class BookingView:
    """Booking joined with its student profile and room for the admin list."""

    booking: BookingRequest
    student: Optional[Profile]
    room: Optional[Room]

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "BookingView":
        profile = record.get("profiles")
        room = record.get("rooms")
        return cls(
            booking=BookingRequest(
                id=int(record["id"]),
                student_id=str(record["student_id"]),
                room_id=int(record["room_id"]),
                request_date=str(record["request_date"]),
                status=str(record["status"]),
                notes=record.get("notes"),
            ),
            student=Profile.from_record(profile) if profile else None,
            room=Room.from_record(room) if room else None,
        )


@dataclass(frozen=True)
class RoomAllocation:
    id: int
    student_id: str
    room_id: int
    start_date: str
    end_date: Optional[str]
    status: str
    room: Optional[Room] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "RoomAllocation":
        room = record.get("rooms")
        return cls(
            id=int(record["id"]),
            student_id=str(record["student_id"]),
            room_id=int(record["room_id"]),
            start_date=str(record["start_date"]),
            end_date=record.get("end_date"),
            status=str(record["status"]),
            room=Room.from_record(room) if room else None,
        )


@dataclass(frozen=True)
class RoomStatus:
    allocation: Optional[RoomAllocation]
    has_pending_booking: bool


@dataclass(frozen=True)
class Payment:
    id: int
    student_id: str
    amount: float
    status: str
    payment_date: str
    payment_method: str
    reference_number: str
    month: str
    checkout_request_id: Optional[str]
    transaction_code: Optional[str]

    @property
    def is_terminal(self) -> bool:
        return self.status in (PAYMENT_COMPLETED, PAYMENT_FAILED)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Payment":
        return cls(
            id=int(record["id"]),
            student_id=str(record["student_id"]),
            amount=float(record["amount"]),
            status=str(record["status"]),
            payment_date=str(record["payment_date"]),
            payment_method=str(record["payment_method"]),
            reference_number=str(record["reference_number"]),
            month=str(record["month"]),
            checkout_request_id=record.get("checkout_request_id"),
            transaction_code=record.get("transaction_code"),
        )


@dataclass(frozen=True)
class Notification:
    id: int
    student_id: str
    title: str
    message: str
    type: str
    read: bool
    created_at: str
    link: Optional[str] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Notification":
        return cls(
            id=int(record["id"]),
            student_id=str(record["student_id"]),
            title=str(record["title"]),
            message=str(record["message"]),
            type=str(record["type"]),
            read=bool(record["read"]),
            created_at=str(record["created_at"]),
            link=record.get("link"),
        )


@dataclass(frozen=True)
class LaundryRequest:
    id: int
    student_id: str
    room_number: str
    number_of_clothes: int
    special_instructions: str
    pickup_time: str
    status: str
    created_at: str
    student_name: Optional[str] = None

    @property
    def next_status(self) -> Optional[str]:
        return LAUNDRY_FLOW.get(self.status)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "LaundryRequest":
        profile = record.get("profiles")
        return cls(
            id=int(record["id"]),
            student_id=str(record["student_id"]),
            room_number=str(record["room_number"]),
            number_of_clothes=int(record["number_of_clothes"]),
            special_instructions=str(record.get("special_instructions") or ""),
            pickup_time=str(record["pickup_time"]),
            status=str(record["status"]),
            created_at=str(record["created_at"]),
            student_name=profile.get("full_name") if profile else None,
        )


@dataclass(frozen=True)
class StudentDashboard:
    """Summary shown on the student landing page."""

    profile: Profile
    room_status: RoomStatus
    latest_payment: Optional[Payment]
    unread_notifications: int
    open_laundry_requests: int
