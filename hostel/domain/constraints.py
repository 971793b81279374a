"""Domain-level validation rules for payments and laundry requests."""

from __future__ import annotations

import re
from datetime import datetime

from hostel.domain.errors import InputValidationError


SUBSCRIBER_DIGITS = 9
_NON_DIGITS = re.compile(r"[^0-9]")


def normalize_phone_number(raw: str, country_code: str = "254") -> str:
    """Return `<country-code><9-digit-subscriber>` or raise InputValidationError.

    Accepts local (`0712345678`), international (`254712345678`, `+254 712 345 678`)
    and bare subscriber (`712345678`) forms.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if digits.startswith("0"):
        digits = f"{country_code}{digits[1:]}"
    elif not digits.startswith(country_code):
        digits = f"{country_code}{digits}"

    pattern = rf"{re.escape(country_code)}[0-9]{{{SUBSCRIBER_DIGITS}}}"
    if re.fullmatch(pattern, digits) is None:
        raise InputValidationError(
            "Please enter a valid phone number "
            f"(e.g., 0712345678 or {country_code}712345678)"
        )
    return digits


def validate_payment_amount(amount: float) -> None:
    if amount <= 0:
        raise InputValidationError("amount must be greater than 0")


def validate_laundry_request(
    number_of_clothes: int,
    pickup_time: datetime,
    now: datetime,
) -> None:
    if number_of_clothes <= 0:
        raise InputValidationError("Number of clothes must be greater than 0")
    if pickup_time.tzinfo is None:
        raise InputValidationError("pickup_time must include a timezone offset")
    if pickup_time < now:
        raise InputValidationError("Pickup time cannot be in the past")
