"""Process logging setup with subscriber phone numbers masked."""

from __future__ import annotations

import logging
import re
import sys
from typing import Optional

from hostel.utils.config import get_settings


_LOGGER_INITIALIZED = False

# 2547XXXXXXXX / +2541XXXXXXXX / 07XXXXXXXX, not part of a longer digit run.
_PHONE_PATTERN = re.compile(r"(?<!\d)(\+?254[17]\d{2}|0[17]\d{2})(\d{4})(\d{2})(?!\d)")


def mask_phone_numbers(text: str) -> str:
    """Replace the middle four digits of every Kenyan mobile number with asterisks."""
    return _PHONE_PATTERN.sub(lambda match: f"{match.group(1)}****{match.group(3)}", text)


class PhoneNumberMaskingFilter(logging.Filter):
    """Renders the record once and masks phone numbers in the final message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_phone_numbers(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process-wide logging once.

    Payment logs carry the M-Pesa number an STK push was sent to, so every
    root handler gets the masking filter.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    resolved_level = (level or get_settings().log_level).upper()

    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(existing, PhoneNumberMaskingFilter) for existing in handler.filters):
            handler.addFilter(PhoneNumberMaskingFilter())
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)
