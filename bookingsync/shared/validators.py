"""Shared validation utilities"""

import re
from typing import Optional

EMAIL_PATTERN = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"


def clean_text(value: Optional[str]) -> Optional[str]:
    """Trim whitespace; empty strings become None"""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Returns:
        Lowercase email address, or None for a blank value

    Raises:
        ValueError: If email format is invalid
    """
    email = clean_text(email)
    if not email:
        return None

    email = email.lower()
    if not re.match(EMAIL_PATTERN, email):
        raise ValueError("Invalid email format")

    return email


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize US numbers to E.164 (+1XXXXXXXXXX); anything else is kept as typed.

    Booking forms accept international numbers, so unlike a strict US check
    this never rejects.
    """
    phone = clean_text(phone)
    if not phone:
        return None

    digits = re.sub(r"\D", "", phone)
    if digits.startswith("1") and len(digits) == 11:
        digits = digits[1:]
    if len(digits) == 10 and (not phone.startswith("+") or phone.startswith("+1")):
        return f"+1{digits}"
    return phone


def split_name(full_name: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """'Ada King Lovelace' -> ('Ada', 'King Lovelace')"""
    full_name = clean_text(full_name)
    if not full_name:
        return None, None
    parts = full_name.split(None, 1)
    return parts[0], parts[1] if len(parts) > 1 else None
