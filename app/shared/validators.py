"""Shared validation utilities"""

import re
from datetime import date, datetime, timezone
from typing import Optional, Union


def validate_br_phone(phone: Optional[str]) -> Optional[str]:
    """
    Validate and normalize a Brazilian phone number to E.164 format.

    Accepts numbers with or without the country code, with area code (DDD)
    and 8 or 9 subscriber digits.

    Returns:
        Normalized phone number (+55DDNNNNNNNNN)

    Raises:
        ValueError: If phone number is invalid
    """
    if not phone:
        return phone

    # Remove all non-digit characters
    digits = re.sub(r"\D", "", phone)

    # Handle +55 prefix
    if digits.startswith("55") and len(digits) in (12, 13):
        digits = digits[2:]

    if len(digits) not in (10, 11):
        raise ValueError("Phone number must have area code plus 8 or 9 digits")

    return f"+55{digits}"


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Lowercase and strip an email without validating it"""
    if not email:
        return None
    email = email.strip().lower()
    return email or None


def to_naive_utc(value: datetime) -> datetime:
    """Convert aware datetimes to naive UTC; naive values are assumed to be UTC already"""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_iso_datetime(value: Union[str, datetime, date, None]) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp or date into a naive UTC datetime.

    Date-only values map to midnight. Returns None when the value is empty
    or cannot be parsed.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    try:
        if len(text) == 10:
            parsed_date = date.fromisoformat(text)
            return datetime(parsed_date.year, parsed_date.month, parsed_date.day)
        return to_naive_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        return None


def parse_iso_date(value: Union[str, datetime, date, None]) -> Optional[date]:
    """Parse an ISO date (or the date part of a timestamp)"""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = parse_iso_datetime(value)
    return parsed.date() if parsed else None
