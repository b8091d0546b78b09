"""
Shared helpers for dates and pagination
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Tuple

from .errors import ValidationError


def to_utc_datetime(value: Any, field: str = "date", end_of_day: bool = False) -> Optional[datetime]:
    """
    Normalize a date/datetime/ISO string to an aware UTC datetime.

    Naive values are taken as UTC. A date-only value resolves to the start
    of that day, or to its last microsecond when end_of_day is set so that
    an inclusive "to" bound covers the whole day.
    """
    if value is None or value == "":
        return None

    date_only = False
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime.combine(value, time.min)
        date_only = True
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            if len(text) == 10:
                result = datetime.combine(date.fromisoformat(text), time.min)
                date_only = True
            else:
                result = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO 8601 date")
    else:
        raise ValidationError(f"{field} must be an ISO 8601 date")

    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    else:
        result = result.astimezone(timezone.utc)

    if date_only and end_of_day:
        result = result + timedelta(days=1) - timedelta(microseconds=1)
    return result


def normalize_page(limit: Optional[int], offset: Optional[int],
                   default_limit: int = 50, max_limit: int = 200) -> Tuple[int, int]:
    """Apply pagination defaults; limit is capped at max_limit"""
    if limit is None:
        limit = default_limit
    if offset is None:
        offset = 0
    if limit < 1:
        raise ValidationError("limit must be a positive integer")
    if offset < 0:
        raise ValidationError("offset cannot be negative")
    return min(limit, max_limit), offset
