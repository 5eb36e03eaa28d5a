"""
Input validation applied before any store access.
"""

from datetime import datetime
from typing import Any, Optional

from fleetops.shared.utils import parse_datetime
from .errors import ValidationError


def require_fields(**fields: Any) -> None:
    """Raise ValidationError naming every missing (None or blank) field"""
    missing = [
        name for name, value in fields.items()
        if value is None or (isinstance(value, str) and not value.strip())
    ]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")


def validate_departure_time(value: Any, tz) -> datetime:
    """Coerce a departure time into an aware datetime; naive values are read in tz"""
    if value is None or value == "":
        raise ValidationError("Missing required field(s): departure_time")
    try:
        parsed = parse_datetime(value, tz)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid departure time {value!r}: {e}") from e
    return parsed


def validate_period_days(days: Any) -> int:
    try:
        days = int(days)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid number of days: {days!r}")
    if days <= 0:
        raise ValidationError(f"Number of days must be positive, got {days}")
    return days


def validate_fare(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        fare = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid fare: {value!r}")
    if fare < 0:
        raise ValidationError(f"Fare must be non-negative, got {fare}")
    return fare
