from datetime import datetime, date, timedelta
from typing import Any, Optional

import pytz


def ensure_aware(value: datetime, tz) -> datetime:
    """Attach tz to naive datetimes; aware ones are returned unchanged"""
    if value.tzinfo is None:
        return tz.localize(value)
    return value


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = pytz.utc.localize(value)
    return value.astimezone(pytz.utc)


def parse_datetime(value: Any, tz=pytz.utc) -> Optional[datetime]:
    """Accept datetimes, dates, ISO strings (with optional trailing Z) and epoch seconds"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_aware(value, tz)
    if isinstance(value, date):
        return tz.localize(datetime(value.year, value.month, value.day))
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, pytz.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_aware(datetime.fromisoformat(text), tz)
    raise ValueError(f"Unsupported datetime value: {value!r}")


def start_of_day(moment: datetime, tz) -> datetime:
    local = moment.astimezone(tz)
    return tz.localize(datetime(local.year, local.month, local.day))


def day_bounds(day: date, tz):
    """Start of a calendar day in tz and the start of the next one (exclusive end)"""
    start = tz.localize(datetime(day.year, day.month, day.day))
    following = day + timedelta(days=1)
    return start, tz.localize(datetime(following.year, following.month, following.day))
