from datetime import datetime, time, timedelta
from typing import Any, Optional

from campus_feedback.errors import ValidationError
from campus_feedback.models.types import as_utc


def safe_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_datetime(value: Any, field: str, *, end_of_day: bool = False) -> datetime:
    """
    Accept datetimes, ISO-8601 strings ("Z" allowed) or bare YYYY-MM-DD dates.
    A bare date used as an upper bound covers the whole day.
    """
    if isinstance(value, datetime):
        return as_utc(value)
    s = str(value or "").strip()
    if not s:
        raise ValidationError(f"{field} is required", field=field)
    try:
        if len(s) == 10:
            d = datetime.strptime(s, "%Y-%m-%d")
            if end_of_day:
                d = datetime.combine(d.date(), time.max)
            return as_utc(d)
        return as_utc(datetime.fromisoformat(s.replace("Z", "+00:00")))
    except ValueError:
        raise ValidationError(f"{field} is not a valid date: {value!r}", field=field) from None


def format_duration(delta: timedelta) -> str:
    """Coarse human duration: '3d 4h', '2h 5m', '45s'. Negative spans clamp to 0s."""
    seconds = max(int(delta.total_seconds()), 0)
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
