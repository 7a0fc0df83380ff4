"""Human-readable message timestamps.

    today            -> "3:04 PM"
    yesterday        -> "Yesterday 3:04 PM"
    this year        -> "Mar 5, 3:04 PM"
    another year     -> "Mar 5, 2023, 3:04 PM"
"""
from datetime import datetime, timedelta
from typing import Optional, Union

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

Timestamp = Union[str, datetime]


def _parse(timestamp: Timestamp) -> datetime:
    if isinstance(timestamp, datetime):
        return timestamp
    # fromisoformat() only accepts a trailing "Z" from Python 3.11 on
    return datetime.fromisoformat(timestamp.replace("Z", "+00:00"))


def _clock(dt: datetime) -> str:
    hour = dt.hour % 12 or 12
    suffix = "AM" if dt.hour < 12 else "PM"
    return f"{hour}:{dt.minute:02d} {suffix}"


def format_timestamp(
    timestamp: Timestamp,
    now: Optional[datetime] = None,
    include_year: bool = True,
) -> str:
    """Format a message timestamp relative to ``now`` (local time by default).

    Args:
        timestamp: ISO-8601 string or datetime. Naive values are local time.
        now: Reference time; defaults to the current local time.
        include_year: Show the year for dates outside the current year.
    """
    if now is None or now.tzinfo is None:
        now = (now or datetime.now()).astimezone()
    dt = _parse(timestamp).astimezone(now.tzinfo)

    if dt.date() == now.date():
        return _clock(dt)
    if dt.date() == (now - timedelta(days=1)).date():
        return f"Yesterday {_clock(dt)}"

    date_part = f"{MONTHS[dt.month - 1]} {dt.day}"
    if include_year and dt.year != now.year:
        date_part = f"{date_part}, {dt.year}"
    return f"{date_part}, {_clock(dt)}"


def format_message_time(timestamp: Timestamp, now: Optional[datetime] = None) -> str:
    """Compact variant used inside chat bubbles (never shows the year)."""
    return format_timestamp(timestamp, now=now, include_year=False)
