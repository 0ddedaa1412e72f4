"""
Timezone helpers for projecting UTC instants into a reminder's local time.

All persisted timestamps are naive UTC. Local projection uses the IANA
database through zoneinfo; unknown or empty zone names fall back to UTC.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from notifier.src.utils.intervals import to_naive_utc


WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


@dataclass(frozen=True)
class LocalTime:
    """Wall-clock view of an instant in a given zone."""

    weekday: str
    hour: int
    minute: int
    date: date


def get_zone(tz_name: Optional[str]):
    """
    Resolve an IANA zone name.

    Args:
        tz_name: Zone name such as "Europe/Bucharest"

    Returns:
        ZoneInfo for the name, or UTC when the name is empty or unknown
    """
    if not tz_name:
        return timezone.utc
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def to_local(instant_utc: datetime, tz_name: Optional[str]) -> datetime:
    aware = to_naive_utc(instant_utc).replace(tzinfo=timezone.utc)
    return aware.astimezone(get_zone(tz_name))


def project_to_local(instant_utc: datetime, tz_name: Optional[str]) -> LocalTime:
    """
    Project a UTC instant into local wall-clock fields.

    Example:
        >>> project_to_local(datetime(2026, 1, 6, 8, 0), "Europe/Bucharest")
        LocalTime(weekday='tuesday', hour=10, minute=0, date=datetime.date(2026, 1, 6))
    """
    local = to_local(instant_utc, tz_name)
    return LocalTime(
        weekday=WEEKDAY_NAMES[local.weekday()],
        hour=local.hour,
        minute=local.minute,
        date=local.date(),
    )


def resolve_time_zone(reminder_tz: Optional[str], user_tz: Optional[str]) -> str:
    """
    Pick the zone used for quiet hours and display.

    The reminder's own zone wins unless it is missing or the "UTC"
    placeholder, then the recipient profile zone, then UTC.
    """
    if reminder_tz and reminder_tz != "UTC":
        return reminder_tz
    if user_tz:
        return user_tz
    return reminder_tz or "UTC"


def format_local(instant_utc: Optional[datetime], tz_name: Optional[str]) -> str:
    """Format an instant for notification bodies, e.g. "06 Jan 2026 10:00"."""
    if instant_utc is None:
        return ""
    return to_local(instant_utc, tz_name).strftime("%d %b %Y %H:%M")
