"""
Busy interval utilities.

Busy intervals come from the calendar provider as ISO 8601 strings and are
stored on the user's calendar connection as a JSON list. This module parses
them into naive-UTC BusyInterval values, normalizes them (drop invalid or
zero-length, sort, merge overlaps) and answers "which interval contains this
instant" with a binary search.
"""

from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union


@dataclass(frozen=True)
class BusyInterval:
    """
    Half-open busy interval [start, end) in naive UTC.

    Attributes:
        start: Inclusive start
        end: Exclusive end
    """

    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end

    def to_dict(self) -> Dict[str, str]:
        """Serialize for the free/busy cache column."""
        return {"start": format_utc(self.start), "end": format_utc(self.end)}


def format_utc(value: datetime) -> str:
    """
    Format a naive UTC datetime as an ISO 8601 string with a Z suffix.

    Example:
        >>> format_utc(datetime(2026, 3, 1, 9, 0))
        '2026-03-01T09:00:00Z'
    """
    return to_naive_utc(value).replace(microsecond=0).isoformat() + "Z"


def parse_utc(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp into a naive UTC datetime.

    Offsets are honored; strings without an offset are taken as UTC.
    Returns None for empty or unparseable input.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return to_naive_utc(parsed)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _coerce(raw: Any) -> Optional[BusyInterval]:
    if isinstance(raw, BusyInterval):
        return raw
    if not isinstance(raw, dict):
        return None
    start = parse_utc(raw.get("start"))
    end = parse_utc(raw.get("end"))
    if start is None or end is None:
        return None
    return BusyInterval(start=start, end=end)


def normalize_busy_intervals(raw_intervals: Optional[Iterable[Any]]) -> List[BusyInterval]:
    """
    Normalize raw busy intervals.

    Drops entries that cannot be parsed or whose end is not after their
    start, sorts by start, then merges overlapping and touching intervals.

    Args:
        raw_intervals: Provider dicts ({"start", "end"}) or BusyInterval values

    Returns:
        Sorted, non-overlapping list of BusyInterval
    """
    parsed = []
    for raw in raw_intervals or []:
        interval = _coerce(raw)
        if interval is None or interval.end <= interval.start:
            continue
        parsed.append(interval)

    parsed.sort(key=lambda i: (i.start, i.end))

    merged: List[BusyInterval] = []
    for interval in parsed:
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            if interval.end > last.end:
                merged[-1] = BusyInterval(start=last.start, end=interval.end)
            continue
        merged.append(interval)

    return merged


def find_interval_at(
    intervals: List[BusyInterval],
    instant: datetime
) -> Optional[BusyInterval]:
    """
    Find the interval containing an instant.

    Args:
        intervals: Sorted, non-overlapping intervals (see normalize_busy_intervals)
        instant: Naive UTC instant

    Returns:
        The containing interval (start inclusive, end exclusive) or None
    """
    if not intervals:
        return None
    starts = [interval.start for interval in intervals]
    index = bisect_right(starts, instant) - 1
    if index < 0:
        return None
    candidate = intervals[index]
    return candidate if candidate.contains(instant) else None


def intervals_to_json(intervals: Iterable[BusyInterval]) -> List[Dict[str, str]]:
    return [interval.to_dict() for interval in intervals]
