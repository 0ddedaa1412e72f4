"""
Delivery context evaluation for reminders.

Decides whether a due notification is delivered now, deferred briefly
because it falls outside the reminder's allowed time window, or
auto-snoozed past the end of a busy calendar block.

The evaluation is a pure function of its inputs. Settings are parsed from
the loosely-typed camelCase JSON stored by the web application into
ContextSettings with explicit defaults and clamping.
"""

import enum
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from notifier.src.utils.intervals import BusyInterval
from notifier.src.utils.timezone import WEEKDAY_NAMES, project_to_local


DEFER_SHORT_DELAY = timedelta(minutes=15)
BUSY_END_BUFFER = timedelta(minutes=2)

DEFAULT_START_HOUR = 9
DEFAULT_END_HOUR = 20
DEFAULT_SNOOZE_MINUTES = 15
MAX_SNOOZE_MINUTES = 1440


@dataclass(frozen=True)
class TimeWindow:
    """
    Allowed delivery window in the reminder's local time.

    An empty days_of_week means every day. When start_hour > end_hour the
    window wraps midnight; when they are equal it covers the whole day.
    """

    enabled: bool = False
    start_hour: int = DEFAULT_START_HOUR
    end_hour: int = DEFAULT_END_HOUR
    days_of_week: Tuple[str, ...] = ()

    def allows_day(self, weekday: str) -> bool:
        return not self.days_of_week or weekday in self.days_of_week

    def allows_hour(self, hour: int) -> bool:
        if self.start_hour == self.end_hour:
            return True
        if self.start_hour < self.end_hour:
            return self.start_hour <= hour < self.end_hour
        return hour >= self.start_hour or hour < self.end_hour


@dataclass(frozen=True)
class CalendarBusy:
    """Snooze deliveries that land inside a busy calendar block."""

    enabled: bool = False
    snooze_minutes: int = DEFAULT_SNOOZE_MINUTES


@dataclass(frozen=True)
class ContextSettings:
    """Parsed per-reminder delivery context."""

    time_window: TimeWindow = field(default_factory=TimeWindow)
    calendar_busy: CalendarBusy = field(default_factory=CalendarBusy)
    category: Optional[str] = None


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def sanitize_hour(value: Any) -> int:
    """Clamp an hour to [0, 23], flooring fractions; invalid input is 0."""
    number = _to_number(value)
    if number is None or number < 0:
        return 0
    if number > 23:
        return 23
    return int(math.floor(number))


def sanitize_snooze_minutes(value: Any) -> int:
    """Clamp snooze minutes to [1, 1440]; invalid or non-positive input is 15."""
    number = _to_number(value)
    if number is None or number <= 0:
        return DEFAULT_SNOOZE_MINUTES
    if number > MAX_SNOOZE_MINUTES:
        return MAX_SNOOZE_MINUTES
    return max(1, int(math.floor(number)))


def sanitize_days(value: Any) -> Optional[Tuple[str, ...]]:
    """
    Lower-case and filter weekday names.

    Returns None when the value is not a list, so the caller can fall back
    to its default.
    """
    if not isinstance(value, (list, tuple)):
        return None
    days = []
    for day in value:
        if not day:
            continue
        normalized = str(day).lower()
        if normalized in WEEKDAY_NAMES and normalized not in days:
            days.append(normalized)
    return tuple(days)


def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = raw.get(key)
    return value if isinstance(value, dict) else {}


def parse_context_settings(
    raw: Any,
    defaults: Optional[ContextSettings] = None
) -> ContextSettings:
    """
    Parse context settings JSON over a set of defaults.

    Each field present in `raw` overrides the matching default; absent
    fields keep the default. Non-dict input yields the defaults unchanged.

    Args:
        raw: Settings JSON, e.g. {"timeWindow": {"enabled": true, "startHour": 9}}
        defaults: Defaults to merge over (the user's profile defaults)

    Returns:
        ContextSettings with every value clamped to its valid range
    """
    defaults = defaults or ContextSettings()
    if not isinstance(raw, dict):
        return defaults

    window = _section(raw, "timeWindow")
    busy = _section(raw, "calendarBusy")
    base_window = defaults.time_window
    base_busy = defaults.calendar_busy

    enabled = window.get("enabled")
    start_hour = window.get("startHour")
    end_hour = window.get("endHour")
    days = sanitize_days(window.get("daysOfWeek"))
    time_window = TimeWindow(
        enabled=base_window.enabled if enabled is None else bool(enabled),
        start_hour=base_window.start_hour if start_hour is None else sanitize_hour(start_hour),
        end_hour=base_window.end_hour if end_hour is None else sanitize_hour(end_hour),
        days_of_week=base_window.days_of_week if days is None else days,
    )

    busy_enabled = busy.get("enabled")
    snooze = busy.get("snoozeMinutes")
    calendar_busy = CalendarBusy(
        enabled=base_busy.enabled if busy_enabled is None else bool(busy_enabled),
        snooze_minutes=base_busy.snooze_minutes if snooze is None else sanitize_snooze_minutes(snooze),
    )

    category = raw.get("category")
    return ContextSettings(
        time_window=time_window,
        calendar_busy=calendar_busy,
        category=category if isinstance(category, str) else defaults.category,
    )


class DecisionType(str, enum.Enum):
    """Outcome of context evaluation."""
    SEND_NOW = "send_now"
    DEFER_SHORT = "defer_short"
    AUTO_SNOOZE = "auto_snooze"


@dataclass(frozen=True)
class Decision:
    """
    Context decision for one job.

    Attributes:
        kind: What to do with the job
        new_time: New notify_at for DEFER_SHORT and AUTO_SNOOZE
        reason: outside_day_window, outside_time_window or calendar_busy
    """

    kind: DecisionType
    new_time: Optional[datetime] = None
    reason: Optional[str] = None

    @property
    def should_send(self) -> bool:
        return self.kind == DecisionType.SEND_NOW


def compute_snooze_until(
    now: datetime,
    snooze_minutes: int,
    busy_interval: Optional[BusyInterval],
    reminder_due_at: Optional[datetime] = None,
) -> datetime:
    """
    Pick the auto-snooze time.

    The snooze never lands inside the busy block that triggered it.
    """
    candidates = [now + timedelta(minutes=max(1, snooze_minutes))]
    if busy_interval is not None:
        candidates.append(busy_interval.end + BUSY_END_BUFFER)
    if reminder_due_at is not None:
        candidates.append(reminder_due_at)
    return max(candidates)


def evaluate(
    now: datetime,
    reminder_due_at: Optional[datetime],
    settings: ContextSettings,
    busy_interval: Optional[BusyInterval],
    time_zone: Optional[str],
) -> Decision:
    """
    Decide how to handle a due notification.

    Args:
        now: Current time (naive UTC)
        reminder_due_at: When the reminder is due (naive UTC)
        settings: Parsed context settings
        busy_interval: Busy block containing now, if any
        time_zone: Resolved IANA timezone for the time window

    Returns:
        Decision; the time window is checked first and vetoes delivery
    """
    window = settings.time_window
    if window.enabled:
        local = project_to_local(now, time_zone)
        if not window.allows_day(local.weekday):
            return Decision(
                DecisionType.DEFER_SHORT,
                new_time=now + DEFER_SHORT_DELAY,
                reason="outside_day_window",
            )
        if not window.allows_hour(local.hour):
            return Decision(
                DecisionType.DEFER_SHORT,
                new_time=now + DEFER_SHORT_DELAY,
                reason="outside_time_window",
            )

    busy = settings.calendar_busy
    if busy.enabled and busy_interval is not None and busy_interval.contains(now):
        return Decision(
            DecisionType.AUTO_SNOOZE,
            new_time=compute_snooze_until(now, busy.snooze_minutes, busy_interval, reminder_due_at),
            reason="calendar_busy",
        )

    return Decision(DecisionType.SEND_NOW)
