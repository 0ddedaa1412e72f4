"""
Unit tests for delivery context evaluation.

Tests settings parsing and clamping, time window checks (including windows
that wrap midnight) and calendar auto-snooze decisions.
"""

from datetime import datetime, timedelta

import pytest

from notifier.src.services.context_evaluator import (
    CalendarBusy,
    ContextSettings,
    Decision,
    DecisionType,
    TimeWindow,
    compute_snooze_until,
    evaluate,
    parse_context_settings,
    sanitize_days,
    sanitize_hour,
    sanitize_snooze_minutes,
)
from notifier.src.utils.intervals import BusyInterval


# Tuesday, 10:00 in Europe/Bucharest
NOW = datetime(2026, 3, 3, 8, 0)
TZ = "Europe/Bucharest"


def _window(**kwargs):
    kwargs.setdefault("enabled", True)
    return ContextSettings(time_window=TimeWindow(**kwargs))


# ============================================================================
# Test: Sanitizers
# ============================================================================


class TestSanitizers:
    """Tests for value clamping."""

    @pytest.mark.parametrize("value,expected", [
        (9, 9), ("14", 14), (7.9, 7), (-3, 0), (30, 23), (None, 0), ("x", 0), (True, 0),
    ])
    def test_sanitize_hour(self, value, expected):
        """Should clamp hours to [0, 23]."""
        assert sanitize_hour(value) == expected

    @pytest.mark.parametrize("value,expected", [
        (30, 30), (0, 15), (-5, 15), (5000, 1440), (None, 15), ("abc", 15), (0.5, 1),
    ])
    def test_sanitize_snooze_minutes(self, value, expected):
        """Should clamp snooze minutes to [1, 1440] with a default of 15."""
        assert sanitize_snooze_minutes(value) == expected

    def test_sanitize_days_filters_and_lowercases(self):
        """Should keep known weekday names only, once each."""
        assert sanitize_days(["Monday", "funday", "", "monday", "FRIDAY"]) == ("monday", "friday")

    def test_sanitize_days_non_list(self):
        """Should return None for non-list input."""
        assert sanitize_days("monday") is None


# ============================================================================
# Test: parse_context_settings
# ============================================================================


class TestParseContextSettings:
    """Tests for parse_context_settings."""

    def test_non_dict_returns_defaults(self):
        """Should return defaults unchanged for missing settings."""
        defaults = _window(start_hour=8)
        assert parse_context_settings(None, defaults) is defaults
        assert parse_context_settings("oops") == ContextSettings()

    def test_parses_camel_case_json(self):
        """Should map the stored camelCase JSON onto the settings."""
        settings = parse_context_settings({
            "timeWindow": {
                "enabled": True,
                "startHour": 8,
                "endHour": 22,
                "daysOfWeek": ["monday", "tuesday"],
            },
            "calendarBusy": {"enabled": True, "snoozeMinutes": 30},
            "category": "health",
        })
        assert settings.time_window == TimeWindow(True, 8, 22, ("monday", "tuesday"))
        assert settings.calendar_busy == CalendarBusy(enabled=True, snooze_minutes=30)
        assert settings.category == "health"

    def test_clamps_out_of_range_values(self):
        """Should clamp hours and snooze minutes."""
        settings = parse_context_settings({
            "timeWindow": {"startHour": -4, "endHour": 99},
            "calendarBusy": {"snoozeMinutes": 100000},
        })
        assert settings.time_window.start_hour == 0
        assert settings.time_window.end_hour == 23
        assert settings.calendar_busy.snooze_minutes == 1440

    def test_reminder_fields_override_profile_defaults(self):
        """Should keep defaults for fields the reminder does not set."""
        defaults = parse_context_settings({
            "timeWindow": {"enabled": True, "startHour": 7, "endHour": 21},
            "calendarBusy": {"enabled": True, "snoozeMinutes": 45},
        })
        settings = parse_context_settings(
            {"timeWindow": {"startHour": 10}, "calendarBusy": {"enabled": False}},
            defaults,
        )
        assert settings.time_window.enabled is True
        assert settings.time_window.start_hour == 10
        assert settings.time_window.end_hour == 21
        assert settings.calendar_busy.enabled is False
        assert settings.calendar_busy.snooze_minutes == 45


# ============================================================================
# Test: TimeWindow
# ============================================================================


class TestTimeWindow:
    """Tests for day and hour checks."""

    def test_empty_days_allows_every_day(self):
        assert TimeWindow().allows_day("sunday")

    def test_regular_window_end_is_exclusive(self):
        window = TimeWindow(start_hour=9, end_hour=20)
        assert window.allows_hour(9)
        assert window.allows_hour(19)
        assert not window.allows_hour(20)
        assert not window.allows_hour(8)

    def test_wrapping_window(self):
        """Should allow late evening and early morning for 22-6."""
        window = TimeWindow(start_hour=22, end_hour=6)
        assert window.allows_hour(23)
        assert window.allows_hour(0)
        assert window.allows_hour(5)
        assert not window.allows_hour(6)
        assert not window.allows_hour(12)

    def test_equal_hours_cover_whole_day(self):
        window = TimeWindow(start_hour=8, end_hour=8)
        assert all(window.allows_hour(h) for h in range(24))


# ============================================================================
# Test: evaluate
# ============================================================================


class TestEvaluate:
    """Tests for the delivery decision."""

    def test_sends_without_constraints(self):
        """Should send when nothing is enabled."""
        decision = evaluate(NOW, NOW, ContextSettings(), None, TZ)
        assert decision == Decision(DecisionType.SEND_NOW)
        assert decision.should_send

    def test_defers_outside_allowed_days(self):
        """Should defer 15 minutes when today is not an allowed day."""
        decision = evaluate(NOW, NOW, _window(days_of_week=("monday",)), None, TZ)
        assert decision.kind == DecisionType.DEFER_SHORT
        assert decision.reason == "outside_day_window"
        assert decision.new_time == NOW + timedelta(minutes=15)

    def test_defers_outside_allowed_hours(self):
        """Should use local hours: 10:00 local is before an 11-20 window."""
        decision = evaluate(NOW, NOW, _window(start_hour=11, end_hour=20), None, TZ)
        assert decision.kind == DecisionType.DEFER_SHORT
        assert decision.reason == "outside_time_window"

    def test_sends_inside_local_window(self):
        """Should send at 10:00 local for a 10-11 window even though UTC is 08:00."""
        decision = evaluate(NOW, NOW, _window(start_hour=10, end_hour=11), None, TZ)
        assert decision.should_send

    def test_disabled_window_is_ignored(self):
        settings = ContextSettings(time_window=TimeWindow(enabled=False, start_hour=11, end_hour=12))
        assert evaluate(NOW, NOW, settings, None, TZ).should_send

    def test_auto_snoozes_past_busy_block(self):
        """Should snooze to busy end plus buffer when that is later than the snooze."""
        busy = BusyInterval(NOW, NOW + timedelta(minutes=30))
        settings = ContextSettings(calendar_busy=CalendarBusy(enabled=True, snooze_minutes=15))
        decision = evaluate(NOW, NOW, settings, busy, TZ)
        assert decision.kind == DecisionType.AUTO_SNOOZE
        assert decision.reason == "calendar_busy"
        assert decision.new_time == NOW + timedelta(minutes=32)
        assert decision.new_time >= busy.end

    def test_busy_ignored_when_disabled(self):
        busy = BusyInterval(NOW, NOW + timedelta(minutes=30))
        assert evaluate(NOW, NOW, ContextSettings(), busy, TZ).should_send

    def test_busy_block_not_containing_now(self):
        """Should send when the busy block has already ended."""
        busy = BusyInterval(NOW - timedelta(minutes=30), NOW)
        settings = ContextSettings(calendar_busy=CalendarBusy(enabled=True))
        assert evaluate(NOW, NOW, settings, busy, TZ).should_send

    def test_time_window_checked_before_calendar(self):
        """Should defer for the window even when the calendar is busy."""
        busy = BusyInterval(NOW, NOW + timedelta(hours=1))
        settings = ContextSettings(
            time_window=TimeWindow(enabled=True, start_hour=12, end_hour=18),
            calendar_busy=CalendarBusy(enabled=True),
        )
        assert evaluate(NOW, NOW, settings, busy, TZ).kind == DecisionType.DEFER_SHORT


class TestComputeSnoozeUntil:
    """Tests for compute_snooze_until."""

    def test_snooze_longer_than_block(self):
        busy = BusyInterval(NOW, NOW + timedelta(minutes=5))
        assert compute_snooze_until(NOW, 60, busy) == NOW + timedelta(minutes=60)

    def test_never_before_due_time(self):
        due = NOW + timedelta(hours=3)
        assert compute_snooze_until(NOW, 15, None, due) == due
