"""
Reminder models owned by the web application.

The worker reads reminders, their occurrences and medication doses. The
only write it performs is moving an open occurrence to "snoozed" when a
busy calendar auto-snoozes the reminder.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Column, String, DateTime, JSON
from sqlalchemy.dialects.postgresql import JSONB

from notifier.src.models import Base


# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSONB().with_variant(JSON(), "sqlite")


class ReminderKind:
    """Known values of Reminder.kind."""
    TASK = "task"
    MEDICATION = "medication"


class OccurrenceStatus:
    """Known values of ReminderOccurrence.status."""
    OPEN = "open"
    SNOOZED = "snoozed"
    DONE = "done"


class Reminder(Base):
    """
    A household reminder.

    Attributes:
        id: Primary key
        title: Display title
        household_id: Owning household
        is_active: False once the reminder is archived or deleted
        created_by: User who created the reminder (owns the calendar connection)
        context_settings: Per-reminder delivery context overrides (camelCase JSON)
        kind: task, medication, ...
        medication_details: Medication metadata such as {"name": "Aspirin"}
        tz: IANA timezone the reminder was created in
    """

    __tablename__ = "reminders"

    id = Column(String(36), primary_key=True)
    title = Column(String(500), nullable=False, default="")
    household_id = Column(String(36), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(String(36), nullable=True)
    context_settings = Column(JSONType, nullable=True)
    kind = Column(String(32), nullable=True)
    medication_details = Column(JSONType, nullable=True)
    tz = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    @property
    def is_medication(self) -> bool:
        return self.kind == ReminderKind.MEDICATION

    @property
    def medication_name(self) -> Optional[str]:
        details: Dict[str, Any] = self.medication_details or {}
        name = details.get("name") if isinstance(details, dict) else None
        return name or None


class ReminderOccurrence(Base):
    """A concrete occurrence of a reminder."""

    __tablename__ = "reminder_occurrences"

    id = Column(String(36), primary_key=True)
    reminder_id = Column(String(36), nullable=False, index=True)
    occur_at = Column(DateTime, nullable=False)
    snoozed_until = Column(DateTime, nullable=True)
    status = Column(String(32), default=OccurrenceStatus.OPEN, nullable=False)

    def snooze(self, until: datetime) -> None:
        self.status = OccurrenceStatus.SNOOZED
        self.snoozed_until = until


class MedicationDose(Base):
    """A scheduled medication dose."""

    __tablename__ = "medication_doses"

    id = Column(String(36), primary_key=True)
    reminder_id = Column(String(36), nullable=False, index=True)
    scheduled_at = Column(DateTime, nullable=False)
    status = Column(String(32), default="pending", nullable=False)
