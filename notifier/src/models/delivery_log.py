"""
Delivery log models used as idempotency markers.

A log row is inserted before a push is attempted. Its unique constraint
guarantees that at most one attempt owns the delivery of a given
occurrence on a given channel; a conflicting insert means another attempt
already owns it.

Two tables share the same shape:
- notification_log: reminder occurrences, keyed by (reminder_id, occurrence_at_utc, channel)
- medication_notification_log: medication doses, keyed by (medication_dose_id, channel)
"""

import enum
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Enum, UniqueConstraint
from uuid_extensions import uuid7

from notifier.src.models import Base


class DeliveryLogStatus(str, enum.Enum):
    """
    Delivery log status.

    - PENDING: Claimed by an attempt, push not finished yet
    - SENT: Delivered; the occurrence must never be delivered again
    - FAILED: Push failed; the same job's retry may take the row over
    """
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class DeliveryLogMixin:
    """Columns shared by both delivery log tables."""

    job_id = Column(String(36), nullable=False, index=True)
    channel = Column(String(16), nullable=False)
    status = Column(
        Enum(
            DeliveryLogStatus,
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
            length=16,
        ),
        default=DeliveryLogStatus.PENDING,
        nullable=False
    )
    claim_token = Column(String(64), nullable=True)
    sent_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    @property
    def is_sent(self) -> bool:
        return self.status == DeliveryLogStatus.SENT


class ReminderDeliveryLog(Base, DeliveryLogMixin):
    """
    Delivery marker for a reminder occurrence.

    Attributes:
        id: Primary key
        reminder_id: Reminder being delivered
        reminder_occurrence_id: Matching occurrence row, when one exists
        occurrence_at_utc: Occurrence time (dedup key)
        job_id, channel, status, claim_token, sent_at: see DeliveryLogMixin
    """

    __tablename__ = "notification_log"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid7()))
    reminder_id = Column(String(36), nullable=False)
    reminder_occurrence_id = Column(String(36), nullable=True)
    occurrence_at_utc = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "reminder_id", "occurrence_at_utc", "channel",
            name="uq_notification_log_occurrence_channel"
        ),
    )


class MedicationDeliveryLog(Base, DeliveryLogMixin):
    """
    Delivery marker for a medication dose.

    Attributes:
        id: Primary key
        medication_dose_id: Dose being delivered
        job_id, channel, status, claim_token, sent_at: see DeliveryLogMixin
    """

    __tablename__ = "medication_notification_log"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid7()))
    medication_dose_id = Column(String(36), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "medication_dose_id", "channel",
            name="uq_medication_notification_log_dose_channel"
        ),
    )
