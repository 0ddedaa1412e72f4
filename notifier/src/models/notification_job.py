"""
NotificationJob model for the shared notification job queue.

Jobs are written by the web application when a reminder or medication dose
becomes due and are claimed by notification workers using
FOR UPDATE SKIP LOCKED for atomic claiming.

Design Rationale:
- Persistent queue shared between any number of worker processes
- claim_token identifies the worker attempt that owns a processing job
- Retry gate via next_retry_at, retry budget via retry_count
- occurrence_at_utc keys delivery deduplication; falls back to notify_at
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime, Text, Enum, Index
from uuid_extensions import uuid7

from notifier.src.models import Base
from notifier.src.services.exceptions import InvalidTransitionError


class JobStatus(str, enum.Enum):
    """
    Notification job status enumeration.

    Represents the lifecycle states of a job:
    - PENDING: Waiting for notify_at (and next_retry_at) to pass
    - PROCESSING: Claimed by a worker attempt
    - SENT: Delivered to at least one device
    - SKIPPED: Deliberately not delivered (preferences, duplicates, ...)
    - FAILED: Retry budget exhausted or non-retryable failure
    """
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


class EntityType(str, enum.Enum):
    """What the job notifies about."""
    REMINDER = "reminder"
    MEDICATION_DOSE = "medication_dose"


class Channel(str, enum.Enum):
    """Delivery channel requested for the job."""
    PUSH = "push"
    EMAIL = "email"
    BOTH = "both"


# Channels this worker delivers
PUSH_CHANNELS = (Channel.PUSH, Channel.BOTH)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _new_job_id() -> str:
    return str(uuid7())


class NotificationJob(Base):
    """
    A single scheduled notification for one reminder or medication dose.

    Attributes:
        id: UUIDv7 string primary key
        entity_type: reminder or medication_dose
        entity_id: ID of the reminder or medication dose
        reminder_id: Owning reminder (set for both entity types)
        user_id: Recipient user
        channel: push, email or both
        notify_at: When the notification is due
        occurrence_at_utc: Occurrence time used for deduplication
        status: Job status (pending/processing/sent/skipped/failed)
        retry_count: Number of failed attempts so far
        next_retry_at: Earliest time the job may be claimed again
        claimed_at: When the current attempt claimed the job
        claim_token: Token of the worker attempt owning the claim
        delivered_at: When the job was delivered
        last_error: Failure or skip reason of the last attempt
        action_token: Token embedded in the push for notification actions
        action_token_expires_at: Expiry of action_token
        created_at: Creation timestamp
        updated_at: Last modification timestamp

    Indexes:
        - (status, notify_at) for job claiming
        - (status, claimed_at) for stale claim reclamation
    """

    __tablename__ = "notification_jobs"

    id = Column(String(36), primary_key=True, default=_new_job_id)

    # What and for whom
    entity_type = Column(
        Enum(EntityType, native_enum=False, values_callable=_enum_values, length=32),
        default=EntityType.REMINDER,
        nullable=False
    )
    entity_id = Column(String(36), nullable=False)
    reminder_id = Column(String(36), nullable=True, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    channel = Column(
        Enum(Channel, native_enum=False, values_callable=_enum_values, length=16),
        default=Channel.PUSH,
        nullable=False
    )

    # Timing
    notify_at = Column(DateTime, nullable=False)
    occurrence_at_utc = Column(DateTime, nullable=True)

    # Lifecycle
    status = Column(
        Enum(JobStatus, native_enum=False, values_callable=_enum_values, length=20),
        default=JobStatus.PENDING,
        nullable=False
    )
    retry_count = Column(Integer, default=0, nullable=False)
    next_retry_at = Column(DateTime, nullable=True)
    claimed_at = Column(DateTime, nullable=True)
    claim_token = Column(String(64), nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    # Notification action affordance
    action_token = Column(String(64), nullable=True)
    action_token_expires_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    __table_args__ = (
        Index("ix_notification_jobs_claimable", "status", "notify_at"),
        Index("ix_notification_jobs_claimed", "status", "claimed_at"),
    )

    @property
    def occurrence_time(self) -> datetime:
        """Occurrence time used for dedup, falling back to notify_at."""
        return self.occurrence_at_utc or self.notify_at

    @property
    def is_terminal(self) -> bool:
        """
        Check if the job is in a terminal state.

        Returns:
            True if status is SENT, SKIPPED or FAILED
        """
        return self.status in (JobStatus.SENT, JobStatus.SKIPPED, JobStatus.FAILED)

    @property
    def is_medication(self) -> bool:
        return self.entity_type == EntityType.MEDICATION_DOSE

    def is_claimed_by(self, claim_token: str) -> bool:
        """
        Check whether the given attempt still owns the job.

        Args:
            claim_token: Token generated by the claiming scheduler cycle

        Returns:
            True if the job is processing under this claim token
        """
        return self.status == JobStatus.PROCESSING and self.claim_token == claim_token

    def _require(self, *allowed: JobStatus, action: str) -> None:
        if self.status not in allowed:
            raise InvalidTransitionError(self.id, self.status.value, action)

    def _clear_claim(self) -> None:
        self.claimed_at = None
        self.claim_token = None

    def _invalidate_action_token(self) -> None:
        self.action_token = None
        self.action_token_expires_at = None

    def claim(self, claim_token: str, now: datetime) -> None:
        """
        Claim the job for a worker attempt.

        Args:
            claim_token: Token identifying the attempt
            now: Database time of the claim
        """
        self._require(JobStatus.PENDING, action="claim")
        self.status = JobStatus.PROCESSING
        self.claimed_at = now
        self.claim_token = claim_token

    def release(self) -> None:
        """Return a stale processing job to the queue."""
        self._require(JobStatus.PROCESSING, action="release")
        self.status = JobStatus.PENDING
        self._clear_claim()

    def mark_sent(self, now: datetime) -> None:
        """Mark the job as delivered."""
        self._require(JobStatus.PROCESSING, action="mark_sent")
        self.status = JobStatus.SENT
        self.delivered_at = now
        self.last_error = None

    def mark_skipped(self, reason: str) -> None:
        """
        Mark the job as deliberately not delivered.

        Skips do not consume a retry.

        Args:
            reason: Short machine-readable reason, e.g. "pref_push_off"
        """
        self._require(JobStatus.PROCESSING, action="mark_skipped")
        self.status = JobStatus.SKIPPED
        self.last_error = reason
        self._invalidate_action_token()

    def fail(self, error_message: str, retry_at: Optional[datetime]) -> None:
        """
        Record a failed attempt.

        Args:
            error_message: Error message describing the failure
            retry_at: When to retry, or None when the budget is exhausted
        """
        self._require(JobStatus.PROCESSING, action="fail")
        self.retry_count = (self.retry_count or 0) + 1
        self.last_error = error_message
        if retry_at is not None:
            self.status = JobStatus.PENDING
            self.next_retry_at = retry_at
            self._clear_claim()
        else:
            self.status = JobStatus.FAILED
            self._invalidate_action_token()

    def mark_dead(self, error_message: str) -> None:
        """Fail the job permanently without consuming the retry budget."""
        self._require(JobStatus.PROCESSING, action="mark_dead")
        self.status = JobStatus.FAILED
        self.last_error = error_message
        self._invalidate_action_token()

    def reschedule(self, notify_at: datetime) -> None:
        """
        Postpone the job to a new time (quiet hours, busy calendar).

        Args:
            notify_at: New due time in naive UTC
        """
        self._require(JobStatus.PROCESSING, action="reschedule")
        self.status = JobStatus.PENDING
        self.notify_at = notify_at
        self.occurrence_at_utc = notify_at
        self.next_retry_at = None
        self._clear_claim()

    def __repr__(self) -> str:
        return (
            f"<NotificationJob(id={self.id}, entity_type='{self.entity_type}', "
            f"status='{self.status}', notify_at={self.notify_at})>"
        )
