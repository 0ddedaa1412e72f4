"""
Job processor: runs one claimed notification job to completion.

Each job is processed on its own database session. The processor loads the
reminder and recipient, applies preference gates, evaluates the delivery
context and hands "send now" jobs to the delivery pipeline. Every exit path
leaves the job in a final state for this attempt (sent, skipped, failed,
or back to pending for a retry or reschedule).

Errors never propagate: an unexpected exception rolls back the session
and records a retryable failure in a fresh transaction.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from notifier.src.models import (
    DeviceInstallation,
    MedicationDose,
    NotificationJob,
    OccurrenceStatus,
    Profile,
    Reminder,
    ReminderOccurrence,
)
from notifier.src.services.context_evaluator import (
    ContextSettings,
    DecisionType,
    evaluate,
    parse_context_settings,
)
from notifier.src.services.delivery_service import DeliveryOutcome, DeliveryService
from notifier.src.services.exceptions import (
    CalendarError,
    CalendarNotConnectedError,
    ClaimLostError,
)
from notifier.src.services.freebusy_cache_service import FreeBusyCacheService
from notifier.src.services.lifecycle_service import LifecycleService
from notifier.src.utils.intervals import BusyInterval
from notifier.src.utils.logging_config import get_logger
from notifier.src.utils.timezone import resolve_time_zone


logger = get_logger("services")

ANDROID_PLATFORM = "android"
MOBILE_APP_RECENCY = timedelta(days=7)


class JobOutcome(str, enum.Enum):
    """Outcome of processing one claimed job."""
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"
    RESCHEDULED = "rescheduled"
    IGNORED = "ignored"


@dataclass(frozen=True)
class JobResult:
    """
    Result of processing one job.

    Attributes:
        job_id: Processed job
        outcome: Final outcome of this attempt
        lag_seconds: Delay between notify_at and processing start
        reason: Skip, failure or reschedule reason
    """

    job_id: str
    outcome: JobOutcome
    lag_seconds: float = 0.0
    reason: Optional[str] = None


class JobProcessor:
    """
    Processes a single claimed job end to end.

    Usage:
        >>> processor = JobProcessor(db, lifecycle, delivery, freebusy)
        >>> result = processor.process_job(job_id, now, claim_token)
    """

    def __init__(
        self,
        db: Session,
        lifecycle: LifecycleService,
        delivery: DeliveryService,
        freebusy: Optional[FreeBusyCacheService] = None,
    ):
        """
        Initialize job processor.

        Args:
            db: SQLAlchemy database session dedicated to this job
            lifecycle: Lifecycle service on the same session
            delivery: Delivery service on the same session
            freebusy: Free/busy cache; calendar checks are skipped when None
        """
        self.db = db
        self.lifecycle = lifecycle
        self.delivery = delivery
        self.freebusy = freebusy

    def process_job(self, job_id: str, now: datetime, claim_token: str) -> JobResult:
        """
        Process a claimed job.

        Args:
            job_id: Claimed job ID
            now: Database time of the cycle
            claim_token: Claim token of the cycle

        Returns:
            JobResult; never raises
        """
        try:
            return self._process(job_id, now, claim_token)
        except ClaimLostError:
            logger.warning("Job claim lost before finalizing", extra={"job_id": job_id})
            return JobResult(job_id, JobOutcome.IGNORED, reason="claim_lost")
        except Exception as e:
            logger.exception("Job processing failed", extra={"job_id": job_id})
            return self._fail_unexpected(job_id, now, claim_token, e)

    def _fail_unexpected(
        self,
        job_id: str,
        now: datetime,
        claim_token: str,
        error: Exception
    ) -> JobResult:
        """Record an unexpected error as a retryable failure."""
        try:
            self.db.rollback()
            job = self._get_job(job_id)
            if job is None or not job.is_claimed_by(claim_token):
                return JobResult(job_id, JobOutcome.IGNORED, reason=str(error))
            self.lifecycle.mark_failed(job, str(error), now)
        except ClaimLostError:
            return JobResult(job_id, JobOutcome.IGNORED, reason="claim_lost")
        except Exception:
            self.db.rollback()
            # Left in processing; reclaim returns it to the queue
            logger.exception("Could not record job failure", extra={"job_id": job_id})
        return JobResult(job_id, JobOutcome.FAILED, reason=str(error))

    def _get_job(self, job_id: str) -> Optional[NotificationJob]:
        return self.db.query(NotificationJob).filter(NotificationJob.id == job_id).first()

    def _process(self, job_id: str, now: datetime, claim_token: str) -> JobResult:
        job = self._get_job(job_id)
        if job is None or not job.is_claimed_by(claim_token):
            return JobResult(job_id, JobOutcome.IGNORED, reason="claim_lost")

        lag = max(0.0, (now - job.notify_at).total_seconds())

        def result(outcome: JobOutcome, reason: Optional[str] = None) -> JobResult:
            return JobResult(job_id, outcome, lag_seconds=lag, reason=reason)

        reminder = self._get_reminder(job.reminder_id)
        if (
            reminder is None
            or not reminder.is_active
            or not reminder.household_id
            or not reminder.created_by
        ):
            self.lifecycle.mark_dead(job, "reminder_inactive")
            return result(JobOutcome.FAILED, "reminder_inactive")

        profile = self.db.query(Profile).filter(Profile.user_id == job.user_id).first()
        if profile is None or not profile.notify_by_push:
            self.lifecycle.mark_skipped(job, "pref_push_off")
            return result(JobOutcome.SKIPPED, "pref_push_off")

        if self._has_recent_android_install(job.user_id, now):
            self.lifecycle.mark_skipped(job, "mobile_app_present")
            return result(JobOutcome.SKIPPED, "mobile_app_present")

        settings = self._resolve_settings(reminder)
        time_zone = resolve_time_zone(reminder.tz, profile.time_zone)

        busy_interval = None
        if settings.calendar_busy.enabled:
            try:
                busy_interval = self._find_busy_interval(reminder.created_by, now, time_zone)
            except CalendarError as e:
                logger.warning(
                    f"Calendar check failed: {e}",
                    extra={"job_id": job.id, "user_id": reminder.created_by},
                )
                self.lifecycle.mark_failed(job, "calendar_unavailable", now)
                return result(JobOutcome.FAILED, "calendar_unavailable")

        occurrence = None
        if not reminder.is_medication:
            occurrence = self._find_occurrence(reminder.id, job.notify_at)

        decision = evaluate(now, job.notify_at, settings, busy_interval, time_zone)

        if decision.kind == DecisionType.AUTO_SNOOZE:
            if occurrence is not None:
                occurrence.snooze(decision.new_time)
            self.lifecycle.reschedule(job, decision.new_time, decision.reason)
            return result(JobOutcome.RESCHEDULED, decision.reason)

        if decision.kind == DecisionType.DEFER_SHORT:
            self.lifecycle.reschedule(job, decision.new_time, decision.reason)
            return result(JobOutcome.RESCHEDULED, decision.reason)

        if reminder.is_medication and not self._dose_exists(job):
            self.lifecycle.mark_dead(job, "dose_missing")
            return result(JobOutcome.FAILED, "dose_missing")

        delivery = self.delivery.deliver(
            job,
            reminder,
            time_zone,
            now,
            occurrence_id=occurrence.id if occurrence is not None else None,
        )
        outcome = {
            DeliveryOutcome.SENT: JobOutcome.SENT,
            DeliveryOutcome.SKIPPED: JobOutcome.SKIPPED,
            DeliveryOutcome.FAILED: JobOutcome.FAILED,
        }[delivery.outcome]
        return result(outcome, delivery.reason)

    # ========================================================================
    # Lookups
    # ========================================================================

    def _get_reminder(self, reminder_id: Optional[str]) -> Optional[Reminder]:
        if not reminder_id:
            return None
        return self.db.query(Reminder).filter(Reminder.id == reminder_id).first()

    def _has_recent_android_install(self, user_id: str, now: datetime) -> bool:
        """Native Android app installs deliver notifications locally."""
        cutoff = now - MOBILE_APP_RECENCY
        return (
            self.db.query(DeviceInstallation.id)
            .filter(
                DeviceInstallation.user_id == user_id,
                DeviceInstallation.platform == ANDROID_PLATFORM,
                DeviceInstallation.last_seen_at.isnot(None),
                DeviceInstallation.last_seen_at >= cutoff,
            )
            .first()
        ) is not None

    def _resolve_settings(self, reminder: Reminder) -> ContextSettings:
        """Reminder settings merged over the creator's profile defaults."""
        defaults = None
        creator = (
            self.db.query(Profile).filter(Profile.user_id == reminder.created_by).first()
        )
        if creator is not None and creator.context_defaults:
            defaults = parse_context_settings(creator.context_defaults)
        return parse_context_settings(reminder.context_settings, defaults)

    def _find_busy_interval(
        self,
        user_id: str,
        now: datetime,
        time_zone: str
    ) -> Optional[BusyInterval]:
        """
        Busy interval containing now for the calendar owner.

        A user without a calendar connection is never busy.

        Raises:
            CalendarError: If the provider or token refresh fails
        """
        if self.freebusy is None:
            return None
        try:
            return self.freebusy.find_busy_interval(user_id, now, time_zone)
        except CalendarNotConnectedError:
            return None

    def _find_occurrence(
        self,
        reminder_id: str,
        notify_at: datetime
    ) -> Optional[ReminderOccurrence]:
        """Open occurrence due at notify_at, or one already snoozed to it."""
        return (
            self.db.query(ReminderOccurrence)
            .filter(
                ReminderOccurrence.reminder_id == reminder_id,
                or_(
                    ReminderOccurrence.occur_at == notify_at,
                    ReminderOccurrence.snoozed_until == notify_at,
                ),
                ReminderOccurrence.status.in_(
                    [OccurrenceStatus.OPEN, OccurrenceStatus.SNOOZED]
                ),
            )
            .order_by(ReminderOccurrence.occur_at.asc())
            .first()
        )

    def _dose_exists(self, job: NotificationJob) -> bool:
        if not job.is_medication:
            return False
        return (
            self.db.query(MedicationDose.id)
            .filter(MedicationDose.id == job.entity_id)
            .first()
        ) is not None
