"""
Delivery pipeline: turns a "send now" decision into exactly one push
delivery per occurrence and channel.

Flow:
1. Build the notification content (title, body, url) in the reminder's timezone
2. Claim the delivery log row for the occurrence; a uniqueness conflict means
   another attempt owns the delivery and the job is skipped as a duplicate
3. Fan out to the recipient's enabled subscriptions
4. Prune subscriptions the push service reported as gone
5. Finalize the log row and the job

A log row left by an earlier, unsuccessful attempt of the same job is taken
over with a compare-and-set on its claim_token instead of being inserted
again, so retries never bounce off their own marker.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from notifier.src.models import (
    Channel,
    DeliveryLogStatus,
    MedicationDeliveryLog,
    NotificationJob,
    Reminder,
    ReminderDeliveryLog,
)
from notifier.src.services.exceptions import PushDeliveryError, PushGoneError
from notifier.src.services.job_store_service import JobStoreService, build_occurrence_key
from notifier.src.services.lifecycle_service import LifecycleService
from notifier.src.services.push_sender import WebPushSender
from notifier.src.services.push_subscription_service import PushSubscriptionService
from notifier.src.utils.logging_config import get_logger
from notifier.src.utils.timezone import format_local


logger = get_logger("delivery")

DeliveryLog = Union[ReminderDeliveryLog, MedicationDeliveryLog]


@dataclass(frozen=True)
class NotificationContent:
    """Human-readable part of the push payload."""

    title: str
    body: str
    url: str


def build_notification_content(
    reminder: Reminder,
    occurrence_at: datetime,
    time_zone: str,
    app_url: str,
) -> NotificationContent:
    """
    Build title, body and link for a reminder notification.

    Medication reminders link to the app home, other reminders to their
    detail page.

    Args:
        reminder: Reminder being delivered
        occurrence_at: Due time (naive UTC)
        time_zone: Zone the due time is shown in
        app_url: Public web app URL without trailing slash
    """
    local_label = format_local(occurrence_at, time_zone)
    if reminder.is_medication:
        return NotificationContent(
            title=f"💊 {reminder.medication_name or reminder.title}",
            body=f"Time for your medication • {local_label}",
            url=f"{app_url}/app",
        )
    return NotificationContent(
        title=reminder.title,
        body=f"Due: {local_label}",
        url=f"{app_url}/app/reminders/{reminder.id}",
    )


class DeliveryOutcome(str, enum.Enum):
    """Final job outcome produced by the delivery pipeline."""
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class DeliveryResult:
    """
    Result of one delivery attempt.

    Attributes:
        outcome: How the job was finalized
        reason: Skip or failure reason (duplicate, missing_push, push_failed, ...)
        delivered: Subscriptions that accepted the push
        removed: Subscriptions deleted because they are gone
        retrying: For FAILED, whether a retry was scheduled
    """

    outcome: DeliveryOutcome
    reason: Optional[str] = None
    delivered: int = 0
    removed: int = 0
    retrying: bool = False
    errors: List[str] = field(default_factory=list)


class LogClaim(str, enum.Enum):
    CLAIMED = "claimed"
    TAKEN_OVER = "taken_over"
    DUPLICATE = "duplicate"


class DeliveryService:
    """
    Service delivering a job's push notification at most once.

    Usage:
        >>> service = DeliveryService(db, sender, lifecycle, app_url="https://app.example")
        >>> result = service.deliver(job, reminder, "Europe/Bucharest", now)
    """

    def __init__(
        self,
        db: Session,
        sender: WebPushSender,
        lifecycle: LifecycleService,
        app_url: str = "",
        subscriptions: Optional[PushSubscriptionService] = None,
        job_store: Optional[JobStoreService] = None,
    ):
        """
        Initialize delivery service.

        Args:
            db: SQLAlchemy database session
            sender: Web Push sender
            lifecycle: Lifecycle service used to finalize the job
            app_url: Public web app URL used for notification links
            subscriptions: Subscription service (created from db if omitted)
            job_store: Job store service (created from db if omitted)
        """
        self.db = db
        self.sender = sender
        self.lifecycle = lifecycle
        self.app_url = app_url.rstrip("/")
        self.subscriptions = subscriptions or PushSubscriptionService(db)
        self.job_store = job_store or JobStoreService(db)

    # ========================================================================
    # Delivery Log
    # ========================================================================

    def _log_identity(
        self,
        job: NotificationJob,
        reminder: Reminder,
    ) -> Tuple[type, dict]:
        """Model and unique-key values of the job's delivery log row."""
        channel = Channel.PUSH.value
        if job.is_medication:
            return MedicationDeliveryLog, {
                "medication_dose_id": job.entity_id,
                "channel": channel,
            }
        return ReminderDeliveryLog, {
            "reminder_id": reminder.id,
            "occurrence_at_utc": job.occurrence_time,
            "channel": channel,
        }

    def _find_log(self, model: type, keys: dict) -> Optional[DeliveryLog]:
        query = self.db.query(model)
        for column, value in keys.items():
            query = query.filter(getattr(model, column) == value)
        return query.first()

    def claim_log(
        self,
        job: NotificationJob,
        reminder: Reminder,
        claim_token: str,
        occurrence_id: Optional[str] = None,
    ) -> Tuple[LogClaim, Optional[DeliveryLog]]:
        """
        Claim the delivery log row of the job's occurrence.

        Args:
            job: Job being delivered
            reminder: Reminder of the job
            claim_token: Claim token of the current attempt
            occurrence_id: Matching reminder occurrence row, if any

        Returns:
            (CLAIMED | TAKEN_OVER, row) when this attempt owns the delivery,
            (DUPLICATE, None) when another attempt owns it

        Raises:
            SQLAlchemyError: On database errors other than the uniqueness conflict
        """
        model, keys = self._log_identity(job, reminder)
        values = dict(keys)
        if model is ReminderDeliveryLog:
            values["reminder_occurrence_id"] = occurrence_id

        entry = model(
            job_id=job.id,
            status=DeliveryLogStatus.PENDING,
            claim_token=claim_token,
            **values,
        )
        self.db.add(entry)
        try:
            self.db.commit()
            return LogClaim.CLAIMED, entry
        except IntegrityError:
            self.db.rollback()

        existing = self._find_log(model, keys)
        if existing is None or existing.job_id != job.id or existing.is_sent:
            return LogClaim.DUPLICATE, None

        # Same job, earlier attempt never finished: compare-and-set the claim
        previous_token = existing.claim_token
        query = self.db.query(model).filter(
            model.id == existing.id,
            model.status != DeliveryLogStatus.SENT,
        )
        if previous_token is None:
            query = query.filter(model.claim_token.is_(None))
        else:
            query = query.filter(model.claim_token == previous_token)
        updated = query.update(
            {
                model.claim_token: claim_token,
                model.status: DeliveryLogStatus.PENDING,
            },
            synchronize_session=False,
        )
        self.db.commit()

        if updated != 1:
            return LogClaim.DUPLICATE, None

        self.db.refresh(existing)
        logger.info(
            "Took over delivery log from earlier attempt",
            extra={"job_id": job.id, "log_id": existing.id},
        )
        return LogClaim.TAKEN_OVER, existing

    def _release_log(self, entry: DeliveryLog) -> None:
        """Delete an unfinished log row so the occurrence is not blocked."""
        self.db.delete(entry)
        self.db.commit()

    # ========================================================================
    # Delivery
    # ========================================================================

    def deliver(
        self,
        job: NotificationJob,
        reminder: Reminder,
        time_zone: str,
        now: datetime,
        occurrence_id: Optional[str] = None,
    ) -> DeliveryResult:
        """
        Deliver the job's notification and finalize the job.

        Args:
            job: Processing job owned by the current attempt
            reminder: Reminder of the job
            time_zone: Resolved display timezone
            now: Database time of the cycle
            occurrence_id: Matching reminder occurrence row, if any

        Returns:
            DeliveryResult describing how the job was finalized
        """
        claim_token = job.claim_token
        occurrence_key = build_occurrence_key(
            job.entity_type, job.entity_id, job.occurrence_time, Channel.PUSH
        )

        if not self.sender.is_configured:
            self.lifecycle.mark_skipped(job, "vapid_missing")
            return DeliveryResult(DeliveryOutcome.SKIPPED, reason="vapid_missing")

        content = build_notification_content(
            reminder, job.occurrence_time, time_zone, self.app_url
        )
        action_token = self.job_store.ensure_action_token(job, now)
        self.db.commit()

        try:
            claim, entry = self.claim_log(job, reminder, claim_token, occurrence_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Delivery log insert failed: {e}",
                extra={"job_id": job.id, "occurrence_key": occurrence_key},
            )
            retrying = self.lifecycle.mark_failed(job, "log_insert_failed", now)
            return DeliveryResult(
                DeliveryOutcome.FAILED, reason="log_insert_failed", retrying=retrying
            )

        if claim == LogClaim.DUPLICATE:
            logger.info(
                "Duplicate delivery detected",
                extra={"job_id": job.id, "occurrence_key": occurrence_key},
            )
            self.lifecycle.mark_skipped(job, "duplicate")
            return DeliveryResult(DeliveryOutcome.SKIPPED, reason="duplicate")

        subscriptions = self.subscriptions.list_for_user(job.user_id)
        if not subscriptions:
            self._release_log(entry)
            self.lifecycle.mark_skipped(job, "missing_push")
            return DeliveryResult(DeliveryOutcome.SKIPPED, reason="missing_push")

        payload = {
            "title": content.title,
            "body": content.body,
            "url": content.url,
            "jobId": job.id,
            "actionToken": action_token,
        }

        delivered = []
        gone_endpoints = []
        errors = []
        for subscription in subscriptions:
            endpoint_short = subscription.endpoint[:60]
            try:
                self.sender.send(subscription, payload)
                delivered.append(subscription)
            except PushGoneError:
                gone_endpoints.append(subscription.endpoint)
            except PushDeliveryError as e:
                errors.append(str(e))
                logger.warning(
                    f"Push delivery failed: {e}",
                    extra={"job_id": job.id, "endpoint": endpoint_short},
                )

        if delivered:
            self.subscriptions.mark_used(delivered, now)
            self.db.commit()

        # Pruning is independent of the job outcome
        removed = self.subscriptions.remove_invalid_endpoints(gone_endpoints)

        if removed or errors:
            logger.info(
                "Push delivery summary",
                extra={
                    "job_id": job.id,
                    "total": len(subscriptions),
                    "success": len(delivered),
                    "failed": len(errors),
                    "removed": removed,
                },
            )

        if errors:
            entry.status = DeliveryLogStatus.FAILED
            self.db.commit()
            retrying = self.lifecycle.mark_failed(job, "push_failed", now)
            return DeliveryResult(
                DeliveryOutcome.FAILED,
                reason="push_failed",
                delivered=len(delivered),
                removed=removed,
                retrying=retrying,
                errors=errors,
            )

        if not delivered:
            self._release_log(entry)
            self.lifecycle.mark_skipped(job, "subscriptions_gone")
            return DeliveryResult(
                DeliveryOutcome.SKIPPED, reason="subscriptions_gone", removed=removed
            )

        entry.status = DeliveryLogStatus.SENT
        entry.sent_at = now
        self.db.commit()
        self.lifecycle.mark_sent(job, now)
        return DeliveryResult(
            DeliveryOutcome.SENT, delivered=len(delivered), removed=removed
        )
