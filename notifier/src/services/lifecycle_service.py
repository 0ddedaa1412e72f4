"""
Lifecycle service for notification job status transitions.

State machine:
    pending -> processing -> sent | skipped | failed | pending (retry or reschedule)

Transition rules live on the NotificationJob model; this service applies
them and persists the result. Failures are classified as:
- transient: mark_failed, retried with backoff until the budget runs out
- non-retryable: mark_dead, failed immediately
- benign: mark_skipped, never retried and never counted as a failure
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from notifier.src.models import JobStatus, NotificationJob
from notifier.src.services.exceptions import ClaimLostError
from notifier.src.utils.logging_config import get_logger


logger = get_logger("services")

DEFAULT_RETRY_DELAYS_SECONDS = (30, 120, 600, 3600)
DEFAULT_RECLAIM_THRESHOLD = timedelta(minutes=5)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff table for failed deliveries.

    The table length is the retry budget: a job that has already failed
    len(delays) times fails terminally on its next failure.

    Attributes:
        delays_seconds: Delay before each retry, indexed by attempt - 1
    """

    delays_seconds: Sequence[int] = DEFAULT_RETRY_DELAYS_SECONDS

    def should_retry(self, retry_count: int) -> bool:
        """
        Check whether a job with retry_count previous failures may retry.

        Args:
            retry_count: Failures recorded before the current one
        """
        return retry_count < len(self.delays_seconds)

    def delay_for_attempt(self, attempt: int) -> int:
        """
        Delay in seconds before retry number `attempt` (1-based).

        Attempts past the table reuse its last entry.
        """
        index = max(0, min(attempt - 1, len(self.delays_seconds) - 1))
        return self.delays_seconds[index]

    def next_retry_at(self, now: datetime, attempt: int) -> datetime:
        return now + timedelta(seconds=self.delay_for_attempt(attempt))


class LifecycleService:
    """
    Service applying and persisting job lifecycle transitions.

    Each mark_* method commits, so a job's outcome is durable as soon as it
    is decided. InvalidTransitionError propagates when the job is not in a
    state that allows the transition.

    When bound to a claim token, every finalizer first locks the job row and
    raises ClaimLostError if the job was reclaimed and claimed by another
    attempt in the meantime.
    """

    def __init__(
        self,
        db: Session,
        retry_policy: Optional[RetryPolicy] = None,
        claim_token: Optional[str] = None,
    ):
        """
        Initialize lifecycle service.

        Args:
            db: SQLAlchemy database session
            retry_policy: Backoff table (defaults to 30s/2m/10m/1h)
            claim_token: Token of the attempt owning the jobs it finalizes
        """
        self.db = db
        self.retry_policy = retry_policy or RetryPolicy()
        self.claim_token = claim_token
        self._is_sqlite = self._check_is_sqlite()

    def _check_is_sqlite(self) -> bool:
        """Check if the database is SQLite (no row locking support)."""
        try:
            return self.db.bind.dialect.name == "sqlite"
        except AttributeError:
            return False

    # ========================================================================
    # Stale Claim Recovery
    # ========================================================================

    def reclaim_stale(
        self,
        now: datetime,
        threshold: timedelta = DEFAULT_RECLAIM_THRESHOLD
    ) -> int:
        """
        Return processing jobs whose claim is older than threshold to pending.

        Recovers jobs claimed by a worker that crashed or hung before
        finalizing them.

        Args:
            now: Database time
            threshold: Claim age after which a claim is stale

        Returns:
            Number of reclaimed jobs
        """
        cutoff = now - threshold
        stale: List[NotificationJob] = (
            self.db.query(NotificationJob)
            .filter(
                NotificationJob.status == JobStatus.PROCESSING,
                NotificationJob.claimed_at.isnot(None),
                NotificationJob.claimed_at < cutoff,
            )
            .all()
        )

        for job in stale:
            job.release()

        if stale:
            self.db.commit()
            logger.warning(
                "Reclaimed stale notification jobs",
                extra={"count": len(stale), "cutoff": cutoff.isoformat()},
            )
        return len(stale)

    # ========================================================================
    # Terminal and Retry Transitions
    # ========================================================================

    def _ensure_owner(self, job: NotificationJob) -> None:
        """
        Lock the job row and verify it is still processing under claim_token.

        Raises:
            ClaimLostError: If another attempt owns the job now
        """
        if self.claim_token is None:
            return

        job_id = job.id
        query = self.db.query(
            NotificationJob.status, NotificationJob.claim_token
        ).filter(NotificationJob.id == job_id)

        # Use FOR UPDATE for PostgreSQL (not supported in SQLite)
        if not self._is_sqlite:
            query = query.with_for_update()

        row = query.first()
        if (
            row is None
            or row.status != JobStatus.PROCESSING
            or row.claim_token != self.claim_token
        ):
            self.db.rollback()
            raise ClaimLostError(job_id, self.claim_token)

    def mark_sent(self, job: NotificationJob, now: datetime) -> None:
        self._ensure_owner(job)
        job.mark_sent(now)
        self.db.commit()
        logger.info("Notification sent", extra={"job_id": job.id})

    def mark_skipped(self, job: NotificationJob, reason: str) -> None:
        """
        Skip the job without consuming a retry.

        Args:
            job: Processing job
            reason: Machine-readable reason stored in last_error
        """
        self._ensure_owner(job)
        job.mark_skipped(reason)
        self.db.commit()
        logger.info("Notification skipped", extra={"job_id": job.id, "reason": reason})

    def mark_failed(self, job: NotificationJob, error: str, now: datetime) -> bool:
        """
        Record a transient failure.

        Within the retry budget the job returns to pending with
        next_retry_at set from the backoff table; otherwise it fails
        terminally.

        Args:
            job: Processing job
            error: Error description stored in last_error
            now: Database time

        Returns:
            True if a retry was scheduled, False if the job failed terminally
        """
        self._ensure_owner(job)
        previous_failures = job.retry_count or 0
        retry_at = None
        if self.retry_policy.should_retry(previous_failures):
            retry_at = self.retry_policy.next_retry_at(now, previous_failures + 1)

        job.fail(error, retry_at)
        self.db.commit()

        if retry_at is not None:
            logger.warning(
                "Notification failed, retry scheduled",
                extra={
                    "job_id": job.id,
                    "error": error,
                    "retry_count": job.retry_count,
                    "next_retry_at": retry_at.isoformat(),
                },
            )
            return True

        logger.error(
            "Notification failed permanently",
            extra={"job_id": job.id, "error": error, "retry_count": job.retry_count},
        )
        return False

    def mark_dead(self, job: NotificationJob, error: str) -> None:
        """Fail the job immediately, leaving retry_count unchanged."""
        self._ensure_owner(job)
        job.mark_dead(error)
        self.db.commit()
        logger.error(
            "Notification failed (not retryable)",
            extra={"job_id": job.id, "error": error},
        )

    def reschedule(self, job: NotificationJob, new_notify_at: datetime, reason: str = "") -> None:
        """
        Postpone the job; this is not a failure.

        Args:
            job: Processing job
            new_notify_at: New due time (naive UTC)
            reason: Why the job moved (quiet_hours, calendar_busy)
        """
        self._ensure_owner(job)
        job.reschedule(new_notify_at)
        self.db.commit()
        logger.info(
            "Notification rescheduled",
            extra={
                "job_id": job.id,
                "notify_at": new_notify_at.isoformat(),
                "reason": reason,
            },
        )
