"""
Job store service for the shared notification job queue.

Handles:
- Batch claiming with FOR UPDATE SKIP LOCKED for atomic claiming
- Authoritative database time
- Queue depth for metrics
- Action token reuse and rotation
- Occurrence keys for delivery deduplication

Any number of worker processes may claim from the same table; row locks
with SKIP LOCKED guarantee two workers never receive the same job.
"""

import secrets
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from notifier.src.models import Channel, JobStatus, NotificationJob, PUSH_CHANNELS
from notifier.src.utils.intervals import format_utc, parse_utc
from notifier.src.utils.logging_config import get_logger


logger = get_logger("services")

ACTION_TOKEN_BYTES = 20
ACTION_TOKEN_TTL = timedelta(days=7)
CLAIM_TOKEN_BYTES = 16


def generate_claim_token() -> str:
    """Random token identifying one scheduler cycle's claim."""
    return secrets.token_hex(CLAIM_TOKEN_BYTES)


def build_occurrence_key(
    entity_type: str,
    entity_id: str,
    occurrence_at_utc: datetime,
    channel: str
) -> str:
    """
    Build the dedup key of an occurrence on a channel.

    Example:
        >>> build_occurrence_key("reminder", "r1", datetime(2026, 3, 1, 9), "push")
        'reminder:r1:2026-03-01T09:00:00Z:push'
    """
    entity_type = getattr(entity_type, "value", entity_type)
    channel = getattr(channel, "value", channel)
    return f"{entity_type}:{entity_id}:{format_utc(occurrence_at_utc)}:{channel}"


class JobStoreService:
    """
    Service for reading and claiming notification jobs.

    Usage:
        >>> store = JobStoreService(db)
        >>> now = store.get_db_now()
        >>> jobs = store.claim_batch(
        ...     now - timedelta(minutes=120), now + timedelta(seconds=5),
        ...     limit=500, claim_token=generate_claim_token(), now=now,
        ... )
    """

    def __init__(self, db: Session):
        """
        Initialize job store service.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db
        self._is_sqlite = self._check_is_sqlite()

    def _check_is_sqlite(self) -> bool:
        """Check if the database is SQLite (no row locking support)."""
        try:
            return self.db.bind.dialect.name == "sqlite"
        except AttributeError:
            return False

    def get_db_now(self) -> datetime:
        """
        Read the current time from the database.

        Worker clocks may drift; every window and timestamp of a cycle is
        derived from this value.

        Returns:
            Current database time as naive UTC
        """
        # SQLite returns CURRENT_TIMESTAMP as a string
        value = parse_utc(self.db.execute(select(func.now())).scalar())
        if value is None:
            return datetime.utcnow()
        return value

    def claim_batch(
        self,
        window_start: datetime,
        window_end: datetime,
        limit: int,
        claim_token: str,
        now: datetime,
        channels: Sequence[Channel] = PUSH_CHANNELS,
    ) -> List[NotificationJob]:
        """
        Atomically claim due jobs.

        Selects up to `limit` pending jobs on the given channels with
        notify_at in [window_start, window_end] and the retry gate
        satisfied, ordered by notify_at, and moves them to PROCESSING under
        claim_token in one transaction. Jobs that already failed once are
        not bound by window_start, so a retry scheduled past the grace
        period still runs and eventually reaches a terminal status.

        Args:
            window_start: Oldest notify_at still claimed (now - grace)
            window_end: Latest notify_at claimed (now + lookahead)
            limit: Maximum number of jobs
            claim_token: Token of this claim
            now: Database time
            channels: Channels this worker delivers

        Returns:
            Claimed jobs
        """
        query = (
            self.db.query(NotificationJob)
            .filter(
                NotificationJob.status == JobStatus.PENDING,
                NotificationJob.channel.in_(list(channels)),
                # Retries stay claimable past the grace bound until the budget runs out
                or_(
                    NotificationJob.notify_at >= window_start,
                    NotificationJob.retry_count > 0,
                ),
                NotificationJob.notify_at <= window_end,
                or_(
                    NotificationJob.next_retry_at.is_(None),
                    NotificationJob.next_retry_at <= now,
                ),
            )
            .order_by(NotificationJob.notify_at.asc())
            .limit(limit)
        )

        # Use FOR UPDATE SKIP LOCKED for PostgreSQL (not supported in SQLite)
        if not self._is_sqlite:
            query = query.with_for_update(skip_locked=True)

        try:
            jobs = query.all()
            for job in jobs:
                job.claim(claim_token, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if jobs:
            logger.debug(
                "Claimed notification jobs",
                extra={"count": len(jobs), "claim_token": claim_token},
            )
        return jobs

    def get_job(self, job_id: str) -> Optional[NotificationJob]:
        return self.db.query(NotificationJob).filter(NotificationJob.id == job_id).first()

    def queue_depth(self, channels: Sequence[Channel] = PUSH_CHANNELS) -> int:
        """
        Count pending jobs on the given channels.

        Returns:
            Number of pending jobs (due or not)
        """
        return (
            self.db.query(func.count(NotificationJob.id))
            .filter(
                NotificationJob.status == JobStatus.PENDING,
                NotificationJob.channel.in_(list(channels)),
            )
            .scalar()
        ) or 0

    def ensure_action_token(self, job: NotificationJob, now: datetime) -> str:
        """
        Reuse the job's action token or rotate a fresh one.

        A token that is still valid is reused so that a retried push carries
        the same token as the first one. Otherwise a new token valid for
        seven days is generated and flushed.

        Args:
            job: Job about to be delivered
            now: Database time

        Returns:
            The action token to embed in the push payload
        """
        if (
            job.action_token
            and job.action_token_expires_at is not None
            and job.action_token_expires_at > now
        ):
            return job.action_token

        job.action_token = secrets.token_hex(ACTION_TOKEN_BYTES)
        job.action_token_expires_at = now + ACTION_TOKEN_TTL
        self.db.flush()
        return job.action_token
