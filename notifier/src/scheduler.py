"""
Notification scheduler loop.

Implements the worker's main loop that, every poll interval:
- Reads the authoritative current time from the database
- Returns stale claims to the queue
- Claims a batch of due jobs under a fresh claim token
- Processes the batch with a bounded pool of concurrent workers
- Emits aggregate metrics on a coarser interval

Blocking database and HTTP work runs in a thread pool; every job gets its
own database session. A failing cycle is logged and the loop continues on
the next tick.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from notifier.src.config.settings import WorkerSettings
from notifier.src.metrics import CycleStats, MetricsReporter
from notifier.src.services.calendar_client import GoogleCalendarClient
from notifier.src.services.delivery_service import DeliveryService
from notifier.src.services.freebusy_cache_service import FreeBusyCacheService
from notifier.src.services.job_processor import JobProcessor, JobResult
from notifier.src.services.job_store_service import JobStoreService, generate_claim_token
from notifier.src.services.lifecycle_service import LifecycleService, RetryPolicy
from notifier.src.services.push_sender import WebPushSender
from notifier.src.utils.logging_config import get_logger


logger = get_logger("scheduler")


class NotificationScheduler:
    """
    Fixed-interval driver for claiming and processing notification jobs.

    Attributes:
        settings: Worker settings
        session_factory: Callable returning a new SQLAlchemy session
    """

    def __init__(
        self,
        settings: WorkerSettings,
        session_factory: Callable[[], Session],
        sender: Optional[WebPushSender] = None,
        calendar_client: Optional[GoogleCalendarClient] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            settings: Worker settings
            session_factory: Session factory (SessionLocal in production)
            sender: Web Push sender (built from VAPID settings if omitted)
            calendar_client: Calendar client (built from OAuth settings if omitted)
        """
        self.settings = settings
        self.session_factory = session_factory
        self.sender = sender or WebPushSender(
            vapid_private_key=settings.vapid_private_key,
            vapid_subject=settings.vapid_subject,
        )
        self.calendar_client = calendar_client or GoogleCalendarClient(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
        )
        self.retry_policy = RetryPolicy(tuple(settings.retry_delays))
        self.metrics = MetricsReporter(
            interval_seconds=settings.metrics_interval_seconds,
            queue_depth=self._queue_depth,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrency,
            thread_name_prefix="notifier-job",
        )
        self._shutdown_event = asyncio.Event()

    # ========================================================================
    # Blocking work (runs on executor threads)
    # ========================================================================

    def _claim(self) -> Tuple:
        """
        Reclaim stale jobs and claim a new batch.

        Returns:
            (now, claim_token, job_ids, reclaimed)
        """
        db = self.session_factory()
        try:
            store = JobStoreService(db)
            lifecycle = LifecycleService(db, self.retry_policy)
            now = store.get_db_now()
            reclaimed = lifecycle.reclaim_stale(
                now, timedelta(minutes=self.settings.reclaim_minutes)
            )
            claim_token = generate_claim_token()
            jobs = store.claim_batch(
                window_start=now - timedelta(minutes=self.settings.grace_minutes),
                window_end=now + timedelta(seconds=self.settings.claim_window_seconds),
                limit=self.settings.claim_limit,
                claim_token=claim_token,
                now=now,
            )
            return now, claim_token, [job.id for job in jobs], reclaimed
        finally:
            db.close()

    def build_processor(self, db: Session, claim_token: Optional[str] = None) -> JobProcessor:
        """Wire a job processor on a dedicated session, bound to the cycle's claim."""
        lifecycle = LifecycleService(db, self.retry_policy, claim_token=claim_token)
        delivery = DeliveryService(
            db,
            sender=self.sender,
            lifecycle=lifecycle,
            app_url=self.settings.app_url,
        )
        freebusy = FreeBusyCacheService(db, self.calendar_client)
        return JobProcessor(db, lifecycle, delivery, freebusy)

    def _run_job(self, job_id: str, now, claim_token: str) -> JobResult:
        db = self.session_factory()
        try:
            return self.build_processor(db, claim_token).process_job(job_id, now, claim_token)
        finally:
            db.close()

    def _queue_depth(self) -> int:
        db = self.session_factory()
        try:
            return JobStoreService(db).queue_depth()
        finally:
            db.close()

    # ========================================================================
    # Async driver
    # ========================================================================

    async def run_cycle(self) -> CycleStats:
        """
        Run one claim-and-process cycle.

        Returns:
            Counters for this cycle
        """
        loop = asyncio.get_running_loop()
        now, claim_token, job_ids, reclaimed = await loop.run_in_executor(
            self._executor, self._claim
        )
        stats = CycleStats(claimed=len(job_ids), reclaimed=reclaimed)
        if not job_ids:
            return stats

        queue: asyncio.Queue = asyncio.Queue()
        for job_id in job_ids:
            queue.put_nowait(job_id)

        async def worker() -> None:
            while True:
                try:
                    job_id = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                result = await loop.run_in_executor(
                    self._executor, self._run_job, job_id, now, claim_token
                )
                stats.record(result)

        workers: List = [
            worker() for _ in range(min(self.settings.max_concurrency, len(job_ids)))
        ]
        await asyncio.gather(*workers)

        logger.debug("Cycle complete", extra=stats.to_dict())
        return stats

    async def run(self) -> int:
        """
        Run the scheduler until shutdown is requested.

        Returns:
            Exit code (0 for clean shutdown)
        """
        loop = asyncio.get_running_loop()
        interval = self.settings.poll_interval_seconds
        logger.info(
            f"Starting notification scheduler (interval: {interval}s)",
            extra={
                "claim_limit": self.settings.claim_limit,
                "max_concurrency": self.settings.max_concurrency,
            },
        )

        try:
            while not self._shutdown_event.is_set():
                cycle_start = loop.time()
                try:
                    stats = await self.run_cycle()
                    self.metrics.add(stats)
                    await loop.run_in_executor(self._executor, self.metrics.maybe_emit)
                except Exception as e:
                    logger.error(f"Scheduler cycle failed: {e}", exc_info=True)

                elapsed = loop.time() - cycle_start
                await self._wait_for_next_poll(max(0.0, interval - elapsed))
        except asyncio.CancelledError:
            logger.info("Scheduler cancelled")
            return 0

        logger.info("Scheduler stopped")
        return 0

    async def _wait_for_next_poll(self, timeout: float) -> None:
        """Wait for the next poll interval or shutdown signal."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            # Normal timeout, continue polling
            pass

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the scheduler loop."""
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        """Check if the scheduler loop is running."""
        return not self._shutdown_event.is_set()

    def close(self) -> None:
        """Release the thread pool and HTTP client."""
        self._executor.shutdown(wait=True)
        self.calendar_client.close()


def summarize(stats: CycleStats) -> str:
    """One-line summary used by the run-once command."""
    counts = stats.to_dict()
    return ", ".join(f"{key}={value}" for key, value in counts.items())


