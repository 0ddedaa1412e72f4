"""
Worker metrics aggregation.

Collects per-cycle counters from the scheduler and emits one aggregate
log line per metrics interval, together with the pending queue depth.
"""

import time
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from notifier.src.services.job_processor import JobOutcome, JobResult
from notifier.src.utils.logging_config import get_logger


logger = get_logger("scheduler")


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class CycleStats:
    """
    Counters for one scheduler cycle (or an aggregate of several).

    Attributes:
        claimed: Jobs claimed
        sent: Jobs delivered
        failed: Jobs failed (retry scheduled or terminal)
        skipped: Jobs skipped
        rescheduled: Jobs deferred or auto-snoozed
        reclaimed: Stale claims returned to the queue
        max_lag_seconds: Largest delay between notify_at and processing
    """
    claimed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    rescheduled: int = 0
    reclaimed: int = 0
    max_lag_seconds: float = 0.0

    def record(self, result: JobResult) -> None:
        """Count one job result."""
        if result.outcome == JobOutcome.SENT:
            self.sent += 1
        elif result.outcome == JobOutcome.FAILED:
            self.failed += 1
        elif result.outcome == JobOutcome.SKIPPED:
            self.skipped += 1
        elif result.outcome == JobOutcome.RESCHEDULED:
            self.rescheduled += 1
        if result.outcome != JobOutcome.IGNORED:
            self.max_lag_seconds = max(self.max_lag_seconds, result.lag_seconds)

    def merge(self, other: "CycleStats") -> None:
        self.claimed += other.claimed
        self.sent += other.sent
        self.failed += other.failed
        self.skipped += other.skipped
        self.rescheduled += other.rescheduled
        self.reclaimed += other.reclaimed
        self.max_lag_seconds = max(self.max_lag_seconds, other.max_lag_seconds)

    def to_dict(self) -> dict:
        """
        Convert to dictionary for logging.

        Returns:
            Dictionary with counter values, lag rounded to 0.1s
        """
        result = asdict(self)
        result["max_lag_seconds"] = round(self.max_lag_seconds, 1)
        return result


# ============================================================================
# Metrics Reporter
# ============================================================================

class MetricsReporter:
    """
    Aggregates cycle stats and logs them every interval.

    Args:
        interval_seconds: Seconds between metrics log lines
        queue_depth: Callable returning the pending queue depth
        clock: Monotonic clock (injectable for tests)
    """

    def __init__(
        self,
        interval_seconds: float,
        queue_depth: Callable[[], int],
        clock: Callable[[], float] = time.monotonic,
    ):
        self._interval = interval_seconds
        self._queue_depth = queue_depth
        self._clock = clock
        self._aggregate = CycleStats()
        self._last_emit: Optional[float] = None

    @property
    def aggregate(self) -> CycleStats:
        return self._aggregate

    def add(self, stats: CycleStats) -> None:
        self._aggregate.merge(stats)

    def is_due(self) -> bool:
        if self._last_emit is None:
            return True
        return self._clock() - self._last_emit >= self._interval

    def maybe_emit(self) -> Optional[dict]:
        """
        Log the aggregate if the interval has elapsed, then reset it.

        Returns:
            The logged metrics, or None when not due
        """
        if not self.is_due():
            return None

        try:
            depth = self._queue_depth()
        except Exception as e:
            logger.warning(f"Queue depth query failed: {e}")
            depth = None

        metrics = self._aggregate.to_dict()
        metrics["queue_depth"] = depth
        logger.info("Worker metrics", extra=metrics)

        self._aggregate = CycleStats()
        self._last_emit = self._clock()
        return metrics
