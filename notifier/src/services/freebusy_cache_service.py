"""
Free/busy cache service.

Keeps the number of calendar provider calls bounded: busy intervals for the
next 24 hours are cached on the user's calendar connection row for 10
minutes. A fresh, covering entry is returned without any network call.
Otherwise the access token is refreshed when close to expiry, the provider
is queried once, and the normalized result replaces the cache entry.

Concurrent workers may refresh the same user's cache redundantly; the last
write wins and every write is a complete, valid entry.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from notifier.src.models import CalendarConnection
from notifier.src.models.calendar_connection import GOOGLE_CALENDAR_PROVIDER
from notifier.src.services.calendar_client import GoogleCalendarClient
from notifier.src.services.exceptions import CalendarNotConnectedError
from notifier.src.utils.intervals import (
    BusyInterval,
    find_interval_at,
    intervals_to_json,
    normalize_busy_intervals,
)
from notifier.src.utils.logging_config import get_logger


logger = get_logger("calendar")

FREEBUSY_CACHE_TTL = timedelta(minutes=10)
FREEBUSY_WINDOW = timedelta(hours=24)
TOKEN_REFRESH_THRESHOLD = timedelta(minutes=2)


class FreeBusyCacheService:
    """
    Service returning a user's busy intervals through the cache.

    Usage:
        >>> cache = FreeBusyCacheService(db, calendar_client)
        >>> intervals = cache.get_busy_intervals(user_id, now, "Europe/Bucharest")
        >>> busy = cache.find_busy_interval(user_id, now, "Europe/Bucharest")
    """

    def __init__(
        self,
        db: Session,
        calendar_client: GoogleCalendarClient,
        ttl: timedelta = FREEBUSY_CACHE_TTL,
        window: timedelta = FREEBUSY_WINDOW,
    ):
        """
        Initialize free/busy cache service.

        Args:
            db: SQLAlchemy database session
            calendar_client: Provider client
            ttl: Maximum cache age
            window: Lookahead covered by each provider query
        """
        self.db = db
        self.calendar_client = calendar_client
        self.ttl = ttl
        self.window = window

    def _get_connection(self, user_id: str) -> CalendarConnection:
        connection = (
            self.db.query(CalendarConnection)
            .filter(
                CalendarConnection.user_id == user_id,
                CalendarConnection.provider == GOOGLE_CALENDAR_PROVIDER,
            )
            .first()
        )
        if connection is None or not (connection.access_token or connection.refresh_token):
            raise CalendarNotConnectedError(user_id)
        return connection

    def _ensure_valid_token(self, connection: CalendarConnection, now: datetime) -> str:
        """
        Return a bearer token, refreshing and persisting it when needed.

        Raises:
            TokenRefreshError: If the refresh fails
        """
        if not connection.token_expires_within(now, TOKEN_REFRESH_THRESHOLD):
            return connection.access_token

        grant = self.calendar_client.refresh_access_token(connection.refresh_token, now=now)
        connection.store_tokens(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=grant.expires_at,
            scope=grant.scope,
        )
        self.db.commit()
        logger.info(
            "Refreshed calendar access token",
            extra={"user_id": connection.user_id, "expires_at": grant.expires_at.isoformat()},
        )
        return grant.access_token

    def get_busy_intervals(
        self,
        user_id: str,
        now: datetime,
        time_zone: Optional[str] = None
    ) -> List[BusyInterval]:
        """
        Get the user's busy intervals covering [now, now + window].

        Args:
            user_id: Calendar owner
            now: Current time (naive UTC)
            time_zone: Zone passed to the provider query

        Returns:
            Sorted, non-overlapping busy intervals

        Raises:
            CalendarNotConnectedError: If the user has no calendar connection
            TokenRefreshError: If the access token cannot be refreshed
            CalendarApiError: If the provider query fails
        """
        connection = self._get_connection(user_id)
        window_end = now + self.window

        if connection.cache_covers(now, window_end, self.ttl):
            logger.debug("Free/busy cache hit", extra={"user_id": user_id})
            return normalize_busy_intervals(connection.cached_intervals)

        # Fetch one TTL past the window so the entry covers later cycles while fresh
        fetch_end = window_end + self.ttl
        access_token = self._ensure_valid_token(connection, now)
        raw = self.calendar_client.query_free_busy(
            access_token,
            time_min=now,
            time_max=fetch_end,
            time_zone=time_zone or "UTC",
        )
        intervals = normalize_busy_intervals(raw)

        connection.store_cache(
            intervals_to_json(intervals),
            time_min=now,
            time_max=fetch_end,
            fetched_at=now,
        )
        self.db.commit()

        logger.debug(
            "Free/busy cache refreshed",
            extra={"user_id": user_id, "intervals": len(intervals)},
        )
        return intervals

    def find_busy_interval(
        self,
        user_id: str,
        now: datetime,
        time_zone: Optional[str] = None
    ) -> Optional[BusyInterval]:
        """Busy interval containing now, or None."""
        return find_interval_at(self.get_busy_intervals(user_id, now, time_zone), now)
