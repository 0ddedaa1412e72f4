"""
CalendarConnection model: a user's calendar provider OAuth connection.

The same row carries the cached free/busy intervals for the user, so a
worker that finds a fresh cache entry never calls the provider.
"""

from datetime import datetime, timedelta
from typing import Any, List, Optional

from sqlalchemy import Column, String, DateTime, Text, UniqueConstraint
from uuid_extensions import uuid7

from notifier.src.models import Base
from notifier.src.models.reminder import JSONType


GOOGLE_CALENDAR_PROVIDER = "google_calendar"


class CalendarConnection(Base):
    """
    OAuth tokens and free/busy cache for one user and provider.

    Attributes:
        user_id: Owning user
        provider: Provider key (google_calendar)
        access_token: Current bearer token
        refresh_token: Long-lived refresh token
        expires_at: Access token expiry
        scope: Granted OAuth scopes
        freebusy_cache_json: Normalized busy intervals [{"start", "end"}, ...]
        freebusy_cache_time_min: Start of the cached query window
        freebusy_cache_time_max: End of the cached query window
        freebusy_cache_fetched_at: When the cache was written
    """

    __tablename__ = "user_google_connections"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid7()))
    user_id = Column(String(36), nullable=False, index=True)
    provider = Column(String(32), default=GOOGLE_CALENDAR_PROVIDER, nullable=False)

    # OAuth tokens
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    scope = Column(Text, nullable=True)

    # Free/busy cache
    freebusy_cache_json = Column(JSONType, nullable=True)
    freebusy_cache_time_min = Column(DateTime, nullable=True)
    freebusy_cache_time_max = Column(DateTime, nullable=True)
    freebusy_cache_fetched_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_user_google_connections_user_provider"),
    )

    def token_expires_within(self, now: datetime, threshold: timedelta) -> bool:
        """
        Check whether the access token needs a refresh.

        A missing token or expiry counts as expiring.
        """
        if not self.access_token or self.expires_at is None:
            return True
        return self.expires_at - now <= threshold

    def cache_covers(
        self,
        now: datetime,
        window_end: datetime,
        ttl: timedelta
    ) -> bool:
        """
        Check whether the cached intervals can answer a query.

        Args:
            now: Current time (start of the needed window)
            window_end: End of the needed window
            ttl: Maximum cache age

        Returns:
            True if the cache is fresh and its window covers [now, window_end]
        """
        if self.freebusy_cache_json is None or self.freebusy_cache_fetched_at is None:
            return False
        if self.freebusy_cache_time_min is None or self.freebusy_cache_time_max is None:
            return False
        if now - self.freebusy_cache_fetched_at > ttl:
            return False
        return self.freebusy_cache_time_min <= now and self.freebusy_cache_time_max >= window_end

    @property
    def cached_intervals(self) -> List[Any]:
        return list(self.freebusy_cache_json or [])

    def store_cache(
        self,
        intervals: List[dict],
        time_min: datetime,
        time_max: datetime,
        fetched_at: datetime,
    ) -> None:
        self.freebusy_cache_json = intervals
        self.freebusy_cache_time_min = time_min
        self.freebusy_cache_time_max = time_max
        self.freebusy_cache_fetched_at = fetched_at

    def store_tokens(
        self,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: datetime,
        scope: Optional[str],
    ) -> None:
        self.access_token = access_token
        if refresh_token:
            self.refresh_token = refresh_token
        self.expires_at = expires_at
        if scope:
            self.scope = scope
