"""
Calendar provider HTTP client.

Provides the two calls the worker needs from Google Calendar:
- OAuth refresh-token exchange for a fresh bearer token
- freeBusy query for the user's primary calendar

Runs on worker threads, so it uses the synchronous httpx client.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx

from notifier.src.services.exceptions import CalendarApiError, TokenRefreshError
from notifier.src.utils.intervals import format_utc
from notifier.src.utils.logging_config import get_logger


logger = get_logger("calendar")


# ============================================================================
# Constants
# ============================================================================

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_FREEBUSY_URL = "https://www.googleapis.com/calendar/v3/freeBusy"
DEFAULT_TIMEOUT = 30.0  # seconds
PRIMARY_CALENDAR = "primary"


@dataclass(frozen=True)
class TokenGrant:
    """
    Result of a refresh-token exchange.

    Attributes:
        access_token: New bearer token
        refresh_token: Refresh token to keep (the old one when not rotated)
        expires_at: Naive UTC expiry of access_token
        scope: Granted scopes, if reported
    """

    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime
    scope: Optional[str] = None


class GoogleCalendarClient:
    """
    HTTP client for the Google Calendar token and freeBusy endpoints.

    Attributes:
        client_id: OAuth client ID used for token refresh
        client_secret: OAuth client secret used for token refresh
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        timeout: float = DEFAULT_TIMEOUT,
        token_url: str = GOOGLE_TOKEN_URL,
        freebusy_url: str = GOOGLE_FREEBUSY_URL,
    ):
        """
        Initialize the calendar client.

        Args:
            client_id: OAuth client ID
            client_secret: OAuth client secret
            timeout: Request timeout in seconds
            token_url: Token endpoint
            freebusy_url: freeBusy endpoint
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self._token_url = token_url
        self._freebusy_url = freebusy_url
        self._client = httpx.Client(
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    # -------------------------------------------------------------------------
    # Token Refresh
    # -------------------------------------------------------------------------

    def refresh_access_token(
        self,
        refresh_token: str,
        now: Optional[datetime] = None
    ) -> TokenGrant:
        """
        Exchange a refresh token for a new access token.

        Args:
            refresh_token: Stored refresh token
            now: Time the expiry is computed from (defaults to utcnow)

        Returns:
            TokenGrant; keeps refresh_token when the provider does not rotate it

        Raises:
            TokenRefreshError: If credentials are missing or the exchange fails
        """
        if not self.client_id or not self.client_secret:
            raise TokenRefreshError("Missing Google OAuth client credentials")
        if not refresh_token:
            raise TokenRefreshError("Missing refresh token")

        try:
            response = self._client.post(
                self._token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as e:
            raise TokenRefreshError(f"Token refresh request failed: {e}")

        payload = self._json(response)
        if not response.is_success:
            logger.error(
                "Calendar token refresh failed",
                extra={"status_code": response.status_code, "error": payload.get("error")},
            )
            raise TokenRefreshError(
                f"Token refresh failed with status {response.status_code}",
                status_code=response.status_code,
            )

        access_token = str(payload.get("access_token") or "")
        if not access_token:
            raise TokenRefreshError("Token refresh response has no access token")

        try:
            expires_in = int(payload.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0

        issued_at = now or datetime.utcnow()
        return TokenGrant(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or refresh_token,
            expires_at=issued_at + timedelta(seconds=max(1, expires_in)),
            scope=payload.get("scope"),
        )

    # -------------------------------------------------------------------------
    # Free/Busy
    # -------------------------------------------------------------------------

    def query_free_busy(
        self,
        access_token: str,
        time_min: datetime,
        time_max: datetime,
        time_zone: str = "UTC",
        calendar_id: str = PRIMARY_CALENDAR,
    ) -> List[Dict[str, Any]]:
        """
        Query busy blocks of one calendar.

        Args:
            access_token: Bearer token
            time_min: Window start (naive UTC)
            time_max: Window end (naive UTC)
            time_zone: Zone the provider uses for the response
            calendar_id: Calendar to query

        Returns:
            Raw busy entries [{"start": iso, "end": iso}, ...]

        Raises:
            CalendarApiError: On network errors or non-2xx responses
        """
        try:
            response = self._client.post(
                self._freebusy_url,
                headers={"Authorization": f"Bearer {access_token}"},
                json={
                    "timeMin": format_utc(time_min),
                    "timeMax": format_utc(time_max),
                    "timeZone": time_zone or "UTC",
                    "items": [{"id": calendar_id}],
                },
            )
        except httpx.HTTPError as e:
            raise CalendarApiError(f"freeBusy request failed: {e}")

        if not response.is_success:
            raise CalendarApiError(
                f"freeBusy failed with status {response.status_code}",
                status_code=response.status_code,
            )

        payload = self._json(response)
        calendars = payload.get("calendars") or {}
        calendar = calendars.get(calendar_id) or {}
        busy = calendar.get("busy") or []
        return [entry for entry in busy if isinstance(entry, dict)]

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "GoogleCalendarClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
