"""
Custom exceptions for service layer.

Provides specific exception types for job lifecycle, calendar and push
delivery errors. The job processor maps them onto job outcomes:
non-retryable errors end the job, transient errors consume a retry.
"""

from typing import Optional


class ServiceError(Exception):
    """Base exception for service layer errors."""
    pass


class InvalidTransitionError(ServiceError):
    """Raised when a job transition is not allowed from its current status."""

    def __init__(self, job_id: Optional[str], current_status: str, action: str):
        self.job_id = job_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} job {job_id} in status '{current_status}'"
        )


class ClaimLostError(ServiceError):
    """Raised when a processing job is no longer owned by the finalizing attempt."""

    def __init__(self, job_id: str, claim_token: str):
        self.job_id = job_id
        self.claim_token = claim_token
        super().__init__(f"Job {job_id} is no longer claimed by {claim_token}")


# ============================================================================
# Calendar Exceptions
# ============================================================================


class CalendarError(ServiceError):
    """Base exception for calendar provider failures."""
    pass


class CalendarNotConnectedError(CalendarError):
    """Raised when the user has no usable calendar connection."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} has no calendar connection")


class TokenRefreshError(CalendarError):
    """Raised when the OAuth refresh token exchange fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class CalendarApiError(CalendarError):
    """Raised when the free/busy query fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


# ============================================================================
# Push Delivery Exceptions
# ============================================================================


class PushDeliveryError(ServiceError):
    """Raised when push delivery fails."""
    pass


class PushGoneError(PushDeliveryError):
    """Raised when push service returns 404/410 (subscription invalid)."""

    def __init__(self, endpoint: str, status_code: Optional[int] = None):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(f"Push subscription gone: {endpoint[:60]}")


class PushNotConfiguredError(ServiceError):
    """Raised when VAPID credentials are missing."""

    def __init__(self):
        super().__init__("VAPID keys are not configured")
