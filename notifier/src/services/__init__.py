"""
Service layer for notification delivery.

Only the exception types are exported here; models raise
InvalidTransitionError, so importing the service modules from this package
would create an import cycle.
"""

from notifier.src.services.exceptions import (
    ServiceError,
    InvalidTransitionError,
    ClaimLostError,
    CalendarError,
    CalendarNotConnectedError,
    TokenRefreshError,
    CalendarApiError,
    PushDeliveryError,
    PushGoneError,
    PushNotConfiguredError,
)

__all__ = [
    "ServiceError",
    "InvalidTransitionError",
    "ClaimLostError",
    "CalendarError",
    "CalendarNotConnectedError",
    "TokenRefreshError",
    "CalendarApiError",
    "PushDeliveryError",
    "PushGoneError",
    "PushNotConfiguredError",
]
