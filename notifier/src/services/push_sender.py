"""
Web Push sender.

Delivers one JSON payload to one subscription via pywebpush with VAPID
authentication, and translates push service failures:
- 404 / 410: the subscription is gone and should be deleted
- anything else: transient delivery failure
"""

import json
from typing import Any, Dict

from pywebpush import WebPushException, webpush

from notifier.src.models.push_subscription import PushSubscription
from notifier.src.services.exceptions import (
    PushDeliveryError,
    PushGoneError,
    PushNotConfiguredError,
)


PUSH_TTL_SECONDS = 86400  # 24 hours


class WebPushSender:
    """
    Sends push notifications to individual subscriptions.

    Args:
        vapid_private_key: VAPID private key for push authentication
        vapid_subject: VAPID subject (mailto: or https: URL)
    """

    def __init__(self, vapid_private_key: str, vapid_subject: str):
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject

    @property
    def is_configured(self) -> bool:
        return bool(self.vapid_private_key and self.vapid_subject)

    @property
    def vapid_claims(self) -> Dict[str, str]:
        return {"sub": self.vapid_subject}

    def send(self, subscription: PushSubscription, payload: Dict[str, Any]) -> None:
        """
        Send a push notification to a single subscription.

        Args:
            subscription: Target push subscription
            payload: Push payload (title, body, url, jobId, actionToken)

        Raises:
            PushNotConfiguredError: If VAPID credentials are missing
            PushGoneError: If the subscription returned 404 or 410
            PushDeliveryError: If delivery failed for other reasons
        """
        if not self.is_configured:
            raise PushNotConfiguredError()

        try:
            webpush(
                subscription_info=subscription.subscription_info,
                data=json.dumps(payload),
                vapid_private_key=self.vapid_private_key,
                vapid_claims=dict(self.vapid_claims),
                ttl=PUSH_TTL_SECONDS,
                headers={"Urgency": "high"},
            )
        except WebPushException as e:
            response = getattr(e, "response", None)
            if response is not None:
                status_code = response.status_code
                # 410 Gone or 404 Not Found: subscription is expired/invalid
                if status_code in (410, 404):
                    raise PushGoneError(subscription.endpoint, status_code=status_code) from e
            raise PushDeliveryError(str(e)) from e
        except Exception as e:
            raise PushDeliveryError(str(e)) from e
