"""
Push subscription service for the delivery pipeline.

Looks up a recipient's enabled Web Push subscriptions, prunes endpoints
the push service reported as gone, and stamps successful deliveries.
Subscriptions are created and removed by users through the web
application; the worker never creates them.
"""

from datetime import datetime
from typing import Iterable, List

from sqlalchemy.orm import Session

from notifier.src.models.push_subscription import PushSubscription
from notifier.src.utils.logging_config import get_logger


logger = get_logger("delivery")


class PushSubscriptionService:
    """
    Service for reading and pruning Web Push subscriptions.

    Handles:
    - List enabled subscriptions of a user
    - Remove invalid (404/410 Gone) subscriptions
    - Update last_used_at after delivery
    """

    def __init__(self, db: Session):
        self.db = db

    def list_for_user(self, user_id: str) -> List[PushSubscription]:
        """
        List enabled push subscriptions for a user.

        Args:
            user_id: Recipient user ID

        Returns:
            List of PushSubscription instances, oldest first
        """
        return (
            self.db.query(PushSubscription)
            .filter(
                PushSubscription.user_id == user_id,
                PushSubscription.is_disabled.is_(False),
            )
            .order_by(PushSubscription.created_at.asc())
            .all()
        )

    def remove_invalid_endpoints(self, endpoints: Iterable[str]) -> int:
        """
        Remove subscriptions whose endpoint the push service reported as gone.

        Args:
            endpoints: Endpoints that returned 404 or 410

        Returns:
            Number of subscriptions removed
        """
        endpoints = list(dict.fromkeys(endpoints))
        if not endpoints:
            return 0

        removed = (
            self.db.query(PushSubscription)
            .filter(PushSubscription.endpoint.in_(endpoints))
            .all()
        )
        for subscription in removed:
            logger.info(
                "Removing invalid push subscription (410 Gone)",
                extra={
                    "user_id": subscription.user_id,
                    "endpoint_prefix": subscription.endpoint[:60],
                },
            )
            self.db.delete(subscription)

        self.db.commit()
        return len(removed)

    def mark_used(self, subscriptions: Iterable[PushSubscription], now: datetime) -> None:
        """
        Update last_used_at after successful push delivery.

        The caller commits.
        """
        for subscription in subscriptions:
            subscription.last_used_at = now
