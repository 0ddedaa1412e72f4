"""
PushSubscription model for Web Push notification subscriptions.

Stores the push service endpoint and encryption keys needed to deliver
push notifications to a specific user's device/browser.
"""

from datetime import datetime

from sqlalchemy import Boolean, Column, String, DateTime
from uuid_extensions import uuid7

from notifier.src.models import Base


class PushSubscription(Base):
    """
    Web Push subscription for a specific user on a specific device/browser.

    Attributes:
        endpoint: Push service URL (unique per subscription)
        p256dh: ECDH public key for payload encryption (Base64url)
        auth: Auth secret for message authentication (Base64url)
        is_disabled: Subscription switched off by the user
        last_used_at: Timestamp of last successful push delivery

    Lifecycle:
        Created by the web application when the user enables notifications.
        Removed by the worker when the push service returns 404 or 410.
    """

    __tablename__ = "push_subscriptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid7()))

    # Owning user
    user_id = Column(String(36), nullable=False, index=True)

    # Push subscription data
    endpoint = Column(String(1024), nullable=False, unique=True)
    p256dh = Column(String(255), nullable=False)
    auth = Column(String(255), nullable=False)

    is_disabled = Column(Boolean, default=False, nullable=False)

    # Tracking
    last_used_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    @property
    def subscription_info(self) -> dict:
        """Subscription in the shape pywebpush expects."""
        return {
            "endpoint": self.endpoint,
            "keys": {
                "p256dh": self.p256dh,
                "auth": self.auth,
            },
        }
