"""
User profile and device installation models owned by the web application.
"""

from datetime import datetime

from sqlalchemy import Boolean, Column, String, DateTime

from notifier.src.models import Base
from notifier.src.models.reminder import JSONType


class Profile(Base):
    """
    Per-user preferences relevant to notification delivery.

    Attributes:
        user_id: Primary key, the auth user ID
        time_zone: IANA timezone of the user
        context_defaults: Default delivery context settings (camelCase JSON)
        notify_by_push: Whether the user accepts push notifications
    """

    __tablename__ = "profiles"

    user_id = Column(String(36), primary_key=True)
    time_zone = Column(String(64), nullable=True)
    context_defaults = Column(JSONType, nullable=True)
    notify_by_push = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class DeviceInstallation(Base):
    """
    A native app installation reporting heartbeats.

    Attributes:
        id: Primary key
        user_id: Owning user
        platform: android, ios, ...
        last_seen_at: Last heartbeat
    """

    __tablename__ = "device_installations"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    platform = Column(String(16), nullable=False)
    last_seen_at = Column(DateTime, nullable=True)
