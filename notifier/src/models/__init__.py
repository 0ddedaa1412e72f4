"""
SQLAlchemy models for the notification worker.

This module provides the declarative base class and imports all models
to ensure they are registered with SQLAlchemy's metadata.
"""

from sqlalchemy.orm import declarative_base

# Create the declarative base class
# All models will inherit from this Base class
Base = declarative_base()


# Import all models here so they are registered with Base.metadata

# Job queue
from notifier.src.models.notification_job import (
    NotificationJob,
    JobStatus,
    EntityType,
    Channel,
    PUSH_CHANNELS,
)
from notifier.src.models.delivery_log import (
    DeliveryLogStatus,
    ReminderDeliveryLog,
    MedicationDeliveryLog,
)

# Delivery targets
from notifier.src.models.push_subscription import PushSubscription
from notifier.src.models.calendar_connection import CalendarConnection

# Web application tables (read-mostly)
from notifier.src.models.reminder import (
    Reminder,
    ReminderKind,
    ReminderOccurrence,
    OccurrenceStatus,
    MedicationDose,
)
from notifier.src.models.profile import Profile, DeviceInstallation

# Export Base and all models
__all__ = [
    "Base",
    "NotificationJob",
    "JobStatus",
    "EntityType",
    "Channel",
    "PUSH_CHANNELS",
    "DeliveryLogStatus",
    "ReminderDeliveryLog",
    "MedicationDeliveryLog",
    "PushSubscription",
    "CalendarConnection",
    "Reminder",
    "ReminderKind",
    "ReminderOccurrence",
    "OccurrenceStatus",
    "MedicationDose",
    "Profile",
    "DeviceInstallation",
]
