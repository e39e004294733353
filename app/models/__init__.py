"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from app.models.base import Base
from app.models.device_token import DeviceToken
from app.models.enums import (
    DeliveryOutcome,
    DeliveryRecordStatus,
    DevicePlatform,
    NotificationType,
    QueueItemStatus,
)
from app.models.notification_delivery import NotificationDelivery
from app.models.notification_preference import NotificationPreference
from app.models.notification_queue_item import NotificationQueueItem

__all__ = [
    # Base
    "Base",
    # Enums
    "DeliveryOutcome",
    "DeliveryRecordStatus",
    "DevicePlatform",
    "NotificationType",
    "QueueItemStatus",
    # Queue Models
    "NotificationQueueItem",
    "NotificationDelivery",
    # User Models
    "DeviceToken",
    "NotificationPreference",
]
