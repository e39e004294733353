"""
Repositories.

Data access layer for all models.
"""

from app.repositories.base import BaseRepository
from app.repositories.device_token_repository import DeviceTokenRepository
from app.repositories.notification_delivery_repository import (
    NotificationDeliveryRepository,
)
from app.repositories.notification_preference_repository import (
    NotificationPreferenceRepository,
)
from app.repositories.notification_queue_repository import (
    NotificationQueueRepository,
)

__all__ = [
    "BaseRepository",
    "DeviceTokenRepository",
    "NotificationDeliveryRepository",
    "NotificationPreferenceRepository",
    "NotificationQueueRepository",
]
