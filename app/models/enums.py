"""
Database enums.

Centralized enums used across database models.
"""

from enum import StrEnum


class QueueItemStatus(StrEnum):
    """Notification queue item status values."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"  # Claimed by a processing cycle
    SENT = "sent"
    FAILED = "failed"  # Waiting for retry, or terminal when next_retry_at is NULL
    DEAD_LETTERED = "dead_lettered"
    CANCELLED = "cancelled"


class NotificationType(StrEnum):
    """Notification category values."""

    REMINDER = "reminder"
    SRS = "srs"
    SUMMARY = "summary"
    SYSTEM = "system"


class DeliveryOutcome(StrEnum):
    """Per-token result of a push gateway send."""

    DELIVERED = "delivered"
    INVALID_TOKEN = "invalid_token"
    TRANSIENT_ERROR = "transient_error"


class DeliveryRecordStatus(StrEnum):
    """Delivery record outcome values (audit log)."""

    OK = "ok"
    ERROR = "error"


class DevicePlatform(StrEnum):
    """Device platform values."""

    IOS = "ios"
    ANDROID = "android"
    WEB = "web"
