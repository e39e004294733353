"""
NotificationDelivery model.

Append-only audit log of physical push send attempts.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, utcnow


class NotificationDelivery(Base):
    """
    NotificationDelivery entity (DeliveryRecord).

    One row per (queue item, device token, processing cycle). Rows are
    never updated; the queue item status is the source of truth for
    scheduling.

    Attributes:
        id: Primary key
        queue_item_id: Queue item this attempt belongs to (no FK)
        attempt_id: Processing cycle lock id
        user_id: Recipient identifier
        notification_type: Category tag
        title: Title as sent
        body: Body as sent
        sent_at: Attempt timestamp
        device_token: Token the message was sent to
        outcome: ok / error
        error_message: Gateway diagnostic for failed attempts
        delivery_metadata: Outcome details (JSON)
    """

    __tablename__ = "notification_deliveries"
    __table_args__ = (
        UniqueConstraint(
            "queue_item_id",
            "device_token",
            "attempt_id",
            name="uq_notification_deliveries_attempt",
        ),
        Index(
            "idx_notification_deliveries_user",
            "user_id",
            "sent_at",
        ),
        Index(
            "idx_notification_deliveries_type",
            "notification_type",
            "sent_at",
        ),
    )

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )

    queue_item_id: Mapped[int] = mapped_column(
        Integer, nullable=False, index=True
    )
    attempt_id: Mapped[str] = mapped_column(String(64), nullable=False)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    notification_type: Mapped[str] = mapped_column(
        String(32), nullable=False
    )
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)

    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    device_token: Mapped[str] = mapped_column(String(255), nullable=False)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # "metadata" is reserved by the declarative API
    delivery_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"NotificationDelivery(id={self.id}, "
            f"queue_item_id={self.queue_item_id}, "
            f"attempt_id={self.attempt_id!r}, "
            f"outcome={self.outcome!r})"
        )
