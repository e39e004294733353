"""
NotificationQueueItem model.

Durable queue of push notifications waiting for delivery.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin
from app.models.enums import QueueItemStatus

DEFAULT_PRIORITY = 5
DEFAULT_MAX_RETRIES = 3


class NotificationQueueItem(TimestampMixin, Base):
    """
    NotificationQueueItem entity.

    Lifecycle:
    1. A producer inserts the item with status ``pending``
    2. A processing cycle claims it (``in_flight`` + lock_id)
    3. The cycle writes the outcome: ``sent``, ``failed`` or ``dead_lettered``
    4. Failed items with a due next_retry_at are swept back to ``pending``

    Attributes:
        id: Primary key
        user_id: Recipient identifier
        notification_type: Category tag (reminder, srs, summary, system)
        title: Rendered title
        body: Rendered body
        data: Opaque payload forwarded to the client app
        priority: Lower value = higher priority (1-10)
        status: Current delivery state
        retry_count: Failed attempts so far
        max_retries: Per-item attempt cap
        next_retry_at: When a failed item becomes eligible again
        last_error: Last diagnostic message
        scheduled_for: Not deliverable before this instant (NULL = now)
        dedup_key: Producer-side idempotency key
        lock_id: Processing cycle holding the claim
        claimed_at: When the claim was taken
        sent_at: When delivery succeeded
    """

    __tablename__ = "notification_queue"
    __table_args__ = (
        CheckConstraint(
            "retry_count >= 0 AND retry_count <= max_retries",
            name="ck_notification_queue_retry_count",
        ),
        CheckConstraint(
            "priority BETWEEN 1 AND 10",
            name="ck_notification_queue_priority",
        ),
        Index(
            "idx_notification_queue_processing",
            "status",
            "priority",
            "created_at",
        ),
        Index(
            "idx_notification_queue_retry",
            "status",
            "next_retry_at",
        ),
        Index(
            "idx_notification_queue_claim",
            "status",
            "claimed_at",
        ),
    )

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )

    # Recipient (no FK - users live in another system)
    user_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )

    # Payload
    notification_type: Mapped[str] = mapped_column(
        String(32), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True
    )
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_PRIORITY
    )

    # Delivery state
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=QueueItemStatus.PENDING.value,
    )
    retry_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    max_retries: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_MAX_RETRIES
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    scheduled_for: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    dedup_key: Mapped[str | None] = mapped_column(
        String(255), nullable=True, unique=True
    )

    # Claim
    lock_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def is_terminal(self) -> bool:
        """Check if the item will never be processed again."""
        if self.status in (
            QueueItemStatus.SENT,
            QueueItemStatus.DEAD_LETTERED,
            QueueItemStatus.CANCELLED,
        ):
            return True
        # Failed without a retry time (invalid token) is terminal too
        return (
            self.status == QueueItemStatus.FAILED
            and self.next_retry_at is None
        )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"NotificationQueueItem(id={self.id}, "
            f"user_id={self.user_id!r}, "
            f"type={self.notification_type!r}, "
            f"status={self.status!r}, "
            f"retry_count={self.retry_count})"
        )
