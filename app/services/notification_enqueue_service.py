"""
Notification enqueue service.

Producer-side entry point of the delivery queue. Inserts pending items
and collapses repeated enqueues of the same logical notification through
a deduplication key.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.settings import Settings
from app.models.base import utcnow
from app.models.enums import NotificationType
from app.models.notification_queue_item import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_PRIORITY,
    NotificationQueueItem,
)
from app.repositories.notification_queue_repository import (
    NotificationQueueRepository,
)
from app.services.exceptions import QueueStoreUnavailableError

# Daily bucket
DEDUP_BUCKET_MINUTES = 1440


def generate_dedup_key(
    user_id: str,
    notification_type: str,
    item_id: Optional[str] = None,
    bucket_minutes: int = DEDUP_BUCKET_MINUTES,
    now: Optional[datetime] = None,
) -> str:
    """
    Build a deduplication key for a notification.

    Format: ``user:type:item:YYYYMMDDHHMM`` where the timestamp is the
    start of the UTC time bucket containing ``now``.

    Args:
        user_id: Recipient
        notification_type: Category tag
        item_id: Related entity (assignment, lecture, ...) if any
        bucket_minutes: Bucket size, one day by default
        now: Reference time

    Returns:
        Deduplication key
    """
    if bucket_minutes <= 0:
        raise ValueError("bucket_minutes must be positive")

    now = now or utcnow()
    total_minutes = int(now.timestamp() // 60)
    bucket_start = (total_minutes // bucket_minutes) * bucket_minutes
    bucket = datetime.fromtimestamp(bucket_start * 60, tz=UTC)
    return (
        f"{user_id}:{notification_type}:{item_id or ''}:"
        f"{bucket.strftime('%Y%m%d%H%M')}"
    )


@dataclass(frozen=True)
class EnqueueResult:
    """Enqueued item and whether it was created by this call."""

    item: NotificationQueueItem
    created: bool


class NotificationEnqueueService:
    """Inserts notifications into the delivery queue."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        default_max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        """
        Initialize enqueue service.

        Args:
            session_factory: Async session factory
            default_max_retries: Attempt cap for items that do not set one
        """
        self.session_factory = session_factory
        self.default_max_retries = default_max_retries

    async def enqueue(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        body: str,
        data: Optional[dict[str, Any]] = None,
        priority: int = DEFAULT_PRIORITY,
        max_retries: Optional[int] = None,
        scheduled_for: Optional[datetime] = None,
        dedup_key: Optional[str] = None,
        item_id: Optional[str] = None,
        deduplicate: bool = True,
    ) -> EnqueueResult:
        """
        Enqueue a pending notification.

        With ``deduplicate`` and no explicit ``dedup_key``, a daily key
        from user, type and item_id is used. An existing item with the
        same key is returned instead of inserting a new one.

        Raises:
            ValueError: Invalid input
            QueueStoreUnavailableError: Database unreachable
        """
        if notification_type not in {t.value for t in NotificationType}:
            raise ValueError(f"Unknown notification type: {notification_type}")
        if not title or not body:
            raise ValueError("title and body are required")
        if not 1 <= priority <= 10:
            raise ValueError("priority must be between 1 and 10")
        if max_retries is None:
            max_retries = self.default_max_retries
        if max_retries < 1:
            raise ValueError("max_retries must be positive")

        if dedup_key is None and deduplicate:
            dedup_key = generate_dedup_key(
                user_id, notification_type, item_id
            )

        try:
            async with self.session_factory() as session:
                repo = NotificationQueueRepository(session)
                if dedup_key:
                    existing = await repo.get_by_dedup_key(dedup_key)
                    if existing:
                        logger.debug(
                            "Duplicate notification skipped",
                            extra={"dedup_key": dedup_key},
                        )
                        return EnqueueResult(existing, created=False)

                try:
                    item = await repo.create(
                        user_id=user_id,
                        notification_type=notification_type,
                        title=title,
                        body=body,
                        data=data or {},
                        priority=priority,
                        max_retries=max_retries,
                        scheduled_for=scheduled_for,
                        dedup_key=dedup_key,
                    )
                    await session.commit()
                except IntegrityError:
                    # Lost an insert race on dedup_key
                    await session.rollback()
                    existing = await repo.get_by_dedup_key(dedup_key)
                    if existing is None:
                        raise
                    return EnqueueResult(existing, created=False)
        except SQLAlchemyError as e:
            raise QueueStoreUnavailableError(f"Enqueue failed: {e}") from e

        logger.info(
            "Notification enqueued",
            extra={
                "item_id": item.id,
                "user_id": user_id,
                "type": notification_type,
                "priority": priority,
            },
        )
        return EnqueueResult(item, created=True)


def create_enqueue_service(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> NotificationEnqueueService:
    """Build the enqueue service with the configured attempt cap."""
    return NotificationEnqueueService(
        session_factory, default_max_retries=settings.default_max_retries
    )
