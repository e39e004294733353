"""
NotificationQueue repository.

Data access layer for NotificationQueueItem model. Every state change is
a conditional UPDATE keyed on the expected prior status.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import QueueItemStatus
from app.models.notification_queue_item import NotificationQueueItem
from app.repositories.base import BaseRepository


class NotificationQueueRepository(BaseRepository[NotificationQueueItem]):
    """Notification queue repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize notification queue repository."""
        super().__init__(NotificationQueueItem, session)

    async def get_pending(
        self, limit: int, now: datetime
    ) -> list[NotificationQueueItem]:
        """
        Get pending items in delivery order.

        Sorted by priority (lower first), then by age (oldest first).
        Items scheduled for the future are skipped.

        Args:
            limit: Maximum number of results
            now: Current time

        Returns:
            List of pending items
        """
        stmt = (
            select(NotificationQueueItem)
            .where(NotificationQueueItem.status == QueueItemStatus.PENDING)
            .where(
                or_(
                    NotificationQueueItem.scheduled_for.is_(None),
                    NotificationQueueItem.scheduled_for <= now,
                )
            )
            .order_by(
                NotificationQueueItem.priority.asc(),
                NotificationQueueItem.created_at.asc(),
                NotificationQueueItem.id.asc(),
            )
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def claim(
        self, ids: list[int], lock_id: str, now: datetime
    ) -> list[NotificationQueueItem]:
        """
        Move pending items to in_flight under the given lock.

        Rows that are no longer pending (claimed by a concurrent cycle)
        are left untouched and not returned.

        Args:
            ids: Candidate item IDs
            lock_id: Processing cycle identifier
            now: Claim timestamp

        Returns:
            Items now held by this lock
        """
        if not ids:
            return []

        stmt = (
            update(NotificationQueueItem)
            .where(NotificationQueueItem.id.in_(ids))
            .where(NotificationQueueItem.status == QueueItemStatus.PENDING)
            .values(
                status=QueueItemStatus.IN_FLIGHT.value,
                lock_id=lock_id,
                claimed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

        return await self.get_claimed(lock_id)

    async def get_claimed(
        self, lock_id: str
    ) -> list[NotificationQueueItem]:
        """
        Get in-flight items held by a lock.

        Args:
            lock_id: Processing cycle identifier

        Returns:
            Claimed items in delivery order
        """
        stmt = (
            select(NotificationQueueItem)
            .where(NotificationQueueItem.lock_id == lock_id)
            .where(NotificationQueueItem.status == QueueItemStatus.IN_FLIGHT)
            .order_by(
                NotificationQueueItem.priority.asc(),
                NotificationQueueItem.created_at.asc(),
                NotificationQueueItem.id.asc(),
            )
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_outcome(
        self,
        item_id: int,
        lock_id: str,
        status: QueueItemStatus,
        retry_count: int,
        next_retry_at: Optional[datetime],
        last_error: Optional[str],
        now: datetime,
    ) -> bool:
        """
        Write the result of a delivery attempt.

        No-op unless the item is still in_flight under the same lock, so a
        stale writer cannot overwrite a newer state.

        Returns:
            True if the row was updated
        """
        values: dict[str, Any] = {
            "status": status.value,
            "retry_count": retry_count,
            "next_retry_at": next_retry_at,
            "last_error": last_error,
            "lock_id": None,
            "claimed_at": None,
            "updated_at": now,
        }
        if status == QueueItemStatus.SENT:
            values["sent_at"] = now

        stmt = (
            update(NotificationQueueItem)
            .where(NotificationQueueItem.id == item_id)
            .where(NotificationQueueItem.status == QueueItemStatus.IN_FLIGHT)
            .where(NotificationQueueItem.lock_id == lock_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def defer(
        self,
        item_id: int,
        lock_id: str,
        until: datetime,
        reason: str,
        now: datetime,
    ) -> bool:
        """
        Release an in-flight item back to pending, not before until.

        retry_count is left untouched: no send was attempted.

        Returns:
            True if the row was updated
        """
        stmt = (
            update(NotificationQueueItem)
            .where(NotificationQueueItem.id == item_id)
            .where(NotificationQueueItem.status == QueueItemStatus.IN_FLIGHT)
            .where(NotificationQueueItem.lock_id == lock_id)
            .values(
                status=QueueItemStatus.PENDING.value,
                scheduled_for=until,
                last_error=reason,
                lock_id=None,
                claimed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def requeue_due_retries(self, limit: int, now: datetime) -> int:
        """
        Return failed items whose backoff elapsed to pending.

        Args:
            limit: Maximum number of items to requeue
            now: Current time

        Returns:
            Number of requeued items
        """
        due = (
            select(NotificationQueueItem.id)
            .where(NotificationQueueItem.status == QueueItemStatus.FAILED)
            .where(NotificationQueueItem.next_retry_at.is_not(None))
            .where(NotificationQueueItem.next_retry_at <= now)
            .where(
                NotificationQueueItem.retry_count
                < NotificationQueueItem.max_retries
            )
            .order_by(NotificationQueueItem.next_retry_at.asc())
            .limit(limit)
        )
        due_ids = list((await self.session.execute(due)).scalars().all())
        if not due_ids:
            return 0

        stmt = (
            update(NotificationQueueItem)
            .where(NotificationQueueItem.id.in_(due_ids))
            .where(NotificationQueueItem.status == QueueItemStatus.FAILED)
            .values(
                status=QueueItemStatus.PENDING.value,
                next_retry_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def release_stale_claims(
        self, claimed_before: datetime, now: datetime
    ) -> int:
        """
        Return in_flight items stranded by a crashed cycle to pending.

        Args:
            claimed_before: Claims older than this are stale
            now: Current time

        Returns:
            Number of released items
        """
        stmt = (
            update(NotificationQueueItem)
            .where(NotificationQueueItem.status == QueueItemStatus.IN_FLIGHT)
            .where(
                or_(
                    NotificationQueueItem.claimed_at.is_(None),
                    NotificationQueueItem.claimed_at < claimed_before,
                )
            )
            .values(
                status=QueueItemStatus.PENDING.value,
                lock_id=None,
                claimed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def cancel_for_user(self, user_id: str, now: datetime) -> int:
        """
        Cancel a user's undelivered items.

        In-flight items are left to finish their current attempt.

        Args:
            user_id: Recipient identifier
            now: Current time

        Returns:
            Number of cancelled items
        """
        stmt = (
            update(NotificationQueueItem)
            .where(NotificationQueueItem.user_id == user_id)
            .where(
                NotificationQueueItem.status.in_(
                    [
                        QueueItemStatus.PENDING.value,
                        QueueItemStatus.FAILED.value,
                    ]
                )
            )
            .values(
                status=QueueItemStatus.CANCELLED.value,
                next_retry_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def get_by_dedup_key(
        self, dedup_key: str
    ) -> Optional[NotificationQueueItem]:
        """
        Get item by producer dedup key.

        Args:
            dedup_key: Idempotency key

        Returns:
            Item or None if not found
        """
        return await self.get_by(dedup_key=dedup_key)

    async def count_by_status(self) -> dict[str, int]:
        """
        Count items per status.

        Returns:
            Dict of status -> count (every status present)
        """
        stmt = select(
            NotificationQueueItem.status, func.count()
        ).group_by(NotificationQueueItem.status)
        result = await self.session.execute(stmt)

        counts = {status.value: 0 for status in QueueItemStatus}
        for status, count in result.all():
            counts[status] = count
        return counts
