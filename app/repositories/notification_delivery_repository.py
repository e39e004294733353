"""
NotificationDelivery repository.

Insert-only access to the delivery audit log.
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notification_delivery import NotificationDelivery
from app.repositories.base import BaseRepository


class NotificationDeliveryRepository(BaseRepository[NotificationDelivery]):
    """
    Notification delivery repository.

    Records are never updated or deleted through this repository.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize notification delivery repository."""
        super().__init__(NotificationDelivery, session)

    async def get_existing_keys(
        self, attempt_id: str, keys: list[tuple[int, str]]
    ) -> set[tuple[int, str]]:
        """
        Find (queue_item_id, device_token) pairs already recorded.

        Args:
            attempt_id: Processing cycle identifier
            keys: Candidate (queue_item_id, device_token) pairs

        Returns:
            Subset of keys present for this attempt
        """
        if not keys:
            return set()

        item_ids = {queue_item_id for queue_item_id, _ in keys}
        stmt = (
            select(
                NotificationDelivery.queue_item_id,
                NotificationDelivery.device_token,
            )
            .where(NotificationDelivery.attempt_id == attempt_id)
            .where(NotificationDelivery.queue_item_id.in_(item_ids))
        )
        result = await self.session.execute(stmt)
        recorded = {(row[0], row[1]) for row in result.all()}
        return recorded.intersection(keys)

    async def add_many(
        self, rows: list[dict[str, Any]]
    ) -> list[NotificationDelivery]:
        """
        Append delivery records.

        Args:
            rows: Column values per record

        Returns:
            Created records
        """
        records = [NotificationDelivery(**row) for row in rows]
        self.session.add_all(records)
        await self.session.flush()
        return records

    async def get_for_item(
        self, queue_item_id: int
    ) -> list[NotificationDelivery]:
        """
        Get delivery history of a queue item.

        Args:
            queue_item_id: Queue item ID

        Returns:
            Records ordered by attempt time
        """
        stmt = (
            select(NotificationDelivery)
            .where(NotificationDelivery.queue_item_id == queue_item_id)
            .order_by(
                NotificationDelivery.sent_at.asc(),
                NotificationDelivery.id.asc(),
            )
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
