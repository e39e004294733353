"""
Delivery recorder.

Appends one audit record per (queue item, device token) per processing
cycle. Recording is idempotent inside a cycle and never affects
scheduling.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.enums import DeliveryOutcome, DeliveryRecordStatus
from app.models.notification_queue_item import NotificationQueueItem
from app.repositories.notification_delivery_repository import (
    NotificationDeliveryRepository,
)
from app.services.push_gateway import PushResult


@dataclass(frozen=True)
class DeliveryAttempt:
    """One physical send of one item to one token."""

    item: NotificationQueueItem
    result: PushResult
    attempt_id: str
    sent_at: datetime

    @property
    def key(self) -> tuple[int, str]:
        """Idempotency key inside a cycle."""
        return (self.item.id, self.result.token)

    def to_row(self) -> dict:
        """Build column values for the audit table."""
        delivered = self.result.outcome == DeliveryOutcome.DELIVERED
        return {
            "queue_item_id": self.item.id,
            "attempt_id": self.attempt_id,
            "user_id": self.item.user_id,
            "notification_type": self.item.notification_type,
            "title": self.item.title,
            "body": self.item.body,
            "sent_at": self.sent_at,
            "device_token": self.result.token,
            "outcome": (
                DeliveryRecordStatus.OK
                if delivered
                else DeliveryRecordStatus.ERROR
            ).value,
            "error_message": None if delivered else self.result.error,
            "delivery_metadata": {
                "outcome": self.result.outcome.value,
                "attempt_number": self.item.retry_count + 1,
                "receipt_id": self.result.receipt_id,
            },
        }


class DeliveryRecorder:
    """Writes the append-only delivery log."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """
        Initialize delivery recorder.

        Args:
            session_factory: Async session factory
        """
        self.session_factory = session_factory

    async def record(self, attempts: list[DeliveryAttempt]) -> int:
        """
        Append records for attempts not yet recorded.

        Attempts sharing one attempt_id are recorded once; a repeated call
        writes nothing new. Errors are logged and never raised.

        Args:
            attempts: Attempts of one processing cycle

        Returns:
            Number of records written
        """
        if not attempts:
            return 0

        written = 0
        for attempt_id, group in _group_by_attempt(attempts).items():
            count = await self._record_group(attempt_id, group)
            if count is not None:
                written += count
        return written

    async def _record_group(
        self, attempt_id: str, attempts: list[DeliveryAttempt]
    ) -> Optional[int]:
        """Record attempts sharing one attempt_id in one transaction."""
        unique: dict[tuple[int, str], DeliveryAttempt] = {}
        for attempt in attempts:
            unique.setdefault(attempt.key, attempt)

        try:
            async with self.session_factory() as session:
                repo = NotificationDeliveryRepository(session)
                existing = await repo.get_existing_keys(
                    attempt_id, list(unique)
                )
                rows = [
                    attempt.to_row()
                    for key, attempt in unique.items()
                    if key not in existing
                ]
                if rows:
                    await repo.add_many(rows)
                    await session.commit()
        except IntegrityError as e:
            # A concurrent writer recorded the same keys first
            logger.warning(
                "Delivery records already present",
                extra={"attempt_id": attempt_id, "error": str(e.orig)},
            )
            return None
        except SQLAlchemyError as e:
            logger.error(
                "Failed to record deliveries",
                extra={
                    "attempt_id": attempt_id,
                    "records": len(unique),
                    "error": str(e),
                },
            )
            return None

        return len(rows)


def _group_by_attempt(
    attempts: list[DeliveryAttempt],
) -> dict[str, list[DeliveryAttempt]]:
    groups: dict[str, list[DeliveryAttempt]] = {}
    for attempt in attempts:
        groups.setdefault(attempt.attempt_id, []).append(attempt)
    return groups
