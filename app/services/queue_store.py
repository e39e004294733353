"""
Queue store.

Transactional facade over the notification queue table. Each operation
runs in its own short-lived session so concurrent user-group dispatches
never share one.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Optional, TypeVar

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.base import utcnow
from app.models.enums import QueueItemStatus
from app.models.notification_queue_item import NotificationQueueItem
from app.repositories.notification_queue_repository import (
    NotificationQueueRepository,
)
from app.services.exceptions import QueueStoreUnavailableError

T = TypeVar("T")

DEFAULT_STALE_CLAIM_AFTER = timedelta(minutes=10)


class QueueStore:
    """Durable notification queue with conditional claim and updates."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize queue store.

        Args:
            session_factory: Async session factory
            clock: Returns the current aware UTC time
        """
        self.session_factory = session_factory
        self.clock = clock

    async def _run(
        self,
        operation: str,
        work: Callable[[NotificationQueueRepository], Awaitable[T]],
        commit: bool = True,
    ) -> T:
        """
        Run work in a fresh session and commit.

        Raises:
            QueueStoreUnavailableError: Any database error
        """
        try:
            async with self.session_factory() as session:
                result = await work(NotificationQueueRepository(session))
                if commit:
                    await session.commit()
                return result
        except SQLAlchemyError as e:
            logger.error(f"Queue store {operation} failed: {e}")
            raise QueueStoreUnavailableError(
                f"Queue store {operation} failed: {e}"
            ) from e

    async def fetch_pending(
        self, limit: int
    ) -> list[NotificationQueueItem]:
        """
        Get up to limit pending items ordered by priority, then FIFO.

        Does not change any state.
        """
        now = self.clock()
        return await self._run(
            "fetch",
            lambda repo: repo.get_pending(limit, now),
            commit=False,
        )

    async def claim(
        self, ids: list[int], lock_id: str
    ) -> list[NotificationQueueItem]:
        """
        Atomically move pending items to in_flight under lock_id.

        Items already claimed elsewhere are not returned.
        """
        now = self.clock()
        return await self._run(
            "claim", lambda repo: repo.claim(ids, lock_id, now)
        )

    async def mark_outcome(
        self,
        item_id: int,
        lock_id: str,
        status: QueueItemStatus,
        retry_count: int,
        next_retry_at: Optional[datetime],
        last_error: Optional[str],
    ) -> bool:
        """
        Write the attempt result for one in-flight item.

        Returns:
            False (no-op) if the item is no longer held by lock_id
        """
        now = self.clock()
        updated = await self._run(
            "mark_outcome",
            lambda repo: repo.update_outcome(
                item_id,
                lock_id,
                status,
                retry_count,
                next_retry_at,
                last_error,
                now,
            ),
        )
        if not updated:
            logger.warning(
                "Stale outcome ignored: item no longer held by this cycle",
                extra={"item_id": item_id, "lock_id": lock_id},
            )
        return updated

    async def defer(
        self, item_id: int, lock_id: str, until: datetime, reason: str
    ) -> bool:
        """
        Put an in-flight item back to pending until the given time.

        Returns:
            False (no-op) if the item is no longer held by lock_id
        """
        now = self.clock()
        return await self._run(
            "defer",
            lambda repo: repo.defer(item_id, lock_id, until, reason, now),
        )

    async def sweep_due_retries(self, limit: int) -> int:
        """Requeue failed items whose retry time has come."""
        now = self.clock()
        return await self._run(
            "sweep", lambda repo: repo.requeue_due_retries(limit, now)
        )

    async def recover_stale_claims(
        self, stale_after: timedelta = DEFAULT_STALE_CLAIM_AFTER
    ) -> int:
        """Return in_flight items older than stale_after to pending."""
        now = self.clock()
        recovered = await self._run(
            "recover",
            lambda repo: repo.release_stale_claims(now - stale_after, now),
        )
        if recovered:
            logger.warning(
                f"Recovered {recovered} stale in-flight notifications",
                extra={"stale_after_seconds": stale_after.total_seconds()},
            )
        return recovered

    async def cancel_pending_for_user(self, user_id: str) -> int:
        """Cancel a user's pending and retry-waiting items."""
        now = self.clock()
        cancelled = await self._run(
            "cancel", lambda repo: repo.cancel_for_user(user_id, now)
        )
        logger.info(
            "Cancelled queued notifications",
            extra={"user_id": user_id, "count": cancelled},
        )
        return cancelled

    async def get_statistics(self) -> dict[str, int]:
        """Count items per status (dead-letter monitoring)."""
        return await self._run(
            "statistics",
            lambda repo: repo.count_by_status(),
            commit=False,
        )
