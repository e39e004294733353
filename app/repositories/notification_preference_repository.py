"""
NotificationPreference repository.

Data access layer for NotificationPreference model.
"""

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notification_preference import NotificationPreference
from app.repositories.base import BaseRepository


class NotificationPreferenceRepository(
    BaseRepository[NotificationPreference]
):
    """Notification preference repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize notification preference repository."""
        super().__init__(NotificationPreference, session)

    async def get_for_users(
        self, user_ids: Iterable[str]
    ) -> dict[str, NotificationPreference]:
        """
        Get preferences for many users in one query.

        Args:
            user_ids: User identifiers

        Returns:
            Dict of user_id -> preferences; users without a row are absent
        """
        user_ids = list(dict.fromkeys(user_ids))
        if not user_ids:
            return {}

        stmt = select(NotificationPreference).where(
            NotificationPreference.user_id.in_(user_ids)
        )
        result = await self.session.execute(stmt)
        return {row.user_id: row for row in result.scalars().all()}
