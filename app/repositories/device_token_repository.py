"""
DeviceToken repository.

Data access layer for DeviceToken model.
"""

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.device_token import DeviceToken
from app.repositories.base import BaseRepository


class DeviceTokenRepository(BaseRepository[DeviceToken]):
    """Device token repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize device token repository."""
        super().__init__(DeviceToken, session)

    async def get_active_tokens(
        self, user_ids: Iterable[str]
    ) -> dict[str, list[str]]:
        """
        Get active tokens for many users in one query.

        Args:
            user_ids: User identifiers

        Returns:
            Dict of user_id -> tokens; users without tokens map to []
        """
        user_ids = list(dict.fromkeys(user_ids))
        tokens: dict[str, list[str]] = {user_id: [] for user_id in user_ids}
        if not user_ids:
            return tokens

        stmt = (
            select(DeviceToken.user_id, DeviceToken.token)
            .where(DeviceToken.user_id.in_(user_ids))
            .where(DeviceToken.is_active == True)  # noqa: E712
            .order_by(DeviceToken.id.asc())
        )
        result = await self.session.execute(stmt)
        for user_id, token in result.all():
            tokens[user_id].append(token)
        return tokens

    async def deactivate(
        self, user_id: str, token: str, now: datetime
    ) -> bool:
        """
        Deactivate a token rejected by the gateway.

        Args:
            user_id: Owning user
            token: Push token
            now: Deactivation timestamp

        Returns:
            True if an active token was deactivated
        """
        stmt = (
            update(DeviceToken)
            .where(DeviceToken.user_id == user_id)
            .where(DeviceToken.token == token)
            .where(DeviceToken.is_active == True)  # noqa: E712
            .values(is_active=False, deactivated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def touch(self, tokens: Iterable[str], now: datetime) -> int:
        """
        Set last_used_at on tokens that just received a push.

        Args:
            tokens: Push tokens with a delivered result
            now: Delivery timestamp

        Returns:
            Number of updated tokens
        """
        tokens = list(dict.fromkeys(tokens))
        if not tokens:
            return 0

        stmt = (
            update(DeviceToken)
            .where(DeviceToken.token.in_(tokens))
            .where(DeviceToken.is_active == True)  # noqa: E712
            .values(last_used_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount
