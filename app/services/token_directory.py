"""
Token directory.

Resolves recipients to active device push tokens and takes best-effort
reports of tokens the gateway rejected.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.base import utcnow
from app.repositories.device_token_repository import DeviceTokenRepository
from app.services.exceptions import QueueStoreUnavailableError


class TokenDirectory(ABC):
    """Token directory contract."""

    @abstractmethod
    async def resolve_tokens(
        self, user_ids: Iterable[str]
    ) -> dict[str, list[str]]:
        """
        Get active tokens for users.

        Every requested user is present in the result; users without
        tokens map to an empty list.
        """

    @abstractmethod
    async def report_invalid_token(self, user_id: str, token: str) -> None:
        """Report a rejected token for deactivation. Never raises."""

    @abstractmethod
    async def record_delivered(self, tokens: Iterable[str]) -> None:
        """Mark tokens as used by a delivered push. Never raises."""


class DatabaseTokenDirectory(TokenDirectory):
    """Token directory backed by the user_devices table."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """
        Initialize token directory.

        Args:
            session_factory: Async session factory
        """
        self.session_factory = session_factory

    async def resolve_tokens(
        self, user_ids: Iterable[str]
    ) -> dict[str, list[str]]:
        """
        Get active tokens for users in one query.

        Raises:
            QueueStoreUnavailableError: Database unreachable
        """
        try:
            async with self.session_factory() as session:
                repo = DeviceTokenRepository(session)
                return await repo.get_active_tokens(user_ids)
        except SQLAlchemyError as e:
            raise QueueStoreUnavailableError(
                f"Token lookup failed: {e}"
            ) from e

    async def report_invalid_token(self, user_id: str, token: str) -> None:
        """
        Deactivate a rejected token.

        Failures are logged and swallowed so delivery processing is never
        blocked by the report.
        """
        try:
            async with self.session_factory() as session:
                repo = DeviceTokenRepository(session)
                deactivated = await repo.deactivate(user_id, token, utcnow())
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(
                "Failed to report invalid push token",
                extra={"user_id": user_id, "error": str(e)},
            )
            return

        if deactivated:
            logger.info(
                "Push token deactivated",
                extra={"user_id": user_id, "token_suffix": token[-6:]},
            )

    async def record_delivered(self, tokens: Iterable[str]) -> None:
        """Update last_used_at of delivered tokens, logging failures."""
        try:
            async with self.session_factory() as session:
                repo = DeviceTokenRepository(session)
                await repo.touch(tokens, utcnow())
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(
                "Failed to update push token usage",
                extra={"error": str(e)},
            )
