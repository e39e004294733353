"""
Base repository.

Generic data access shared by all repositories.
"""

from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import Base

# Generic type for model
ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository with generic read and insert operations.

    Repositories never commit: the caller owns the transaction.

    Type Parameters:
        ModelType: SQLAlchemy model class

    Example:
        class DeviceTokenRepository(BaseRepository[DeviceToken]):
            def __init__(self, session: AsyncSession):
                super().__init__(DeviceToken, session)
    """

    def __init__(
        self, model: Type[ModelType], session: AsyncSession
    ) -> None:
        self.model = model
        self.session = session

    async def get_by(self, **filters: Any) -> Optional[ModelType]:
        """
        Get single entity by filters.

        Args:
            **filters: Column filters

        Returns:
            First matching entity or None
        """
        stmt = select(self.model).filter_by(**filters).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, **data: Any) -> ModelType:
        """
        Create new entity.

        Flushes so the database assigns the primary key and defaults.
        """
        entity = self.model(**data)
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity
