"""
Database configuration.

Provides async SQLAlchemy engine and session factory.
"""

from loguru import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config.settings import settings
from app.models import Base


def create_engine_from_settings() -> AsyncEngine:
    """
    Create async engine for the configured database.

    SQLite doesn't support connection pooling parameters.
    """
    if settings.database_url.startswith("sqlite"):
        return create_async_engine(
            settings.database_url,
            echo=settings.database_echo,
            poolclass=NullPool,
        )

    return create_async_engine(
        settings.database_url,
        echo=settings.database_echo,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,  # Recycle connections every 5 minutes
        pool_timeout=30,  # Wait max 30 seconds for connection
    )


# Create async engine
engine: AsyncEngine = create_engine_from_settings()

# Create async session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db(create_tables: bool = False) -> None:
    """
    Initialize database.

    Args:
        create_tables: Create tables directly (local runs only; production
            uses Alembic migrations)
    """
    async with engine.begin() as conn:
        if create_tables:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized")


async def close_db() -> None:
    """Close database connection."""
    await engine.dispose()
    logger.info("Database connection closed")
