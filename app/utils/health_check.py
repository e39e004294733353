"""
Health check utilities.

Provides health check functionality for the delivery service.
"""

from typing import Any

import redis.asyncio as redis
from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.settings import settings


async def check_database(
    session_factory: async_sessionmaker[AsyncSession],
) -> dict[str, Any]:
    """
    Check database connectivity.

    Returns:
        Dict with status and details
    """
    try:
        async with session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()

        return {
            "status": "healthy",
            "message": "Database connection successful",
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {
            "status": "unhealthy",
            "message": f"Database connection failed: {str(e)}",
        }


async def check_redis() -> dict[str, Any]:
    """
    Check Redis (task broker) connectivity.

    Returns:
        Dict with status and details
    """
    redis_client = redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
        db=settings.redis_db,
        decode_responses=True,
    )
    try:
        await redis_client.ping()
        return {
            "status": "healthy",
            "message": "Redis connection successful",
        }
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return {
            "status": "unhealthy",
            "message": f"Redis connection failed: {str(e)}",
        }
    finally:
        await redis_client.aclose()


async def check_all(
    session_factory: async_sessionmaker[AsyncSession],
    include_redis: bool = True,
) -> dict[str, Any]:
    """
    Perform all health checks.

    Args:
        session_factory: Async session factory
        include_redis: Also check the task broker

    Returns:
        Dict with overall status and individual check results
    """
    results = {"database": await check_database(session_factory)}
    if include_redis:
        results["redis"] = await check_redis()

    all_healthy = all(
        check.get("status") == "healthy" for check in results.values()
    )

    return {
        "status": "healthy" if all_healthy else "degraded",
        "checks": results,
    }
