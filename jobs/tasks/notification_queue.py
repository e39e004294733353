"""
Notification queue tasks.

Runs one delivery cycle per message and reports dead-letter statistics.
Sent periodically by jobs.scheduler.
"""

import asyncio

import dramatiq
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.database import create_engine_from_settings
from app.config.settings import settings
from app.models.enums import QueueItemStatus
from app.services.exceptions import QueueStoreUnavailableError
from app.services.push_gateway import ExpoPushGatewayClient
from app.services.queue_processor import create_queue_processor
from app.services.queue_store import QueueStore


@dramatiq.actor(max_retries=0, time_limit=300_000)
def process_notification_queue() -> None:
    """
    Run one notification queue processing cycle.

    Not retried by the broker: the next scheduled run picks up whatever
    this one left behind.
    """
    logger.info("Starting notification queue processing...")

    try:
        summary = asyncio.run(_process_notification_queue_async())
    except QueueStoreUnavailableError:
        logger.exception("Notification queue unavailable")
        raise
    except Exception as e:
        logger.exception(f"Notification queue processing failed: {e}")
        raise

    logger.info(
        f"Notification queue processing complete: "
        f"{summary['processed']} processed, "
        f"{summary['sent']} sent, "
        f"{summary['failed']} failed, "
        f"{summary['deadLettered']} dead-lettered, "
        f"{summary['requeuedForRetry']} requeued"
    )


async def _process_notification_queue_async() -> dict[str, int]:
    """Async implementation of one processing cycle."""
    # Dedicated engine per run to avoid reusing connections across loops
    engine = create_engine_from_settings()
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    try:
        async with ExpoPushGatewayClient(
            url=settings.push_gateway_url,
            access_token=settings.push_gateway_access_token,
            timeout_seconds=settings.push_gateway_timeout_seconds,
            max_batch_size=settings.push_gateway_max_batch_size,
        ) as gateway:
            processor = create_queue_processor(
                session_factory, gateway, settings
            )
            summary = await processor.run()
            return summary.to_dict()
    finally:
        await engine.dispose()


@dramatiq.actor(max_retries=3, time_limit=60_000)
def report_notification_queue_stats() -> None:
    """Log queue counts per status and warn about dead-lettered items."""
    try:
        stats = asyncio.run(_get_queue_stats_async())
    except Exception as e:
        logger.exception(f"Notification queue stats failed: {e}")
        raise

    logger.info("Notification queue stats", extra={"stats": stats})
    dead_lettered = stats.get(QueueItemStatus.DEAD_LETTERED.value, 0)
    if dead_lettered:
        logger.warning(
            f"{dead_lettered} notifications are dead-lettered "
            f"and need attention"
        )


async def _get_queue_stats_async() -> dict[str, int]:
    """Async implementation of the stats report."""
    engine = create_engine_from_settings()
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        return await QueueStore(session_factory).get_statistics()
    finally:
        await engine.dispose()
