"""
Task scheduler.

APScheduler-based periodic sending of the notification queue tasks.
"""

import sys
from pathlib import Path

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config.settings import settings  # noqa: E402
from jobs.broker import broker  # noqa: E402, F401
from jobs.tasks.notification_queue import (  # noqa: E402
    process_notification_queue,
    report_notification_queue_stats,
)


def create_scheduler() -> AsyncIOScheduler:
    """
    Create and configure task scheduler.

    Returns:
        Configured AsyncIOScheduler instance
    """
    scheduler = AsyncIOScheduler()

    # Notification queue processing - every QUEUE_INTERVAL_MINUTES
    scheduler.add_job(
        process_notification_queue.send,
        trigger=IntervalTrigger(minutes=settings.queue_interval_minutes),
        id="notification_queue",
        name="Notification Queue Processing",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    # Dead-letter monitoring - every 15 minutes
    scheduler.add_job(
        report_notification_queue_stats.send,
        trigger=IntervalTrigger(minutes=15),
        id="notification_queue_stats",
        name="Notification Queue Stats",
        replace_existing=True,
    )

    logger.info("Task scheduler configured with 2 jobs")

    return scheduler


async def start_scheduler() -> AsyncIOScheduler:
    """Start the task scheduler."""
    scheduler = create_scheduler()
    scheduler.start()
    logger.info("Task scheduler started")
    return scheduler


if __name__ == "__main__":
    import asyncio

    async def main():
        logger.add(
            "logs/scheduler.log",
            rotation="1 day",
            retention="7 days",
            level=settings.log_level,
        )
        await start_scheduler()
        # Keep running
        try:
            await asyncio.Event().wait()
        except KeyboardInterrupt:
            logger.info("Scheduler stopped")

    asyncio.run(main())
