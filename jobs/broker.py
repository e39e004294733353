"""
Dramatiq broker for notification queue jobs.

The scheduler and the worker both import this module so that actors
declared in jobs.tasks bind to the Redis broker instead of the default.
"""

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from loguru import logger

from app.config.settings import settings

broker = RedisBroker(
    host=settings.redis_host,
    port=settings.redis_port,
    password=settings.redis_password or None,
    db=settings.redis_db,
    namespace="push-delivery",
)

dramatiq.set_broker(broker)

logger.info(
    "Dramatiq broker ready",
    extra={
        "redis_host": settings.redis_host,
        "redis_port": settings.redis_port,
        "redis_db": settings.redis_db,
    },
)
