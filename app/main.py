"""
HTTP service entry point.

Serves the queue processing trigger and the health endpoint.
Run with: python -m app.main
"""

import asyncio
import sys

from loguru import logger

from app.config.database import async_session_maker, close_db, init_db
from app.config.settings import settings
from app.http_server import create_app, run_http_server
from app.services.push_gateway import ExpoPushGatewayClient
from app.services.queue_processor import create_queue_processor


def configure_logging() -> None:
    """Configure console and rotating file sinks."""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)
    logger.add(
        settings.log_file,
        rotation="1 day",
        retention="7 days",
        level=settings.log_level,
    )


async def main() -> None:
    """Initialize and run the HTTP service."""
    configure_logging()
    logger.info(
        f"Starting push delivery service ({settings.environment})..."
    )

    await init_db()

    gateway = ExpoPushGatewayClient(
        url=settings.push_gateway_url,
        access_token=settings.push_gateway_access_token,
        timeout_seconds=settings.push_gateway_timeout_seconds,
        max_batch_size=settings.push_gateway_max_batch_size,
    )
    processor = create_queue_processor(async_session_maker, gateway, settings)
    app = create_app(
        processor,
        scheduler_secret=settings.scheduler_secret,
        session_factory=async_session_maker,
    )

    if not settings.scheduler_secret:
        logger.warning(
            "SCHEDULER_SECRET is not set; every trigger call will be rejected"
        )

    runner = await run_http_server(app, settings.http_host, settings.http_port)
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
        await gateway.close()
        await close_db()
        logger.info("Push delivery service stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted")
