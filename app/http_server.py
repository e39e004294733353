"""
HTTP server.

Provides the queue processing trigger for an external scheduler and a
/health endpoint for external monitoring.
"""

import hmac

from aiohttp import web
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.services.exceptions import QueueStoreUnavailableError
from app.services.queue_processor import QueueProcessor
from app.utils.health_check import check_all

SECRET_HEADER = "X-Scheduler-Secret"

processor_key = web.AppKey("processor", QueueProcessor)
secret_key = web.AppKey("scheduler_secret", str)
session_factory_key = web.AppKey("session_factory", async_sessionmaker)
include_redis_key = web.AppKey("include_redis", bool)


def extract_secret(request: web.Request) -> str | None:
    """
    Get the shared secret sent by the caller.

    Accepts the X-Scheduler-Secret header or an Authorization Bearer token.
    """
    secret = request.headers.get(SECRET_HEADER)
    if secret:
        return secret

    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


def is_authorized(request: web.Request, expected: str) -> bool:
    """Compare the caller's secret with the configured one in constant time."""
    provided = extract_secret(request)
    if not expected or provided is None:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


async def process_handler(request: web.Request) -> web.Response:
    """
    Handle POST /notifications/process.

    Returns:
        JSON response:
        - 200: Cycle summary
        - 401: Missing or wrong secret
        - 503: Queue database unreachable
        - 500: Any other cycle failure
    """
    if not is_authorized(request, request.app[secret_key]):
        logger.warning(
            "Rejected queue trigger with bad credentials",
            extra={"remote": request.remote},
        )
        return web.json_response({"error": "unauthorized"}, status=401)

    processor = request.app[processor_key]
    try:
        summary = await processor.run()
    except QueueStoreUnavailableError as e:
        logger.error(f"Queue processing unavailable: {e}")
        return web.json_response(
            {"error": "queue store unavailable"}, status=503
        )
    except Exception as e:
        logger.exception(f"Queue processing failed: {e}")
        return web.json_response(
            {"error": "queue processing failed"}, status=500
        )

    return web.json_response(summary.to_dict())


async def health_handler(request: web.Request) -> web.Response:
    """
    Handle /health requests.

    Returns:
        JSON response with health status:
        - 200: All systems healthy
        - 503: One or more systems degraded
    """
    status = await check_all(
        request.app[session_factory_key],
        include_redis=request.app[include_redis_key],
    )
    http_code = 200 if status["status"] == "healthy" else 503
    return web.json_response(status, status=http_code)


def create_app(
    processor: QueueProcessor,
    scheduler_secret: str,
    session_factory: async_sessionmaker[AsyncSession],
    include_redis_health: bool = True,
) -> web.Application:
    """
    Create aiohttp application.

    Args:
        processor: Queue processor run by the trigger
        scheduler_secret: Shared secret of the external scheduler
        session_factory: Async session factory for health checks
        include_redis_health: Report broker health on /health

    Returns:
        aiohttp Application instance
    """
    app = web.Application()
    app[processor_key] = processor
    app[secret_key] = scheduler_secret
    app[session_factory_key] = session_factory
    app[include_redis_key] = include_redis_health
    app.router.add_post("/notifications/process", process_handler)
    app.router.add_get("/health", health_handler)
    return app


async def run_http_server(
    app: web.Application, host: str = "0.0.0.0", port: int = 8080
) -> web.AppRunner:
    """
    Start serving the application.

    Args:
        app: Application from create_app
        host: Host to bind to
        port: Port to bind to

    Returns:
        Runner to clean up on shutdown
    """
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"HTTP server running on {host}:{port}")
    return runner
