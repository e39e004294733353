"""
Dramatiq worker entry point.

Starts the Dramatiq worker to process background tasks.
"""

import sys
from pathlib import Path

from loguru import logger

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config.settings import settings  # noqa: E402

logger.add(
    "logs/worker.log",
    rotation="1 day",
    retention="7 days",
    level=settings.log_level,
)

# Import broker to initialize
from jobs.broker import broker  # noqa: E402, F401

# Import all tasks to register them with broker
from jobs.tasks import notification_queue  # noqa: E402, F401

logger.info("Dramatiq worker initialized with all tasks")

# Worker is started via CLI: dramatiq jobs.worker
# Command: dramatiq jobs.worker -p 2 -t 2
# -p: number of processes
# -t: number of threads per process
