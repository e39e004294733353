"""
Background tasks.

Dramatiq task definitions.
"""

from jobs.tasks.notification_queue import (
    process_notification_queue,
    report_notification_queue_stats,
)

__all__ = [
    "process_notification_queue",
    "report_notification_queue_stats",
]
