"""
Services.

Notification delivery queue business logic.
"""

from app.services.delivery_recorder import DeliveryAttempt, DeliveryRecorder
from app.services.exceptions import (
    DeliveryQueueError,
    PushGatewayError,
    QueueStoreUnavailableError,
)
from app.services.notification_enqueue_service import (
    EnqueueResult,
    NotificationEnqueueService,
    create_enqueue_service,
    generate_dedup_key,
)
from app.services.preference_directory import (
    DatabasePreferenceDirectory,
    PreferenceDirectory,
    UserPreferences,
)
from app.services.push_gateway import (
    ExpoPushGatewayClient,
    PushGatewayClient,
    PushMessage,
    PushResult,
)
from app.services.queue_processor import (
    CycleSummary,
    QueueProcessor,
    QueueProcessorConfig,
    create_queue_processor,
)
from app.services.queue_store import QueueStore
from app.services.retry_scheduler import (
    RetryDecision,
    RetryPolicy,
    compute_backoff,
    decide,
)
from app.services.token_directory import (
    DatabaseTokenDirectory,
    TokenDirectory,
)

__all__ = [
    "CycleSummary",
    "DatabasePreferenceDirectory",
    "DatabaseTokenDirectory",
    "DeliveryAttempt",
    "DeliveryQueueError",
    "DeliveryRecorder",
    "EnqueueResult",
    "ExpoPushGatewayClient",
    "NotificationEnqueueService",
    "PreferenceDirectory",
    "PushGatewayClient",
    "PushGatewayError",
    "PushMessage",
    "PushResult",
    "QueueProcessor",
    "QueueProcessorConfig",
    "QueueStore",
    "QueueStoreUnavailableError",
    "RetryDecision",
    "RetryPolicy",
    "TokenDirectory",
    "UserPreferences",
    "compute_backoff",
    "create_enqueue_service",
    "create_queue_processor",
    "decide",
    "generate_dedup_key",
]
