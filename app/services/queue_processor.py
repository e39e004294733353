"""
Queue processor.

Runs one bounded processing cycle over the notification queue:
recover stale claims, fetch, claim, resolve tokens and preferences, send
per user group, record, reschedule, then sweep due retries back to pending.
"""

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.settings import Settings
from app.models.base import utcnow
from app.models.enums import DeliveryOutcome, QueueItemStatus
from app.models.notification_queue_item import NotificationQueueItem
from app.services.delivery_recorder import DeliveryAttempt, DeliveryRecorder
from app.services.exceptions import QueueStoreUnavailableError
from app.services.preference_directory import (
    DatabasePreferenceDirectory,
    GateAction,
    PreferenceDirectory,
    UserPreferences,
    evaluate,
)
from app.services.push_gateway import PushGatewayClient, PushMessage, PushResult
from app.services.queue_store import QueueStore
from app.services.retry_scheduler import RetryDecision, RetryPolicy, decide
from app.services.token_directory import (
    DatabaseTokenDirectory,
    TokenDirectory,
)

NO_TOKENS_ERROR = "no active device tokens"
LOOKUP_FAILED_ERROR = "recipient lookup failed"
MAX_ERROR_LENGTH = 1000


@dataclass(frozen=True)
class QueueProcessorConfig:
    """Tunables of one processing cycle."""

    batch_size: int = 100
    sweep_limit: int = 500
    concurrency: int = 8
    stale_claim_after: timedelta = timedelta(minutes=10)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    report_timeout_seconds: float = 5.0
    lookup_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        """Validate limits."""
        if self.batch_size <= 0 or self.sweep_limit <= 0:
            raise ValueError("batch_size and sweep_limit must be positive")
        if self.concurrency <= 0:
            raise ValueError("concurrency must be positive")
        if self.lookup_timeout_seconds <= 0:
            raise ValueError("lookup_timeout_seconds must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> "QueueProcessorConfig":
        """
        Build config from application settings.

        Args:
            settings: Application settings

        Returns:
            QueueProcessorConfig
        """
        return cls(
            batch_size=settings.queue_batch_size,
            sweep_limit=settings.queue_sweep_limit,
            concurrency=settings.queue_concurrency,
            stale_claim_after=timedelta(
                minutes=settings.queue_stale_claim_minutes
            ),
            retry_policy=RetryPolicy(
                base_delay=timedelta(
                    seconds=settings.retry_base_delay_seconds
                ),
                multiplier=settings.retry_multiplier,
                max_delay=timedelta(seconds=settings.retry_max_delay_seconds),
            ),
            lookup_timeout_seconds=settings.queue_lookup_timeout_seconds,
        )


@dataclass
class CycleSummary:
    """Counters of one processing cycle."""

    processed: int = 0
    sent: int = 0
    failed: int = 0
    dead_lettered: int = 0
    requeued_for_retry: int = 0
    recovered_stale: int = 0
    skipped_claims: int = 0
    deferred: int = 0
    suppressed: int = 0

    def count(self, decision: RetryDecision) -> None:
        """Count one applied decision."""
        self.processed += 1
        if decision.next_status == QueueItemStatus.SENT:
            self.sent += 1
        elif decision.next_status == QueueItemStatus.DEAD_LETTERED:
            self.dead_lettered += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, int]:
        """Serialize for the HTTP response."""
        return {
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "deadLettered": self.dead_lettered,
            "requeuedForRetry": self.requeued_for_retry,
            "recoveredStale": self.recovered_stale,
            "skippedClaims": self.skipped_claims,
            "deferred": self.deferred,
            "suppressed": self.suppressed,
        }


def aggregate_outcomes(
    results: list[PushResult],
) -> tuple[DeliveryOutcome, Optional[str]]:
    """
    Reduce per-token results to one item outcome.

    Any transient error wins so the item is retried; otherwise one
    delivered token is enough; otherwise every token was invalid.

    Args:
        results: Results for all tokens of one item

    Returns:
        Tuple of (outcome, error message)
    """
    if not results:
        return DeliveryOutcome.TRANSIENT_ERROR, NO_TOKENS_ERROR

    for result in results:
        if result.outcome == DeliveryOutcome.TRANSIENT_ERROR:
            return DeliveryOutcome.TRANSIENT_ERROR, result.error

    if any(r.outcome == DeliveryOutcome.DELIVERED for r in results):
        return DeliveryOutcome.DELIVERED, None

    return DeliveryOutcome.INVALID_TOKEN, results[0].error


def build_message(item: NotificationQueueItem, token: str) -> PushMessage:
    """Build the push message of an item for one device."""
    data: dict[str, Any] = dict(item.data or {})
    data.setdefault("notificationId", item.id)
    data.setdefault("type", item.notification_type)
    return PushMessage(token=token, title=item.title, body=item.body, data=data)


class QueueProcessor:
    """Processes the notification queue one bounded cycle at a time."""

    def __init__(
        self,
        queue_store: QueueStore,
        token_directory: TokenDirectory,
        gateway: PushGatewayClient,
        recorder: DeliveryRecorder,
        config: Optional[QueueProcessorConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        preference_directory: Optional[PreferenceDirectory] = None,
    ) -> None:
        """
        Initialize queue processor.

        Args:
            queue_store: Queue persistence
            token_directory: Device token lookup
            gateway: Push gateway client
            recorder: Delivery audit log
            config: Cycle tunables
            clock: Returns the current aware UTC time
            preference_directory: User preference lookup (None = send all)
        """
        self.queue_store = queue_store
        self.token_directory = token_directory
        self.gateway = gateway
        self.recorder = recorder
        self.config = config or QueueProcessorConfig()
        self.clock = clock
        self.preference_directory = preference_directory

    async def run(self) -> CycleSummary:
        """
        Run one processing cycle.

        Returns:
            CycleSummary

        Raises:
            QueueStoreUnavailableError: Queue database unreachable before
                any item was claimed
        """
        lock_id = uuid.uuid4().hex
        summary = CycleSummary()
        reports: list[asyncio.Task] = []
        claimed: list[NotificationQueueItem] = []

        try:
            summary.recovered_stale = (
                await self.queue_store.recover_stale_claims(
                    self.config.stale_claim_after
                )
            )

            pending = await self.queue_store.fetch_pending(
                self.config.batch_size
            )
            if pending:
                claimed = await self.queue_store.claim(
                    [item.id for item in pending], lock_id
                )
                summary.skipped_claims = len(pending) - len(claimed)
                if claimed:
                    await self._dispatch(claimed, lock_id, summary, reports)
            else:
                logger.debug("No pending notifications")

            try:
                summary.requeued_for_retry = (
                    await self.queue_store.sweep_due_retries(
                        self.config.sweep_limit
                    )
                )
            except QueueStoreUnavailableError:
                if not claimed:
                    raise
                # Due retries wait for the next cycle
                logger.exception(
                    "Retry sweep failed after dispatch",
                    extra={"lock_id": lock_id},
                )
        finally:
            await self._wait_for_reports(reports)

        logger.info(
            "Notification queue cycle finished",
            extra={"lock_id": lock_id, **summary.to_dict()},
        )
        return summary

    async def _lookup_recipients(
        self, user_ids: list[str]
    ) -> tuple[dict[str, list[str]], dict[str, UserPreferences]]:
        """Resolve tokens and preferences for all group users."""
        tokens = await self.token_directory.resolve_tokens(user_ids)
        preferences: dict[str, UserPreferences] = {}
        if self.preference_directory is not None:
            preferences = await self.preference_directory.get_preferences(
                user_ids
            )
        return tokens, preferences

    async def _dispatch(
        self,
        items: list[NotificationQueueItem],
        lock_id: str,
        summary: CycleSummary,
        reports: list[asyncio.Task],
    ) -> None:
        """Send claimed items, one concurrent task per user."""
        groups: dict[str, list[NotificationQueueItem]] = {}
        for item in items:
            groups.setdefault(item.user_id, []).append(item)

        try:
            tokens, preferences = await asyncio.wait_for(
                self._lookup_recipients(list(groups)),
                timeout=self.config.lookup_timeout_seconds,
            )
        except Exception:
            logger.exception(
                "Recipient lookup failed",
                extra={"lock_id": lock_id, "users": len(groups)},
            )
            for item in items:
                await self._apply(
                    item,
                    DeliveryOutcome.TRANSIENT_ERROR,
                    LOOKUP_FAILED_ERROR,
                    lock_id,
                    summary,
                )
            return

        semaphore = asyncio.Semaphore(self.config.concurrency)

        async def run_group(
            user_id: str, group: list[NotificationQueueItem]
        ) -> None:
            async with semaphore:
                try:
                    await self._process_group(
                        user_id,
                        group,
                        tokens.get(user_id, []),
                        preferences.get(user_id),
                        lock_id,
                        summary,
                        reports,
                    )
                except Exception:
                    # Items stay in_flight until stale-claim recovery
                    logger.exception(
                        "Notification group failed",
                        extra={
                            "user_id": user_id,
                            "items": [item.id for item in group],
                        },
                    )

        await asyncio.gather(
            *(run_group(user_id, group) for user_id, group in groups.items())
        )

    async def _gate(
        self,
        items: list[NotificationQueueItem],
        preferences: Optional[UserPreferences],
        lock_id: str,
        summary: CycleSummary,
    ) -> list[NotificationQueueItem]:
        """Apply user preferences; return the items that may be sent now."""
        if preferences is None:
            return items

        now = self.clock()
        allowed: list[NotificationQueueItem] = []
        for item in items:
            gate = evaluate(
                preferences, item.notification_type, item.priority, now
            )
            if gate.action == GateAction.SEND:
                allowed.append(item)
            elif gate.action == GateAction.DEFER:
                if await self.queue_store.defer(
                    item.id, lock_id, gate.until, gate.reason
                ):
                    summary.deferred += 1
                    logger.debug(
                        "Notification deferred",
                        extra={"item_id": item.id, "until": gate.until},
                    )
            elif await self.queue_store.mark_outcome(
                item.id,
                lock_id,
                QueueItemStatus.CANCELLED,
                item.retry_count,
                None,
                gate.reason,
            ):
                summary.suppressed += 1
                logger.info(
                    "Notification suppressed by user preferences",
                    extra={
                        "item_id": item.id,
                        "user_id": item.user_id,
                        "reason": gate.reason,
                    },
                )
        return allowed

    async def _process_group(
        self,
        user_id: str,
        items: list[NotificationQueueItem],
        tokens: list[str],
        preferences: Optional[UserPreferences],
        lock_id: str,
        summary: CycleSummary,
        reports: list[asyncio.Task],
    ) -> None:
        """Send all items of one user in a single gateway call."""
        items = await self._gate(items, preferences, lock_id, summary)
        if not items:
            return

        if not tokens:
            logger.info(
                "No active device tokens",
                extra={"user_id": user_id, "items": len(items)},
            )
            for item in items:
                await self._apply(
                    item,
                    DeliveryOutcome.TRANSIENT_ERROR,
                    NO_TOKENS_ERROR,
                    lock_id,
                    summary,
                )
            return

        messages: list[PushMessage] = []
        owners: list[NotificationQueueItem] = []
        for item in items:
            for token in tokens:
                messages.append(build_message(item, token))
                owners.append(item)

        results = await self.gateway.send(messages)
        if len(results) != len(messages):
            logger.error(
                "Push gateway returned wrong number of results",
                extra={"expected": len(messages), "got": len(results)},
            )
            results = list(results[:len(messages)]) + [
                PushResult.transient(message.token, "Missing push result")
                for message in messages[len(results):]
            ]

        sent_at = self.clock()
        await self.recorder.record(
            [
                DeliveryAttempt(item, result, lock_id, sent_at)
                for item, result in zip(owners, results)
            ]
        )

        per_item: dict[int, list[PushResult]] = {item.id: [] for item in items}
        invalid_tokens: set[str] = set()
        delivered_tokens: set[str] = set()
        for item, result in zip(owners, results):
            per_item[item.id].append(result)
            if result.outcome == DeliveryOutcome.INVALID_TOKEN:
                invalid_tokens.add(result.token)
            elif result.outcome == DeliveryOutcome.DELIVERED:
                delivered_tokens.add(result.token)

        for token in invalid_tokens:
            reports.append(
                asyncio.create_task(self._report_invalid(user_id, token))
            )
        if delivered_tokens:
            reports.append(
                asyncio.create_task(
                    self._record_delivered(sorted(delivered_tokens))
                )
            )

        for item in items:
            outcome, error = aggregate_outcomes(per_item[item.id])
            await self._apply(item, outcome, error, lock_id, summary)

    async def _apply(
        self,
        item: NotificationQueueItem,
        outcome: DeliveryOutcome,
        error: Optional[str],
        lock_id: str,
        summary: CycleSummary,
    ) -> None:
        """Decide the next state of an item and persist it."""
        decision = decide(
            item.retry_count,
            item.max_retries,
            outcome,
            self.clock(),
            self.config.retry_policy,
        )
        if error:
            error = error[:MAX_ERROR_LENGTH]

        updated = await self.queue_store.mark_outcome(
            item.id,
            lock_id,
            decision.next_status,
            decision.next_retry_count,
            decision.next_retry_at,
            error,
        )
        if not updated:
            return

        summary.count(decision)
        if decision.next_status == QueueItemStatus.DEAD_LETTERED:
            logger.warning(
                "Notification dead-lettered",
                extra={
                    "item_id": item.id,
                    "user_id": item.user_id,
                    "retry_count": decision.next_retry_count,
                    "error": error,
                },
            )

    async def _report_invalid(self, user_id: str, token: str) -> None:
        """Report an invalid token without failing the cycle."""
        try:
            await self.token_directory.report_invalid_token(user_id, token)
        except Exception as e:
            logger.warning(
                "Invalid token report failed",
                extra={"user_id": user_id, "error": str(e)},
            )

    async def _record_delivered(self, tokens: list[str]) -> None:
        try:
            await self.token_directory.record_delivered(tokens)
        except Exception as e:
            logger.warning(
                "Token usage update failed", extra={"error": str(e)}
            )

    async def _wait_for_reports(self, reports: list[asyncio.Task]) -> None:
        """Give pending token reports a bounded time to finish."""
        if not reports:
            return
        _, still_running = await asyncio.wait(
            reports, timeout=self.config.report_timeout_seconds
        )
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(
                f"Cancelled {len(still_running)} unfinished token reports"
            )


def create_queue_processor(
    session_factory: async_sessionmaker[AsyncSession],
    gateway: PushGatewayClient,
    settings: Settings,
) -> QueueProcessor:
    """
    Wire a processor over the database and a gateway client.

    Args:
        session_factory: Async session factory
        gateway: Push gateway client (owned by the caller)
        settings: Application settings

    Returns:
        QueueProcessor
    """
    return QueueProcessor(
        queue_store=QueueStore(session_factory),
        token_directory=DatabaseTokenDirectory(session_factory),
        gateway=gateway,
        recorder=DeliveryRecorder(session_factory),
        config=QueueProcessorConfig.from_settings(settings),
        preference_directory=DatabasePreferenceDirectory(session_factory),
    )
