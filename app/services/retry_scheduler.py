"""
Retry scheduler.

Pure retry/dead-letter decisions for failed deliveries.
Backoff: 5min, 15min, 45min, 2h15m, then capped at 6h.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from app.models.enums import DeliveryOutcome, QueueItemStatus

BASE_RETRY_DELAY = timedelta(minutes=5)
RETRY_MULTIPLIER = 3.0
MAX_RETRY_DELAY = timedelta(hours=6)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters."""

    base_delay: timedelta = BASE_RETRY_DELAY
    multiplier: float = RETRY_MULTIPLIER
    max_delay: timedelta = MAX_RETRY_DELAY

    def __post_init__(self) -> None:
        """Validate policy values."""
        if self.base_delay <= timedelta(0):
            raise ValueError("base_delay must be positive")
        if self.multiplier <= 1:
            raise ValueError("multiplier must be greater than 1")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")


@dataclass(frozen=True)
class RetryDecision:
    """Next state of a queue item after an attempt."""

    next_status: QueueItemStatus
    next_retry_count: int
    next_retry_at: Optional[datetime]

    @property
    def will_retry(self) -> bool:
        """Check if the item will be swept back to pending later."""
        return (
            self.next_status == QueueItemStatus.FAILED
            and self.next_retry_at is not None
        )


def compute_backoff(
    retry_count: int, policy: RetryPolicy = RetryPolicy()
) -> timedelta:
    """
    Compute delay before the next attempt.

    backoff(n) = base_delay * multiplier ** n, capped at max_delay.

    Args:
        retry_count: Failed attempts so far
        policy: Backoff parameters

    Returns:
        Delay before the next attempt
    """
    if retry_count < 0:
        raise ValueError("retry_count must be non-negative")

    max_seconds = policy.max_delay.total_seconds()
    seconds = policy.base_delay.total_seconds()
    # Multiply step by step so huge retry counts never overflow a float
    for _ in range(retry_count):
        seconds *= policy.multiplier
        if seconds >= max_seconds:
            return policy.max_delay
    return timedelta(seconds=min(seconds, max_seconds))


def decide(
    retry_count: int,
    max_retries: int,
    outcome: DeliveryOutcome,
    now: datetime,
    policy: RetryPolicy = RetryPolicy(),
) -> RetryDecision:
    """
    Decide the next state of an item after a delivery attempt.

    - delivered: sent
    - invalid_token: failed with no retry time (a bad token never
      becomes valid by waiting)
    - transient_error: failed with backoff while attempts remain,
      otherwise dead_lettered

    Args:
        retry_count: Failed attempts before this one
        max_retries: Per-item attempt cap
        outcome: Aggregated outcome of this attempt
        now: Current time
        policy: Backoff parameters

    Returns:
        RetryDecision for the queue store
    """
    if max_retries < 0 or retry_count < 0:
        raise ValueError("retry_count and max_retries must be non-negative")

    if outcome == DeliveryOutcome.DELIVERED:
        return RetryDecision(
            next_status=QueueItemStatus.SENT,
            next_retry_count=retry_count,
            next_retry_at=None,
        )

    next_retry_count = min(retry_count + 1, max_retries)

    if outcome == DeliveryOutcome.INVALID_TOKEN:
        return RetryDecision(
            next_status=QueueItemStatus.FAILED,
            next_retry_count=next_retry_count,
            next_retry_at=None,
        )

    if retry_count + 1 < max_retries:
        return RetryDecision(
            next_status=QueueItemStatus.FAILED,
            next_retry_count=next_retry_count,
            next_retry_at=now + compute_backoff(retry_count, policy),
        )

    return RetryDecision(
        next_status=QueueItemStatus.DEAD_LETTERED,
        next_retry_count=next_retry_count,
        next_retry_at=None,
    )
