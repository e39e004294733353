"""
Unit tests for QueueStore.

Tests fetch order, conditional claims and updates, the retry sweep and
stale-claim recovery against a real database.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from app.models.base import utcnow
from app.models.enums import QueueItemStatus
from app.models.notification_queue_item import NotificationQueueItem
from app.services.exceptions import QueueStoreUnavailableError
from app.services.queue_store import QueueStore


class TestQueueStoreFetch:
    """Tests for fetch_pending."""

    @pytest.mark.asyncio
    async def test_priority_before_age(self, queue_store, create_queue_item):
        """Test priority 1 is fetched before an older priority 5 item."""
        normal = await create_queue_item(priority=5)
        urgent = await create_queue_item(priority=1)

        items = await queue_store.fetch_pending(10)

        assert [item.id for item in items] == [urgent.id, normal.id]

    @pytest.mark.asyncio
    async def test_fifo_within_priority(self, queue_store, create_queue_item):
        """Test oldest first for equal priority."""
        first = await create_queue_item()
        second = await create_queue_item()
        third = await create_queue_item()

        items = await queue_store.fetch_pending(2)

        assert [item.id for item in items] == [first.id, second.id]
        assert third.id not in [item.id for item in items]

    @pytest.mark.asyncio
    async def test_only_pending_items(self, queue_store, create_queue_item):
        """Test that no other status is ever fetched."""
        pending = await create_queue_item()
        for status in QueueItemStatus:
            if status != QueueItemStatus.PENDING:
                await create_queue_item(status=status.value)

        items = await queue_store.fetch_pending(100)

        assert [item.id for item in items] == [pending.id]
        assert all(item.status == QueueItemStatus.PENDING for item in items)

    @pytest.mark.asyncio
    async def test_future_scheduled_items_skipped(
        self, queue_store, create_queue_item
    ):
        """Test scheduled_for in the future hides the item."""
        due = await create_queue_item(
            scheduled_for=utcnow() - timedelta(minutes=1)
        )
        await create_queue_item(scheduled_for=utcnow() + timedelta(hours=1))

        items = await queue_store.fetch_pending(10)

        assert [item.id for item in items] == [due.id]

    @pytest.mark.asyncio
    async def test_fetch_does_not_change_state(
        self, queue_store, create_queue_item, load_queue_item
    ):
        """Test fetch is read-only."""
        item = await create_queue_item()

        await queue_store.fetch_pending(10)

        reloaded = await load_queue_item(item.id)
        assert reloaded.status == QueueItemStatus.PENDING
        assert reloaded.lock_id is None


class TestQueueStoreClaim:
    """Tests for claim."""

    @pytest.mark.asyncio
    @pytest.mark.critical
    async def test_double_claim_has_one_winner(
        self, queue_store, create_queue_item, load_queue_item
    ):
        """Test two cycles claiming concurrently: exactly one succeeds."""
        item = await create_queue_item()

        first, second = await asyncio.gather(
            queue_store.claim([item.id], "lock-a"),
            queue_store.claim([item.id], "lock-b"),
        )

        winners = [claimed for claimed in (first, second) if claimed]
        assert len(winners) == 1
        assert [i.id for i in winners[0]] == [item.id]
        assert winners[0][0].status == QueueItemStatus.IN_FLIGHT
        assert winners[0][0].claimed_at is not None

        winning_lock = "lock-a" if first else "lock-b"
        assert (await load_queue_item(item.id)).lock_id == winning_lock

    @pytest.mark.asyncio
    async def test_second_claim_gets_nothing(
        self, queue_store, create_queue_item
    ):
        """Test a later cycle cannot take an in-flight item."""
        item = await create_queue_item()

        first = await queue_store.claim([item.id], "lock-a")
        second = await queue_store.claim([item.id], "lock-b")

        assert first[0].lock_id == "lock-a"
        assert second == []

    @pytest.mark.asyncio
    async def test_partial_claim(self, queue_store, create_queue_item):
        """Test only still-pending items are returned."""
        taken = await create_queue_item()
        free = await create_queue_item()
        await queue_store.claim([taken.id], "lock-a")

        claimed = await queue_store.claim([taken.id, free.id], "lock-b")

        assert [i.id for i in claimed] == [free.id]

    @pytest.mark.asyncio
    async def test_claim_empty_ids(self, queue_store):
        """Test claiming nothing."""
        assert await queue_store.claim([], "lock-a") == []


class TestQueueStoreMarkOutcome:
    """Tests for mark_outcome."""

    @pytest.mark.asyncio
    async def test_mark_sent(
        self, queue_store, create_queue_item, load_queue_item
    ):
        """Test sent outcome clears the claim and stamps sent_at."""
        item = await create_queue_item()
        await queue_store.claim([item.id], "lock-a")

        updated = await queue_store.mark_outcome(
            item.id, "lock-a", QueueItemStatus.SENT, 0, None, None
        )

        assert updated is True
        reloaded = await load_queue_item(item.id)
        assert reloaded.status == QueueItemStatus.SENT
        assert reloaded.lock_id is None
        assert reloaded.claimed_at is None
        assert reloaded.sent_at is not None

    @pytest.mark.asyncio
    async def test_stale_writer_is_ignored(
        self, queue_store, create_queue_item, load_queue_item
    ):
        """Test a cycle that lost its claim cannot overwrite the item."""
        item = await create_queue_item()
        await queue_store.claim([item.id], "lock-a")

        updated = await queue_store.mark_outcome(
            item.id, "lock-b", QueueItemStatus.SENT, 0, None, None
        )

        assert updated is False
        reloaded = await load_queue_item(item.id)
        assert reloaded.status == QueueItemStatus.IN_FLIGHT
        assert reloaded.lock_id == "lock-a"

    @pytest.mark.asyncio
    async def test_not_in_flight_is_ignored(
        self, queue_store, create_queue_item, load_queue_item
    ):
        """Test an item that was never claimed is not updated."""
        item = await create_queue_item()

        updated = await queue_store.mark_outcome(
            item.id, "lock-a", QueueItemStatus.SENT, 0, None, None
        )

        assert updated is False
        assert (await load_queue_item(item.id)).status == "pending"


class TestQueueStoreDefer:
    """Tests for defer."""

    @pytest.mark.asyncio
    async def test_defer_returns_item_to_pending(
        self, queue_store, create_queue_item, load_queue_item
    ):
        """Test a deferred item waits without spending a retry."""
        item = await create_queue_item(retry_count=1)
        await queue_store.claim([item.id], "lock-a")
        until = utcnow() + timedelta(hours=2)

        deferred = await queue_store.defer(
            item.id, "lock-a", until, "quiet hours"
        )

        assert deferred is True
        reloaded = await load_queue_item(item.id)
        assert reloaded.status == QueueItemStatus.PENDING
        assert reloaded.retry_count == 1
        assert reloaded.lock_id is None
        assert reloaded.last_error == "quiet hours"
        assert reloaded.scheduled_for is not None
        assert await queue_store.fetch_pending(10) == []

    @pytest.mark.asyncio
    async def test_defer_needs_the_claim(
        self, queue_store, create_queue_item, load_queue_item
    ):
        """Test another cycle's lock cannot defer the item."""
        item = await create_queue_item()
        await queue_store.claim([item.id], "lock-a")

        deferred = await queue_store.defer(
            item.id, "lock-b", utcnow() + timedelta(hours=1), "quiet hours"
        )

        assert deferred is False
        assert (await load_queue_item(item.id)).status == (
            QueueItemStatus.IN_FLIGHT
        )


class TestQueueStoreSweep:
    """Tests for sweep_due_retries."""

    @pytest.mark.asyncio
    async def test_due_item_requeued(
        self, queue_store, create_queue_item, load_queue_item
    ):
        """Test a failed item past its retry time returns to pending."""
        item = await create_queue_item(
            status="failed",
            retry_count=1,
            next_retry_at=utcnow() - timedelta(seconds=1),
        )

        requeued = await queue_store.sweep_due_retries(100)

        assert requeued == 1
        reloaded = await load_queue_item(item.id)
        assert reloaded.status == QueueItemStatus.PENDING
        assert reloaded.next_retry_at is None
        assert reloaded.retry_count == 1

    @pytest.mark.asyncio
    @pytest.mark.critical
    async def test_item_not_yet_due_stays_failed(
        self, queue_store, create_queue_item, load_queue_item
    ):
        """Test sweep before next_retry_at leaves the item failed."""
        item = await create_queue_item(
            status="failed",
            retry_count=1,
            next_retry_at=utcnow() + timedelta(minutes=5),
        )

        requeued = await queue_store.sweep_due_retries(100)

        assert requeued == 0
        assert (await load_queue_item(item.id)).status == "failed"

    @pytest.mark.asyncio
    async def test_terminal_failed_never_swept(
        self, queue_store, create_queue_item, load_queue_item
    ):
        """Test failed items without retry time or attempts stay put."""
        invalid = await create_queue_item(status="failed", retry_count=1)
        exhausted = await create_queue_item(
            status="failed",
            retry_count=3,
            max_retries=3,
            next_retry_at=utcnow() - timedelta(minutes=1),
        )
        dead = await create_queue_item(status="dead_lettered", retry_count=3)

        assert await queue_store.sweep_due_retries(100) == 0
        assert (await load_queue_item(invalid.id)).status == "failed"
        assert (await load_queue_item(exhausted.id)).status == "failed"
        assert (await load_queue_item(dead.id)).status == "dead_lettered"

    @pytest.mark.asyncio
    async def test_sweep_limit(self, queue_store, create_queue_item):
        """Test the sweep is bounded."""
        for _ in range(3):
            await create_queue_item(
                status="failed",
                retry_count=1,
                next_retry_at=utcnow() - timedelta(minutes=1),
            )

        assert await queue_store.sweep_due_retries(2) == 2
        assert await queue_store.sweep_due_retries(2) == 1


class TestQueueStoreRecovery:
    """Tests for stale-claim recovery and cancellation."""

    @pytest.mark.asyncio
    async def test_stale_claim_released(
        self, queue_store, session_factory, create_queue_item, load_queue_item
    ):
        """Test an old in_flight claim returns to pending."""
        stale = await create_queue_item()
        fresh = await create_queue_item()
        await queue_store.claim([stale.id], "crashed")
        await queue_store.claim([fresh.id], "running")

        async with session_factory() as session:
            await session.execute(
                update(NotificationQueueItem)
                .where(NotificationQueueItem.id == stale.id)
                .values(claimed_at=utcnow() - timedelta(minutes=30))
            )
            await session.commit()

        recovered = await queue_store.recover_stale_claims(
            timedelta(minutes=10)
        )

        assert recovered == 1
        reloaded = await load_queue_item(stale.id)
        assert reloaded.status == QueueItemStatus.PENDING
        assert reloaded.lock_id is None
        assert (await load_queue_item(fresh.id)).status == "in_flight"

    @pytest.mark.asyncio
    async def test_cancel_pending_for_user(
        self, queue_store, create_queue_item, load_queue_item
    ):
        """Test cancellation touches only the user's undelivered items."""
        pending = await create_queue_item(user_id="user-1")
        sent = await create_queue_item(user_id="user-1", status="sent")
        other = await create_queue_item(user_id="user-2")

        cancelled = await queue_store.cancel_pending_for_user("user-1")

        assert cancelled == 1
        assert (await load_queue_item(pending.id)).status == "cancelled"
        assert (await load_queue_item(sent.id)).status == "sent"
        assert (await load_queue_item(other.id)).status == "pending"

    @pytest.mark.asyncio
    async def test_statistics(self, queue_store, create_queue_item):
        """Test counts per status include empty statuses."""
        await create_queue_item()
        await create_queue_item()
        await create_queue_item(status="dead_lettered", retry_count=3)

        stats = await queue_store.get_statistics()

        assert stats["pending"] == 2
        assert stats["dead_lettered"] == 1
        assert stats["sent"] == 0
        assert set(stats) == {status.value for status in QueueItemStatus}


class TestQueueStoreUnavailable:
    """Tests for database failures."""

    @pytest.mark.asyncio
    async def test_database_error_is_wrapped(self):
        """Test SQLAlchemy errors surface as QueueStoreUnavailableError."""

        class BrokenSession:
            async def __aenter__(self):
                raise OperationalError("SELECT 1", {}, Exception("down"))

            async def __aexit__(self, *exc_info):
                return False

        store = QueueStore(lambda: BrokenSession())

        with pytest.raises(QueueStoreUnavailableError):
            await store.fetch_pending(10)
