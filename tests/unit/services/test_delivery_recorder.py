"""
Unit tests for DeliveryRecorder.

Tests append-only records and idempotency inside a processing cycle.
"""

import pytest

from app.models.base import utcnow
from app.repositories.notification_delivery_repository import (
    NotificationDeliveryRepository,
)
from app.services.delivery_recorder import DeliveryAttempt
from app.services.push_gateway import PushResult


async def records_for(session_factory, item_id):
    async with session_factory() as session:
        return await NotificationDeliveryRepository(session).get_for_item(
            item_id
        )


class TestDeliveryRecorder:
    """Tests for record()."""

    @pytest.mark.asyncio
    async def test_one_record_per_token(
        self, delivery_recorder, session_factory, create_queue_item
    ):
        """Test each token gets its own record with outcome details."""
        item = await create_queue_item(retry_count=1)
        now = utcnow()

        written = await delivery_recorder.record(
            [
                DeliveryAttempt(
                    item, PushResult.delivered("tok-a", "r-1"), "cycle-1", now
                ),
                DeliveryAttempt(
                    item,
                    PushResult.invalid_token("tok-b", "DeviceNotRegistered"),
                    "cycle-1",
                    now,
                ),
            ]
        )

        assert written == 2
        records = {
            r.device_token: r for r in await records_for(session_factory, item.id)
        }
        assert records["tok-a"].outcome == "ok"
        assert records["tok-a"].error_message is None
        assert records["tok-a"].delivery_metadata == {
            "outcome": "delivered",
            "attempt_number": 2,
            "receipt_id": "r-1",
        }
        assert records["tok-b"].outcome == "error"
        assert records["tok-b"].error_message == "DeviceNotRegistered"
        assert records["tok-b"].title == item.title

    @pytest.mark.asyncio
    async def test_repeated_call_in_same_cycle_writes_nothing(
        self, delivery_recorder, session_factory, create_queue_item
    ):
        """Test idempotency on (item, token, attempt)."""
        item = await create_queue_item()
        attempts = [
            DeliveryAttempt(
                item, PushResult.delivered("tok-a"), "cycle-1", utcnow()
            )
        ]

        assert await delivery_recorder.record(attempts) == 1
        assert await delivery_recorder.record(attempts) == 0
        assert len(await records_for(session_factory, item.id)) == 1

    @pytest.mark.asyncio
    async def test_later_cycle_appends(
        self, delivery_recorder, session_factory, create_queue_item
    ):
        """Test a new attempt_id writes new records."""
        item = await create_queue_item()

        for cycle in ("cycle-1", "cycle-2"):
            await delivery_recorder.record(
                [
                    DeliveryAttempt(
                        item,
                        PushResult.transient("tok-a", "timeout"),
                        cycle,
                        utcnow(),
                    )
                ]
            )

        records = await records_for(session_factory, item.id)
        assert [r.attempt_id for r in records] == ["cycle-1", "cycle-2"]

    @pytest.mark.asyncio
    async def test_empty_input(self, delivery_recorder):
        """Test nothing to record."""
        assert await delivery_recorder.record([]) == 0
