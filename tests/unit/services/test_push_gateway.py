"""
Unit tests for the Expo push gateway client.

Uses a local aiohttp server in place of the Expo push API.
"""

import asyncio

import pytest
from aiohttp import test_utils, web

from app.models.enums import DeliveryOutcome
from app.services.push_gateway import (
    ExpoPushGatewayClient,
    PushMessage,
    is_expo_push_token,
    map_expo_ticket,
)


def expo_token(n: int) -> str:
    """Build a well-formed Expo token."""
    return f"ExponentPushToken[token-{n}]"


def messages_for(tokens: list[str]) -> list[PushMessage]:
    return [
        PushMessage(token=token, title="Quiz", body="Time to review", data={})
        for token in tokens
    ]


class FakeExpo:
    """Scriptable stand-in for the Expo push endpoint."""

    def __init__(self) -> None:
        self.requests: list[list[dict]] = []
        self.status = 200
        self.delay = 0.0
        self.ticket_for = lambda message: {"status": "ok", "id": "receipt"}

    async def handler(self, request: web.Request) -> web.Response:
        payload = await request.json()
        self.requests.append(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.status != 200:
            return web.json_response(
                {"errors": [{"code": "INTERNAL"}]}, status=self.status
            )
        return web.json_response(
            {"data": [self.ticket_for(message) for message in payload]}
        )

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/--/api/v2/push/send", self.handler)
        return app


class TestTicketMapping:
    """Tests for Expo ticket interpretation."""

    def test_ok_ticket(self):
        """Test ok ticket is delivered with receipt id."""
        result = map_expo_ticket("t", {"status": "ok", "id": "abc"})

        assert result.outcome == DeliveryOutcome.DELIVERED
        assert result.receipt_id == "abc"

    def test_device_not_registered_is_invalid(self):
        """Test DeviceNotRegistered maps to invalid token."""
        result = map_expo_ticket(
            "t",
            {
                "status": "error",
                "message": "not registered",
                "details": {"error": "DeviceNotRegistered"},
            },
        )

        assert result.outcome == DeliveryOutcome.INVALID_TOKEN
        assert "DeviceNotRegistered" in result.error

    @pytest.mark.parametrize(
        "code", ["MessageRateExceeded", "MessageTooBig", "InvalidCredentials"]
    )
    def test_other_errors_are_transient(self, code):
        """Test non-token errors map to transient."""
        result = map_expo_ticket(
            "t", {"status": "error", "details": {"error": code}}
        )

        assert result.outcome == DeliveryOutcome.TRANSIENT_ERROR

    def test_malformed_ticket_is_transient(self):
        """Test garbage ticket maps to transient."""
        assert (
            map_expo_ticket("t", "nonsense").outcome
            == DeliveryOutcome.TRANSIENT_ERROR
        )

    def test_token_shape(self):
        """Test accepted token formats."""
        assert is_expo_push_token("ExponentPushToken[abc]")
        assert is_expo_push_token("ExpoPushToken[abc]")
        assert is_expo_push_token("0b3a1c2d-1111-2222-3333-444455556666")
        assert not is_expo_push_token("fcm:abc")
        assert not is_expo_push_token("")


class TestExpoPushGatewayClient:
    """Tests for sending through the client."""

    @pytest.mark.asyncio
    async def test_results_in_input_order(self):
        """Test one result per message, mapped per ticket."""
        fake = FakeExpo()
        dead = expo_token(2)
        fake.ticket_for = lambda message: (
            {"status": "error", "details": {"error": "DeviceNotRegistered"}}
            if message["to"] == dead
            else {"status": "ok", "id": f"r-{message['to']}"}
        )
        tokens = [expo_token(1), dead, expo_token(3)]

        async with test_utils.TestServer(fake.app()) as server:
            async with ExpoPushGatewayClient(
                url=str(server.make_url("/--/api/v2/push/send"))
            ) as client:
                results = await client.send(messages_for(tokens))

        assert [r.token for r in results] == tokens
        assert [r.outcome for r in results] == [
            DeliveryOutcome.DELIVERED,
            DeliveryOutcome.INVALID_TOKEN,
            DeliveryOutcome.DELIVERED,
        ]

    @pytest.mark.asyncio
    async def test_chunks_to_max_batch_size(self):
        """Test 5 messages with batch size 2 make 3 requests."""
        fake = FakeExpo()
        tokens = [expo_token(n) for n in range(5)]

        async with test_utils.TestServer(fake.app()) as server:
            async with ExpoPushGatewayClient(
                url=str(server.make_url("/--/api/v2/push/send")),
                max_batch_size=2,
            ) as client:
                results = await client.send(messages_for(tokens))

        assert [len(r) for r in fake.requests] == [2, 2, 1]
        assert len(results) == 5
        assert all(r.outcome == DeliveryOutcome.DELIVERED for r in results)

    @pytest.mark.asyncio
    async def test_server_error_is_transient_for_whole_chunk(self):
        """Test 503 maps every token in the chunk to transient."""
        fake = FakeExpo()
        fake.status = 503
        tokens = [expo_token(1), expo_token(2)]

        async with test_utils.TestServer(fake.app()) as server:
            async with ExpoPushGatewayClient(
                url=str(server.make_url("/--/api/v2/push/send"))
            ) as client:
                results = await client.send(messages_for(tokens))

        assert len(results) == 2
        assert all(
            r.outcome == DeliveryOutcome.TRANSIENT_ERROR for r in results
        )

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        """Test a slow gateway times out into transient results."""
        fake = FakeExpo()
        fake.delay = 1.0

        async with test_utils.TestServer(fake.app()) as server:
            async with ExpoPushGatewayClient(
                url=str(server.make_url("/--/api/v2/push/send")),
                timeout_seconds=0.1,
            ) as client:
                results = await client.send(messages_for([expo_token(1)]))

        assert results[0].outcome == DeliveryOutcome.TRANSIENT_ERROR
        assert "timeout" in results[0].error.lower()

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        """Test an unreachable gateway yields transient results."""
        async with ExpoPushGatewayClient(
            url="http://127.0.0.1:9/--/api/v2/push/send",
            timeout_seconds=1.0,
        ) as client:
            results = await client.send(messages_for([expo_token(1)]))

        assert results[0].outcome == DeliveryOutcome.TRANSIENT_ERROR

    @pytest.mark.asyncio
    async def test_malformed_token_rejected_locally(self):
        """Test impossible tokens are invalid without a request."""
        fake = FakeExpo()

        async with test_utils.TestServer(fake.app()) as server:
            async with ExpoPushGatewayClient(
                url=str(server.make_url("/--/api/v2/push/send"))
            ) as client:
                results = await client.send(
                    messages_for(["not-a-token", expo_token(1)])
                )

        assert results[0].outcome == DeliveryOutcome.INVALID_TOKEN
        assert results[1].outcome == DeliveryOutcome.DELIVERED
        assert [m["to"] for m in fake.requests[0]] == [expo_token(1)]

    @pytest.mark.asyncio
    async def test_access_token_header(self):
        """Test the access token is sent as a bearer header."""
        seen = {}

        async def handler(request: web.Request) -> web.Response:
            seen["auth"] = request.headers.get("Authorization")
            payload = await request.json()
            return web.json_response(
                {"data": [{"status": "ok"} for _ in payload]}
            )

        app = web.Application()
        app.router.add_post("/send", handler)

        async with test_utils.TestServer(app) as server:
            async with ExpoPushGatewayClient(
                url=str(server.make_url("/send")), access_token="secret"
            ) as client:
                await client.send(messages_for([expo_token(1)]))

        assert seen["auth"] == "Bearer secret"

    def test_invalid_batch_size(self):
        """Test batch size must be positive."""
        with pytest.raises(ValueError):
            ExpoPushGatewayClient(max_batch_size=0)
