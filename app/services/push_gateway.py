"""
Push gateway client.

Sends batches of push messages to an external gateway and maps the
gateway's answer to a three-way outcome per token. Vendor error codes
never leave this module.
"""

import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import aiohttp
from loguru import logger

from app.models.enums import DeliveryOutcome
from app.services.exceptions import PushGatewayError

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"
EXPO_MAX_BATCH_SIZE = 100
DEFAULT_TIMEOUT_SECONDS = 10.0

# Ticket error codes meaning the token will never work again
EXPO_INVALID_TOKEN_ERRORS = frozenset({"DeviceNotRegistered"})

_EXPO_TOKEN_RE = re.compile(r"^Expo(nent)?PushToken\[.+\]$")
_UUID_TOKEN_RE = re.compile(
    r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class PushMessage:
    """One message addressed to one device token."""

    token: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PushResult:
    """Outcome of sending one PushMessage."""

    token: str
    outcome: DeliveryOutcome
    error: Optional[str] = None
    receipt_id: Optional[str] = None

    @classmethod
    def delivered(
        cls, token: str, receipt_id: Optional[str] = None
    ) -> "PushResult":
        """Build a delivered result."""
        return cls(token, DeliveryOutcome.DELIVERED, receipt_id=receipt_id)

    @classmethod
    def invalid_token(cls, token: str, error: str) -> "PushResult":
        """Build an invalid-token result."""
        return cls(token, DeliveryOutcome.INVALID_TOKEN, error=error)

    @classmethod
    def transient(cls, token: str, error: str) -> "PushResult":
        """Build a transient-error result."""
        return cls(token, DeliveryOutcome.TRANSIENT_ERROR, error=error)


class PushGatewayClient(ABC):
    """
    Push gateway contract.

    ``send`` returns exactly one PushResult per input message, in input
    order. It never raises for gateway or network failures and never
    retries internally.
    """

    @abstractmethod
    async def send(self, batch: list[PushMessage]) -> list[PushResult]:
        """Send a batch of messages."""

    async def close(self) -> None:
        """Release network resources."""


def is_expo_push_token(token: str) -> bool:
    """Check if a token has a shape Expo accepts."""
    return bool(
        _EXPO_TOKEN_RE.match(token) or _UUID_TOKEN_RE.match(token)
    )


def map_expo_ticket(token: str, ticket: Any) -> PushResult:
    """
    Map one Expo push ticket to a PushResult.

    Args:
        token: Token the ticket belongs to
        ticket: Ticket object from the response ``data`` list

    Returns:
        PushResult
    """
    if not isinstance(ticket, dict):
        return PushResult.transient(token, "Malformed push ticket")

    if ticket.get("status") == "ok":
        return PushResult.delivered(token, receipt_id=ticket.get("id"))

    details = ticket.get("details") or {}
    error_code = details.get("error") if isinstance(details, dict) else None
    message = ticket.get("message") or "Push ticket error"
    error = f"{error_code}: {message}" if error_code else message

    if error_code in EXPO_INVALID_TOKEN_ERRORS:
        return PushResult.invalid_token(token, error)

    # MessageTooBig, MessageRateExceeded, InvalidCredentials and unknown
    # codes are not the token's fault
    return PushResult.transient(token, error)


class ExpoPushGatewayClient(PushGatewayClient):
    """Expo push service client (aiohttp)."""

    def __init__(
        self,
        url: str = EXPO_PUSH_URL,
        access_token: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_batch_size: int = EXPO_MAX_BATCH_SIZE,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """
        Initialize Expo client.

        Args:
            url: Push send endpoint
            access_token: Expo access token (enhanced push security)
            timeout_seconds: Per-chunk request timeout
            max_batch_size: Messages per request (Expo allows 100)
            session: Shared aiohttp session (created lazily if omitted)
        """
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")

        self.url = url
        self.access_token = access_token
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.max_batch_size = max_batch_size
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "ExpoPushGatewayClient":
        """Enter async context."""
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        """Close the owned session."""
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    def _headers(self) -> dict[str, str]:
        """Build request headers."""
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def send(self, batch: list[PushMessage]) -> list[PushResult]:
        """
        Send messages in chunks of max_batch_size.

        Tokens with an impossible shape are rejected locally as invalid.

        Args:
            batch: Messages to send

        Returns:
            One PushResult per message, in input order
        """
        results: list[Optional[PushResult]] = [None] * len(batch)
        sendable: list[tuple[int, PushMessage]] = []

        for index, message in enumerate(batch):
            if is_expo_push_token(message.token):
                sendable.append((index, message))
            else:
                results[index] = PushResult.invalid_token(
                    message.token, "Not a valid Expo push token"
                )

        for start in range(0, len(sendable), self.max_batch_size):
            chunk = sendable[start:start + self.max_batch_size]
            chunk_results = await self._send_chunk(
                [message for _, message in chunk]
            )
            for (index, _), result in zip(chunk, chunk_results):
                results[index] = result

        return [result for result in results if result is not None]

    async def _send_chunk(
        self, messages: list[PushMessage]
    ) -> list[PushResult]:
        """
        Send one gateway request.

        Any request-level failure is a transient error for every token in
        the chunk.
        """
        try:
            tickets = await self._post(messages)
        except PushGatewayError as e:
            logger.warning(
                "Push gateway request failed",
                extra={
                    "status_code": e.status_code,
                    "messages": len(messages),
                    "error": str(e),
                },
            )
            return [
                PushResult.transient(message.token, str(e))
                for message in messages
            ]

        results = []
        for index, message in enumerate(messages):
            if index < len(tickets):
                results.append(map_expo_ticket(message.token, tickets[index]))
            else:
                results.append(
                    PushResult.transient(message.token, "Missing push ticket")
                )
        return results

    async def _post(self, messages: list[PushMessage]) -> list[Any]:
        """
        POST a chunk to Expo.

        Returns:
            Ticket list aligned with messages

        Raises:
            PushGatewayError: Timeout, connection error, non-2xx status or
                malformed body
        """
        payload = [
            {
                "to": message.token,
                "title": message.title,
                "body": message.body,
                "data": message.data,
                "sound": "default",
                "priority": "high",
            }
            for message in messages
        ]

        session = self._get_session()
        try:
            async with session.post(
                self.url,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            ) as response:
                if response.status == 429 or response.status >= 500:
                    raise PushGatewayError(
                        f"Push gateway unavailable: HTTP {response.status}",
                        status_code=response.status,
                    )
                body = await response.json(content_type=None)
                status = response.status
        except asyncio.TimeoutError as e:
            raise PushGatewayError("Push gateway timeout") from e
        except aiohttp.ClientError as e:
            raise PushGatewayError(f"Push gateway connection error: {e}") from e
        except ValueError as e:
            raise PushGatewayError("Push gateway returned invalid JSON") from e

        if not isinstance(body, dict):
            raise PushGatewayError("Push gateway returned unexpected body")

        if status >= 400 or body.get("errors"):
            errors = body.get("errors") or []
            codes = ", ".join(
                str(error.get("code", "UNKNOWN"))
                for error in errors
                if isinstance(error, dict)
            )
            raise PushGatewayError(
                f"Push gateway rejected request: {codes or status}",
                status_code=status,
            )

        tickets = body.get("data")
        if not isinstance(tickets, list):
            raise PushGatewayError("Push gateway response has no tickets")
        return tickets
