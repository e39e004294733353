"""
Pytest configuration and shared fixtures.

Database fixtures run against a temporary SQLite file unless
TEST_DATABASE_URL points at a real PostgreSQL test database.
"""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import dramatiq
import pytest
import pytest_asyncio
from dramatiq.brokers.stub import StubBroker
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Actors must bind to the stub broker, not Redis
stub_broker = StubBroker()
dramatiq.set_broker(stub_broker)

from app.models import Base, DeviceToken, NotificationQueueItem  # noqa: E402
from app.models.enums import DeliveryOutcome, DevicePlatform  # noqa: E402
from app.services.delivery_recorder import DeliveryRecorder  # noqa: E402
from app.services.preference_directory import (  # noqa: E402
    PreferenceDirectory,
    UserPreferences,
)
from app.services.push_gateway import (  # noqa: E402
    PushGatewayClient,
    PushMessage,
    PushResult,
)
from app.services.queue_processor import (  # noqa: E402
    QueueProcessor,
    QueueProcessorConfig,
)
from app.services.queue_store import QueueStore  # noqa: E402
from app.services.token_directory import TokenDirectory  # noqa: E402

# ==================== PYTEST CONFIGURATION ====================


def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )
    config.addinivalue_line("markers", "critical: marks tests as critical")
    config.addinivalue_line("markers", "integration: marks integration tests")


# ==================== DATABASE FIXTURES ====================


@pytest_asyncio.fixture
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine with a fresh schema for each test."""
    url = os.getenv(
        "TEST_DATABASE_URL",
        f"sqlite+aiosqlite:///{tmp_path / 'push_delivery_test.db'}",
    )
    engine = create_async_engine(url, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(
    async_engine: AsyncEngine,  # pylint: disable=redefined-outer-name
) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],  # pylint: disable=redefined-outer-name
) -> AsyncGenerator[AsyncSession, None]:
    """
    Create database session for tests.

    Yields:
        AsyncSession: Database session
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


# ==================== MODEL FIXTURES ====================


@pytest.fixture
def create_queue_item(
    session_factory: async_sessionmaker[AsyncSession],  # pylint: disable=redefined-outer-name
) -> Callable[..., Awaitable[NotificationQueueItem]]:
    """Factory for committed queue items."""

    async def _create(**overrides: Any) -> NotificationQueueItem:
        data: dict[str, Any] = {
            "user_id": "user-1",
            "notification_type": "reminder",
            "title": "Assignment due",
            "body": "Essay draft is due tomorrow",
            "data": {"screen": "assignments"},
        }
        data.update(overrides)
        async with session_factory() as session:
            item = NotificationQueueItem(**data)
            session.add(item)
            await session.commit()
            await session.refresh(item)
            return item

    return _create


@pytest.fixture
def create_device_token(
    session_factory: async_sessionmaker[AsyncSession],  # pylint: disable=redefined-outer-name
) -> Callable[..., Awaitable[DeviceToken]]:
    """Factory for committed device tokens."""

    async def _create(
        user_id: str, token: str, is_active: bool = True
    ) -> DeviceToken:
        async with session_factory() as session:
            device = DeviceToken(
                user_id=user_id,
                token=token,
                platform=DevicePlatform.IOS,
                is_active=is_active,
            )
            session.add(device)
            await session.commit()
            await session.refresh(device)
            return device

    return _create


@pytest.fixture
def load_queue_item(
    session_factory: async_sessionmaker[AsyncSession],  # pylint: disable=redefined-outer-name
) -> Callable[[int], Awaitable[NotificationQueueItem]]:
    """Load a fresh copy of a queue item."""

    async def _load(item_id: int) -> NotificationQueueItem:
        async with session_factory() as session:
            item = await session.get(NotificationQueueItem, item_id)
            assert item is not None
            return item

    return _load


# ==================== MOCK COLLABORATORS ====================


class MockPushGateway(PushGatewayClient):
    """Push gateway returning preset outcomes per token."""

    def __init__(
        self,
        outcomes: dict[str, DeliveryOutcome] | None = None,
        default: DeliveryOutcome = DeliveryOutcome.DELIVERED,
    ) -> None:
        self.outcomes = outcomes or {}
        self.default = default
        self.calls: list[list[PushMessage]] = []

    async def send(self, batch: list[PushMessage]) -> list[PushResult]:
        self.calls.append(list(batch))
        results = []
        for index, message in enumerate(batch):
            outcome = self.outcomes.get(message.token, self.default)
            if outcome == DeliveryOutcome.DELIVERED:
                results.append(
                    PushResult.delivered(message.token, f"ticket-{index}")
                )
            elif outcome == DeliveryOutcome.INVALID_TOKEN:
                results.append(
                    PushResult.invalid_token(
                        message.token, "DeviceNotRegistered: gone"
                    )
                )
            else:
                results.append(
                    PushResult.transient(message.token, "gateway timeout")
                )
        return results


class MockTokenDirectory(TokenDirectory):
    """In-memory token directory."""

    def __init__(self, tokens: dict[str, list[str]] | None = None) -> None:
        self.tokens = tokens or {}
        self.reported: list[tuple[str, str]] = []
        self.delivered: list[str] = []
        self.resolve_calls: list[list[str]] = []

    async def resolve_tokens(self, user_ids):
        user_ids = list(user_ids)
        self.resolve_calls.append(user_ids)
        return {
            user_id: list(self.tokens.get(user_id, []))
            for user_id in user_ids
        }

    async def report_invalid_token(self, user_id: str, token: str) -> None:
        self.reported.append((user_id, token))

    async def record_delivered(self, tokens) -> None:
        self.delivered.extend(tokens)


class MockPreferenceDirectory(PreferenceDirectory):
    """In-memory preference directory."""

    def __init__(
        self, preferences: dict[str, UserPreferences] | None = None
    ) -> None:
        self.preferences = preferences or {}

    async def get_preferences(self, user_ids):
        return {
            user_id: self.preferences[user_id]
            for user_id in user_ids
            if user_id in self.preferences
        }


@pytest.fixture
def mock_gateway() -> MockPushGateway:
    """Gateway that delivers everything unless told otherwise."""
    return MockPushGateway()


@pytest.fixture
def mock_token_directory() -> MockTokenDirectory:
    """Empty token directory."""
    return MockTokenDirectory()


@pytest.fixture
def mock_preference_directory() -> MockPreferenceDirectory:
    """Preference directory where nobody has preferences yet."""
    return MockPreferenceDirectory()


# ==================== SERVICE FIXTURES ====================


@pytest.fixture
def queue_store(
    session_factory: async_sessionmaker[AsyncSession],  # pylint: disable=redefined-outer-name
) -> QueueStore:
    """Queue store instance."""
    return QueueStore(session_factory)


@pytest.fixture
def delivery_recorder(
    session_factory: async_sessionmaker[AsyncSession],  # pylint: disable=redefined-outer-name
) -> DeliveryRecorder:
    """Delivery recorder instance."""
    return DeliveryRecorder(session_factory)


@pytest.fixture
def queue_processor(
    queue_store: QueueStore,  # pylint: disable=redefined-outer-name
    mock_token_directory: MockTokenDirectory,  # pylint: disable=redefined-outer-name
    mock_gateway: MockPushGateway,  # pylint: disable=redefined-outer-name
    delivery_recorder: DeliveryRecorder,  # pylint: disable=redefined-outer-name
) -> QueueProcessor:
    """Processor over the test database and mock collaborators."""
    return QueueProcessor(
        queue_store=queue_store,
        token_directory=mock_token_directory,
        gateway=mock_gateway,
        recorder=delivery_recorder,
        config=QueueProcessorConfig(batch_size=50, concurrency=4),
    )
