"""
Pytest configuration and shared test fixtures.

Integration fixtures run against a throwaway file-backed SQLite database so
that separate sessions use separate connections, which the concurrency tests
rely on. Recording fakes stand in for the notification bus and the orders
broadcaster.
"""

from typing import Any, AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from lifebank.core.config import Settings
from lifebank.database.connection import (
    create_engine,
    create_session_factory,
    create_tables,
)
from lifebank.database.models.inventory import BloodType
from lifebank.services.inventory.ledger import InventoryLedger
from lifebank.services.notifications.bus import EventBus
from lifebank.services.notifications.events import DomainNotification
from lifebank.services.orders.service import OrderService


class RecordingBroadcaster:
    """Collects broadcast messages instead of sending them."""

    def __init__(self):
        self.messages: list[tuple[str, dict[str, Any]]] = []

    async def broadcast(self, message_type: str, payload: dict[str, Any]) -> int:
        self.messages.append((message_type, payload))
        return 1


class RecordingBus(EventBus):
    """Event bus remembering every published notification."""

    def __init__(self):
        super().__init__()
        self.published: list[DomainNotification] = []

    async def publish(self, notification: DomainNotification) -> int:
        self.published.append(notification)
        return await super().publish(notification)

    def names(self) -> list[str]:
        return [notification.name for notification in self.published]


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing at a fresh SQLite file for this test."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'lifebank_test.db'}",
        environment="test",
        debug=False,
    )


@pytest.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Async engine with all tables created."""
    engine = create_engine(test_settings)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session for a single test, closed afterwards."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def event_bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def order_service(
    session: AsyncSession,
    event_bus: RecordingBus,
    broadcaster: RecordingBroadcaster,
) -> OrderService:
    return OrderService(session, event_bus=event_bus, broadcaster=broadcaster)


@pytest.fixture
def provision(session_factory: async_sessionmaker[AsyncSession]):
    """
    Commit a stock row in its own session.

    Example:
        await provision("BB-001", BloodType.O_POSITIVE, 5)
    """

    async def _provision(blood_bank_id: str, blood_type: BloodType, units: int):
        async with session_factory() as provisioning_session:
            stock = await InventoryLedger(provisioning_session).provision_stock(
                blood_bank_id, blood_type, units
            )
            await provisioning_session.commit()
            return stock

    return _provision


@pytest.fixture
def read_units(session_factory: async_sessionmaker[AsyncSession]):
    """Read the committed available units of a stock row."""

    async def _read(blood_bank_id: str, blood_type: BloodType) -> int:
        async with session_factory() as reading_session:
            stock = await InventoryLedger(reading_session).get_stock(
                blood_bank_id, blood_type
            )
            return stock.available_units

    return _read
