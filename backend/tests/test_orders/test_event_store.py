"""
Test suite for OrderEventStore.

Tests run against a SQLite database and cover appending, history ordering,
replay and immutability of stored events.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from lifebank.database.models import OrderEvent
from lifebank.services.orders.enums import OrderEventType, OrderStatus
from lifebank.services.orders.event_store import (
    NoEventsError,
    OrderEventStore,
    UnmappableEventError,
)


@pytest.fixture
def event_store(session: AsyncSession) -> OrderEventStore:
    return OrderEventStore(session)


class TestPersist:
    """Appending events."""

    async def test_persist_stores_event(
        self, event_store: OrderEventStore, session: AsyncSession
    ) -> None:
        """Test persisted event carries its data and a server timestamp."""
        order_id = uuid4()

        stored = await event_store.persist(
            order_id,
            OrderEventType.CREATED,
            {"quantity": 2},
            actor_id="hospital-admin",
        )
        await session.commit()

        assert stored.id is not None
        assert stored.order_id == order_id
        assert stored.event_type == "CREATED"
        assert stored.payload == {"quantity": 2}
        assert stored.actor_id == "hospital-admin"
        assert stored.sequence == 1
        assert stored.timestamp is not None

    async def test_persist_numbers_events_per_order(
        self, event_store: OrderEventStore
    ) -> None:
        """Test sequence numbers count up per order independently."""
        first_order, second_order = uuid4(), uuid4()

        a1 = await event_store.persist(first_order, OrderEventType.CREATED, {})
        b1 = await event_store.persist(second_order, OrderEventType.CREATED, {})
        a2 = await event_store.persist(first_order, OrderEventType.CONFIRMED, {})

        assert (a1.sequence, a2.sequence, b1.sequence) == (1, 2, 1)

    async def test_persist_without_actor_or_payload(
        self, event_store: OrderEventStore
    ) -> None:
        """Test actor and payload are optional."""
        stored = await event_store.persist(uuid4(), OrderEventType.CREATED)

        assert stored.actor_id is None
        assert stored.payload == {}


class TestHistory:
    """Reading the event log."""

    async def test_history_is_in_insertion_order(
        self, event_store: OrderEventStore, session: AsyncSession
    ) -> None:
        """Test history returns events oldest first even within one second."""
        order_id = uuid4()
        for event_type in (
            OrderEventType.CREATED,
            OrderEventType.CONFIRMED,
            OrderEventType.DISPATCHED,
        ):
            await event_store.persist(order_id, event_type, {})
        await session.commit()

        history = await event_store.get_history(order_id)

        assert [event.event_type for event in history] == [
            "CREATED",
            "CONFIRMED",
            "DISPATCHED",
        ]

    async def test_history_follows_sequence_not_timestamp(
        self, event_store: OrderEventStore, session: AsyncSession
    ) -> None:
        """Test a later event stamped with an earlier transaction time stays last."""
        order_id = uuid4()
        opened = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
        session.add_all(
            [
                OrderEvent(
                    order_id=order_id,
                    event_type="CREATED",
                    payload={},
                    sequence=1,
                    timestamp=opened,
                ),
                OrderEvent(
                    order_id=order_id,
                    event_type="CONFIRMED",
                    payload={},
                    sequence=2,
                    timestamp=opened + timedelta(minutes=5),
                ),
                OrderEvent(
                    order_id=order_id,
                    event_type="DISPATCHED",
                    payload={},
                    sequence=3,
                    timestamp=opened + timedelta(minutes=2),
                ),
            ]
        )
        await session.commit()

        history = await event_store.get_history(order_id)

        assert [event.event_type for event in history] == [
            "CREATED",
            "CONFIRMED",
            "DISPATCHED",
        ]
        assert await event_store.replay_status(order_id) is OrderStatus.DISPATCHED

    async def test_history_only_contains_the_order(
        self, event_store: OrderEventStore
    ) -> None:
        """Test events from other orders are not returned."""
        order_id = uuid4()
        await event_store.persist(order_id, OrderEventType.CREATED, {})
        await event_store.persist(uuid4(), OrderEventType.CREATED, {})

        history = await event_store.get_history(order_id)

        assert len(history) == 1
        assert history[0].order_id == order_id

    async def test_history_of_unknown_order_is_empty(
        self, event_store: OrderEventStore
    ) -> None:
        """Test history is empty, not an error, for an unknown order."""
        assert list(await event_store.get_history(uuid4())) == []


class TestReplayStatus:
    """Deriving status from the log."""

    async def test_replay_maps_last_event(self, event_store: OrderEventStore) -> None:
        """Test replay returns the status of the most recent event."""
        order_id = uuid4()
        await event_store.persist(order_id, OrderEventType.CREATED, {})
        assert await event_store.replay_status(order_id) is OrderStatus.PENDING

        await event_store.persist(order_id, OrderEventType.CONFIRMED, {})
        await event_store.persist(order_id, OrderEventType.CANCELLED, {})
        assert await event_store.replay_status(order_id) is OrderStatus.CANCELLED

    async def test_replay_without_events_fails(
        self, event_store: OrderEventStore
    ) -> None:
        """Test replay of an order with zero events raises NoEventsError."""
        with pytest.raises(NoEventsError) as exc_info:
            await event_store.replay_status(uuid4())

        assert exc_info.value.code == "NO_EVENTS"

    async def test_replay_with_unknown_event_type_fails(
        self, event_store: OrderEventStore
    ) -> None:
        """Test an unmappable last event raises UnmappableEventError."""
        order_id = uuid4()
        await event_store.persist(order_id, OrderEventType.CREATED, {})
        await event_store.persist(order_id, "REFUNDED", {})

        with pytest.raises(UnmappableEventError) as exc_info:
            await event_store.replay_status(order_id)

        assert exc_info.value.context["event_type"] == "REFUNDED"


class TestImmutability:
    """Stored events cannot be changed or removed through the ORM."""

    async def test_update_is_rejected(
        self, event_store: OrderEventStore, session: AsyncSession
    ) -> None:
        """Test flushing a modified event raises."""
        stored = await event_store.persist(uuid4(), OrderEventType.CREATED, {})
        await session.commit()

        stored.event_type = "CANCELLED"
        with pytest.raises(PermissionError):
            await session.flush()
        await session.rollback()

    async def test_delete_is_rejected(
        self, event_store: OrderEventStore, session: AsyncSession
    ) -> None:
        """Test flushing a deleted event raises."""
        stored = await event_store.persist(uuid4(), OrderEventType.CREATED, {})
        await session.commit()

        await session.delete(stored)
        with pytest.raises(PermissionError):
            await session.flush()
        await session.rollback()
