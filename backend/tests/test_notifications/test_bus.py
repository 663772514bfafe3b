"""
Test suite for the in-process EventBus and notification values.
"""

from datetime import datetime, timezone

import pytest

from lifebank.services.notifications.bus import EventBus, EventBusError
from lifebank.services.notifications.events import (
    OrderCancelledEvent,
    OrderDeliveredEvent,
    OrderRiderAssignedEvent,
    OrderStatusUpdatedEvent,
)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


def status_updated() -> OrderStatusUpdatedEvent:
    return OrderStatusUpdatedEvent(
        order_id="order-1",
        previous_status="pending",
        new_status="confirmed",
        actor_id="clerk",
        timestamp=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    )


class TestSubscriptions:
    """Registering and removing handlers."""

    def test_subscribe_and_list(self, bus: EventBus) -> None:
        """Test handlers are kept per notification name in order."""
        first, second = (lambda n: None), (lambda n: None)
        bus.subscribe("order.confirmed", first)
        bus.subscribe("order.confirmed", second)

        assert bus.subscribers("order.confirmed") == [first, second]
        assert bus.subscribers("order.delivered") == []

    def test_duplicate_subscription_rejected(self, bus: EventBus) -> None:
        """Test the same handler cannot subscribe twice to one name."""
        handler = lambda n: None  # noqa: E731
        bus.subscribe("order.confirmed", handler)

        with pytest.raises(EventBusError) as exc_info:
            bus.subscribe("order.confirmed", handler)

        assert exc_info.value.code == "DUPLICATE_SUBSCRIBER"

    def test_non_callable_rejected(self, bus: EventBus) -> None:
        """Test a non-callable handler is refused."""
        with pytest.raises(EventBusError):
            bus.subscribe("order.confirmed", "not a handler")

    def test_unsubscribe(self, bus: EventBus) -> None:
        """Test an unsubscribed handler no longer receives notifications."""
        handler = lambda n: None  # noqa: E731
        bus.subscribe("order.confirmed", handler)

        assert bus.unsubscribe("order.confirmed", handler) is True
        assert bus.unsubscribe("order.confirmed", handler) is False
        assert bus.subscribers("order.confirmed") == []


class TestPublish:
    """Delivering notifications."""

    async def test_publish_reaches_sync_and_async_handlers(self, bus: EventBus) -> None:
        """Test both plain and coroutine handlers are invoked."""
        received = []

        async def async_handler(notification):
            received.append(("async", notification.name))

        bus.subscribe("order.status.updated", lambda n: received.append(("sync", n.name)))
        bus.subscribe("order.status.updated", async_handler)

        delivered = await bus.publish(status_updated())

        assert delivered == 2
        assert received == [
            ("sync", "order.status.updated"),
            ("async", "order.status.updated"),
        ]

    async def test_publish_only_matching_name(self, bus: EventBus) -> None:
        """Test handlers for other names are not called."""
        received = []
        bus.subscribe("order.delivered", received.append)

        assert await bus.publish(status_updated()) == 0
        assert received == []

    async def test_failing_handler_isolated(self, bus: EventBus) -> None:
        """Test one raising handler does not stop the next one."""
        received = []

        async def broken(notification):
            raise ConnectionError("sms gateway down")

        bus.subscribe("order.delivered", broken)
        bus.subscribe("order.delivered", received.append)

        delivered = await bus.publish(OrderDeliveredEvent("order-1"))

        assert delivered == 1
        assert len(received) == 1


class TestNotificationValues:
    """Notification names and serialization."""

    def test_status_updated_to_dict(self) -> None:
        """Test timestamps serialize to ISO strings."""
        assert status_updated().to_dict() == {
            "order_id": "order-1",
            "previous_status": "pending",
            "new_status": "confirmed",
            "actor_id": "clerk",
            "timestamp": "2026-01-02T03:04:05+00:00",
        }

    def test_names(self) -> None:
        """Test notification names subscribers register against."""
        assert OrderStatusUpdatedEvent.name == "order.status.updated"
        assert OrderCancelledEvent.name == "order.cancelled"
        assert OrderRiderAssignedEvent.name == "order.rider.assigned"

    def test_cancelled_default_reason(self) -> None:
        """Test the cancelled notification defaults its reason."""
        event = OrderCancelledEvent("order-1", "HOSP-001")
        assert event.reason == "Status transition"

    def test_notifications_are_immutable(self) -> None:
        """Test notifications cannot be modified after creation."""
        event = OrderDeliveredEvent("order-1")
        with pytest.raises(AttributeError):
            event.order_id = "order-2"
