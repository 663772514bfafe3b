"""
Append-only order event store.

Every lifecycle transition of an order is recorded as one immutable row in
``order_events``. The store can recompute an order's status from that log
alone, independent of the cached status column on ``orders``.
"""

import uuid
from typing import Any, Optional, Sequence, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lifebank.core.logging import get_logger
from lifebank.database.models.order import OrderEvent
from lifebank.services.orders.enums import (
    EVENT_TYPE_TO_STATUS,
    OrderEventType,
    OrderStatus,
)

logger = get_logger(__name__)


class EventStoreError(Exception):
    """Base exception for event store operations."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class NoEventsError(EventStoreError):
    """Raised when replay finds no events for an order."""

    def __init__(self, order_id: uuid.UUID):
        super().__init__(
            f"No events found for order '{order_id}'. Cannot replay state.",
            code="NO_EVENTS",
            order_id=str(order_id),
        )


class UnmappableEventError(EventStoreError):
    """Raised when a stored event type has no status mapping."""

    def __init__(self, order_id: uuid.UUID, event_type: str):
        super().__init__(
            f"Cannot map event type '{event_type}' to an order status.",
            code="UNMAPPABLE_EVENT",
            order_id=str(order_id),
            event_type=event_type,
        )


class EventAppendError(EventStoreError):
    """Raised when an event row cannot be written."""

    pass


class EventSequenceConflictError(EventAppendError):
    """Raised when another writer appended the same sequence number first."""

    pass


class OrderEventStore:
    """
    Durable, append-only record of what happened to each order.

    The store never validates transition legality; callers do that before
    appending. It never updates or deletes rows.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize event store.

        Args:
            session: Async database session owning the current transaction
        """
        self.session = session

    async def persist(
        self,
        order_id: uuid.UUID,
        event_type: Union[OrderEventType, str],
        payload: Optional[dict[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> OrderEvent:
        """
        Append one event row for an order.

        The row is flushed inside the caller's transaction; committing is the
        caller's decision.

        Args:
            order_id: Order the event belongs to
            event_type: Lifecycle event type
            payload: Snapshot of the data relevant to this event
            actor_id: Who or what triggered the event

        Returns:
            Stored event with its server-assigned timestamp

        Raises:
            EventSequenceConflictError: If a concurrent append took the slot
            EventAppendError: If the row cannot be written
        """
        type_value = (
            event_type.value if isinstance(event_type, OrderEventType) else str(event_type)
        )

        try:
            next_sequence = await self._next_sequence(order_id)

            stored = OrderEvent(
                order_id=order_id,
                event_type=type_value,
                payload=dict(payload or {}),
                actor_id=actor_id,
                sequence=next_sequence,
            )
            self.session.add(stored)
            await self.session.flush()

        except IntegrityError as e:
            logger.warning(
                "Event append lost a sequence race",
                order_id=str(order_id),
                event_type=type_value,
                error=str(e),
            )
            raise EventSequenceConflictError(
                "Another event was appended for this order concurrently",
                code="EVENT_SEQUENCE_CONFLICT",
                order_id=str(order_id),
                event_type=type_value,
            ) from e
        except SQLAlchemyError as e:
            logger.error(
                "Failed to append order event",
                order_id=str(order_id),
                event_type=type_value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise EventAppendError(
                "Failed to append order event",
                code="EVENT_APPEND_FAILED",
                order_id=str(order_id),
                event_type=type_value,
            ) from e

        logger.info(
            "Order event appended",
            order_id=str(order_id),
            event_type=type_value,
            sequence=stored.sequence,
            actor_id=actor_id,
        )
        return stored

    async def get_history(self, order_id: uuid.UUID) -> Sequence[OrderEvent]:
        """
        Return the full event log of an order, oldest first.

        Args:
            order_id: Order identifier

        Returns:
            Events in the order they were appended
        """
        stmt = (
            select(OrderEvent)
            .where(OrderEvent.order_id == order_id)
            .order_by(OrderEvent.sequence.asc())
        )
        result = await self.session.execute(stmt)
        events = result.scalars().all()

        logger.debug(
            "Order history loaded",
            order_id=str(order_id),
            event_count=len(events),
        )
        return events

    async def replay_status(self, order_id: uuid.UUID) -> OrderStatus:
        """
        Derive an order's status from its event log alone.

        The status is the one carried by the most recent event.

        Raises:
            NoEventsError: If the order has no events
            UnmappableEventError: If the last event type has no status mapping
        """
        events = await self.get_history(order_id)
        if not events:
            raise NoEventsError(order_id)

        last_type = events[-1].event_type
        event_type = OrderEventType.from_string(last_type)
        if event_type is None or event_type not in EVENT_TYPE_TO_STATUS:
            logger.error(
                "Unmappable event type in order log",
                order_id=str(order_id),
                event_type=last_type,
            )
            raise UnmappableEventError(order_id, last_type)

        return EVENT_TYPE_TO_STATUS[event_type]

    async def _next_sequence(self, order_id: uuid.UUID) -> int:
        stmt = select(func.coalesce(func.max(OrderEvent.sequence), 0)).where(
            OrderEvent.order_id == order_id
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one()) + 1
