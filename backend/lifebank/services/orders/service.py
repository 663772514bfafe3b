"""
Order service orchestrating the blood-unit order lifecycle.

This module implements the OrderService class, the only entry point allowed to
create orders or change their status. It composes the inventory ledger, the
state machine, the event store and the order repository into single
transactions, then publishes domain notifications and broadcasts status
updates on the real-time orders channel once the change is committed.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lifebank.core.logging import get_logger, log_performance
from lifebank.database.models.inventory import BloodType
from lifebank.database.models.order import Order, OrderEvent
from lifebank.services.inventory.ledger import (
    InsufficientStockError,
    InvalidQuantityError,
    InventoryLedger,
    StockConflictError,
    StockNotFoundError,
)
from lifebank.services.notifications.broadcaster import OrdersBroadcaster
from lifebank.services.notifications.bus import EventBus
from lifebank.services.notifications.events import (
    DomainNotification,
    OrderCancelledEvent,
    OrderConfirmedEvent,
    OrderDeliveredEvent,
    OrderDispatchedEvent,
    OrderInTransitEvent,
    OrderRiderAssignedEvent,
    OrderStatusUpdatedEvent,
)
from lifebank.services.orders.enums import (
    OrderEventType,
    OrderStatus,
    event_type_for_status,
)
from lifebank.services.orders.event_store import (
    EventSequenceConflictError,
    EventStoreError,
    OrderEventStore,
)
from lifebank.services.orders.repository import (
    OrderCreationError,
    OrderNotFoundError,
    OrderRepository,
    OrderRepositoryError,
    OrderUpdateError,
    OrderVersionConflictError,
)
from lifebank.services.orders.state_machine import OrderStateMachine

logger = get_logger(__name__)

DEFAULT_CANCEL_REASON = "Status transition"

LEDGER_REJECTIONS = (
    InvalidQuantityError,
    StockNotFoundError,
    InsufficientStockError,
    StockConflictError,
)


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class MissingBloodBankError(OrderServiceError):
    """Raised when an order is placed without a blood bank."""

    def __init__(self):
        super().__init__(
            "blood_bank_id is required to place an order",
            code="MISSING_BLOOD_BANK",
        )


class ReservationUnavailableError(OrderServiceError):
    """Raised when the ledger fails for a reason other than a stock rejection."""

    def __init__(self, blood_bank_id: str, blood_type: str):
        super().__init__(
            "Unable to reserve inventory at the moment. Please retry your request.",
            code="RESERVATION_UNAVAILABLE",
            blood_bank_id=blood_bank_id,
            blood_type=blood_type,
        )


class InvalidOrderError(OrderServiceError):
    """Raised when order input cannot be interpreted."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message, code="INVALID_ORDER", **context)


class OrderService:
    """
    Order lifecycle orchestrator.

    Every status change goes through ``transition_status``: validate against
    the state machine, append the event, update the cached status, commit,
    then notify. The event and the cached status are committed together.

    Attributes:
        session: Async session whose transaction each command commits
        repository: Order repository for data access
        event_store: Append-only order event log
        ledger: Inventory ledger reserving units at creation
        state_machine: Transition validator
        event_bus: Optional bus receiving domain notifications
        broadcaster: Optional real-time orders channel
    """

    def __init__(
        self,
        session: AsyncSession,
        event_bus: Optional[EventBus] = None,
        broadcaster: Optional[OrdersBroadcaster] = None,
        state_machine: Optional[OrderStateMachine] = None,
        ledger: Optional[InventoryLedger] = None,
    ):
        """
        Initialize order service.

        Args:
            session: Async database session
            event_bus: Optional notification bus
            broadcaster: Optional WebSocket broadcaster
            state_machine: Optional state machine instance
            ledger: Optional inventory ledger instance
        """
        self.session = session
        self.repository = OrderRepository(session)
        self.event_store = OrderEventStore(session)
        self.ledger = ledger or InventoryLedger(session)
        self.state_machine = state_machine or OrderStateMachine()
        self.event_bus = event_bus
        self.broadcaster = broadcaster

        logger.debug(
            "OrderService initialized",
            has_event_bus=event_bus is not None,
            has_broadcaster=broadcaster is not None,
        )

    async def create_order(
        self,
        hospital_id: str,
        blood_bank_id: Optional[str],
        blood_type: Union[BloodType, str],
        quantity: int,
        delivery_address: str,
        actor_id: Optional[str] = None,
    ) -> Order:
        """
        Reserve stock and place a new PENDING order.

        The reservation, the order row and its CREATED event are committed in
        one transaction. No notification is published for creation.

        Args:
            hospital_id: Requesting hospital
            blood_bank_id: Blood bank to reserve from
            blood_type: Requested blood type
            quantity: Requested units
            delivery_address: Delivery address
            actor_id: Who placed the order

        Returns:
            Created order

        Raises:
            MissingBloodBankError: If blood_bank_id is absent
            InvalidOrderError: If blood type, hospital or address is invalid
            InvalidQuantityError: If quantity is not positive
            StockNotFoundError: If the bank holds no stock of that type
            InsufficientStockError: If not enough units are available
            StockConflictError: If the reservation lost the race twice
            ReservationUnavailableError: If the ledger failed unexpectedly
            OrderCreationError: If the order could not be stored
        """
        if not blood_bank_id:
            raise MissingBloodBankError()

        blood_type = self._parse_blood_type(blood_type)
        if not hospital_id:
            raise InvalidOrderError("hospital_id is required to place an order")
        if not delivery_address or not delivery_address.strip():
            raise InvalidOrderError(
                "delivery_address is required to place an order",
                hospital_id=hospital_id,
            )

        with log_performance(
            logger,
            "order_create",
            hospital_id=hospital_id,
            blood_bank_id=blood_bank_id,
            blood_type=blood_type.value,
            quantity=quantity,
        ):
            try:
                await self.ledger.reserve(blood_bank_id, blood_type, quantity)
            except LEDGER_REJECTIONS:
                await self.session.rollback()
                raise
            except Exception as e:
                await self.session.rollback()
                logger.error(
                    "Inventory reservation failed unexpectedly",
                    blood_bank_id=blood_bank_id,
                    blood_type=blood_type.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise ReservationUnavailableError(
                    blood_bank_id, blood_type.value
                ) from e

            try:
                order = await self.repository.create_order(
                    hospital_id=hospital_id,
                    blood_bank_id=blood_bank_id,
                    blood_type=blood_type,
                    quantity=quantity,
                    delivery_address=delivery_address,
                )

                await self.event_store.persist(
                    order.id,
                    OrderEventType.CREATED,
                    {
                        "hospital_id": hospital_id,
                        "blood_bank_id": blood_bank_id,
                        "blood_type": blood_type.value,
                        "quantity": quantity,
                        "delivery_address": delivery_address,
                    },
                    actor_id=actor_id,
                )

                await self.session.commit()

            except (OrderRepositoryError, EventStoreError):
                await self.session.rollback()
                raise
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.error(
                    "Order creation commit failed",
                    hospital_id=hospital_id,
                    error=str(e),
                )
                raise OrderCreationError(
                    "Order creation failed due to database error",
                    code="ORDER_CREATION_FAILED",
                    hospital_id=hospital_id,
                    error=str(e),
                ) from e

        logger.info(
            "Order created",
            order_id=str(order.id),
            hospital_id=hospital_id,
            blood_bank_id=blood_bank_id,
            actor_id=actor_id,
        )
        return order

    async def transition_status(
        self,
        order_id: uuid.UUID,
        next_status: Union[OrderStatus, str],
        actor_id: Optional[str] = None,
    ) -> Order:
        """
        Move an order to its next lifecycle status.

        Args:
            order_id: Order identifier
            next_status: Desired status
            actor_id: Who triggered the change

        Returns:
            Updated order

        Raises:
            InvalidOrderError: If next_status is not a known status
            OrderNotFoundError: If the order does not exist
            TransitionRejectedError: If the edge is illegal
            OrderVersionConflictError: If a concurrent change won the race
            EventAppendError: If the event could not be written
            OrderUpdateError: If the status could not be saved
        """
        return await self._transition(order_id, next_status, actor_id)

    async def cancel(
        self,
        order_id: uuid.UUID,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Order:
        """Cancel an order. Orders already delivered or cancelled cannot be."""
        return await self._transition(
            order_id, OrderStatus.CANCELLED, actor_id, reason=reason
        )

    async def assign_rider(
        self,
        order_id: uuid.UUID,
        rider_id: str,
        actor_id: Optional[str] = None,
    ) -> Order:
        """
        Assign a rider to an order.

        This is not a status transition and writes no lifecycle event.

        Raises:
            InvalidOrderError: If rider_id is empty
            OrderNotFoundError: If the order does not exist
            OrderVersionConflictError: If a concurrent change won the race
        """
        if not rider_id:
            raise InvalidOrderError("rider_id is required", order_id=str(order_id))

        order = await self._get_order_or_fail(order_id)

        try:
            order.rider_id = rider_id
            await self.repository.save(order)
            await self.session.commit()
        except OrderRepositoryError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise OrderUpdateError(
                "Failed to assign rider",
                code="ORDER_UPDATE_FAILED",
                order_id=str(order_id),
                error=str(e),
            ) from e

        logger.info(
            "Rider assigned",
            order_id=str(order_id),
            rider_id=rider_id,
            actor_id=actor_id,
        )

        await self._publish(OrderRiderAssignedEvent(str(order.id), rider_id))
        return order

    async def get_order(self, order_id: uuid.UUID) -> Order:
        """
        Get order by id.

        Raises:
            OrderNotFoundError: If order not found
        """
        return await self._get_order_or_fail(order_id)

    async def get_order_history(self, order_id: uuid.UUID) -> Sequence[OrderEvent]:
        """
        Get the chronological event log of an order.

        Raises:
            OrderNotFoundError: If order not found
        """
        await self._get_order_or_fail(order_id)
        return await self.event_store.get_history(order_id)

    async def track_order(self, order_id: uuid.UUID) -> dict[str, Any]:
        """
        Report the cached status next to the status replayed from the log.

        Raises:
            OrderNotFoundError: If order not found
            NoEventsError: If the order has no events
            UnmappableEventError: If the log ends with an unknown event type
        """
        order = await self._get_order_or_fail(order_id)
        replayed_status = await self.event_store.replay_status(order_id)

        if replayed_status != order.status:
            logger.error(
                "Order status cache diverged from event log",
                order_id=str(order_id),
                status=order.status.value,
                replayed_status=replayed_status.value,
            )

        return {
            "id": str(order.id),
            "status": order.status.value,
            "replayed_status": replayed_status.value,
        }

    async def list_orders(
        self,
        status: Optional[Union[OrderStatus, str]] = None,
        hospital_id: Optional[str] = None,
        blood_bank_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> dict[str, Any]:
        """
        List orders with optional filters and pagination.

        Returns:
            Dictionary containing orders and pagination info
        """
        if status is not None:
            status = self._parse_status(status)

        orders, total_count = await self.repository.list_orders(
            status=status,
            hospital_id=hospital_id,
            blood_bank_id=blood_bank_id,
            skip=skip,
            limit=limit,
        )

        return {
            "orders": [order.to_dict() for order in orders],
            "total_count": total_count,
            "skip": skip,
            "limit": limit,
        }

    async def _transition(
        self,
        order_id: uuid.UUID,
        next_status: Union[OrderStatus, str],
        actor_id: Optional[str],
        reason: Optional[str] = None,
    ) -> Order:
        next_status = self._parse_status(next_status)

        order = await self._get_order_or_fail(order_id)
        previous_status = order.status

        self.state_machine.transition(previous_status, next_status)

        event_type = event_type_for_status(next_status)
        payload: dict[str, Any] = {
            "previous_status": previous_status.value,
            "new_status": next_status.value,
        }
        if reason:
            payload["reason"] = reason

        try:
            await self.event_store.persist(
                order.id, event_type, payload, actor_id=actor_id
            )
            order.status = next_status
            await self.repository.save(order)
            await self.session.commit()

        except EventSequenceConflictError as e:
            await self.session.rollback()
            raise OrderVersionConflictError(
                order_id, attempted_to=next_status.value
            ) from e
        except (OrderRepositoryError, EventStoreError):
            await self.session.rollback()
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Order transition commit failed",
                order_id=str(order_id),
                error=str(e),
            )
            raise OrderUpdateError(
                "Failed to update order status",
                code="ORDER_UPDATE_FAILED",
                order_id=str(order_id),
                error=str(e),
            ) from e

        timestamp = datetime.now(timezone.utc)

        logger.info(
            "Order transitioned",
            order_id=str(order_id),
            previous_status=previous_status.value,
            new_status=next_status.value,
            actor_id=actor_id,
        )

        status_updated = OrderStatusUpdatedEvent(
            order_id=str(order_id),
            previous_status=previous_status.value,
            new_status=next_status.value,
            actor_id=actor_id,
            timestamp=timestamp,
        )
        await self._publish(status_updated)
        await self._publish(self._stage_notification(order, reason))

        if self.broadcaster is not None:
            await self.broadcaster.broadcast(
                status_updated.name, status_updated.to_dict()
            )

        return order

    def _stage_notification(
        self,
        order: Order,
        reason: Optional[str],
    ) -> Optional[DomainNotification]:
        order_id = str(order.id)

        if order.status == OrderStatus.CONFIRMED:
            return OrderConfirmedEvent(
                order_id=order_id,
                hospital_id=order.hospital_id,
                blood_type=order.blood_type.value,
                quantity=order.quantity,
                delivery_address=order.delivery_address,
            )
        if order.status == OrderStatus.DISPATCHED:
            return OrderDispatchedEvent(order_id, order.rider_id or "")
        if order.status == OrderStatus.IN_TRANSIT:
            return OrderInTransitEvent(order_id)
        if order.status == OrderStatus.DELIVERED:
            return OrderDeliveredEvent(order_id)
        if order.status == OrderStatus.CANCELLED:
            return OrderCancelledEvent(
                order_id, order.hospital_id, reason or DEFAULT_CANCEL_REASON
            )
        return None

    async def _publish(self, notification: Optional[DomainNotification]) -> None:
        if notification is None or self.event_bus is None:
            return
        await self.event_bus.publish(notification)

    async def _get_order_or_fail(self, order_id: uuid.UUID) -> Order:
        order = await self.repository.get_order_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    @staticmethod
    def _parse_blood_type(value: Union[BloodType, str]) -> BloodType:
        if isinstance(value, BloodType):
            return value
        try:
            return BloodType.from_string(value)
        except ValueError as e:
            raise InvalidOrderError(str(e), blood_type=value) from e

    @staticmethod
    def _parse_status(value: Union[OrderStatus, str]) -> OrderStatus:
        if isinstance(value, OrderStatus):
            return value
        try:
            return OrderStatus.from_string(value)
        except (ValueError, AttributeError) as e:
            raise InvalidOrderError(
                f"Invalid order status: {value}", status=value
            ) from e
