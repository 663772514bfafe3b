"""
Order data access repository.

This module implements the OrderRepository class providing async methods for
inserting orders, loading them by id, listing them with filters, and saving
changes under the order's optimistic version check. The repository flushes
but never commits; the order service owns the transaction.
"""

import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from lifebank.core.logging import get_logger
from lifebank.database.models.inventory import BloodType
from lifebank.database.models.order import Order
from lifebank.services.orders.enums import OrderStatus

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, code: str = "ORDER_REPOSITORY_ERROR", **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class OrderNotFoundError(OrderRepositoryError):
    """Raised when order is not found."""

    def __init__(self, order_id: uuid.UUID):
        super().__init__(
            f"Order '{order_id}' not found",
            code="ORDER_NOT_FOUND",
            order_id=str(order_id),
        )


class OrderCreationError(OrderRepositoryError):
    """Raised when order creation fails."""

    pass


class OrderUpdateError(OrderRepositoryError):
    """Raised when order update fails."""

    pass


class OrderVersionConflictError(OrderUpdateError):
    """Raised when the order was changed by another request since it was read."""

    def __init__(self, order_id: uuid.UUID, **context: Any):
        super().__init__(
            "Order was updated by another request; retry",
            code="ORDER_CONFLICT",
            order_id=str(order_id),
            **context,
        )


class OrderRepository:
    """
    Repository for order data access operations.

    Every UPDATE issued through ``save`` is conditional on the order's version
    column, so a writer holding a stale copy fails instead of overwriting.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    async def create_order(
        self,
        hospital_id: str,
        blood_bank_id: str,
        blood_type: BloodType,
        quantity: int,
        delivery_address: str,
    ) -> Order:
        """
        Insert a new PENDING order with no rider.

        Args:
            hospital_id: Requesting hospital
            blood_bank_id: Blood bank the units were reserved from
            blood_type: Requested blood type
            quantity: Requested units
            delivery_address: Delivery address

        Returns:
            Flushed order with its generated id

        Raises:
            OrderCreationError: If the insert fails
        """
        try:
            logger.info(
                "Creating order",
                hospital_id=hospital_id,
                blood_bank_id=blood_bank_id,
                blood_type=blood_type.value,
                quantity=quantity,
            )

            order = Order(
                hospital_id=hospital_id,
                blood_bank_id=blood_bank_id,
                blood_type=blood_type,
                quantity=quantity,
                delivery_address=delivery_address,
                status=OrderStatus.PENDING,
                rider_id=None,
            )

            self.session.add(order)
            await self.session.flush()

            logger.info(
                "Order created successfully",
                order_id=str(order.id),
                hospital_id=hospital_id,
            )

            return order

        except IntegrityError as e:
            logger.error(
                "Order creation failed - integrity error",
                error=str(e),
                hospital_id=hospital_id,
            )
            raise OrderCreationError(
                "Order creation failed due to data integrity violation",
                code="ORDER_CREATION_FAILED",
                hospital_id=hospital_id,
                error=str(e),
            ) from e
        except SQLAlchemyError as e:
            logger.error(
                "Order creation failed - database error",
                error=str(e),
                hospital_id=hospital_id,
            )
            raise OrderCreationError(
                "Order creation failed due to database error",
                code="ORDER_CREATION_FAILED",
                hospital_id=hospital_id,
                error=str(e),
            ) from e

    async def get_order_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        """
        Get order by ID.

        The row is always re-read from the database so the caller sees the
        latest committed status and version.

        Returns:
            Order if found, None otherwise

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            logger.debug("Fetching order by ID", order_id=str(order_id))

            stmt = (
                select(Order)
                .where(Order.id == order_id)
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(stmt)
            order = result.scalar_one_or_none()

            if order:
                logger.debug("Order found", order_id=str(order_id))
            else:
                logger.debug("Order not found", order_id=str(order_id))

            return order

        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch order",
                order_id=str(order_id),
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to fetch order",
                order_id=str(order_id),
                error=str(e),
            ) from e

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        hospital_id: Optional[str] = None,
        blood_bank_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[Order], int]:
        """
        List orders with optional filters and pagination, newest first.

        Returns:
            Tuple of (orders, total_count)

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            logger.debug(
                "Listing orders",
                status=status.value if status else None,
                hospital_id=hospital_id,
                blood_bank_id=blood_bank_id,
                skip=skip,
                limit=limit,
            )

            conditions = []
            if status:
                conditions.append(Order.status == status)
            if hospital_id:
                conditions.append(Order.hospital_id == hospital_id)
            if blood_bank_id:
                conditions.append(Order.blood_bank_id == blood_bank_id)

            stmt = select(Order)
            count_stmt = select(func.count()).select_from(Order)
            if conditions:
                stmt = stmt.where(and_(*conditions))
                count_stmt = count_stmt.where(and_(*conditions))

            stmt = (
                stmt.order_by(Order.created_at.desc(), Order.id)
                .offset(skip)
                .limit(limit)
            )

            result = await self.session.execute(stmt)
            count_result = await self.session.execute(count_stmt)

            orders = result.scalars().all()
            total_count = count_result.scalar_one()

            logger.debug("Orders listed", count=len(orders), total=total_count)

            return orders, total_count

        except SQLAlchemyError as e:
            logger.error("Failed to list orders", error=str(e))
            raise OrderRepositoryError(
                "Failed to list orders",
                error=str(e),
            ) from e

    async def save(self, order: Order) -> Order:
        """
        Flush pending changes to an order.

        Raises:
            OrderVersionConflictError: If another request updated the order first
            OrderUpdateError: If the update fails
        """
        # A failed flush expires the instance, so its id must be read first.
        order_id = order.id
        try:
            await self.session.flush()
            return order

        except StaleDataError as e:
            logger.warning(
                "Order version conflict",
                order_id=str(order_id),
                error=str(e),
            )
            raise OrderVersionConflictError(order_id) from e
        except SQLAlchemyError as e:
            logger.error(
                "Failed to update order",
                order_id=str(order_id),
                error=str(e),
            )
            raise OrderUpdateError(
                "Failed to update order",
                code="ORDER_UPDATE_FAILED",
                order_id=str(order_id),
                error=str(e),
            ) from e
