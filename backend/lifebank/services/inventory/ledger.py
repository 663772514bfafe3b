"""
Inventory ledger for blood-unit stock.

This module implements the InventoryLedger used to reserve units of a blood
type at a blood bank. Reservations never lock the stock row: each one reads
the row, then issues a single conditional UPDATE that only applies if both the
version and the live unit count still allow it. A lost race is retried once
against fresh state, then reported as a conflict.
"""

from typing import Any, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lifebank.core.config import get_settings
from lifebank.core.logging import get_logger, log_performance
from lifebank.database.models.inventory import BloodType, InventoryStock

logger = get_logger(__name__)


class InventoryError(Exception):
    """Base exception for inventory ledger operations."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class InvalidQuantityError(InventoryError):
    """Raised when a non-positive quantity is requested."""

    def __init__(self, quantity: int, message: Optional[str] = None):
        super().__init__(
            message or f"Quantity must be a positive integer, got {quantity}",
            code="INVALID_QUANTITY",
            quantity=quantity,
        )


class StockNotFoundError(InventoryError):
    """Raised when no stock row exists for a blood bank and blood type."""

    def __init__(self, blood_bank_id: str, blood_type: BloodType):
        super().__init__(
            f"No inventory found for blood type {blood_type.value} "
            f"at blood bank {blood_bank_id}",
            code="STOCK_NOT_FOUND",
            blood_bank_id=blood_bank_id,
            blood_type=blood_type.value,
        )


class InsufficientStockError(InventoryError):
    """Raised when a stock row holds fewer units than requested."""

    def __init__(
        self,
        blood_bank_id: str,
        blood_type: BloodType,
        available: int,
        requested: int,
    ):
        super().__init__(
            f"Insufficient stock for {blood_type.value} at {blood_bank_id}. "
            f"Available: {available}, Requested: {requested}",
            code="INSUFFICIENT_STOCK",
            blood_bank_id=blood_bank_id,
            blood_type=blood_type.value,
            available=available,
            requested=requested,
        )
        self.available = available
        self.requested = requested


class StockConflictError(InventoryError):
    """Raised when the conditional update lost the race on every attempt."""

    def __init__(self, blood_bank_id: str, blood_type: BloodType, attempts: int):
        super().__init__(
            "Stock was updated by another request; retry",
            code="STOCK_CONFLICT",
            blood_bank_id=blood_bank_id,
            blood_type=blood_type.value,
            attempts=attempts,
        )


class InventoryLedger:
    """
    Optimistic-concurrency stock counter per (blood bank, blood type).

    The ledger flushes inside the caller's transaction and never commits.
    """

    MAX_RESERVE_ATTEMPTS = 2

    def __init__(self, session: AsyncSession):
        """
        Initialize inventory ledger.

        Args:
            session: Async database session owning the current transaction
        """
        self.session = session

    async def reserve(
        self,
        blood_bank_id: str,
        blood_type: BloodType,
        quantity: int,
    ) -> int:
        """
        Reserve units of a blood type at a blood bank.

        Args:
            blood_bank_id: Blood bank holding the stock
            blood_type: Blood type to reserve
            quantity: Units to reserve

        Returns:
            Units left available after the reservation

        Raises:
            InvalidQuantityError: If quantity is not positive
            StockNotFoundError: If no stock row exists
            InsufficientStockError: If fewer units are available than requested
            StockConflictError: If both attempts lost the race
            InventoryError: If the storage layer fails
        """
        if quantity <= 0:
            raise InvalidQuantityError(quantity)

        with log_performance(
            logger,
            "inventory_reserve",
            blood_bank_id=blood_bank_id,
            blood_type=blood_type.value,
            quantity=quantity,
        ):
            try:
                for attempt in range(1, self.MAX_RESERVE_ATTEMPTS + 1):
                    stock = await self._read_stock(blood_bank_id, blood_type)
                    if stock is None:
                        raise StockNotFoundError(blood_bank_id, blood_type)

                    read_version = stock.version
                    available = stock.available_units

                    if available < quantity:
                        logger.warning(
                            "Insufficient stock for reservation",
                            blood_bank_id=blood_bank_id,
                            blood_type=blood_type.value,
                            available=available,
                            requested=quantity,
                        )
                        raise InsufficientStockError(
                            blood_bank_id, blood_type, available, quantity
                        )

                    if await self._compare_and_decrement(
                        stock.id, read_version, quantity
                    ):
                        logger.info(
                            "Stock reserved",
                            blood_bank_id=blood_bank_id,
                            blood_type=blood_type.value,
                            quantity=quantity,
                            remaining=available - quantity,
                            version=read_version + 1,
                            attempt=attempt,
                        )
                        return available - quantity

                    logger.info(
                        "Stock reservation lost the race",
                        blood_bank_id=blood_bank_id,
                        blood_type=blood_type.value,
                        read_version=read_version,
                        attempt=attempt,
                    )

            except SQLAlchemyError as e:
                logger.error(
                    "Stock reservation failed - database error",
                    blood_bank_id=blood_bank_id,
                    blood_type=blood_type.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise InventoryError(
                    "Failed to reserve stock",
                    code="RESERVE_FAILED",
                    blood_bank_id=blood_bank_id,
                    blood_type=blood_type.value,
                ) from e

            logger.warning(
                "Stock reservation conflict",
                blood_bank_id=blood_bank_id,
                blood_type=blood_type.value,
                attempts=self.MAX_RESERVE_ATTEMPTS,
            )
            raise StockConflictError(
                blood_bank_id, blood_type, self.MAX_RESERVE_ATTEMPTS
            )

    async def get_stock(
        self,
        blood_bank_id: str,
        blood_type: BloodType,
    ) -> Optional[InventoryStock]:
        """
        Get the stock row for a blood bank and blood type.

        Returns:
            Stock row if found, None otherwise
        """
        try:
            return await self._read_stock(blood_bank_id, blood_type)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch stock",
                blood_bank_id=blood_bank_id,
                blood_type=blood_type.value,
                error=str(e),
            )
            raise InventoryError(
                "Failed to fetch stock",
                code="STOCK_FETCH_FAILED",
                blood_bank_id=blood_bank_id,
                blood_type=blood_type.value,
            ) from e

    async def provision_stock(
        self,
        blood_bank_id: str,
        blood_type: BloodType,
        units: int,
    ) -> InventoryStock:
        """
        Set the available units for a blood bank and blood type.

        Creates the row on first use. Updating an existing row bumps its
        version so in-flight reservations re-read before writing.

        Raises:
            InvalidQuantityError: If units is negative
            InventoryError: If the write fails
        """
        if units < 0:
            raise InvalidQuantityError(
                units, message="Inventory units cannot be negative"
            )

        try:
            stock = await self._read_stock(blood_bank_id, blood_type)

            if stock is None:
                stock = InventoryStock(
                    blood_bank_id=blood_bank_id,
                    blood_type=blood_type,
                    available_units=units,
                    version=1,
                )
                self.session.add(stock)
                await self.session.flush()
            else:
                await self.session.execute(
                    update(InventoryStock)
                    .where(InventoryStock.id == stock.id)
                    .values(
                        available_units=units,
                        version=InventoryStock.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                stock = await self._read_stock(blood_bank_id, blood_type)

        except IntegrityError as e:
            logger.error(
                "Stock provisioning failed - integrity error",
                blood_bank_id=blood_bank_id,
                blood_type=blood_type.value,
                error=str(e),
            )
            raise InventoryError(
                "Stock provisioning failed due to data integrity violation",
                code="PROVISION_FAILED",
                blood_bank_id=blood_bank_id,
                blood_type=blood_type.value,
            ) from e
        except SQLAlchemyError as e:
            logger.error(
                "Stock provisioning failed - database error",
                blood_bank_id=blood_bank_id,
                blood_type=blood_type.value,
                error=str(e),
            )
            raise InventoryError(
                "Stock provisioning failed due to database error",
                code="PROVISION_FAILED",
                blood_bank_id=blood_bank_id,
                blood_type=blood_type.value,
            ) from e

        logger.info(
            "Stock provisioned",
            blood_bank_id=blood_bank_id,
            blood_type=blood_type.value,
            available_units=stock.available_units,
            version=stock.version,
        )
        return stock

    async def list_low_stock(
        self,
        threshold: Optional[int] = None,
    ) -> Sequence[InventoryStock]:
        """
        List stock rows at or below a unit threshold, lowest first.

        Args:
            threshold: Unit threshold; defaults to the configured low stock level
        """
        if threshold is None:
            threshold = get_settings().low_stock_threshold

        try:
            stmt = (
                select(InventoryStock)
                .where(InventoryStock.available_units <= threshold)
                .order_by(
                    InventoryStock.available_units.asc(),
                    InventoryStock.blood_bank_id,
                    InventoryStock.blood_type,
                )
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(stmt)
            rows = result.scalars().all()

        except SQLAlchemyError as e:
            logger.error("Failed to list low stock", threshold=threshold, error=str(e))
            raise InventoryError(
                "Failed to list low stock",
                code="LOW_STOCK_QUERY_FAILED",
                threshold=threshold,
            ) from e

        logger.debug("Low stock listed", threshold=threshold, count=len(rows))
        return rows

    async def _read_stock(
        self,
        blood_bank_id: str,
        blood_type: BloodType,
    ) -> Optional[InventoryStock]:
        stmt = (
            select(InventoryStock)
            .where(
                InventoryStock.blood_bank_id == blood_bank_id,
                InventoryStock.blood_type == blood_type,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _compare_and_decrement(
        self,
        stock_id: Any,
        read_version: int,
        quantity: int,
    ) -> bool:
        # Applies only if nobody wrote since our read and the units still cover it.
        stmt = (
            update(InventoryStock)
            .where(
                InventoryStock.id == stock_id,
                InventoryStock.version == read_version,
                InventoryStock.available_units >= quantity,
            )
            .values(
                available_units=InventoryStock.available_units - quantity,
                version=InventoryStock.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1
