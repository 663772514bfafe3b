"""
Order and order event models for blood-unit order lifecycle tracking.

This module defines the Order model, whose status column is a cache of the
status derivable from the order's event log, and the append-only OrderEvent
model that records one immutable row per lifecycle transition.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from lifebank.database.base import Base, BaseModel, UUIDMixin
from lifebank.database.models.inventory import (
    BloodType,
    blood_type_column,
    enum_values,
)
from lifebank.services.orders.enums import OrderStatus


class Order(BaseModel):
    """
    One request for a number of blood units delivered to an address.

    The status column is written only by the order orchestrator, in the same
    transaction as the event that justifies it. The version column is the
    mapper's version counter: every UPDATE is conditional on it, so a stale
    concurrent writer fails instead of overwriting.

    Attributes:
        id: Unique order identifier (UUID)
        hospital_id: Requesting hospital
        blood_bank_id: Blood bank the units are reserved from
        blood_type: Requested blood type
        quantity: Requested units (positive)
        delivery_address: Free-text delivery address
        status: Cached lifecycle status
        rider_id: Assigned rider, if any
        version: Optimistic concurrency counter
    """

    __tablename__ = "orders"

    hospital_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Requesting hospital",
    )

    blood_bank_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Blood bank the units are reserved from",
    )

    blood_type: Mapped[BloodType] = mapped_column(
        blood_type_column(),
        nullable=False,
        comment="Requested blood type",
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Requested units",
    )

    delivery_address: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Delivery address",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            native_enum=False,
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Cached lifecycle status",
    )

    rider_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        default=None,
        comment="Assigned rider",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Optimistic concurrency version",
    )

    __mapper_args__ = {
        "eager_defaults": True,
        "version_id_col": version,
    }

    __table_args__ = (
        Index("ix_orders_hospital_status", "hospital_id", "status"),
        CheckConstraint("quantity > 0", name="ck_orders_quantity_positive"),
        {"comment": "Blood-unit orders"},
    )

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, blood_type={self.blood_type.value}, "
            f"quantity={self.quantity}, status={self.status.value})>"
        )


class OrderEvent(Base, UUIDMixin):
    """
    One immutable row in an order's lifecycle log.

    order_id is deliberately not a foreign key so the log survives on its own.
    sequence numbers an order's events from 1 in append order; the server
    timestamp is transaction time on PostgreSQL, so history sorts by sequence.
    Rows are never updated or deleted.
    """

    __tablename__ = "order_events"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        comment="Logical reference to the order",
    )

    event_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="Lifecycle event type",
    )

    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
        comment="Snapshot of the data relevant to this event",
    )

    actor_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Who or what triggered the event",
    )

    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Position of the event in the order's log",
    )

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Server-assigned insert time",
    )

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        Index("ix_order_events_order_id", "order_id"),
        UniqueConstraint(
            "order_id", "sequence", name="uq_order_events_order_sequence"
        ),
        {"comment": "Append-only order lifecycle log"},
    )

    def __repr__(self) -> str:
        return (
            f"<OrderEvent(order_id={self.order_id}, event_type={self.event_type}, "
            f"sequence={self.sequence})>"
        )


@event.listens_for(OrderEvent, "before_update")
def _reject_event_update(mapper, connection, target: OrderEvent) -> None:
    raise PermissionError(
        f"Order events are immutable (order_id={target.order_id}, "
        f"sequence={target.sequence})"
    )


@event.listens_for(OrderEvent, "before_delete")
def _reject_event_delete(mapper, connection, target: OrderEvent) -> None:
    raise PermissionError(
        f"Order events are append-only (order_id={target.order_id}, "
        f"sequence={target.sequence})"
    )
