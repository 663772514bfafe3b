"""Order status and event type enums for order lifecycle management.

This module defines the order status set, the event types recorded in the
order event log, the legal transition table and the fixed one-to-one mapping
between event types and the status each one leaves an order in.
"""

from enum import Enum
from typing import Dict, Optional, Set, Tuple


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Valid transitions:
    - PENDING -> CONFIRMED, CANCELLED
    - CONFIRMED -> DISPATCHED, CANCELLED
    - DISPATCHED -> IN_TRANSIT, CANCELLED
    - IN_TRANSIT -> DELIVERED, CANCELLED
    - DELIVERED -> (terminal state)
    - CANCELLED -> (terminal state)
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISPATCHED = "dispatched"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Args:
            value: String representation of status (case-insensitive)

        Returns:
            OrderStatus enum value

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Check if status is a terminal state."""
        return not ORDER_STATUS_TRANSITIONS[self]

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class OrderEventType(str, Enum):
    """Type of one immutable row in the order event log."""

    CREATED = "CREATED"
    CONFIRMED = "CONFIRMED"
    DISPATCHED = "DISPATCHED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @classmethod
    def from_string(cls, value: str) -> Optional["OrderEventType"]:
        """Parse a stored event type, returning None for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return None


# Ordered so rejection payloads list alternatives in lifecycle order.
ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Tuple[OrderStatus, ...]] = {
    OrderStatus.PENDING: (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    OrderStatus.CONFIRMED: (OrderStatus.DISPATCHED, OrderStatus.CANCELLED),
    OrderStatus.DISPATCHED: (OrderStatus.IN_TRANSIT, OrderStatus.CANCELLED),
    OrderStatus.IN_TRANSIT: (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
    OrderStatus.DELIVERED: (),  # Terminal
    OrderStatus.CANCELLED: (),  # Terminal
}

STATUS_TO_EVENT_TYPE: Dict[OrderStatus, OrderEventType] = {
    OrderStatus.PENDING: OrderEventType.CREATED,
    OrderStatus.CONFIRMED: OrderEventType.CONFIRMED,
    OrderStatus.DISPATCHED: OrderEventType.DISPATCHED,
    OrderStatus.IN_TRANSIT: OrderEventType.IN_TRANSIT,
    OrderStatus.DELIVERED: OrderEventType.DELIVERED,
    OrderStatus.CANCELLED: OrderEventType.CANCELLED,
}

EVENT_TYPE_TO_STATUS: Dict[OrderEventType, OrderStatus] = {
    event_type: status for status, event_type in STATUS_TO_EVENT_TYPE.items()
}


def validate_order_status_transition(
    current: OrderStatus,
    new: OrderStatus
) -> bool:
    """Validate if order status transition is allowed.

    Args:
        current: Current order status
        new: Desired new status

    Returns:
        True if transition is valid
    """
    return new in ORDER_STATUS_TRANSITIONS.get(current, ())


def get_allowed_order_transitions(
    current: OrderStatus
) -> Set[OrderStatus]:
    """Get all allowed transitions from current order status.

    Args:
        current: Current order status

    Returns:
        Set of allowed next statuses (a fresh copy)
    """
    return set(ORDER_STATUS_TRANSITIONS.get(current, ()))


def event_type_for_status(status: OrderStatus) -> OrderEventType:
    """Return the event type recorded when an order enters ``status``."""
    return STATUS_TO_EVENT_TYPE[status]
