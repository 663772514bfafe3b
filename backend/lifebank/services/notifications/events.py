"""
Domain notifications published by the order service.

Each notification is an immutable value carrying a stable ``name`` that
subscribers register against (``order.confirmed``, ``order.status.updated``,
...). Delivery is fire-and-forget; consumers handle their own idempotency.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DomainNotification:
    """Base class for order domain notifications."""

    name: ClassVar[str] = "order.notification"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = value.isoformat()
        return data


@dataclass(frozen=True)
class OrderCreatedEvent(DomainNotification):
    """Reserved for creation consumers; the order service does not publish it."""

    name: ClassVar[str] = "order.created"

    order_id: str
    hospital_id: str
    blood_bank_id: str
    blood_type: str
    quantity: int


@dataclass(frozen=True)
class OrderStatusUpdatedEvent(DomainNotification):
    name: ClassVar[str] = "order.status.updated"

    order_id: str
    previous_status: str
    new_status: str
    actor_id: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class OrderConfirmedEvent(DomainNotification):
    name: ClassVar[str] = "order.confirmed"

    order_id: str
    hospital_id: str
    blood_type: str
    quantity: int
    delivery_address: str


@dataclass(frozen=True)
class OrderDispatchedEvent(DomainNotification):
    name: ClassVar[str] = "order.dispatched"

    order_id: str
    rider_id: str = ""


@dataclass(frozen=True)
class OrderInTransitEvent(DomainNotification):
    name: ClassVar[str] = "order.in_transit"

    order_id: str


@dataclass(frozen=True)
class OrderDeliveredEvent(DomainNotification):
    name: ClassVar[str] = "order.delivered"

    order_id: str


@dataclass(frozen=True)
class OrderCancelledEvent(DomainNotification):
    name: ClassVar[str] = "order.cancelled"

    order_id: str
    hospital_id: str
    reason: str = "Status transition"


@dataclass(frozen=True)
class OrderRiderAssignedEvent(DomainNotification):
    name: ClassVar[str] = "order.rider.assigned"

    order_id: str
    rider_id: str
    timestamp: datetime = field(default_factory=_utcnow)
