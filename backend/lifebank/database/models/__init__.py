"""
Database models package initialization.

Models are imported here to ensure they are registered with the Base metadata
before tables are created.
"""

from lifebank.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from lifebank.database.models.inventory import BloodType, InventoryStock
from lifebank.database.models.order import Order, OrderEvent

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "BloodType",
    "InventoryStock",
    "Order",
    "OrderEvent",
]
