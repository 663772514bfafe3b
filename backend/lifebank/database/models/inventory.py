"""
Inventory stock model for blood-unit availability tracking.

This module defines the BloodType enumeration and the InventoryStock model
holding the available units of one blood type at one blood bank. The version
column backs the optimistic compare-and-swap used by reservations.
"""

from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Enum as SQLEnum,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from lifebank.database.base import BaseModel


class BloodType(str, Enum):
    """
    ABO/Rh blood group of a blood unit.

    Values are the conventional labels ("O+", "AB-", ...).
    """

    A_POSITIVE = "A+"
    A_NEGATIVE = "A-"
    B_POSITIVE = "B+"
    B_NEGATIVE = "B-"
    AB_POSITIVE = "AB+"
    AB_NEGATIVE = "AB-"
    O_POSITIVE = "O+"
    O_NEGATIVE = "O-"

    @classmethod
    def from_string(cls, value: str) -> "BloodType":
        """
        Create BloodType from its label.

        Raises:
            ValueError: If value is not a valid blood type
        """
        try:
            return cls(value.strip().upper())
        except (ValueError, AttributeError):
            valid_values = ", ".join(b.value for b in cls)
            raise ValueError(
                f"Invalid blood type: {value}. Valid values are: {valid_values}"
            )


def enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


def blood_type_column() -> SQLEnum:
    """Column type storing BloodType by label, portable across databases."""
    return SQLEnum(
        BloodType,
        name="blood_type",
        native_enum=False,
        values_callable=enum_values,
        validate_strings=True,
    )


class InventoryStock(BaseModel):
    """
    Available units of one blood type at one blood bank.

    Attributes:
        id: Unique stock row identifier (UUID)
        blood_bank_id: Blood bank holding the units
        blood_type: Blood type of the units
        available_units: Units that can still be reserved (never negative)
        version: Incremented by every successful reservation
        created_at: Record creation timestamp
        updated_at: Last modification timestamp
    """

    __tablename__ = "inventory_stocks"

    blood_bank_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Blood bank holding the units",
    )

    blood_type: Mapped[BloodType] = mapped_column(
        blood_type_column(),
        nullable=False,
        comment="Blood type of the units",
    )

    available_units: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Units available for reservation",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Optimistic concurrency version",
    )

    __table_args__ = (
        Index(
            "ix_inventory_stocks_bank_blood_type",
            "blood_bank_id",
            "blood_type",
            unique=True,
        ),
        CheckConstraint(
            "available_units >= 0",
            name="ck_inventory_stocks_available_units_non_negative",
        ),
        {"comment": "Blood-unit stock per blood bank and blood type"},
    )

    def __repr__(self) -> str:
        return (
            f"<InventoryStock(blood_bank_id={self.blood_bank_id}, "
            f"blood_type={self.blood_type.value}, "
            f"available_units={self.available_units}, version={self.version})>"
        )
