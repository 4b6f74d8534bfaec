"""
User model covering customers, delivery partners and administrators.

Partner-only attributes live as nullable columns on the same row; they are
populated only for the ``delivery_partner`` role.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    Float,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from delivery_tracker.database.base import BaseModel, enum_values


class UserRole(str, enum.Enum):
    """User role enumeration for role-based access control."""

    CUSTOMER = "customer"
    DELIVERY_PARTNER = "delivery_partner"
    ADMIN = "admin"

    @classmethod
    def from_string(cls, value: str) -> "UserRole":
        """
        Convert string to UserRole enum.

        Raises:
            ValueError: If value is not a valid role
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join(role.value for role in cls)
            raise ValueError(f"Invalid role: {value}. Valid values are: {valid_values}")


class VehicleType(str, enum.Enum):
    """Vehicle a delivery partner rides."""

    BIKE = "bike"
    SCOOTER = "scooter"
    CAR = "car"
    BICYCLE = "bicycle"


class User(BaseModel):
    """
    Platform account.

    Attributes:
        id: Unique user identifier (UUID)
        name: Display name
        email: Lower-cased, unique email address
        phone: Unique phone number
        password_hash: Bcrypt hash; never serialized
        role: Access-control role
        is_active: Account active status
        vehicle_type: Partner vehicle
        license_number: Partner driving licence number
        vehicle_number: Partner vehicle registration
        is_verified: Partner verified by an administrator
        rating_average: Rolling mean of customer ratings, one decimal
        rating_count: Number of ratings folded into the average
        earnings_total: Lifetime partner earnings
        earnings_pending: Earnings not yet withdrawn
        is_online: Partner accepting work
        current_latitude: Last reported partner latitude
        current_longitude: Last reported partner longitude
        location_updated_at: When the location was last reported
    """

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Display name",
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="User email address (unique, lower-cased)",
    )

    phone: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        comment="User phone number (unique)",
    )

    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Bcrypt hashed password",
    )

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(
            UserRole,
            name="user_role",
            native_enum=False,
            length=32,
            values_callable=enum_values,
        ),
        nullable=False,
        default=UserRole.CUSTOMER,
        index=True,
        comment="User role for access control",
    )

    is_active: Mapped[bool] = mapped_column(
        default=True,
        nullable=False,
        comment="Account active status",
    )

    # Delivery partner profile
    vehicle_type: Mapped[Optional[VehicleType]] = mapped_column(
        SQLEnum(
            VehicleType,
            name="vehicle_type",
            native_enum=False,
            length=16,
            values_callable=enum_values,
        ),
        nullable=True,
        comment="Partner vehicle type",
    )

    license_number: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Partner driving licence number",
    )

    vehicle_number: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="Partner vehicle registration number",
    )

    is_verified: Mapped[bool] = mapped_column(
        default=False,
        nullable=False,
        comment="Partner verified by an administrator",
    )

    rating_average: Mapped[Decimal] = mapped_column(
        Numeric(2, 1),
        default=Decimal("0.0"),
        nullable=False,
        comment="Rolling average of customer ratings",
    )

    rating_count: Mapped[int] = mapped_column(
        default=0,
        nullable=False,
        comment="Number of ratings in the rolling average",
    )

    earnings_total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False,
        comment="Lifetime partner earnings",
    )

    earnings_pending: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False,
        comment="Partner earnings not yet withdrawn",
    )

    is_online: Mapped[bool] = mapped_column(
        default=False,
        nullable=False,
        comment="Partner currently accepting orders",
    )

    current_latitude: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment="Last reported latitude",
    )

    current_longitude: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment="Last reported longitude",
    )

    location_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the partner location was last reported",
    )

    __table_args__ = (
        Index("ix_users_role_online_verified", "role", "is_online", "is_verified"),
        Index("ix_users_location", "current_latitude", "current_longitude"),
        CheckConstraint("rating_count >= 0", name="ck_users_rating_count_non_negative"),
        CheckConstraint(
            "earnings_pending >= 0",
            name="ck_users_earnings_pending_non_negative",
        ),
    )

    @property
    def is_partner(self) -> bool:
        return self.role == UserRole.DELIVERY_PARTNER

    @property
    def is_available(self) -> bool:
        """Online, verified partner able to receive new orders."""
        return self.is_partner and bool(self.is_online) and bool(self.is_verified)

    def to_dict(self, exclude: Optional[set[str]] = None) -> Dict[str, Any]:
        """Serialize the user; the password hash is always excluded."""
        return super().to_dict(exclude=(exclude or set()) | {"password_hash"})
