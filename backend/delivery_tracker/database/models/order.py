"""
Delivery order and status history models.

Orders are never deleted; cancellation is a terminal status. Nested documents
(restaurant, items, address, ratings, route) are stored as JSON and are always
replaced wholesale when changed so the ORM detects the mutation.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from delivery_tracker.database.base import (
    Base,
    JSONType,
    TimestampMixin,
    enum_values,
    serialize_value,
)
from delivery_tracker.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Platform,
)


def _status_enum(name: str) -> SQLEnum:
    return SQLEnum(
        OrderStatus,
        name=name,
        native_enum=False,
        length=32,
        values_callable=enum_values,
    )


class Order(Base, TimestampMixin):
    """
    Delivery order aggregated from an external ordering platform.

    Attributes:
        id: ``FGO`` + epoch milliseconds + 5 random characters
        customer_id: Customer who placed the order
        delivery_partner_id: Partner who claimed the order, if any
        platform: Originating platform (mirrors ``restaurant.platform``)
        restaurant: Restaurant document
        items: Ordered line items
        subtotal/delivery_fee/taxes/discount/total: Caller-supplied pricing
        delivery_address: Address document
        status: Current lifecycle status
        payment_method/payment_status/transaction_id/payment_amount: Payment
        distance_km: Restaurant to delivery address distance
        estimated_delivery_time: Set once at creation
        actual_delivery_time: Set once, on delivery
        customer_rating: Customer's rating of the partner
        partner_rating: Partner's rating of the customer
        current_location: Last reported partner position while in transit
        route: Trail of partner positions while in transit
        status_history: Append-only status log
    """

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
        comment="Order identifier (FGO + epoch ms + random suffix)",
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Customer who placed the order",
    )

    delivery_partner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        comment="Assigned delivery partner",
    )

    platform: Mapped[Platform] = mapped_column(
        SQLEnum(
            Platform,
            name="order_platform",
            native_enum=False,
            length=32,
            values_callable=enum_values,
        ),
        nullable=False,
        index=True,
        comment="Originating ordering platform",
    )

    platform_order_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Order identifier on the originating platform",
    )

    restaurant: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        comment="Restaurant name, address, phone, coordinates and platform",
    )

    items: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        comment="Ordered line items",
    )

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Items subtotal",
    )

    delivery_fee: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Delivery fee",
    )

    taxes: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Taxes",
    )

    discount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Discount applied",
    )

    total: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Order total as supplied by the platform",
    )

    delivery_address: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        comment="Delivery address document",
    )

    special_instructions: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Customer instructions for the order",
    )

    status: Mapped[OrderStatus] = mapped_column(
        _status_enum("order_status"),
        nullable=False,
        default=OrderStatus.PLACED,
        index=True,
        comment="Current order status",
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(
            PaymentMethod,
            name="payment_method",
            native_enum=False,
            length=16,
            values_callable=enum_values,
        ),
        nullable=False,
        comment="Payment method",
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(
            PaymentStatus,
            name="payment_status",
            native_enum=False,
            length=16,
            values_callable=enum_values,
        ),
        nullable=False,
        default=PaymentStatus.PENDING,
        comment="Payment status",
    )

    transaction_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Gateway transaction identifier",
    )

    payment_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2),
        nullable=True,
        comment="Amount charged",
    )

    distance_km: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment="Restaurant to delivery address distance in km",
    )

    estimated_delivery_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Estimated delivery time, set at creation",
    )

    actual_delivery_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Actual delivery time, set on delivery",
    )

    customer_rating: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Customer rating of the delivery partner",
    )

    partner_rating: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Delivery partner rating of the customer",
    )

    current_location: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Last reported partner location",
    )

    route: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Partner location trail while in transit",
    )

    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        order_by="OrderStatusHistory.sequence",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_orders_partner_status", "delivery_partner_id", "status"),
        Index("ix_orders_created_at", "created_at"),
        CheckConstraint("total >= 0", name="ck_orders_total_non_negative"),
        CheckConstraint("distance_km >= 0", name="ck_orders_distance_non_negative"),
    )

    @property
    def is_assigned(self) -> bool:
        return self.delivery_partner_id is not None

    def to_dict(self, exclude: Optional[set[str]] = None) -> dict[str, Any]:
        """Serialize the order including its status history."""
        data = super().to_dict(exclude=exclude)
        if "status_history" not in (exclude or set()):
            data["status_history"] = [
                entry.to_dict(exclude={"id", "order_id"})
                for entry in self.status_history
            ]
        return data


class OrderStatusHistory(Base):
    """
    One entry in an order's append-only status log.

    Rows are inserted, never updated or deleted.
    """

    __tablename__ = "order_status_history"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique history entry identifier",
    )

    order_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Order this entry belongs to",
    )

    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Position of the entry in the order's history",
    )

    status: Mapped[OrderStatus] = mapped_column(
        _status_enum("order_history_status"),
        nullable=False,
        comment="Status entered",
    )

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the status was entered",
    )

    location: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Where the status change happened",
    )

    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="User who changed the status",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")

    __table_args__ = (
        Index("ix_order_status_history_order_sequence", "order_id", "sequence", unique=True),
    )

    def to_dict(self, exclude: Optional[set[str]] = None) -> dict[str, Any]:
        exclude = exclude or set()
        return {
            key: serialize_value(getattr(self, key))
            for key in ("id", "order_id", "sequence", "status", "timestamp", "location", "changed_by")
            if key not in exclude
        }
