"""
Order Pydantic schemas for API request/response validation.

``OrderCreate`` doubles as the validator the order store runs before any
state is touched, so HTTP and in-process callers get identical rules.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from delivery_tracker.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Platform,
)


class Coordinates(BaseModel):
    """Latitude/longitude pair in degrees."""

    latitude: float = Field(..., ge=-90, le=90, description="Latitude")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude")


class RestaurantIn(BaseModel):
    """Restaurant the order is prepared at."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200, description="Restaurant name")
    address: Optional[str] = Field(None, max_length=500, description="Restaurant address")
    phone: Optional[str] = Field(None, max_length=20, description="Restaurant phone")
    coordinates: Optional[Coordinates] = None
    platform: Platform = Field(..., description="Originating ordering platform")


class OrderItemIn(BaseModel):
    """Single ordered line item."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200, description="Item name")
    quantity: int = Field(..., ge=1, le=100, description="Quantity")
    price: Decimal = Field(..., ge=0, decimal_places=2, description="Unit price")
    customizations: list[str] = Field(default_factory=list)


class PricingIn(BaseModel):
    """Caller-supplied pricing; the total is trusted, never recomputed."""

    subtotal: Decimal = Field(Decimal("0.00"), ge=0, decimal_places=2)
    delivery_fee: Decimal = Field(Decimal("0.00"), ge=0, decimal_places=2)
    taxes: Decimal = Field(Decimal("0.00"), ge=0, decimal_places=2)
    discount: Decimal = Field(Decimal("0.00"), ge=0, decimal_places=2)
    total: Decimal = Field(..., ge=0, decimal_places=2)


class DeliveryAddressIn(BaseModel):
    """Delivery address information."""

    model_config = ConfigDict(str_strip_whitespace=True)

    street: str = Field(..., min_length=1, max_length=255, description="Street address")
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    zip_code: Optional[str] = Field(None, max_length=20)
    coordinates: Optional[Coordinates] = None
    landmark: Optional[str] = Field(None, max_length=200)
    instructions: Optional[str] = Field(None, max_length=500)


class OrderCreate(BaseModel):
    """Order placement request."""

    restaurant: RestaurantIn
    items: list[OrderItemIn] = Field(..., min_length=1, description="Ordered items")
    pricing: PricingIn
    delivery_address: DeliveryAddressIn
    payment_method: PaymentMethod
    special_instructions: Optional[str] = Field(None, max_length=1000)
    platform_order_id: Optional[str] = Field(None, max_length=100)


class StatusUpdateRequest(BaseModel):
    """Partner-driven status change."""

    status: str = Field(..., min_length=1, description="Target order status")
    location: Optional[Coordinates] = None


class RatingRequest(BaseModel):
    """Rating of the counterpart on a delivered order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    rating: int = Field(..., ge=1, le=5, description="Rating from 1 to 5")
    comment: Optional[str] = Field(None, max_length=500, description="Optional comment")


class ReassignRequest(BaseModel):
    """Administrator override of the assigned partner."""

    partner_id: UUID


class StatusHistoryEntry(BaseModel):
    """One entry of an order's status log."""

    model_config = ConfigDict(from_attributes=True)

    status: OrderStatus
    timestamp: datetime
    location: Optional[dict[str, Any]] = None
    changed_by: Optional[UUID] = None


class OrderResponse(BaseModel):
    """Order as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: UUID
    delivery_partner_id: Optional[UUID] = None
    platform: Platform
    platform_order_id: Optional[str] = None
    restaurant: dict[str, Any]
    items: list[dict[str, Any]]
    subtotal: Decimal
    delivery_fee: Decimal
    taxes: Decimal
    discount: Decimal
    total: Decimal
    delivery_address: dict[str, Any]
    special_instructions: Optional[str] = None
    status: OrderStatus
    status_history: list[StatusHistoryEntry]
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    transaction_id: Optional[str] = None
    payment_amount: Optional[Decimal] = None
    distance_km: float
    estimated_delivery_time: datetime
    actual_delivery_time: Optional[datetime] = None
    customer_rating: Optional[dict[str, Any]] = None
    partner_rating: Optional[dict[str, Any]] = None
    current_location: Optional[dict[str, Any]] = None
    route: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime

    @field_validator("route", mode="before")
    @classmethod
    def default_route(cls, v: Any) -> Any:
        return v or []


class OrderListResponse(BaseModel):
    """Paginated order list."""

    orders: list[OrderResponse]
    total: int
    page: int
    limit: int
    pages: int
