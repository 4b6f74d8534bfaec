"""
Delivery partner schemas: dashboard, availability, earnings and location.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from delivery_tracker.database.models.user import VehicleType
from delivery_tracker.schemas.orders import OrderResponse
from delivery_tracker.schemas.users import UserResponse


class RatingSummary(BaseModel):
    average: Decimal
    count: int


class EarningsSummary(BaseModel):
    total: Decimal
    pending: Decimal


class DashboardStats(BaseModel):
    """Counters shown on the partner dashboard; today starts at 00:00 UTC."""

    total_orders: int
    completed_orders: int
    today_orders: int
    today_earnings: Decimal
    rating: RatingSummary
    earnings: EarningsSummary


class DashboardResponse(BaseModel):
    partner: UserResponse
    stats: DashboardStats
    active_orders: list[OrderResponse]


class AvailabilityResponse(BaseModel):
    is_online: bool


class EarningsUpdateRequest(BaseModel):
    """Credit (``add``) or withdraw (``withdraw``) partner earnings."""

    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Amount to add or withdraw")
    mode: Literal["add", "withdraw"] = "add"


class VerifyRequest(BaseModel):
    verified: bool = True


class LocationUpdateRequest(BaseModel):
    """Partner position report."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class LocationUpdateResponse(BaseModel):
    latitude: float
    longitude: float
    updated_at: datetime
    notified_orders: list[str]


class NearbyPartner(BaseModel):
    """Public view of an online, verified partner near a point."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    vehicle_type: Optional[VehicleType] = None
    rating_average: Decimal = Decimal("0.0")
    rating_count: int = 0
    current_latitude: float
    current_longitude: float
    location_updated_at: Optional[datetime] = None
    distance_km: Optional[float] = None
    eta_minutes: Optional[int] = Field(None, description="Travel estimate including pickup buffer")


class NearbyPartnersResponse(BaseModel):
    partners: list[NearbyPartner]
    count: int
    radius_km: float
