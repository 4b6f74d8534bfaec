"""
User account schemas for registration, login and profile responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from delivery_tracker.database.models.user import UserRole, VehicleType


class UserCreate(BaseModel):
    """
    Schema for user registration requests.

    Administrators are provisioned out of band; self-registration is open to
    customers and delivery partners only.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100, examples=["Asha Rao"])
    email: EmailStr = Field(..., description="User email address", examples=["asha@example.com"])
    phone: str = Field(..., min_length=7, max_length=20, examples=["+919800000001"])
    password: str = Field(..., min_length=6, max_length=128, description="Account password")
    role: UserRole = Field(UserRole.CUSTOMER, description="Account role")
    vehicle_type: Optional[VehicleType] = None
    license_number: Optional[str] = Field(None, max_length=50)
    vehicle_number: Optional[str] = Field(None, max_length=20)

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: UserRole) -> UserRole:
        """
        Reject self-registration of administrators.

        Raises:
            ValueError: If the requested role is admin
        """
        if value == UserRole.ADMIN:
            raise ValueError("Administrator accounts cannot be self-registered")
        return value


class UserLogin(BaseModel):
    """Credentials for obtaining an access token."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class UserResponse(BaseModel):
    """User profile; never includes credentials."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    phone: str
    role: UserRole
    is_active: bool
    vehicle_type: Optional[VehicleType] = None
    license_number: Optional[str] = None
    vehicle_number: Optional[str] = None
    is_verified: bool = False
    rating_average: Decimal = Decimal("0.0")
    rating_count: int = 0
    earnings_total: Decimal = Decimal("0.00")
    earnings_pending: Decimal = Decimal("0.00")
    is_online: bool = False
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    location_updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class TokenResponse(BaseModel):
    """Bearer token issued after registration or login."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Token lifetime in seconds")
    user: UserResponse
