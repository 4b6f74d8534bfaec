"""
Database models package.

Models are imported here so they are registered with the Base metadata for
Alembic and relationship resolution.
"""

from delivery_tracker.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from delivery_tracker.database.models.order import Order, OrderStatusHistory
from delivery_tracker.database.models.user import User, UserRole, VehicleType

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "Order",
    "OrderStatusHistory",
    "User",
    "UserRole",
    "VehicleType",
]
