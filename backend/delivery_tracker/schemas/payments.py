"""
Payment request/response schemas.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from delivery_tracker.services.orders.enums import PaymentMethod, PaymentStatus


class PaymentRequest(BaseModel):
    """Request to settle an order's total with its payment method."""

    order_id: str = Field(..., min_length=1, max_length=32, description="Order identifier")


class PaymentResponse(BaseModel):
    """Result of a successful payment."""

    order_id: str
    transaction_id: Optional[str] = None
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
