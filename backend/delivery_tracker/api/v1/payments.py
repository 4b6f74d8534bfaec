"""
Payment API endpoints.
"""

from fastapi import APIRouter

from delivery_tracker.api.deps import CurrentIdentity, Payments
from delivery_tracker.schemas.payments import PaymentRequest, PaymentResponse

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/process", response_model=PaymentResponse, summary="Pay for an order")
async def process_payment(
    request: PaymentRequest,
    identity: CurrentIdentity,
    payments: Payments,
) -> PaymentResponse:
    """
    Charge the order total through the payment gateway.

    A declined or failed charge is recorded on the order and reported as 502.
    """
    order = await payments.process_payment(request.order_id, identity)
    return PaymentResponse(
        order_id=order.id,
        transaction_id=order.transaction_id,
        amount=order.payment_amount,
        method=order.payment_method,
        status=order.payment_status,
    )
