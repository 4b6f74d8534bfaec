"""
Payment service settling an order's bill through a payment gateway.

A charge is attempted at most once per call; there is no automatic retry.
The payment status reached (``completed`` or ``failed``) is always committed
before the outcome is reported to the caller.
"""

from decimal import Decimal
from typing import Optional

from delivery_tracker.core.exceptions import (
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from delivery_tracker.core.logging import get_logger, log_performance
from delivery_tracker.core.security import Identity
from delivery_tracker.database.models.order import Order
from delivery_tracker.services.orders.enums import (
    OrderStatus,
    PaymentStatus,
    validate_payment_status_transition,
)
from delivery_tracker.services.orders.repository import OrderRepository
from delivery_tracker.services.payments.gateway import PaymentGateway, PaymentResult

logger = get_logger(__name__)


class PaymentService:
    """
    Payment processing for orders.

    Attributes:
        repository: Order repository the payment fields are stored through
        gateway: Payment gateway used for charges
    """

    def __init__(self, repository: OrderRepository, gateway: PaymentGateway):
        """
        Initialize payment service.

        Args:
            repository: Order repository instance
            gateway: Payment gateway instance
        """
        self.repository = repository
        self.gateway = gateway

    async def process_payment(self, order_id: str, caller: Identity) -> Order:
        """
        Charge the order total with the order's payment method.

        Args:
            order_id: Order identifier
            caller: Authenticated caller; the order's customer or an admin

        Returns:
            The order with payment status ``completed``

        Raises:
            AuthorizationError: If the caller may not pay for this order
            NotFoundError: If the order does not exist
            ConflictError: If the order is already paid
            ValidationError: If the order is cancelled or refunded
            ExternalServiceError: If the gateway failed or declined the charge
        """
        failure: Optional[ExternalServiceError] = None

        async with self.repository.lock(order_id) as order:
            if order is None:
                raise NotFoundError("Order not found", order_id=order_id)
            if not caller.is_admin and order.customer_id != caller.user_id:
                raise AuthorizationError(
                    "You can only pay for your own orders", order_id=order_id
                )
            self._check_payable(order)

            amount = Decimal(order.total)
            result: Optional[PaymentResult] = None
            with log_performance(logger, "payment_charge", order_id=order_id):
                try:
                    result = await self.gateway.charge(order.id, amount, order.payment_method)
                except Exception as e:
                    logger.error(
                        "Payment gateway error",
                        order_id=order_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    failure = ExternalServiceError(
                        "Payment gateway unavailable",
                        order_id=order_id,
                        error=str(e),
                    )

            if result is not None and result.success:
                order.payment_status = PaymentStatus.COMPLETED
                order.transaction_id = result.transaction_id
                order.payment_amount = amount
            else:
                if failure is None:
                    failure = ExternalServiceError(
                        "Payment failed",
                        order_id=order_id,
                        reason=result.message if result else None,
                    )
                order.payment_status = PaymentStatus.FAILED

            await self.repository.save(order)
            await self.repository.commit()

        if failure is not None:
            logger.warning("Payment failed", order_id=order_id, reason=failure.context)
            raise failure

        logger.info(
            "Payment completed",
            order_id=order_id,
            transaction_id=order.transaction_id,
            amount=str(order.payment_amount),
        )
        return order

    @staticmethod
    def _check_payable(order: Order) -> None:
        if order.payment_status == PaymentStatus.COMPLETED:
            raise ConflictError(
                "Order is already paid",
                order_id=order.id,
                transaction_id=order.transaction_id,
            )
        if order.status == OrderStatus.CANCELLED:
            raise ValidationError("Cancelled orders cannot be paid", order_id=order.id)
        if not validate_payment_status_transition(order.payment_status, PaymentStatus.COMPLETED):
            raise ValidationError(
                f"Payment cannot be processed in status {order.payment_status.value}",
                order_id=order.id,
                payment_status=order.payment_status,
            )
