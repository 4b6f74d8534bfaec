"""
Payment gateway interface and the simulated development gateway.

The gateway is a black box: it is asked to charge an amount for an order and
answers with a ``PaymentResult``. Network or provider failures surface as
exceptions; declined charges surface as an unsuccessful result.
"""

import random
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from delivery_tracker.core.logging import get_logger
from delivery_tracker.services.orders.enums import PaymentMethod

logger = get_logger(__name__)

TRANSACTION_ID_PREFIX = "TXN"
TRANSACTION_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of one charge attempt."""

    success: bool
    transaction_id: Optional[str] = None
    message: str = ""


class PaymentGateway(ABC):
    """Charges customers on behalf of orders."""

    @abstractmethod
    async def charge(
        self,
        order_id: str,
        amount: Decimal,
        method: PaymentMethod,
    ) -> PaymentResult:
        """
        Charge ``amount`` for an order.

        Raises:
            Exception: Any provider or transport failure
        """


class SimulatedPaymentGateway(PaymentGateway):
    """
    Gateway that approves a configurable share of charges.

    Attributes:
        success_rate: Probability in [0, 1] that a charge is approved
    """

    def __init__(self, success_rate: float = 0.9, rng: Optional[random.Random] = None):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError(f"success_rate must be between 0 and 1, got {success_rate}")
        self.success_rate = success_rate
        self._rng = rng or random.Random()

    def _transaction_id(self) -> str:
        suffix = "".join(self._rng.choice(TRANSACTION_SUFFIX_ALPHABET) for _ in range(5))
        return f"{TRANSACTION_ID_PREFIX}{time.time_ns() // 1_000_000}{suffix}"

    async def charge(
        self,
        order_id: str,
        amount: Decimal,
        method: PaymentMethod,
    ) -> PaymentResult:
        approved = self._rng.random() < self.success_rate
        if not approved:
            logger.info(
                "Simulated charge declined",
                order_id=order_id,
                amount=str(amount),
                method=method.value,
            )
            return PaymentResult(
                success=False,
                message="Insufficient funds or payment gateway error",
            )

        transaction_id = self._transaction_id()
        logger.info(
            "Simulated charge approved",
            order_id=order_id,
            amount=str(amount),
            method=method.value,
            transaction_id=transaction_id,
        )
        return PaymentResult(
            success=True,
            transaction_id=transaction_id,
            message="Payment processed successfully",
        )
