"""Order status, payment and platform enums for delivery order management.

This module defines the order lifecycle with its explicit transition tables.
Two policies exist:

- ``strict`` (default): forward-only along the lifecycle, skipping forward is
  allowed, ``cancelled`` only from non-terminal states, nothing leaves a
  terminal state and no self-transitions.
- ``permissive``: any transition except re-entering ``placed``; kept for
  deployments that relied on the looser behaviour.
"""

from enum import Enum
from typing import Dict, FrozenSet, Set


class OrderStatus(str, Enum):
    """Delivery order lifecycle status.

    Lifecycle:
    - PLACED -> CONFIRMED -> PREPARING -> READY_FOR_PICKUP -> PICKED_UP
      -> ON_THE_WAY -> DELIVERED
    - CANCELLED is reachable from any non-terminal status
    - DELIVERED and CANCELLED are terminal
    """

    PLACED = "placed"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY_FOR_PICKUP = "ready_for_pickup"
    PICKED_UP = "picked_up"
    ON_THE_WAY = "on_the_way"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Args:
            value: String representation of status

        Returns:
            OrderStatus enum value

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(str(value).lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Check if status is a terminal state."""
        return self in TERMINAL_STATUSES

    def can_cancel(self) -> bool:
        """Check if order can be cancelled from current status."""
        return not self.is_terminal()

    @property
    def display_name(self) -> str:
        """Get human-readable display name for status."""
        return self.value.replace("_", " ").title()


class PaymentMethod(str, Enum):
    """How the customer pays for the order."""

    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    WALLET = "wallet"


class PaymentStatus(str, Enum):
    """Payment processing status for an order.

    - PENDING -> COMPLETED, FAILED
    - FAILED -> COMPLETED, FAILED (retry)
    - COMPLETED -> REFUNDED
    - REFUNDED -> (terminal state)
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

    def is_successful(self) -> bool:
        return self == PaymentStatus.COMPLETED


class Platform(str, Enum):
    """Aggregated ordering platform the order originated from."""

    ZOMATO = "zomato"
    SWIGGY = "swiggy"
    UBER_EATS = "uber_eats"
    BLINKIT = "blinkit"
    ZEPTO = "zepto"
    INSTAMART = "instamart"
    GROFERS = "grofers"


ORDER_LIFECYCLE: tuple[OrderStatus, ...] = (
    OrderStatus.PLACED,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.PICKED_UP,
    OrderStatus.ON_THE_WAY,
    OrderStatus.DELIVERED,
)

TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.CANCELLED}
)

# Orders a partner may still claim.
CLAIMABLE_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.PLACED, OrderStatus.CONFIRMED}
)

# Orders whose partner location is streamed to the customer.
TRACKABLE_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.PICKED_UP, OrderStatus.ON_THE_WAY}
)

ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PLACED: {
        OrderStatus.CONFIRMED,
        OrderStatus.PREPARING,
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.PICKED_UP,
        OrderStatus.ON_THE_WAY,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.CONFIRMED: {
        OrderStatus.PREPARING,
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.PICKED_UP,
        OrderStatus.ON_THE_WAY,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PREPARING: {
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.PICKED_UP,
        OrderStatus.ON_THE_WAY,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.READY_FOR_PICKUP: {
        OrderStatus.PICKED_UP,
        OrderStatus.ON_THE_WAY,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PICKED_UP: {
        OrderStatus.ON_THE_WAY,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.ON_THE_WAY: {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.DELIVERED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
}

PERMISSIVE_ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    status: {target for target in OrderStatus if target != OrderStatus.PLACED}
    for status in OrderStatus
}

PAYMENT_STATUS_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),  # Terminal
}

TRANSITION_TABLES: Dict[str, Dict[OrderStatus, Set[OrderStatus]]] = {
    "strict": ORDER_STATUS_TRANSITIONS,
    "permissive": PERMISSIVE_ORDER_STATUS_TRANSITIONS,
}


def validate_order_status_transition(
    current: OrderStatus,
    new: OrderStatus,
    policy: str = "strict",
) -> bool:
    """Validate if order status transition is allowed.

    Args:
        current: Current order status
        new: Desired new status
        policy: Transition policy name (``strict`` or ``permissive``)

    Returns:
        True if transition is valid
    """
    return new in TRANSITION_TABLES[policy].get(current, set())


def validate_payment_status_transition(
    current: PaymentStatus,
    new: PaymentStatus,
) -> bool:
    """Validate if payment status transition is allowed."""
    return new in PAYMENT_STATUS_TRANSITIONS.get(current, set())


def get_allowed_order_transitions(
    current: OrderStatus,
    policy: str = "strict",
) -> Set[OrderStatus]:
    """Get all allowed transitions from current order status.

    Args:
        current: Current order status
        policy: Transition policy name

    Returns:
        Set of allowed next statuses
    """
    return TRANSITION_TABLES[policy].get(current, set()).copy()
