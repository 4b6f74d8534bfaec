"""Order state machine with transition validation.

The state machine judges legality only; recording a transition is the job of
``OrderStore.update_status``.
"""

from typing import Any, Callable, Dict, Optional
from uuid import UUID

from delivery_tracker.core.exceptions import StateTransitionError, ValidationError
from delivery_tracker.core.logging import get_logger
from delivery_tracker.services.orders.enums import (
    TRANSITION_TABLES,
    OrderStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)

logger = get_logger(__name__)


def parse_target_status(value: Any) -> OrderStatus:
    """Parse a requested status; the initial ``placed`` status is never a target.

    Raises:
        ValidationError: If the value is not a known, non-initial status
    """
    try:
        status = value if isinstance(value, OrderStatus) else OrderStatus.from_string(value)
    except ValueError as e:
        raise ValidationError(str(e), status=value) from e

    if status == OrderStatus.PLACED:
        raise ValidationError("Orders cannot be moved back to placed", status=value)
    return status


class OrderStateMachine:
    """State machine for delivery order lifecycle transitions.

    Legality comes from the transition table of the configured policy; a few
    targets additionally require guards to pass.
    """

    def __init__(self, policy: str = "strict"):
        """Initialize the state machine.

        Args:
            policy: Transition policy name (``strict`` or ``permissive``)

        Raises:
            ValueError: If the policy is unknown
        """
        if policy not in TRANSITION_TABLES:
            raise ValueError(
                f"Unknown transition policy: {policy}. "
                f"Valid values are: {', '.join(TRANSITION_TABLES)}"
            )
        self.policy = policy
        self._guards: Dict[OrderStatus, Callable[[Any], bool]] = {
            OrderStatus.PICKED_UP: self._guard_partner_assigned,
            OrderStatus.ON_THE_WAY: self._guard_partner_assigned,
            OrderStatus.DELIVERED: self._guard_partner_assigned,
        }

        logger.debug("OrderStateMachine initialized", policy=policy)

    def can_transition(self, current: OrderStatus, target: OrderStatus) -> bool:
        return validate_order_status_transition(current, target, self.policy)

    def allowed_transitions(self, current: OrderStatus) -> list[OrderStatus]:
        """Allowed targets from ``current`` in lifecycle order."""
        allowed = get_allowed_order_transitions(current, self.policy)
        return [status for status in OrderStatus if status in allowed]

    def validate_transition(
        self,
        order: Any,
        target_status: OrderStatus,
        user_id: Optional[UUID] = None,
    ) -> bool:
        """Validate if transition to target status is allowed.

        Args:
            order: Order to validate
            target_status: Desired target status
            user_id: User initiating the transition

        Returns:
            True if transition is valid

        Raises:
            StateTransitionError: If transition is invalid
        """
        current_status = order.status

        if not self.can_transition(current_status, target_status):
            allowed = self.allowed_transitions(current_status)
            logger.warning(
                "Invalid status transition rejected",
                order_id=order.id,
                current_status=current_status.value,
                target_status=target_status.value,
                policy=self.policy,
            )
            raise StateTransitionError(
                f"Invalid transition from {current_status.value} to "
                f"{target_status.value}",
                current_state=current_status,
                target_state=target_status,
                allowed_transitions=[s.value for s in allowed],
            )

        guard = self._guards.get(target_status)
        if guard is not None and not guard(order):
            raise StateTransitionError(
                f"Transition guard failed for {current_status.value} -> "
                f"{target_status.value}",
                current_state=current_status,
                target_state=target_status,
                guard_failed=True,
            )

        logger.debug(
            "State transition validated",
            order_id=order.id,
            transition=f"{current_status.value}->{target_status.value}",
            user_id=str(user_id) if user_id else None,
        )
        return True

    @staticmethod
    def _guard_partner_assigned(order: Any) -> bool:
        return order.delivery_partner_id is not None
