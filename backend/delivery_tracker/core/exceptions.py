"""
Domain error taxonomy shared by every component.

Each error carries a stable machine-readable ``code``, a human message and
free-form context. The API layer maps the classes to HTTP status codes in a
single exception handler; nothing in the core swallows them.
"""

from typing import Any


class DeliveryTrackerError(Exception):
    """Base exception for all domain errors."""

    code = "DELIVERY_TRACKER_ERROR"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for API responses and realtime logs."""
        return {
            "error": self.code,
            "message": self.message,
            "details": {key: _jsonable(value) for key, value in self.context.items()},
        }


class ValidationError(DeliveryTrackerError):
    """Raised when input is malformed; no state has been mutated."""

    code = "VALIDATION_ERROR"


class StateTransitionError(ValidationError):
    """Raised when an order status transition is not allowed."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, message: str, current_state: Any, target_state: Any, **context: Any):
        super().__init__(
            message,
            current_state=current_state,
            target_state=target_state,
            **context,
        )
        self.current_state = current_state
        self.target_state = target_state


class AuthorizationError(DeliveryTrackerError):
    """Raised on a role or ownership mismatch."""

    code = "FORBIDDEN"


class NotFoundError(DeliveryTrackerError):
    """
    Raised for unknown identifiers.

    Also raised when an order exists but is not in a state acceptable for the
    requested operation, so callers cannot tell existence apart from state.
    """

    code = "NOT_FOUND"


class ConflictError(DeliveryTrackerError):
    """Raised when a concurrent claim was lost or a one-shot value is already set."""

    code = "CONFLICT"


class InsufficientFundsError(DeliveryTrackerError):
    """Raised when a withdrawal exceeds a partner's pending earnings."""

    code = "INSUFFICIENT_FUNDS"


class ExternalServiceError(DeliveryTrackerError):
    """Raised when an external collaborator (payment gateway) fails."""

    code = "EXTERNAL_SERVICE_ERROR"


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    if hasattr(value, "value"):
        return value.value
    return str(value)
