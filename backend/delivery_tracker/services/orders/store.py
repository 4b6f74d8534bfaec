"""
Order store: creation, status recording, ratings, tracking and queries.

The store owns every order invariant that does not involve another entity:
identifier generation, initial status and history, distance and ETA,
append-only history, one-shot delivery time and ratings. Transition legality
is judged by ``OrderStateMachine``; authorization and cross-entity effects
belong to the assignment engine.
"""

import secrets
import string
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional, Sequence, Union
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from delivery_tracker.core import geo
from delivery_tracker.core.config import Settings, get_settings
from delivery_tracker.core.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
)
from delivery_tracker.core.logging import get_logger
from delivery_tracker.core.security import Identity
from delivery_tracker.database.models.order import Order, OrderStatusHistory
from delivery_tracker.database.models.user import UserRole
from delivery_tracker.schemas.orders import OrderCreate
from delivery_tracker.services.orders.enums import (
    CLAIMABLE_STATUSES,
    OrderStatus,
    PaymentStatus,
)
from delivery_tracker.services.orders.repository import OrderRepository

logger = get_logger(__name__)

ORDER_ID_PREFIX = "FGO"
ORDER_ID_SUFFIX_LENGTH = 5
ORDER_ID_ALPHABET = string.ascii_uppercase + string.digits

MAX_COMMENT_LENGTH = 500
MAX_PAGE_SIZE = 100

RATING_FIELDS = {
    UserRole.CUSTOMER: "customer_rating",
    UserRole.DELIVERY_PARTNER: "partner_rating",
}


def generate_order_id(now_ms: Optional[int] = None) -> str:
    """``FGO`` + milliseconds since epoch + 5 random uppercase alphanumerics."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    suffix = "".join(
        secrets.choice(ORDER_ID_ALPHABET) for _ in range(ORDER_ID_SUFFIX_LENGTH)
    )
    return f"{ORDER_ID_PREFIX}{now_ms}{suffix}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _errors_summary(exc: PydanticValidationError) -> list[dict[str, Any]]:
    return [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]


class OrderStore:
    """
    Order lifecycle operations over an ``OrderRepository``.

    Mutating methods change the order in place and stage it with the
    repository; committing is the caller's responsibility.
    """

    def __init__(
        self,
        repository: OrderRepository,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self._now = clock

    async def create_order(
        self,
        customer_id: UUID,
        data: Union[OrderCreate, Mapping[str, Any]],
    ) -> Order:
        """
        Validate and create a new order in ``placed`` status.

        Args:
            customer_id: Customer placing the order
            data: Order payload (``OrderCreate`` or an equivalent mapping)

        Returns:
            The staged order with exactly one history entry

        Raises:
            ValidationError: If the payload is malformed; nothing is staged
        """
        if isinstance(data, OrderCreate):
            payload = data
        else:
            try:
                payload = OrderCreate.model_validate(data)
            except PydanticValidationError as e:
                errors = _errors_summary(e)
                logger.warning(
                    "Order payload rejected",
                    customer_id=str(customer_id),
                    errors=errors,
                )
                raise ValidationError("Invalid order data", errors=errors) from e

        now = self._now()
        restaurant = payload.restaurant.model_dump(mode="json", exclude_none=True)
        delivery_address = payload.delivery_address.model_dump(mode="json", exclude_none=True)

        distance_km = geo.distance_between(
            restaurant.get("coordinates"),
            delivery_address.get("coordinates"),
            default_km=self.settings.default_distance_km,
        )
        eta_minutes = geo.estimate_delivery_minutes(
            distance_km,
            base_minutes=self.settings.base_delivery_minutes,
            minutes_per_km=self.settings.minutes_per_km,
        )

        order_id = generate_order_id()
        while await self.repository.get(order_id) is not None:
            order_id = generate_order_id()

        pricing = payload.pricing
        order = Order(
            id=order_id,
            customer_id=customer_id,
            delivery_partner_id=None,
            platform=payload.restaurant.platform,
            platform_order_id=payload.platform_order_id,
            restaurant=restaurant,
            items=[item.model_dump(mode="json") for item in payload.items],
            subtotal=pricing.subtotal,
            delivery_fee=pricing.delivery_fee,
            taxes=pricing.taxes,
            discount=pricing.discount,
            total=pricing.total,
            delivery_address=delivery_address,
            special_instructions=payload.special_instructions,
            status=OrderStatus.PLACED,
            payment_method=payload.payment_method,
            payment_status=PaymentStatus.PENDING,
            transaction_id=None,
            payment_amount=None,
            distance_km=distance_km,
            estimated_delivery_time=now + timedelta(minutes=eta_minutes),
            actual_delivery_time=None,
            customer_rating=None,
            partner_rating=None,
            current_location=None,
            route=[],
            created_at=now,
            updated_at=now,
        )
        order.status_history.append(
            OrderStatusHistory(
                sequence=0,
                status=OrderStatus.PLACED,
                timestamp=now,
                location=None,
                changed_by=customer_id,
            )
        )

        await self.repository.add(order)

        logger.info(
            "Order created",
            order_id=order.id,
            customer_id=str(customer_id),
            platform=order.platform.value,
            item_count=len(order.items),
            distance_km=round(distance_km, 2),
            eta_minutes=eta_minutes,
        )
        return order

    def update_status(
        self,
        order: Order,
        new_status: OrderStatus,
        location: Optional[Mapping[str, Any]] = None,
        changed_by: Optional[UUID] = None,
    ) -> OrderStatusHistory:
        """
        Record a status change.

        Appends a history entry, sets the status and stamps the actual
        delivery time on the transition to ``delivered``. Legality is not
        judged here.
        """
        now = self._now()
        entry = OrderStatusHistory(
            sequence=len(order.status_history),
            status=new_status,
            timestamp=now,
            location=dict(location) if location else None,
            changed_by=changed_by,
        )
        order.status_history.append(entry)

        previous = order.status
        order.status = new_status
        order.updated_at = now
        if new_status == OrderStatus.DELIVERED and order.actual_delivery_time is None:
            order.actual_delivery_time = now

        logger.info(
            "Order status updated",
            order_id=order.id,
            from_status=previous.value,
            to_status=new_status.value,
            changed_by=str(changed_by) if changed_by else None,
        )
        return entry

    def record_rating(
        self,
        order: Order,
        role: UserRole,
        rating: Any,
        comment: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Store a one-shot rating for the given rater role.

        Raises:
            ValidationError: If the role, rating or comment is invalid
            NotFoundError: If the order is not delivered
            ConflictError: If this role already rated the order
        """
        field = RATING_FIELDS.get(role)
        if field is None:
            raise ValidationError("Only customers and delivery partners can rate", role=role)
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be an integer between 1 and 5", rating=rating)
        if comment is not None and len(comment) > MAX_COMMENT_LENGTH:
            raise ValidationError(
                f"Comment must be at most {MAX_COMMENT_LENGTH} characters",
                comment_length=len(comment),
            )

        if order.status != OrderStatus.DELIVERED:
            raise NotFoundError(
                "Order not found or not in an acceptable state",
                order_id=order.id,
                status=order.status,
            )
        if getattr(order, field) is not None:
            raise ConflictError(
                "Order already rated",
                order_id=order.id,
                role=role,
            )

        record = {
            "rating": rating,
            "comment": comment,
            "rated_at": self._now().isoformat(),
        }
        setattr(order, field, record)

        logger.info(
            "Order rated",
            order_id=order.id,
            rater_role=role.value,
            rating=rating,
        )
        return record

    def record_location(self, order: Order, latitude: float, longitude: float) -> dict[str, Any]:
        """Update the order's current location and extend its route."""
        now = self._now().isoformat()
        order.current_location = {
            "latitude": latitude,
            "longitude": longitude,
            "last_updated": now,
        }
        order.route = [
            *(order.route or []),
            {"latitude": latitude, "longitude": longitude, "timestamp": now},
        ]
        return order.current_location

    async def get_order(self, order_id: str) -> Order:
        """
        Fetch an order by identifier.

        Raises:
            NotFoundError: If the order does not exist
        """
        order = await self.repository.get(order_id)
        if order is None:
            raise NotFoundError("Order not found", order_id=order_id)
        return order

    async def get_visible_order(self, order_id: str, caller: Identity) -> Order:
        """
        Fetch an order the caller is allowed to see.

        Customers see their own orders, partners the orders assigned to them
        and administrators every order. Anything else is reported as missing.
        """
        order = await self.get_order(order_id)
        if not self.is_visible(order, caller):
            logger.warning(
                "Order hidden from caller",
                order_id=order_id,
                caller_id=str(caller.user_id),
                caller_role=caller.role.value,
            )
            raise NotFoundError("Order not found", order_id=order_id)
        return order

    @staticmethod
    def is_visible(order: Order, caller: Identity) -> bool:
        if caller.is_admin:
            return True
        if caller.is_customer:
            return order.customer_id == caller.user_id
        if caller.is_partner:
            return order.delivery_partner_id == caller.user_id
        return False

    async def list_orders(
        self,
        caller: Identity,
        status: Optional[Union[OrderStatus, str]] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[Sequence[Order], int]:
        """
        Page through the orders visible to the caller, newest first.

        Raises:
            ValidationError: If paging arguments or the status filter are invalid
        """
        if page < 1:
            raise ValidationError("Page must be at least 1", page=page)
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"Limit must be between 1 and {MAX_PAGE_SIZE}", limit=limit
            )
        if status is not None and not isinstance(status, OrderStatus):
            try:
                status = OrderStatus.from_string(status)
            except ValueError as e:
                raise ValidationError(str(e), status=status) from e

        filters: dict[str, Any] = {}
        if caller.is_customer:
            filters["customer_id"] = caller.user_id
        elif caller.is_partner:
            filters["partner_id"] = caller.user_id

        return await self.repository.list_orders(
            status=status,
            offset=(page - 1) * limit,
            limit=limit,
            **filters,
        )

    async def list_available(self, limit: Optional[int] = None) -> Sequence[Order]:
        """Unassigned orders a partner may still claim, newest first."""
        return await self.repository.list_unassigned(
            CLAIMABLE_STATUSES,
            limit=limit or self.settings.available_orders_limit,
        )
