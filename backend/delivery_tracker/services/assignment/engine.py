"""
Assignment and status engine.

Coordinates the order store, the partner registry and realtime fan-out for
every caller-facing operation. Each mutating operation runs as one unit of
work:

1. authorize the caller and validate input,
2. take the per-order (or per-partner) lock and mutate,
3. commit,
4. publish the events collected in the outbox.

Events are never published for a unit of work that did not commit, and a
failed publish never undoes a commit.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Mapping, Optional, Sequence, Union
from uuid import UUID

from delivery_tracker.core import geo
from delivery_tracker.core.config import Settings, get_settings
from delivery_tracker.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from delivery_tracker.core.logging import get_logger, log_performance
from delivery_tracker.core.security import Identity
from delivery_tracker.database.models.order import Order
from delivery_tracker.database.models.user import User, UserRole
from delivery_tracker.realtime.broker import ChannelBroker
from delivery_tracker.realtime.events import (
    location_update_event,
    new_order_event,
    order_accepted_events,
    status_update_event,
)
from delivery_tracker.realtime.outbox import EventOutbox
from delivery_tracker.schemas.orders import OrderCreate
from delivery_tracker.services.orders.enums import (
    CLAIMABLE_STATUSES,
    TRACKABLE_STATUSES,
    OrderStatus,
)
from delivery_tracker.services.orders.state_machine import (
    OrderStateMachine,
    parse_target_status,
)
from delivery_tracker.services.orders.store import OrderStore
from delivery_tracker.services.partners.registry import PartnerRegistry

logger = get_logger(__name__)

# Orders a partner is currently working on.
ACTIVE_STATUSES = frozenset(
    {
        OrderStatus.CONFIRMED,
        OrderStatus.PREPARING,
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.PICKED_UP,
        OrderStatus.ON_THE_WAY,
    }
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_role(caller: Identity, *roles: UserRole, action: str) -> None:
    if caller.role not in roles:
        logger.warning(
            "Access denied: role not permitted",
            caller_id=str(caller.user_id),
            caller_role=caller.role.value,
            action=action,
        )
        raise AuthorizationError(
            f"Only {' or '.join(role.value for role in roles)} users can {action}",
            role=caller.role,
        )


class AssignmentEngine:
    """
    Caller-facing order operations.

    Attributes:
        orders: Order store
        partners: Partner registry
        broker: Channel broker events are published to after commit
        state_machine: Transition legality policy
    """

    def __init__(
        self,
        orders: OrderStore,
        partners: PartnerRegistry,
        broker: ChannelBroker,
        state_machine: Optional[OrderStateMachine] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.settings = settings or get_settings()
        self.orders = orders
        self.partners = partners
        self.broker = broker
        self.state_machine = state_machine or OrderStateMachine(
            self.settings.status_transition_policy
        )
        self._now = clock

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncIterator[EventOutbox]:
        outbox = EventOutbox()
        try:
            yield outbox
            await self.orders.repository.commit()
            await self.partners.repository.commit()
        except Exception:
            outbox.discard()
            await self.orders.repository.rollback()
            await self.partners.repository.rollback()
            raise
        await outbox.flush(self.broker)

    async def place_order(
        self,
        caller: Identity,
        data: Union[OrderCreate, Mapping[str, Any]],
    ) -> Order:
        """
        Create an order for the calling customer and announce it nearby.

        ``newOrder`` is sent to the partner channel of every online, verified
        partner within the dispatch radius of the restaurant.

        Raises:
            AuthorizationError: If the caller is not a customer
            ValidationError: If the order data is malformed
        """
        _require_role(caller, UserRole.CUSTOMER, action="place orders")

        async with self._unit_of_work() as outbox:
            order = await self.orders.create_order(caller.user_id, data)

            coordinates = order.restaurant.get("coordinates")
            partners: Sequence[User] = []
            if coordinates:
                partners = await self.partners.find_nearby(
                    coordinates["latitude"],
                    coordinates["longitude"],
                    radius_km=self.settings.dispatch_radius_km,
                )
            outbox.extend(new_order_event(order, partner.id) for partner in partners)

        logger.info(
            "Order placed",
            order_id=order.id,
            customer_id=str(caller.user_id),
            notified_partners=len(partners),
        )
        return order

    async def accept_order(self, order_id: str, caller: Identity) -> Order:
        """
        Claim an unassigned order for the calling partner.

        Exactly one of any number of concurrent acceptances wins.

        Raises:
            AuthorizationError: If the caller is not a delivery partner
            NotFoundError: If the order is unknown or no longer claimable
            ConflictError: If another partner won the claim concurrently
        """
        _require_role(caller, UserRole.DELIVERY_PARTNER, action="accept orders")
        partner = await self.partners.get_partner(caller.user_id)

        order = await self.orders.repository.get(order_id)
        if (
            order is None
            or order.delivery_partner_id is not None
            or order.status not in CLAIMABLE_STATUSES
        ):
            raise NotFoundError("Order not available for acceptance", order_id=order_id)

        repository = self.orders.repository
        with log_performance(logger, "accept_order", order_id=order_id):
            async with self._unit_of_work() as outbox:
                async with repository.lock(order_id) as locked:
                    won = await repository.claim(order_id, caller.user_id, CLAIMABLE_STATUSES)
                    if not won or locked is None:
                        logger.info(
                            "Order claim lost",
                            order_id=order_id,
                            partner_id=str(caller.user_id),
                        )
                        raise ConflictError(
                            "Order was accepted by another partner",
                            order_id=order_id,
                        )

                    locked.delivery_partner_id = caller.user_id
                    self.orders.update_status(
                        locked, OrderStatus.CONFIRMED, changed_by=caller.user_id
                    )
                    await repository.save(locked)
                    outbox.extend(order_accepted_events(locked, partner))

        logger.info("Order accepted", order_id=order_id, partner_id=str(caller.user_id))
        return locked

    async def set_status(
        self,
        order_id: str,
        caller: Identity,
        new_status: Union[OrderStatus, str],
        location: Optional[Mapping[str, Any]] = None,
    ) -> Order:
        """
        Move an order along its lifecycle on behalf of the assigned partner.

        Raises:
            AuthorizationError: If the caller is not the assigned partner
            ValidationError: If the status or location is malformed
            StateTransitionError: If the transition is not allowed
            NotFoundError: If the order is unknown
        """
        _require_role(caller, UserRole.DELIVERY_PARTNER, action="update order status")
        target = parse_target_status(new_status)
        if location is not None:
            lat, lon = geo.validate_coordinates(location.get("latitude"), location.get("longitude"))
            location = {"latitude": lat, "longitude": lon}

        repository = self.orders.repository
        async with self._unit_of_work() as outbox:
            async with repository.lock(order_id) as order:
                if order is None:
                    raise NotFoundError("Order not found", order_id=order_id)
                if order.delivery_partner_id != caller.user_id:
                    raise AuthorizationError(
                        "Order is not assigned to you",
                        order_id=order_id,
                    )

                self.state_machine.validate_transition(order, target, user_id=caller.user_id)
                entry = self.orders.update_status(
                    order, target, location=location, changed_by=caller.user_id
                )
                await repository.save(order)
                outbox.add(status_update_event(order, location=location, timestamp=entry.timestamp))

        return order

    async def update_location(
        self,
        caller: Identity,
        latitude: Any,
        longitude: Any,
    ) -> list[str]:
        """
        Record the calling partner's position and stream it to active orders.

        Every order assigned to the partner that is picked up or on the way
        gets a ``deliveryLocationUpdate`` and, when enabled, a new point on
        its route.

        Returns:
            Identifiers of the orders whose subscribers were notified

        Raises:
            AuthorizationError: If the caller is not a delivery partner
            ValidationError: If the coordinates are invalid
        """
        _require_role(caller, UserRole.DELIVERY_PARTNER, action="update location")

        repository = self.orders.repository
        notified: list[str] = []
        async with self._unit_of_work() as outbox:
            partner = await self.partners.set_location(caller.user_id, latitude, longitude)
            lat, lon = partner.current_latitude, partner.current_longitude
            timestamp = partner.location_updated_at

            active = await repository.list_by_partner(caller.user_id, TRACKABLE_STATUSES)
            for order in active:
                if self.settings.persist_route_trail:
                    async with repository.lock(order.id) as locked:
                        if locked is None or locked.status not in TRACKABLE_STATUSES:
                            continue
                        self.orders.record_location(locked, lat, lon)
                        await repository.save(locked)
                outbox.add(
                    location_update_event(order.id, caller.user_id, lat, lon, timestamp=timestamp)
                )
                notified.append(order.id)

        logger.debug(
            "Partner location updated",
            partner_id=str(caller.user_id),
            notified_orders=len(notified),
        )
        return notified

    async def rate(
        self,
        order_id: str,
        caller: Identity,
        rating: Any,
        comment: Optional[str] = None,
    ) -> Order:
        """
        Rate the counterpart of a delivered order.

        A customer's rating is also folded into the partner's rolling average.

        Raises:
            AuthorizationError: If the caller is an admin or not a party to the order
            ValidationError: If the rating or comment is invalid
            NotFoundError: If the order is unknown or not delivered
            ConflictError: If the caller's side already rated
        """
        _require_role(
            caller,
            UserRole.CUSTOMER,
            UserRole.DELIVERY_PARTNER,
            action="rate orders",
        )

        repository = self.orders.repository
        async with self._unit_of_work():
            async with repository.lock(order_id) as order:
                if order is None:
                    raise NotFoundError("Order not found", order_id=order_id)
                party = order.customer_id if caller.is_customer else order.delivery_partner_id
                if party != caller.user_id:
                    raise AuthorizationError(
                        "You can only rate your own orders",
                        order_id=order_id,
                    )

                rates_partner = caller.is_customer and order.delivery_partner_id is not None
                if rates_partner:
                    # Resolve the partner before the order is touched; the
                    # in-memory backend cannot roll back in-place changes.
                    await self.partners.get_partner(order.delivery_partner_id)

                self.orders.record_rating(order, caller.role, rating, comment)
                await repository.save(order)

                if rates_partner:
                    await self.partners.apply_rating(order.delivery_partner_id, rating)

        return order

    async def available_orders(
        self,
        caller: Identity,
        limit: Optional[int] = None,
    ) -> Sequence[Order]:
        """
        Unassigned orders the calling partner may accept.

        Raises:
            AuthorizationError: If the caller is not a delivery partner
            ValidationError: If the partner is offline or unverified
        """
        _require_role(caller, UserRole.DELIVERY_PARTNER, action="list available orders")
        partner = await self.partners.get_partner(caller.user_id)
        if not partner.is_online or not partner.is_verified:
            raise ValidationError(
                "Partner must be online and verified to see available orders",
                is_online=partner.is_online,
                is_verified=partner.is_verified,
            )
        return await self.orders.list_available(limit)

    async def partner_dashboard(self, caller: Identity) -> dict[str, Any]:
        """
        Summary of the calling partner's work.

        Today's figures are counted from 00:00 UTC.
        """
        _require_role(caller, UserRole.DELIVERY_PARTNER, action="view the dashboard")
        partner = await self.partners.get_partner(caller.user_id)
        repository = self.orders.repository

        today_start = self._now().replace(hour=0, minute=0, second=0, microsecond=0)
        stats = {
            "total_orders": await repository.count_for_partner(partner.id),
            "completed_orders": await repository.count_for_partner(
                partner.id, status=OrderStatus.DELIVERED
            ),
            "today_orders": await repository.count_for_partner(partner.id, since=today_start),
            "today_earnings": await repository.sum_delivery_fees(partner.id, today_start),
            "rating": {
                "average": Decimal(partner.rating_average or 0),
                "count": partner.rating_count or 0,
            },
            "earnings": {
                "total": Decimal(partner.earnings_total or 0),
                "pending": Decimal(partner.earnings_pending or 0),
            },
        }
        active = await repository.list_by_partner(partner.id, ACTIVE_STATUSES)
        return {"partner": partner, "stats": stats, "active_orders": list(active)}

    async def reassign_order(
        self,
        order_id: str,
        caller: Identity,
        partner_id: UUID,
    ) -> Order:
        """
        Administrator override of an order's assigned partner.

        Raises:
            AuthorizationError: If the caller is not an admin
            NotFoundError: If the order or partner is unknown
            ValidationError: If the order already reached a terminal status
        """
        _require_role(caller, UserRole.ADMIN, action="reassign orders")
        partner = await self.partners.get_partner(partner_id)

        repository = self.orders.repository
        async with self._unit_of_work() as outbox:
            async with repository.lock(order_id) as order:
                if order is None:
                    raise NotFoundError("Order not found", order_id=order_id)
                if order.status.is_terminal():
                    raise ValidationError(
                        "Completed orders cannot be reassigned",
                        order_id=order_id,
                        status=order.status,
                    )

                previous = order.delivery_partner_id
                order.delivery_partner_id = partner.id
                if order.status == OrderStatus.PLACED:
                    self.orders.update_status(
                        order, OrderStatus.CONFIRMED, changed_by=caller.user_id
                    )
                await repository.save(order)
                outbox.extend(order_accepted_events(order, partner))

        logger.info(
            "Order reassigned",
            order_id=order_id,
            previous_partner_id=str(previous) if previous else None,
            partner_id=str(partner.id),
            admin_id=str(caller.user_id),
        )
        return order

    async def toggle_online(self, caller: Identity) -> User:
        _require_role(caller, UserRole.DELIVERY_PARTNER, action="change availability")
        async with self._unit_of_work():
            partner = await self.partners.toggle_online(caller.user_id)
        return partner

    async def update_earnings(
        self,
        caller: Identity,
        amount: Any,
        mode: str = "add",
    ) -> dict[str, Decimal]:
        _require_role(caller, UserRole.DELIVERY_PARTNER, action="update earnings")
        async with self._unit_of_work():
            earnings = await self.partners.adjust_earnings(caller.user_id, amount, mode)
        return earnings

    async def verify_partner(
        self,
        caller: Identity,
        partner_id: UUID,
        verified: bool = True,
    ) -> User:
        _require_role(caller, UserRole.ADMIN, action="verify partners")
        async with self._unit_of_work():
            partner = await self.partners.set_verified(partner_id, verified)
        return partner
