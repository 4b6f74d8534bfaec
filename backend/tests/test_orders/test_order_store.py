"""
Test suite for OrderStore.

Tests cover order creation, status recording, ratings, route tracking,
visibility rules and paginated queries against the in-memory repository.
"""

import re
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import identity_for, order_payload
from delivery_tracker.core.exceptions import ConflictError, NotFoundError, ValidationError
from delivery_tracker.core.security import Identity
from delivery_tracker.database.models.user import UserRole
from delivery_tracker.schemas.orders import OrderCreate
from delivery_tracker.services.orders.enums import OrderStatus, PaymentStatus, Platform
from delivery_tracker.services.orders.store import generate_order_id


async def _delivered(store, customer_id, partner_id):
    order = await store.create_order(customer_id, order_payload())
    order.delivery_partner_id = partner_id
    store.update_status(order, OrderStatus.DELIVERED, changed_by=partner_id)
    return order


# ============================================================================
# Identifier Tests
# ============================================================================


class TestGenerateOrderId:
    """Test order identifier format."""

    def test_format(self) -> None:
        order_id = generate_order_id(now_ms=1700000000000)
        assert re.fullmatch(r"FGO1700000000000[A-Z0-9]{5}", order_id)

    def test_uses_current_time_by_default(self) -> None:
        assert re.fullmatch(r"FGO\d{13}[A-Z0-9]{5}", generate_order_id())


# ============================================================================
# Creation Tests
# ============================================================================


class TestCreateOrder:
    """Test order creation."""

    async def test_creates_placed_order(self, store, clock) -> None:
        customer_id = uuid4()

        order = await store.create_order(customer_id, order_payload())

        assert order.id.startswith("FGO")
        assert order.customer_id == customer_id
        assert order.delivery_partner_id is None
        assert order.status == OrderStatus.PLACED
        assert order.payment_status == PaymentStatus.PENDING
        assert order.platform == Platform.SWIGGY
        assert order.total == Decimal("355.00")
        assert order.created_at == clock()

    async def test_single_history_entry(self, store) -> None:
        customer_id = uuid4()

        order = await store.create_order(customer_id, order_payload())

        assert len(order.status_history) == 1
        entry = order.status_history[0]
        assert entry.status == OrderStatus.PLACED
        assert entry.changed_by == customer_id
        assert entry.sequence == 0

    async def test_distance_and_eta_from_coordinates(self, store, clock) -> None:
        order = await store.create_order(uuid4(), order_payload())

        assert order.distance_km == pytest.approx(14.44, abs=0.01)
        assert order.estimated_delivery_time == clock() + timedelta(minutes=59)

    async def test_missing_coordinates_use_default_distance(self, store, clock) -> None:
        payload = order_payload()
        del payload["restaurant"]["coordinates"]

        order = await store.create_order(uuid4(), payload)

        assert order.distance_km == 5.0
        assert order.estimated_delivery_time == clock() + timedelta(minutes=40)

    async def test_accepts_validated_model(self, store) -> None:
        payload = OrderCreate.model_validate(order_payload())
        order = await store.create_order(uuid4(), payload)
        assert order.items[0]["name"] == "Masala Dosa"

    async def test_order_is_stored(self, store, order_repository) -> None:
        order = await store.create_order(uuid4(), order_payload())
        assert await order_repository.get(order.id) is order

    async def test_total_is_not_recomputed(self, store) -> None:
        payload = order_payload(pricing={"subtotal": "10.00", "total": "999.99"})
        order = await store.create_order(uuid4(), payload)
        assert order.total == Decimal("999.99")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"items": []},
            {"payment_method": "barter"},
            {"restaurant": {"name": "No Platform"}},
            {"pricing": {"total": "-1.00"}},
            {"delivery_address": {"street": ""}},
        ],
    )
    async def test_invalid_payload_rejected(self, store, order_repository, overrides) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await store.create_order(uuid4(), order_payload(**overrides))

        assert exc_info.value.context["errors"]
        orders, total = await order_repository.list_orders()
        assert total == 0


# ============================================================================
# Status Recording Tests
# ============================================================================


class TestUpdateStatus:
    """Test status change recording."""

    async def test_appends_history(self, store, clock) -> None:
        order = await store.create_order(uuid4(), order_payload())
        partner_id = uuid4()
        clock.advance(minutes=3)

        entry = store.update_status(
            order,
            OrderStatus.CONFIRMED,
            location={"latitude": 28.6, "longitude": 77.2},
            changed_by=partner_id,
        )

        assert order.status == OrderStatus.CONFIRMED
        assert [e.status for e in order.status_history] == [
            OrderStatus.PLACED,
            OrderStatus.CONFIRMED,
        ]
        assert entry.sequence == 1
        assert entry.timestamp == clock()
        assert entry.location == {"latitude": 28.6, "longitude": 77.2}
        assert entry.changed_by == partner_id
        assert order.updated_at == clock()

    async def test_delivery_time_set_once(self, store, clock) -> None:
        order = await store.create_order(uuid4(), order_payload())
        clock.advance(minutes=45)
        delivered_at = clock()

        store.update_status(order, OrderStatus.DELIVERED)
        clock.advance(minutes=5)
        store.update_status(order, OrderStatus.DELIVERED)

        assert order.actual_delivery_time == delivered_at

    async def test_estimate_not_changed(self, store, clock) -> None:
        order = await store.create_order(uuid4(), order_payload())
        estimate = order.estimated_delivery_time
        clock.advance(minutes=10)

        store.update_status(order, OrderStatus.PREPARING)

        assert order.estimated_delivery_time == estimate


# ============================================================================
# Rating Tests
# ============================================================================


class TestRecordRating:
    """Test one-shot ratings."""

    async def test_customer_rating_recorded(self, store, clock) -> None:
        order = await _delivered(store, uuid4(), uuid4())

        record = store.record_rating(order, UserRole.CUSTOMER, 5, "Quick and polite")

        assert record == {
            "rating": 5,
            "comment": "Quick and polite",
            "rated_at": clock().isoformat(),
        }
        assert order.customer_rating == record
        assert order.partner_rating is None

    async def test_partner_rating_recorded(self, store) -> None:
        order = await _delivered(store, uuid4(), uuid4())

        store.record_rating(order, UserRole.DELIVERY_PARTNER, 4)

        assert order.partner_rating["rating"] == 4
        assert order.partner_rating["comment"] is None

    async def test_second_rating_conflicts(self, store) -> None:
        order = await _delivered(store, uuid4(), uuid4())
        store.record_rating(order, UserRole.CUSTOMER, 5)

        with pytest.raises(ConflictError):
            store.record_rating(order, UserRole.CUSTOMER, 1)

        assert order.customer_rating["rating"] == 5

    async def test_undelivered_order_not_found(self, store) -> None:
        order = await store.create_order(uuid4(), order_payload())

        with pytest.raises(NotFoundError):
            store.record_rating(order, UserRole.CUSTOMER, 5)

    @pytest.mark.parametrize("rating", [0, 6, 4.5, "5", True, None])
    async def test_invalid_rating_rejected(self, store, rating) -> None:
        order = await _delivered(store, uuid4(), uuid4())

        with pytest.raises(ValidationError):
            store.record_rating(order, UserRole.CUSTOMER, rating)

    async def test_long_comment_rejected(self, store) -> None:
        order = await _delivered(store, uuid4(), uuid4())

        with pytest.raises(ValidationError):
            store.record_rating(order, UserRole.CUSTOMER, 5, "x" * 501)

    async def test_admin_cannot_rate(self, store) -> None:
        order = await _delivered(store, uuid4(), uuid4())

        with pytest.raises(ValidationError):
            store.record_rating(order, UserRole.ADMIN, 5)

    async def test_validation_checked_before_state(self, store) -> None:
        order = await store.create_order(uuid4(), order_payload())

        with pytest.raises(ValidationError):
            store.record_rating(order, UserRole.CUSTOMER, 9)


# ============================================================================
# Tracking Tests
# ============================================================================


class TestRecordLocation:
    """Test partner location tracking on orders."""

    async def test_current_location_and_route(self, store, clock) -> None:
        order = await store.create_order(uuid4(), order_payload())

        store.record_location(order, 28.62, 77.20)
        clock.advance(seconds=30)
        current = store.record_location(order, 28.63, 77.19)

        assert current == {
            "latitude": 28.63,
            "longitude": 77.19,
            "last_updated": clock().isoformat(),
        }
        assert order.current_location == current
        assert [(p["latitude"], p["longitude"]) for p in order.route] == [
            (28.62, 77.20),
            (28.63, 77.19),
        ]


# ============================================================================
# Query Tests
# ============================================================================


class TestVisibility:
    """Test who may see an order."""

    async def test_owner_admin_and_assigned_partner_see_order(self, store) -> None:
        customer = Identity(uuid4(), UserRole.CUSTOMER)
        partner = Identity(uuid4(), UserRole.DELIVERY_PARTNER)
        admin = Identity(uuid4(), UserRole.ADMIN)
        order = await store.create_order(customer.user_id, order_payload())
        order.delivery_partner_id = partner.user_id

        for caller in (customer, partner, admin):
            assert await store.get_visible_order(order.id, caller) is order

    async def test_strangers_get_not_found(self, store) -> None:
        order = await store.create_order(uuid4(), order_payload())

        for role in (UserRole.CUSTOMER, UserRole.DELIVERY_PARTNER):
            with pytest.raises(NotFoundError):
                await store.get_visible_order(order.id, Identity(uuid4(), role))

    async def test_unknown_order(self, store) -> None:
        with pytest.raises(NotFoundError):
            await store.get_order("FGO000MISSING")


class TestListOrders:
    """Test paginated order listing."""

    async def test_customer_sees_own_orders_newest_first(self, store, clock, customer) -> None:
        caller = identity_for(customer)
        first = await store.create_order(customer.id, order_payload())
        clock.advance(minutes=1)
        second = await store.create_order(customer.id, order_payload())
        await store.create_order(uuid4(), order_payload())

        orders, total = await store.list_orders(caller)

        assert total == 2
        assert [o.id for o in orders] == [second.id, first.id]

    async def test_partner_sees_assigned_orders(self, store, partner) -> None:
        assigned = await store.create_order(uuid4(), order_payload())
        assigned.delivery_partner_id = partner.id
        await store.create_order(uuid4(), order_payload())

        orders, total = await store.list_orders(identity_for(partner))

        assert total == 1
        assert orders[0].id == assigned.id

    async def test_admin_sees_everything(self, store, admin) -> None:
        for _ in range(3):
            await store.create_order(uuid4(), order_payload())

        _, total = await store.list_orders(identity_for(admin))

        assert total == 3

    async def test_status_filter_and_paging(self, store, clock, admin) -> None:
        created = []
        for _ in range(5):
            created.append(await store.create_order(uuid4(), order_payload()))
            clock.advance(minutes=1)
        store.update_status(created[0], OrderStatus.CANCELLED)

        page, total = await store.list_orders(identity_for(admin), status="placed", page=2, limit=2)

        assert total == 4
        assert [o.id for o in page] == [created[2].id, created[1].id]

    @pytest.mark.parametrize(
        "kwargs",
        [{"page": 0}, {"limit": 0}, {"limit": 101}, {"status": "lost"}],
    )
    async def test_invalid_arguments(self, store, admin, kwargs) -> None:
        with pytest.raises(ValidationError):
            await store.list_orders(identity_for(admin), **kwargs)


class TestListAvailable:
    """Test the claimable order listing."""

    async def test_only_unassigned_claimable_orders(self, store, clock) -> None:
        placed = await store.create_order(uuid4(), order_payload())
        clock.advance(minutes=1)
        confirmed = await store.create_order(uuid4(), order_payload())
        store.update_status(confirmed, OrderStatus.CONFIRMED)
        clock.advance(minutes=1)
        taken = await store.create_order(uuid4(), order_payload())
        taken.delivery_partner_id = uuid4()
        clock.advance(minutes=1)
        cancelled = await store.create_order(uuid4(), order_payload())
        store.update_status(cancelled, OrderStatus.CANCELLED)

        available = await store.list_available()

        assert [o.id for o in available] == [confirmed.id, placed.id]

    async def test_limit(self, store) -> None:
        for _ in range(3):
            await store.create_order(uuid4(), order_payload())

        assert len(await store.list_available(limit=2)) == 2
