"""
Test suite for realtime event payloads and channel naming.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from conftest import build_user, order_payload
from delivery_tracker.database.models.user import UserRole
from delivery_tracker.realtime.events import (
    EventType,
    RealtimeEvent,
    location_update_event,
    new_order_event,
    order_accepted_events,
    order_channel,
    partner_channel,
    status_update_event,
)
from delivery_tracker.services.orders.enums import OrderStatus

MOMENT = datetime(2026, 3, 14, 12, 30, tzinfo=timezone.utc)


@pytest.fixture
async def order(store):
    return await store.create_order(uuid4(), order_payload())


class TestChannels:
    """Test channel names."""

    def test_names(self) -> None:
        partner_id = uuid4()
        assert order_channel("FGO1") == "order_FGO1"
        assert partner_channel(partner_id) == f"partner_{partner_id}"


class TestPayloads:
    """Test event payload builders."""

    async def test_new_order(self, order) -> None:
        partner_id = uuid4()

        event = new_order_event(order, partner_id)

        assert event.event == EventType.NEW_ORDER
        assert event.channel == partner_channel(partner_id)
        assert event.payload["orderId"] == order.id
        assert event.payload["deliveryAddress"]["city"] == "New Delhi"
        assert event.payload["pricing"] == {
            "subtotal": 300.0,
            "deliveryFee": 40.0,
            "taxes": 15.0,
            "discount": 0.0,
            "total": 355.0,
        }

    async def test_status_update_without_location(self, order) -> None:
        order.status = OrderStatus.PREPARING

        event = status_update_event(order, timestamp=MOMENT)

        assert event.channel == order_channel(order.id)
        assert event.payload == {
            "orderId": order.id,
            "status": "preparing",
            "timestamp": MOMENT.isoformat(),
        }

    async def test_status_update_with_location(self, order) -> None:
        event = status_update_event(order, location={"latitude": "28.6", "longitude": 77}, timestamp=MOMENT)
        assert event.payload["location"] == {"latitude": 28.6, "longitude": 77.0}

    def test_location_update(self) -> None:
        partner_id = uuid4()

        event = location_update_event("FGO1", partner_id, 28.6, 77.2, timestamp=MOMENT)

        assert event.event == EventType.DELIVERY_LOCATION_UPDATE
        assert event.payload == {
            "orderId": "FGO1",
            "partnerId": str(partner_id),
            "location": {"latitude": 28.6, "longitude": 77.2},
            "timestamp": MOMENT.isoformat(),
        }

    async def test_order_accepted_goes_to_both_channels(self, order) -> None:
        partner = build_user(UserRole.DELIVERY_PARTNER, name="Ravi")

        events = order_accepted_events(order, partner)

        assert [e.channel for e in events] == [
            order_channel(order.id),
            partner_channel(partner.id),
        ]
        summary = events[0].payload["deliveryPartner"]
        assert summary["name"] == "Ravi"
        assert summary["rating"] == {"average": 0.0, "count": 0}
        assert "password_hash" not in summary
        assert "email" not in summary


class TestSerialization:
    """Test the JSON wire form used by the Redis broker."""

    def test_json_round_trip(self) -> None:
        event = location_update_event("FGO1", uuid4(), 28.6, 77.2, timestamp=MOMENT)

        restored = RealtimeEvent.from_json(event.to_json())

        assert restored == event

    def test_wire_shape(self) -> None:
        event = RealtimeEvent(EventType.NEW_ORDER, "partner_1", {"orderId": "FGO1"}, MOMENT)
        assert event.to_dict() == {
            "event": "newOrder",
            "channel": "partner_1",
            "payload": {"orderId": "FGO1"},
            "timestamp": MOMENT.isoformat(),
        }

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            '{"event": "newOrder"}',
            '{"event": "teleport", "channel": "c", "payload": {}, "timestamp": "2026-01-01T00:00:00"}',
            "[]",
        ],
    )
    def test_malformed_documents(self, raw: str) -> None:
        with pytest.raises(ValueError):
            RealtimeEvent.from_json(raw)
