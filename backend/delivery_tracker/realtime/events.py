"""
Realtime event types, channel names and payload builders.

Payload keys are camelCase because they are consumed directly by the
customer and partner apps.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Union
from uuid import UUID

from delivery_tracker.database.models.order import Order
from delivery_tracker.database.models.user import User

ORDER_CHANNEL_PREFIX = "order_"
PARTNER_CHANNEL_PREFIX = "partner_"


class EventType(str, Enum):
    """Names of the events pushed to channel subscribers."""

    NEW_ORDER = "newOrder"
    STATUS_UPDATE = "statusUpdate"
    DELIVERY_LOCATION_UPDATE = "deliveryLocationUpdate"
    ORDER_ACCEPTED = "orderAccepted"


def order_channel(order_id: str) -> str:
    return f"{ORDER_CHANNEL_PREFIX}{order_id}"


def partner_channel(partner_id: Union[UUID, str]) -> str:
    return f"{PARTNER_CHANNEL_PREFIX}{partner_id}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _money(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(Decimal(value))


@dataclass(frozen=True)
class RealtimeEvent:
    """One message published on one channel."""

    event: EventType
    channel: str
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event.value,
            "channel": self.channel,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "RealtimeEvent":
        """
        Rebuild an event from its JSON form.

        Raises:
            ValueError: If the document is not a valid event
        """
        try:
            data = json.loads(raw)
            return cls(
                event=EventType(data["event"]),
                channel=data["channel"],
                payload=data["payload"],
                timestamp=datetime.fromisoformat(data["timestamp"]),
            )
        except (KeyError, TypeError, json.JSONDecodeError) as e:
            raise ValueError(f"Malformed realtime event: {e}") from e


def _location(location: Optional[Mapping[str, Any]]) -> Optional[dict[str, float]]:
    if not location:
        return None
    return {
        "latitude": float(location["latitude"]),
        "longitude": float(location["longitude"]),
    }


def new_order_event(order: Order, partner_id: UUID) -> RealtimeEvent:
    """Announce a freshly placed order to one nearby partner."""
    return RealtimeEvent(
        event=EventType.NEW_ORDER,
        channel=partner_channel(partner_id),
        payload={
            "orderId": order.id,
            "restaurant": order.restaurant,
            "deliveryAddress": order.delivery_address,
            "pricing": {
                "subtotal": _money(order.subtotal),
                "deliveryFee": _money(order.delivery_fee),
                "taxes": _money(order.taxes),
                "discount": _money(order.discount),
                "total": _money(order.total),
            },
        },
    )


def status_update_event(
    order: Order,
    location: Optional[Mapping[str, Any]] = None,
    timestamp: Optional[datetime] = None,
) -> RealtimeEvent:
    timestamp = timestamp or _utcnow()
    payload: dict[str, Any] = {
        "orderId": order.id,
        "status": order.status.value,
        "timestamp": timestamp.isoformat(),
    }
    if location:
        payload["location"] = _location(location)
    return RealtimeEvent(
        event=EventType.STATUS_UPDATE,
        channel=order_channel(order.id),
        payload=payload,
        timestamp=timestamp,
    )


def location_update_event(
    order_id: str,
    partner_id: UUID,
    latitude: float,
    longitude: float,
    timestamp: Optional[datetime] = None,
) -> RealtimeEvent:
    timestamp = timestamp or _utcnow()
    return RealtimeEvent(
        event=EventType.DELIVERY_LOCATION_UPDATE,
        channel=order_channel(order_id),
        payload={
            "orderId": order_id,
            "partnerId": str(partner_id),
            "location": {"latitude": latitude, "longitude": longitude},
            "timestamp": timestamp.isoformat(),
        },
        timestamp=timestamp,
    )


def partner_summary(partner: User) -> dict[str, Any]:
    """Public view of a partner shared with the customer."""
    return {
        "id": str(partner.id),
        "name": partner.name,
        "phone": partner.phone,
        "vehicleType": partner.vehicle_type.value if partner.vehicle_type else None,
        "vehicleNumber": partner.vehicle_number,
        "rating": {
            "average": float(partner.rating_average or 0),
            "count": partner.rating_count or 0,
        },
    }


def order_accepted_events(order: Order, partner: User) -> list[RealtimeEvent]:
    """``orderAccepted`` for the order's channel and the partner's channel."""
    timestamp = _utcnow()
    payload = {
        "orderId": order.id,
        "deliveryPartner": partner_summary(partner),
        "timestamp": timestamp.isoformat(),
    }
    return [
        RealtimeEvent(
            event=EventType.ORDER_ACCEPTED,
            channel=channel,
            payload=dict(payload),
            timestamp=timestamp,
        )
        for channel in (order_channel(order.id), partner_channel(partner.id))
    ]
