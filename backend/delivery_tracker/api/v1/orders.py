"""
Order API endpoints.

Placement, listing, partner acceptance, lifecycle updates, ratings and the
administrator reassignment override. Domain errors propagate to the
application's error handler, which maps them to HTTP status codes.
"""

import math
from typing import Optional

from fastapi import APIRouter, Query, status

from delivery_tracker.api.deps import AdminIdentity, CurrentIdentity, Engine, Store
from delivery_tracker.core.logging import get_logger
from delivery_tracker.schemas.orders import (
    OrderCreate,
    OrderListResponse,
    OrderResponse,
    RatingRequest,
    ReassignRequest,
    StatusUpdateRequest,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place a new order",
)
async def create_order(
    request: OrderCreate,
    identity: CurrentIdentity,
    engine: Engine,
) -> OrderResponse:
    """
    Place an order for the calling customer.

    Online, verified partners near the restaurant are notified with a
    ``newOrder`` event.
    """
    order = await engine.place_order(identity, request)
    return OrderResponse.model_validate(order)


@router.get("", response_model=OrderListResponse, summary="List visible orders")
async def list_orders(
    identity: CurrentIdentity,
    store: Store,
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
) -> OrderListResponse:
    orders, total = await store.list_orders(identity, status=status_filter, page=page, limit=limit)
    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/{order_id}", response_model=OrderResponse, summary="Get order details")
async def get_order(order_id: str, identity: CurrentIdentity, store: Store) -> OrderResponse:
    order = await store.get_visible_order(order_id, identity)
    return OrderResponse.model_validate(order)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Update order status",
)
async def update_order_status(
    order_id: str,
    request: StatusUpdateRequest,
    identity: CurrentIdentity,
    engine: Engine,
) -> OrderResponse:
    """
    Move an order along its lifecycle.

    Only the assigned delivery partner may update the status.
    """
    location = request.location.model_dump() if request.location else None
    order = await engine.set_status(order_id, identity, request.status, location=location)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/accept",
    response_model=OrderResponse,
    summary="Accept an order",
)
async def accept_order(order_id: str, identity: CurrentIdentity, engine: Engine) -> OrderResponse:
    order = await engine.accept_order(order_id, identity)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/rate",
    response_model=OrderResponse,
    summary="Rate a delivered order",
)
async def rate_order(
    order_id: str,
    request: RatingRequest,
    identity: CurrentIdentity,
    engine: Engine,
) -> OrderResponse:
    order = await engine.rate(order_id, identity, request.rating, request.comment)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/reassign",
    response_model=OrderResponse,
    summary="Reassign an order to another partner",
)
async def reassign_order(
    order_id: str,
    request: ReassignRequest,
    identity: AdminIdentity,
    engine: Engine,
) -> OrderResponse:
    order = await engine.reassign_order(order_id, identity, request.partner_id)
    return OrderResponse.model_validate(order)
