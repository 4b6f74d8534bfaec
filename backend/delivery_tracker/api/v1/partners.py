"""
Delivery partner API endpoints.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query

from delivery_tracker.api.deps import AdminIdentity, CurrentIdentity, Engine
from delivery_tracker.schemas.orders import OrderResponse
from delivery_tracker.schemas.partners import (
    AvailabilityResponse,
    DashboardResponse,
    DashboardStats,
    EarningsSummary,
    EarningsUpdateRequest,
    VerifyRequest,
)
from delivery_tracker.schemas.users import UserResponse

router = APIRouter(prefix="/partners", tags=["partners"])


@router.get("/dashboard", response_model=DashboardResponse, summary="Partner dashboard")
async def get_dashboard(identity: CurrentIdentity, engine: Engine) -> DashboardResponse:
    dashboard = await engine.partner_dashboard(identity)
    return DashboardResponse(
        partner=UserResponse.model_validate(dashboard["partner"]),
        stats=DashboardStats.model_validate(dashboard["stats"]),
        active_orders=[OrderResponse.model_validate(order) for order in dashboard["active_orders"]],
    )


@router.post("/toggle-status", response_model=AvailabilityResponse, summary="Go online or offline")
async def toggle_status(identity: CurrentIdentity, engine: Engine) -> AvailabilityResponse:
    partner = await engine.toggle_online(identity)
    return AvailabilityResponse(is_online=partner.is_online)


@router.get(
    "/available-orders",
    response_model=list[OrderResponse],
    summary="Unassigned orders open for acceptance",
)
async def available_orders(
    identity: CurrentIdentity,
    engine: Engine,
    limit: Optional[int] = Query(None, ge=1, le=100),
) -> list[OrderResponse]:
    """
    List unassigned orders in ``placed`` or ``confirmed`` status.

    The partner must be online and verified.
    """
    orders = await engine.available_orders(identity, limit)
    return [OrderResponse.model_validate(order) for order in orders]


@router.post("/update-earnings", response_model=EarningsSummary, summary="Add or withdraw earnings")
async def update_earnings(
    request: EarningsUpdateRequest,
    identity: CurrentIdentity,
    engine: Engine,
) -> EarningsSummary:
    earnings = await engine.update_earnings(identity, request.amount, request.mode)
    return EarningsSummary(**earnings)


@router.post("/{partner_id}/verify", response_model=UserResponse, summary="Verify a partner")
async def verify_partner(
    partner_id: UUID,
    request: VerifyRequest,
    identity: AdminIdentity,
    engine: Engine,
) -> UserResponse:
    partner = await engine.verify_partner(identity, partner_id, request.verified)
    return UserResponse.model_validate(partner)
