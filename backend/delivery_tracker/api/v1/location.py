"""
Partner location API endpoints.

Location reports are streamed to the subscribers of every order the partner
is currently carrying.
"""

from typing import Optional

from fastapi import APIRouter, Query

from delivery_tracker.api.deps import CurrentIdentity, Engine, Registry
from delivery_tracker.core import geo
from delivery_tracker.schemas.partners import (
    LocationUpdateRequest,
    LocationUpdateResponse,
    NearbyPartner,
    NearbyPartnersResponse,
)

router = APIRouter(prefix="/location", tags=["location"])


@router.post("/update", response_model=LocationUpdateResponse, summary="Report partner location")
async def update_location(
    request: LocationUpdateRequest,
    identity: CurrentIdentity,
    engine: Engine,
) -> LocationUpdateResponse:
    notified = await engine.update_location(identity, request.latitude, request.longitude)
    partner = await engine.partners.get_partner(identity.user_id)
    return LocationUpdateResponse(
        latitude=partner.current_latitude,
        longitude=partner.current_longitude,
        updated_at=partner.location_updated_at,
        notified_orders=notified,
    )


@router.get(
    "/nearby-partners",
    response_model=NearbyPartnersResponse,
    summary="Online, verified partners near a point",
)
async def nearby_partners(
    identity: CurrentIdentity,
    registry: Registry,
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius: Optional[float] = Query(None, gt=0, le=100, description="Radius in km"),
    exact: bool = Query(False, description="Apply great-circle distance post-filter"),
) -> NearbyPartnersResponse:
    radius_km = radius if radius is not None else registry.settings.dispatch_radius_km
    partners = await registry.find_nearby(latitude, longitude, radius_km=radius_km, exact=exact)
    results = []
    for partner in partners:
        distance_km = geo.haversine_distance_km(
            latitude, longitude, partner.current_latitude, partner.current_longitude
        )
        vehicle = partner.vehicle_type.value if partner.vehicle_type else None
        results.append(
            NearbyPartner.model_validate(partner).model_copy(
                update={
                    "distance_km": round(distance_km, 2),
                    "eta_minutes": geo.estimate_travel_minutes(distance_km, vehicle),
                }
            )
        )
    return NearbyPartnersResponse(
        partners=results,
        count=len(partners),
        radius_km=radius_km,
    )
