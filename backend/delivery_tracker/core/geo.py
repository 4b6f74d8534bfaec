"""
Geographic helpers for distance, ETA and nearby-partner prefiltering.

Pure functions; no I/O and no shared state.
"""

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from delivery_tracker.core.exceptions import ValidationError

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE = 111.0

DEFAULT_DISTANCE_KM = 5.0
BASE_DELIVERY_MINUTES = 30
MINUTES_PER_KM = 2.0

PICKUP_BUFFER_MINUTES = 10
DEFAULT_SPEED_KMH = 25.0
VEHICLE_SPEEDS_KMH: dict[str, float] = {
    "bicycle": 15.0,
    "bike": 25.0,
    "scooter": 25.0,
    "car": 20.0,
}


@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned latitude/longitude box.

    A box spanning the antimeridian has ``min_longitude > max_longitude``:
    it covers ``[min_longitude, 180]`` and ``[-180, max_longitude]``.
    """

    min_latitude: float
    max_latitude: float
    min_longitude: float
    max_longitude: float

    @property
    def crosses_antimeridian(self) -> bool:
        return self.min_longitude > self.max_longitude

    def contains(self, latitude: Optional[float], longitude: Optional[float]) -> bool:
        if latitude is None or longitude is None:
            return False
        if not self.min_latitude <= latitude <= self.max_latitude:
            return False
        if self.crosses_antimeridian:
            return longitude >= self.min_longitude or longitude <= self.max_longitude
        return self.min_longitude <= longitude <= self.max_longitude


def haversine_distance_km(
    lat1: float, lon1: float, lat2: float, lon2: float
) -> float:
    """
    Great-circle distance between two points.

    Args:
        lat1: Latitude of the first point in degrees
        lon1: Longitude of the first point in degrees
        lat2: Latitude of the second point in degrees
        lon2: Longitude of the second point in degrees

    Returns:
        Distance in kilometres
    """
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def _point(coordinates: Optional[Mapping[str, Any]]) -> Optional[tuple[float, float]]:
    if not coordinates:
        return None
    latitude = coordinates.get("latitude")
    longitude = coordinates.get("longitude")
    if latitude is None or longitude is None:
        return None
    return float(latitude), float(longitude)


def distance_between(
    origin: Optional[Mapping[str, Any]],
    destination: Optional[Mapping[str, Any]],
    default_km: float = DEFAULT_DISTANCE_KM,
) -> float:
    """
    Distance between two coordinate mappings.

    Either side may be missing or incomplete, in which case ``default_km``
    is returned instead of failing.
    """
    start = _point(origin)
    end = _point(destination)
    if start is None or end is None:
        return default_km
    return haversine_distance_km(start[0], start[1], end[0], end[1])


def estimate_delivery_minutes(
    distance_km: float,
    base_minutes: int = BASE_DELIVERY_MINUTES,
    minutes_per_km: float = MINUTES_PER_KM,
) -> int:
    """Minutes from order placement to expected delivery."""
    return base_minutes + math.ceil(minutes_per_km * distance_km)


def estimate_travel_minutes(distance_km: float, vehicle_type: Optional[str] = "bike") -> int:
    """
    Travel ETA for a partner, including a fixed pickup buffer.

    Args:
        distance_km: Distance to travel
        vehicle_type: Partner vehicle; unknown vehicles use the default speed

    Returns:
        Whole minutes, rounded up
    """
    speed = VEHICLE_SPEEDS_KMH.get(str(vehicle_type or "").lower(), DEFAULT_SPEED_KMH)
    return math.ceil(PICKUP_BUFFER_MINUTES + distance_km / speed * 60)


def bounding_box(
    latitude: float,
    longitude: float,
    radius_km: float,
    km_per_degree: float = KM_PER_DEGREE,
) -> BoundingBox:
    """
    Square box of ``radius_km / km_per_degree`` degrees around a point.

    Latitudes are clamped to the poles. Longitudes past ±180 wrap around, so
    a box near the antimeridian crosses it instead of being cut off.
    """
    delta = radius_km / km_per_degree
    if delta >= 180:
        min_longitude, max_longitude = -180.0, 180.0
    else:
        min_longitude = _wrap_longitude(longitude - delta)
        max_longitude = _wrap_longitude(longitude + delta)
    return BoundingBox(
        min_latitude=max(latitude - delta, -90.0),
        max_latitude=min(latitude + delta, 90.0),
        min_longitude=min_longitude,
        max_longitude=max_longitude,
    )


def _wrap_longitude(longitude: float) -> float:
    if -180.0 <= longitude <= 180.0:
        return longitude
    return (longitude + 180.0) % 360.0 - 180.0


def validate_coordinates(latitude: Any, longitude: Any) -> tuple[float, float]:
    """
    Validate and coerce a latitude/longitude pair.

    Raises:
        ValidationError: If either value is missing, non-numeric or out of range
    """
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            "Latitude and longitude must be numbers",
            latitude=latitude,
            longitude=longitude,
        ) from e

    if math.isnan(lat) or not -90.0 <= lat <= 90.0:
        raise ValidationError("Latitude must be between -90 and 90", latitude=latitude)
    if math.isnan(lon) or not -180.0 <= lon <= 180.0:
        raise ValidationError(
            "Longitude must be between -180 and 180", longitude=longitude
        )
    return lat, lon
