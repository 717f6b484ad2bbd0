from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt

from app.settings import get_office_location

EARTH_RADIUS_M = 6371000.0


@dataclass(frozen=True, slots=True)
class GeofenceResult:
    distance_m: float | None
    radius_m: int
    within_geofence: bool | None

    @property
    def has_location(self) -> bool:
        return self.distance_m is not None


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(min(1.0, sqrt(a)))
    return EARTH_RADIUS_M * c


def within_geofence(distance_value_m: float, radius_m: float) -> bool:
    return distance_value_m <= radius_m


def evaluate_office_location(lat: float | None, lon: float | None) -> GeofenceResult:
    office_lat, office_lon, radius_m = get_office_location()
    if lat is None or lon is None:
        return GeofenceResult(distance_m=None, radius_m=radius_m, within_geofence=None)

    distance_value = distance_m(lat, lon, office_lat, office_lon)
    return GeofenceResult(
        distance_m=round(distance_value, 2),
        radius_m=radius_m,
        within_geofence=within_geofence(distance_value, radius_m),
    )
