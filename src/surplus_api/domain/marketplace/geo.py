"""Great-circle distance helpers for offer discovery."""

from __future__ import annotations

import math

from .rules import EARTH_RADIUS_KM

_KM_PER_DEGREE_LAT = 111.045


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def bounding_box(
    latitude: float, longitude: float, radius_km: float
) -> tuple[float, float, list[tuple[float, float]]]:
    """Return ``(min_lat, max_lat, longitude_ranges)`` enclosing the radius.

    A box that crosses the antimeridian is split into two longitude ranges, one
    on each side of ±180°. Used only as a coarse SQL prefilter; exact filtering
    uses ``haversine_km``.
    """

    lat_delta = radius_km / _KM_PER_DEGREE_LAT
    min_lat, max_lat = latitude - lat_delta, latitude + lat_delta
    cos_lat = math.cos(math.radians(latitude))
    if cos_lat < 1e-6:
        return min_lat, max_lat, [(-180.0, 180.0)]
    lon_delta = radius_km / (_KM_PER_DEGREE_LAT * cos_lat)
    if lon_delta >= 180.0:
        return min_lat, max_lat, [(-180.0, 180.0)]

    west, east = longitude - lon_delta, longitude + lon_delta
    if west < -180.0:
        return min_lat, max_lat, [(west + 360.0, 180.0), (-180.0, east)]
    if east > 180.0:
        return min_lat, max_lat, [(west, 180.0), (-180.0, east - 360.0)]
    return min_lat, max_lat, [(west, east)]
