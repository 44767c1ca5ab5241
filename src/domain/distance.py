"""
Distance calculation using the Haversine formula.

Used by ride search to keep only rides whose origin lies within a radius
of the passenger's pickup point.  Great-circle distance is good enough for
"rides leaving near me"; no routing engine is involved.

Complexity: O(1) per call.
"""

import math

EARTH_RADIUS_KM = 6_371.0


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def within_radius(
    lat: float, lng: float, centre_lat: float, centre_lng: float, radius_km: float
) -> bool:
    return haversine_km(lat, lng, centre_lat, centre_lng) <= radius_km
