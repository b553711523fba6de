"""Great-circle helpers used for feed filtering and offer distances."""
import math
from typing import Optional

EARTH_RADIUS_KM = 6371.0
ETA_MINUTES_PER_KM = 3
DEFAULT_ETA_MINUTES = 30


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Distance in km between two (lat, lng) points given in degrees.

    No input validation: NaN coordinates propagate to a NaN distance.
    """
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def within_radius(distance_km: float, radius_km: float) -> bool:
    # inclusive; the tolerance absorbs float noise for points placed exactly on the boundary
    return distance_km <= radius_km or math.isclose(distance_km, radius_km, abs_tol=1e-9)


def round_distance(distance_km: Optional[float]) -> Optional[float]:
    if distance_km is None:
        return None
    return round(distance_km, 2)


def estimate_eta_minutes(distance_km: Optional[float]) -> int:
    if distance_km is None or math.isnan(distance_km):
        return DEFAULT_ETA_MINUTES
    return max(1, math.ceil(distance_km * ETA_MINUTES_PER_KM))
