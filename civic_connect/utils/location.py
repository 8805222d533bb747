import math
from typing import Optional

from civic_connect.models.issue_model import Coordinate, Issue

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in kilometres between two points given in degrees."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    # Clamp guards sqrt(1 - a) against rounding just past 1.0 for antipodal points
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(a: Coordinate, b: Coordinate) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def issue_distance_km(issue: Issue, origin: Coordinate) -> float:
    """Distance from origin to the issue; issues without a coordinate are infinitely far."""
    coordinate = issue.coordinate
    if coordinate is None:
        return math.inf
    return distance_between(origin, coordinate)


def format_coordinate(lat: float, lng: float) -> str:
    return f"{lat:.6f}, {lng:.6f}"


def maps_link(coordinate: Optional[Coordinate]) -> Optional[str]:
    if coordinate is None:
        return None
    return f"https://www.google.com/maps?q={coordinate.latitude},{coordinate.longitude}"
