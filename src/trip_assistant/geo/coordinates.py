"""Geographic coordinates and great-circle distance."""

import math
from dataclasses import dataclass

EARTH_RADIUS_METERS = 6_371_000.0
DEFAULT_PROXIMITY_METERS = 100.0


@dataclass(frozen=True, slots=True)
class Coordinates:
    """Immutable latitude/longitude pair in decimal degrees."""

    latitude: float
    longitude: float


def calculate_distance(c1: Coordinates, c2: Coordinates) -> float:
    """Distance between two points in meters (Haversine formula).

    Non-finite inputs propagate as NaN; callers validate ranges upstream.
    """
    lat1 = math.radians(c1.latitude)
    lat2 = math.radians(c2.latitude)
    delta_lat = math.radians(c2.latitude - c1.latitude)
    delta_lng = math.radians(c2.longitude - c1.longitude)

    a = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(delta_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def are_coordinates_near(
    c1: Coordinates,
    c2: Coordinates,
    threshold_meters: float = DEFAULT_PROXIMITY_METERS,
) -> bool:
    """Return True if the points are at most ``threshold_meters`` apart."""
    return calculate_distance(c1, c2) <= threshold_meters
