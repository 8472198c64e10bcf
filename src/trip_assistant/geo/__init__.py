"""Coordinate and distance helpers."""

from .coordinates import (
    Coordinates,
    calculate_distance,
    are_coordinates_near,
    EARTH_RADIUS_METERS,
    DEFAULT_PROXIMITY_METERS,
)

__all__ = [
    "Coordinates",
    "calculate_distance",
    "are_coordinates_near",
    "EARTH_RADIUS_METERS",
    "DEFAULT_PROXIMITY_METERS",
]
