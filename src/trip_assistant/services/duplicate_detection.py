"""Duplicate place detection.

Matching strategies, first match wins:
1. Google Place ID equality (both sides must have one)
2. Case-insensitive name equality
3. Coordinate proximity (default 100m, inclusive)
"""

import logging
from dataclasses import dataclass
from typing import Generic, Optional, Protocol, Sequence, Set, TypeVar

from ..geo import Coordinates, are_coordinates_near, DEFAULT_PROXIMITY_METERS

logger = logging.getLogger(__name__)


class DuplicateCandidate(Protocol):
    """Minimal projection of a saved place used for comparison."""

    name: str
    latitude: Optional[float]
    longitude: Optional[float]
    google_place_id: Optional[str]


T = TypeVar("T", bound=DuplicateCandidate)


@dataclass(frozen=True)
class DuplicateDetectionResult(Generic[T]):
    is_duplicate: bool
    existing_place: Optional[T] = None


class DuplicateDetectionService:
    """Decides whether a place already exists in a project's place list."""

    def __init__(self, proximity_threshold_meters: float = DEFAULT_PROXIMITY_METERS):
        self.proximity_threshold_meters = proximity_threshold_meters

    def find_duplicate(
        self,
        existing_places: Sequence[T],
        place_name: str,
        google_place_id: Optional[str],
        coordinates: Optional[Coordinates],
    ) -> DuplicateDetectionResult[T]:
        """Return the first existing place matching the candidate."""
        name_lower = place_name.lower()

        for place in existing_places:
            if self._matches(place, name_lower, google_place_id, coordinates):
                logger.debug("Duplicate found for %r: existing %r", place_name, place.name)
                return DuplicateDetectionResult(is_duplicate=True, existing_place=place)

        return DuplicateDetectionResult(is_duplicate=False)

    def _matches(
        self,
        place: DuplicateCandidate,
        name_lower: str,
        google_place_id: Optional[str],
        coordinates: Optional[Coordinates],
    ) -> bool:
        if place.google_place_id and google_place_id and place.google_place_id == google_place_id:
            return True

        if place.name.lower() == name_lower:
            return True

        if coordinates is None or place.latitude is None or place.longitude is None:
            return False
        return are_coordinates_near(
            Coordinates(place.latitude, place.longitude),
            coordinates,
            self.proximity_threshold_meters,
        )

    # Same-batch deduplication before anything is persisted

    @staticmethod
    def is_in_set(name_set: Set[str], place_name: str) -> bool:
        return place_name.lower() in name_set

    @staticmethod
    def add_to_set(name_set: Set[str], place_name: str) -> None:
        name_set.add(place_name.lower())
