"""Place validation and enrichment against the Google Places API.

Recommended places are looked up by text search and enriched with rating,
price level, opening state and a Maps URL. Lookups for several places run
concurrently; a failure for one place leaves that place unverified and
never fails the batch.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..observability.metrics import record_cache_hit, record_cache_miss
from ..places.client import GooglePlacesClient
from ..places.exceptions import UpstreamError
from .geocoding_cache import GeocodingCacheService

logger = logging.getLogger(__name__)

CACHE_MAX_SIZE = 100
CACHE_TTL_SECONDS = 300.0
DEFAULT_NEARBY_RADIUS_METERS = 1500
DEFAULT_NEARBY_RESULTS = 3

NEARBY_TYPE_MAP = {
    "restaurant": "restaurant",
    "cafe": "cafe",
    "attraction": "tourist_attraction",
    "shopping": "shopping_mall",
}

MAPS_PLACE_URL = "https://www.google.com/maps/place/?q=place_id:{place_id}"

T = TypeVar("T")

_MISSING: Any = object()


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


@dataclass
class _CacheEntry(Generic[T]):
    data: T
    timestamp: float


class PlaceDetailsCache(Generic[T]):
    """Bounded in-memory cache with a TTL and insertion-order eviction.

    When full, adding a new key evicts the oldest inserted key. Reads do not
    promote entries, so eviction is FIFO rather than LRU. Expired entries are
    dropped lazily when their key is read. Process-local; not shared between
    instances.
    """

    def __init__(
        self,
        max_size: int = CACHE_MAX_SIZE,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        name: str = "place_details",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: "OrderedDict[str, _CacheEntry[T]]" = OrderedDict()
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock

        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is not None and self._clock() - entry.timestamp > self.ttl_seconds:
            del self._entries[key]
            entry = None

        if entry is None:
            self.misses += 1
            record_cache_miss(self.name)
            return default

        self.hits += 1
        record_cache_hit(self.name)
        return entry.data

    def set(self, key: str, data: T) -> None:
        if key not in self._entries and len(self._entries) >= self.max_size:
            oldest_key, _ = self._entries.popitem(last=False)
            logger.debug("%s cache full, evicted %s", self.name, oldest_key)
        self._entries[key] = _CacheEntry(data=data, timestamp=self._clock())

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    @property
    def size(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class RecommendedPlace(_CamelModel):
    name: str
    name_en: Optional[str] = Field(default=None, alias="name_en")
    address: Optional[str] = None
    category: str = "etc"
    description: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class ValidatedPlace(RecommendedPlace):
    is_verified: bool = False
    google_place_id: Optional[str] = None
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    open_now: Optional[bool] = None
    price_level: Optional[int] = None
    google_maps_url: Optional[str] = None
    distance_from_reference: Optional[float] = None
    already_exists: Optional[bool] = None

    @classmethod
    def unverified(cls, place: RecommendedPlace) -> "ValidatedPlace":
        fields = place.model_dump(include=set(RecommendedPlace.model_fields))
        return cls(**fields, is_verified=False)


class OpeningHours(_CamelModel):
    open_now: bool = False
    weekday_text: List[str] = Field(default_factory=list)


class PlaceReview(_CamelModel):
    author_name: str = ""
    rating: Optional[float] = None
    text: str = ""
    relative_time_description: str = ""


class PlacePhoto(_CamelModel):
    photo_reference: str
    width: Optional[int] = None
    height: Optional[int] = None


class PlaceDetails(_CamelModel):
    name: str = ""
    formatted_address: Optional[str] = None
    formatted_phone_number: Optional[str] = None
    website: Optional[str] = None
    opening_hours: Optional[OpeningHours] = None
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    price_level: Optional[int] = None
    reviews: List[PlaceReview] = Field(default_factory=list)
    photos: List[PlacePhoto] = Field(default_factory=list)
    google_maps_url: Optional[str] = None

    @classmethod
    def from_api(cls, result: Dict[str, Any]) -> "PlaceDetails":
        hours = result.get("opening_hours")
        return cls(
            name=result.get("name", ""),
            formatted_address=result.get("formatted_address"),
            formatted_phone_number=result.get("formatted_phone_number") or None,
            website=result.get("website") or None,
            opening_hours=OpeningHours(
                open_now=hours.get("open_now", False),
                weekday_text=hours.get("weekday_text", []),
            ) if hours else None,
            rating=result.get("rating"),
            user_ratings_total=result.get("user_ratings_total"),
            price_level=result.get("price_level"),
            reviews=[
                PlaceReview(
                    author_name=r.get("author_name", ""),
                    rating=r.get("rating"),
                    text=r.get("text", ""),
                    relative_time_description=r.get("relative_time_description", ""),
                )
                for r in result.get("reviews", [])[:3]
            ],
            photos=[
                PlacePhoto(
                    photo_reference=p["photo_reference"],
                    width=p.get("width"),
                    height=p.get("height"),
                )
                for p in result.get("photos", [])[:5]
                if p.get("photo_reference")
            ],
            google_maps_url=result.get("url"),
        )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


def _maps_url(place_id: Optional[str]) -> Optional[str]:
    return MAPS_PLACE_URL.format(place_id=place_id) if place_id else None


def _location(result: Dict[str, Any]) -> Optional[Dict[str, float]]:
    return (result.get("geometry") or {}).get("location")


class PlaceValidationService:
    """Validates recommended places and serves nearby search / place details.

    ``client`` is None when no Maps API key is configured; every lookup then
    degrades to "unverified" / empty results.
    """

    def __init__(
        self,
        client: Optional[GooglePlacesClient],
        validation_cache: Optional[PlaceDetailsCache[ValidatedPlace]] = None,
        details_cache: Optional[PlaceDetailsCache[Optional[PlaceDetails]]] = None,
        nearby_radius_meters: int = DEFAULT_NEARBY_RADIUS_METERS,
    ):
        self.client = client
        self.validation_cache = validation_cache or PlaceDetailsCache(name="place_validation")
        self.details_cache = details_cache or PlaceDetailsCache(name="place_details")
        self.nearby_radius_meters = nearby_radius_meters

    async def validate_and_enrich(
        self,
        places: Sequence[RecommendedPlace],
        destination: str,
        country: Optional[str] = None,
    ) -> List[ValidatedPlace]:
        """Return one result per input place, in order; failures come back unverified."""
        geocoding_cache: GeocodingCacheService[Dict[str, Any]] = GeocodingCacheService()
        results = await asyncio.gather(
            *(self._validate_single(p, destination, country, geocoding_cache) for p in places),
            return_exceptions=True,
        )

        validated: List[ValidatedPlace] = []
        for place, result in zip(places, results):
            if isinstance(result, ValidatedPlace):
                validated.append(result)
                continue
            if not isinstance(result, Exception):
                raise result
            logger.warning(
                "Place validation failed for %r: %s", place.name, type(result).__name__
            )
            validated.append(ValidatedPlace.unverified(place))
        return validated

    async def search_nearby(
        self,
        latitude: float,
        longitude: float,
        category: Optional[str] = None,
        keyword: Optional[str] = None,
        max_results: int = DEFAULT_NEARBY_RESULTS,
    ) -> List[ValidatedPlace]:
        if self.client is None:
            logger.warning("Maps API key not configured; nearby search disabled")
            return []

        results = await self.client.nearby_search(
            latitude,
            longitude,
            self.nearby_radius_meters,
            place_type=NEARBY_TYPE_MAP.get(category or ""),
            keyword=keyword,
        )
        return [
            self._from_search_result(r, category or "etc")
            for r in results[:max_results]
            if _location(r)
        ]

    async def get_place_details(self, place_id: str) -> Optional[PlaceDetails]:
        """Place Details lookup; "not found" results are cached too."""
        cached = self.details_cache.get(place_id, _MISSING)
        if cached is not _MISSING:
            return cached

        if self.client is None:
            return None

        try:
            raw = await self.client.place_details(place_id)
        except UpstreamError as exc:
            logger.warning("Place details lookup failed for %s: %s", place_id, exc)
            return None

        details = PlaceDetails.from_api(raw) if raw else None
        self.details_cache.set(place_id, details)
        return details

    async def _validate_single(
        self,
        place: RecommendedPlace,
        destination: str,
        country: Optional[str],
        geocoding_cache: GeocodingCacheService[Dict[str, Any]],
    ) -> ValidatedPlace:
        cache_key = f"{place.name}:{destination}"
        cached = self.validation_cache.get(cache_key)
        if cached is not None:
            return cached

        if self.client is None:
            return ValidatedPlace.unverified(place)

        match = await geocoding_cache.get_or_fetch(
            place.name, place.name_en, destination, country, self._lookup
        )
        if match is None:
            logger.debug("No Places match for %r in %s", place.name, destination)
            return ValidatedPlace.unverified(place)

        validated = self._merge(place, match)
        self.validation_cache.set(cache_key, validated)
        return validated

    async def _lookup(
        self,
        name: str,
        name_en: Optional[str],
        destination: str,
        country: Optional[str],
    ) -> Optional[Dict[str, Any]]:
        query = " ".join(part for part in (name, destination, country) if part)
        result = await self._text_search(query)
        if result is None and name_en and name_en != name:
            result = await self._text_search(f"{name_en} {destination}")
        return result

    async def _text_search(self, query: str) -> Optional[Dict[str, Any]]:
        results = await self.client.text_search(query)
        if results and _location(results[0]):
            return results[0]
        return None

    @staticmethod
    def _merge(place: RecommendedPlace, result: Dict[str, Any]) -> ValidatedPlace:
        location = _location(result) or {}
        place_id = result.get("place_id")
        return ValidatedPlace(
            name=place.name,
            name_en=place.name_en,
            address=result.get("formatted_address") or place.address,
            category=place.category,
            description=place.description,
            latitude=location.get("lat"),
            longitude=location.get("lng"),
            is_verified=True,
            google_place_id=place_id,
            rating=result.get("rating"),
            user_ratings_total=result.get("user_ratings_total"),
            open_now=(result.get("opening_hours") or {}).get("open_now"),
            price_level=result.get("price_level"),
            google_maps_url=_maps_url(place_id),
        )

    @staticmethod
    def _from_search_result(result: Dict[str, Any], category: str) -> ValidatedPlace:
        location = _location(result) or {}
        place_id = result.get("place_id")
        return ValidatedPlace(
            name=result.get("name", ""),
            address=result.get("formatted_address") or result.get("vicinity"),
            category=category,
            latitude=location.get("lat"),
            longitude=location.get("lng"),
            is_verified=True,
            google_place_id=place_id,
            rating=result.get("rating"),
            user_ratings_total=result.get("user_ratings_total"),
            open_now=(result.get("opening_hours") or {}).get("open_now"),
            price_level=result.get("price_level"),
            google_maps_url=_maps_url(place_id),
        )
