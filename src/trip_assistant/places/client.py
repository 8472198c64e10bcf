"""Google Maps Places web service client."""

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .exceptions import (
    UpstreamAPIError,
    UpstreamAuthError,
    UpstreamNotFoundError,
    UpstreamRateLimitError,
)
from .http_client import get_http_client
from .retry import retry_with_backoff

logger = logging.getLogger(__name__)

MAPS_API_BASE_URL = "https://maps.googleapis.com/maps/api"

DETAIL_FIELDS = (
    "name",
    "formatted_address",
    "formatted_phone_number",
    "website",
    "opening_hours",
    "rating",
    "user_ratings_total",
    "price_level",
    "reviews",
    "photos",
    "url",
)

SERVICE_NAME = "google_maps"

class GooglePlacesClient:
    """Thin async wrapper over the Places text/nearby/details and Geocoding endpoints.

    Every call is retried on transient HTTP failures and maps the body-level
    ``status`` field onto the upstream exception hierarchy. Empty results
    (``ZERO_RESULTS``) are returned as ``[]`` / ``None``, never raised.
    """

    def __init__(
        self,
        api_key: str,
        language: str = "ko",
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = MAPS_API_BASE_URL,
    ):
        self.api_key = api_key
        self.language = language
        self._http_client = http_client
        self.base_url = base_url.rstrip("/")

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._http_client or get_http_client()

    async def text_search(self, query: str) -> List[Dict[str, Any]]:
        payload = await self._get("place/textsearch/json", {"query": query})
        return payload.get("results", [])

    async def nearby_search(
        self,
        latitude: float,
        longitude: float,
        radius_meters: int,
        place_type: Optional[str] = None,
        keyword: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "location": f"{latitude},{longitude}",
            "radius": radius_meters,
        }
        if place_type:
            params["type"] = place_type
        if keyword:
            params["keyword"] = keyword
        payload = await self._get("place/nearbysearch/json", params)
        return payload.get("results", [])

    async def place_details(
        self, place_id: str, fields: Sequence[str] = DETAIL_FIELDS
    ) -> Optional[Dict[str, Any]]:
        try:
            payload = await self._get(
                "place/details/json",
                {"place_id": place_id, "fields": ",".join(fields)},
            )
        except UpstreamNotFoundError:
            return None
        return payload.get("result")

    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{path}"
        query = {**params, "key": self.api_key, "language": self.language}

        async def _do_request():
            response = await self.http_client.get(url, params=query)
            response.raise_for_status()
            return response

        response = await retry_with_backoff(_do_request, service=SERVICE_NAME)
        payload = response.json()
        self._raise_for_api_status(path, payload)
        return payload

    @staticmethod
    def _raise_for_api_status(path: str, payload: Dict[str, Any]) -> None:
        status = payload.get("status", "OK")
        if status in ("OK", "ZERO_RESULTS"):
            return

        detail = payload.get("error_message", "")
        logger.warning("Maps API %s returned status %s: %s", path, status, detail)

        if status == "OVER_QUERY_LIMIT":
            raise UpstreamRateLimitError(f"Maps API quota exceeded ({path})", service=SERVICE_NAME)
        if status == "REQUEST_DENIED":
            raise UpstreamAuthError(f"Maps API request denied ({path})", service=SERVICE_NAME)
        if status == "NOT_FOUND":
            raise UpstreamNotFoundError(f"Maps API resource not found ({path})", service=SERVICE_NAME)
        raise UpstreamAPIError(
            f"Maps API error {status} ({path})",
            status_code=200,
            response_body=detail[:500],
            service=SERVICE_NAME,
        )
