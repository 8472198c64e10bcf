"""Google Maps web service access."""

from .client import GooglePlacesClient
from .exceptions import (
    UpstreamError,
    UpstreamAuthError,
    UpstreamRateLimitError,
    UpstreamAPIError,
    UpstreamNotFoundError,
    UpstreamTimeoutError,
)

__all__ = [
    "GooglePlacesClient",
    "UpstreamError",
    "UpstreamAuthError",
    "UpstreamRateLimitError",
    "UpstreamAPIError",
    "UpstreamNotFoundError",
    "UpstreamTimeoutError",
]
