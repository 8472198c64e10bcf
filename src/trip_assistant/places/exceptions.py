"""Upstream (Google Maps / Gemini) exception types.

Raised by the places client and retry helper. Response bodies are kept on the
exception for server-side logs only; they never reach chat users.
"""

from typing import Optional


class UpstreamError(Exception):
    """Base exception for all upstream service errors."""

    def __init__(self, message: str, service: str = ""):
        self.service = service
        super().__init__(message)


class UpstreamAuthError(UpstreamError):
    """Rejected API key or quota project (401/403, REQUEST_DENIED)."""

    pass


class UpstreamRateLimitError(UpstreamError):
    """Quota exceeded (429, OVER_QUERY_LIMIT). Includes retry_after hint if available."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        service: str = "",
    ):
        self.retry_after = retry_after
        super().__init__(message, service)


class UpstreamAPIError(UpstreamError):
    """Upstream returned an error response (4xx/5xx or a non-OK status field)."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        response_body: str = "",
        service: str = "",
    ):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message, service)


class UpstreamNotFoundError(UpstreamAPIError):
    """Resource not found (404, NOT_FOUND)."""

    def __init__(self, message: str, service: str = ""):
        super().__init__(message, status_code=404, service=service)


class UpstreamTimeoutError(UpstreamError):
    """Request timed out or the connection failed after retries."""

    pass
