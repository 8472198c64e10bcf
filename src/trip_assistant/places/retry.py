"""Retry with exponential backoff for upstream HTTP requests.

Wrap any async callable that raises ``httpx.HTTPStatusError`` (or transport
errors) and it retries transient failures before mapping them to
``UpstreamError`` subclasses.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, Set

import httpx

from .exceptions import (
    UpstreamAPIError,
    UpstreamAuthError,
    UpstreamNotFoundError,
    UpstreamRateLimitError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES: Set[int] = {429, 500, 502, 503, 504}

AUTH_FAILURE_CODES: Set[int] = {401, 403}

# Bounded total wait on the chat path
DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY = 0.5
DEFAULT_MAX_DELAY = 5.0


async def retry_with_backoff(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    service: str = "",
    **kwargs: Any,
) -> Any:
    """Execute an async function with retry and exponential backoff.

    Retries on HTTP 429/500/502/503/504 and on ``httpx.TransportError``
    (connect failures, timeouts). HTTP 401/403 raise ``UpstreamAuthError``
    immediately. On 429 the Retry-After header wins over the computed delay.
    Uses full jitter: delay = random(0, min(max_delay, base_delay * 2^attempt)).

    Raises:
        UpstreamAuthError: On 401/403 (never retried).
        UpstreamRateLimitError: On 429 after exhausting retries.
        UpstreamNotFoundError: On 404.
        UpstreamAPIError: On other HTTP errors after exhausting retries.
        UpstreamTimeoutError: On timeout/connection failure after exhausting retries.
    """
    for attempt in range(max_retries + 1):
        try:
            return await fn(*args, **kwargs)

        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code

            if status in AUTH_FAILURE_CODES:
                raise UpstreamAuthError(
                    f"Authentication failed: HTTP {status}", service=service
                ) from exc

            if status in RETRYABLE_STATUS_CODES and attempt < max_retries:
                delay = _compute_delay(attempt, base_delay, max_delay, exc.response)
                logger.warning(
                    "%s: retryable HTTP %d (attempt %d/%d), waiting %.1fs",
                    service or "upstream",
                    status,
                    attempt + 1,
                    max_retries,
                    delay,
                )
                await asyncio.sleep(delay)
                continue

            if status == 429:
                raise UpstreamRateLimitError(
                    "Rate limited: HTTP 429",
                    retry_after=_parse_retry_after(exc.response),
                    service=service,
                ) from exc
            if status == 404:
                raise UpstreamNotFoundError("Not found: HTTP 404", service=service) from exc
            raise UpstreamAPIError(
                f"API error: HTTP {status}",
                status_code=status,
                response_body=exc.response.text[:500],
                service=service,
            ) from exc

        except httpx.TransportError as exc:
            if attempt < max_retries:
                delay = _compute_delay(attempt, base_delay, max_delay)
                logger.warning(
                    "%s: connection error (attempt %d/%d), waiting %.1fs: %s",
                    service or "upstream",
                    attempt + 1,
                    max_retries,
                    delay,
                    type(exc).__name__,
                )
                await asyncio.sleep(delay)
                continue

            raise UpstreamTimeoutError(
                f"Request failed after {max_retries} retries: {type(exc).__name__}",
                service=service,
            ) from exc

    raise AssertionError("unreachable")  # pragma: no cover


def _compute_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    response: Optional[httpx.Response] = None,
) -> float:
    if response is not None:
        retry_after = _parse_retry_after(response)
        if retry_after is not None:
            return min(retry_after, max_delay)

    exp_delay = base_delay * (2**attempt)
    return random.uniform(0, min(exp_delay, max_delay))


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    """Parse Retry-After header (seconds only, not HTTP-date)."""
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None
