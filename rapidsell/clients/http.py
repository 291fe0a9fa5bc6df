"""
aiohttp helpers shared by the provider clients

Translates transport failures into the engine's error taxonomy so the
task loop can pick the right backoff.
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from rapidsell.core.errors import NetworkError, RateLimitedError


HTTP_RATE_LIMITED = 429


def _retry_after(response: aiohttp.ClientResponse) -> Optional[float]:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


async def request_json(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    timeout_s: float,
    allow_error_body: bool = False,
    **kwargs
) -> Dict[str, Any]:
    """
    Send a request and decode its JSON body

    Args:
        session: Open client session
        method: "GET" or "POST"
        url: Target URL
        timeout_s: Total request timeout
        allow_error_body: Return the JSON body of 4xx responses instead
            of raising (providers report "no route" that way)

    Raises:
        RateLimitedError: On HTTP 429
        NetworkError: On connection failures and timeouts
        aiohttp.ClientResponseError: On other HTTP errors
    """
    timeout = aiohttp.ClientTimeout(total=timeout_s)
    try:
        async with session.request(method, url, timeout=timeout, **kwargs) as response:
            if response.status == HTTP_RATE_LIMITED:
                raise RateLimitedError(
                    f"429 Too Many Requests from {url}",
                    retry_after=_retry_after(response)
                )

            if response.status >= 400:
                if allow_error_body and response.status < 500:
                    return await response.json(content_type=None)
                response.raise_for_status()

            return await response.json(content_type=None)
    except aiohttp.ClientConnectionError as e:
        raise NetworkError(f"Connection to {url} failed: {e}") from e
    except asyncio.TimeoutError as e:
        raise NetworkError(f"Request to {url} timed out after {timeout_s}s") from e
