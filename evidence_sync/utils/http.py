"""Outbound HTTP helpers shared by connectors and execution engines."""

import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

BODY_METHODS = {"POST", "PUT", "PATCH"}


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    retry_attempts: int = 2,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying only on timeouts.

    Raises the last ``httpx`` exception once attempts are exhausted; callers
    decide whether that is fatal.
    """
    if timeout is not None:
        kwargs["timeout"] = timeout

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(1, retry_attempts)),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TimeoutException),
        reraise=True,
    ):
        with attempt:
            return await client.request(method, url, **kwargs)


def decode_body(response: httpx.Response) -> Any:
    """Decode a response body as JSON, falling back to the raw text."""
    try:
        return response.json()
    except ValueError:
        return response.text


def join_url(base_url: str, path: str) -> str:
    """Join a base URL and an endpoint path with exactly one slash."""
    if not path:
        return base_url.rstrip("/")
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def merge_params(*sources: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge query parameter maps, later maps winning."""
    merged: Dict[str, Any] = {}
    for source in sources:
        if source:
            merged.update(source)
    return merged
