"""Shared HTTP and parsing helpers for the MELCloud Home client."""

from __future__ import annotations

import math
from typing import Any

import httpx
from httpx_retries import Retry

from .const import MAX_RESPONSE_SIZE, MAX_RETRIES, RETRY_BACKOFF_FACTOR, USER_AGENT
from .exceptions import MelCloudValidationError

HTTP_OK = 200
HTTP_UNAUTHORIZED = 401

RETRYABLE_METHODS = frozenset({"GET", "POST", "PUT"})
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503})
RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


def create_retry() -> Retry:
    """Create the retry policy for MELCloud Home requests.

    Rate limits and server errors are retried up to three times with
    exponential backoff. A Retry-After header is waited instead.
    """
    return Retry(
        total=MAX_RETRIES,
        allowed_methods=RETRYABLE_METHODS,
        status_forcelist=RETRYABLE_STATUS_CODES,
        retry_on_exceptions=RETRYABLE_EXCEPTIONS,
        backoff_factor=RETRY_BACKOFF_FACTOR,
        backoff_jitter=0.0,
        respect_retry_after_header=True,
    )


def create_headers(access_token: str | None = None) -> dict[str, str]:
    """Create HTTP headers for MELCloud Home API requests.

    Args:
        access_token: Optional bearer token to include in headers.

    Returns:
        Dictionary containing HTTP headers for API requests.

    """
    headers = {
        "Accept": "application/json",
        "User-Agent": USER_AGENT,
    }
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"
    return headers


def is_success(status: int) -> bool:
    """Return True for 2xx status codes."""
    return HTTP_OK <= status < 300


def is_retryable_status(status: int) -> bool:
    """Return True if the status code indicates a transient failure."""
    return status in RETRYABLE_STATUS_CODES


async def async_read_body(
    response: httpx.Response, limit: int = MAX_RESPONSE_SIZE
) -> bytes:
    """Read a streamed response body, aborting once it exceeds limit bytes."""
    declared = response.headers.get("Content-Length")
    if declared and declared.isdigit() and int(declared) > limit:
        error_msg = f"Response body exceeds size limit ({declared} bytes)"
        raise MelCloudValidationError(error_msg, response.status_code)

    body = bytearray()
    async for chunk in response.aiter_bytes():
        body.extend(chunk)
        if len(body) > limit:
            error_msg = "Response body exceeds size limit"
            raise MelCloudValidationError(error_msg, response.status_code)
    return bytes(body)


async def async_stream_request(
    session: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,  # noqa: ANN401
) -> tuple[httpx.Response, bytes]:
    """Send a request and return the response with its size-limited body."""
    async with session.stream(method, url, **kwargs) as response:
        body = await async_read_body(response)
    return response, body


def to_float(value: Any, default: float | None = None) -> float | None:  # noqa: ANN401
    """Convert value to a finite float, returning default otherwise."""
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def to_int(value: Any, default: int = 0) -> int:  # noqa: ANN401
    """Convert value to int, returning default otherwise."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
