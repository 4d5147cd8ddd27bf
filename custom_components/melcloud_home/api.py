"""API client for MELCloud Home.

This module provides the authenticated request layer for the MELCloud Home
mobile API, including retry handling, response validation, state fetching
and command sending.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx
from homeassistant.helpers.httpx_client import create_async_httpx_client
from httpx_retries import RetryTransport

from . import helpers
from .const import BASE_URL, REQUEST_TIMEOUT
from .exceptions import (
    MelCloudApiError,
    MelCloudAuthError,
    MelCloudTransientError,
    MelCloudValidationError,
)
from .models import DeviceCommand, DeviceState

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant

    from .auth import TokenManager

_LOGGER = logging.getLogger(__name__)


def parse_body(body: bytes) -> Any:  # noqa: ANN401
    """Parse a response body; empty bodies are a successful None.

    Raises:
        MelCloudValidationError: If the body is not valid JSON.

    """
    if not body or not body.strip():
        return None
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as err:
        error_msg = f"Failed to parse response: {err}"
        raise MelCloudValidationError(error_msg) from err


def extract_units(context: Any) -> list[DeviceState]:  # noqa: ANN401
    """Flatten all air-to-air units across the account's buildings.

    Args:
        context: Parsed user context response.

    Returns:
        List of DeviceState objects.

    Raises:
        MelCloudValidationError: If the buildings list is missing.

    """
    if not isinstance(context, dict) or not isinstance(
        context.get("buildings"), list
    ):
        error_msg = "Invalid context response: missing buildings array"
        raise MelCloudValidationError(error_msg)

    units: list[DeviceState] = []
    for building in context["buildings"]:
        if not isinstance(building, dict):
            continue
        for unit in building.get("airToAirUnits") or []:
            try:
                units.append(DeviceState.from_api(unit, building.get("name")))
            except (KeyError, TypeError, AttributeError) as err:
                _LOGGER.warning("Skipping unit due to parse error: %s", err)
    return units


def create_session_client(hass: HomeAssistant) -> httpx.AsyncClient:
    """Create the HTTP client used for MELCloud Home requests.

    Args:
        hass: Home Assistant instance.

    Returns:
        httpx AsyncClient with the request timeout and retry transport.

    """
    session = create_async_httpx_client(hass, timeout=REQUEST_TIMEOUT)
    session._transport = RetryTransport(  # noqa: SLF001
        transport=session._transport,  # noqa: SLF001
        retry=helpers.create_retry(),
    )
    return session


class MelCloudClient:
    """Authenticated client for the MELCloud Home mobile API."""

    def __init__(
        self,
        session: httpx.AsyncClient,
        token_manager: TokenManager,
        *,
        base_url: str = BASE_URL,
    ) -> None:
        """Initialize the client.

        Args:
            session: HTTP client session.
            token_manager: Source of valid access tokens.
            base_url: API root.

        """
        self._session = session
        self._token_manager = token_manager
        self._base_url = base_url

    async def async_fetch_user_context(self) -> dict[str, Any]:
        """Fetch the user context, including buildings and units.

        Raises:
            MelCloudValidationError: If the response is not an object.

        """
        _LOGGER.debug("Fetching user context")
        context = await self._async_request("GET", "/context")
        if not isinstance(context, dict):
            error_msg = "Invalid context response: expected an object"
            raise MelCloudValidationError(error_msg)
        return context

    async def async_fetch_state(self) -> list[DeviceState]:
        """Fetch all air-to-air units across all buildings."""
        units = extract_units(await self.async_fetch_user_context())
        _LOGGER.debug("Retrieved %d units from MELCloud Home", len(units))
        return units

    async def async_send_command(self, unit_id: str, command: DeviceCommand) -> None:
        """Send a control command to a unit.

        Args:
            unit_id: Target unit identifier.
            command: Command whose null fields leave settings unchanged.

        """
        payload = command.as_payload()
        _LOGGER.debug("Controlling unit %s: %s", unit_id, payload)
        await self._async_request(
            "PUT", f"/monitor/ataunit/{quote(unit_id, safe='')}", payload
        )

    async def _async_request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> Any:  # noqa: ANN401
        """Send an authenticated request with re-auth handling.

        Transient failures are retried by the session's retry transport. A
        401 forces a token refresh and one replay on top of that budget.

        Raises:
            MelCloudAuthError: If authentication fails.
            MelCloudTransientError: If transient failures exhaust the retries.
            MelCloudValidationError: If the response is malformed or too large.
            MelCloudApiError: For any other HTTP error.

        """
        url = f"{self._base_url}{path}"
        auth_retried = False

        while True:
            access_token = await self._token_manager.async_get_access_token()
            try:
                response, body = await helpers.async_stream_request(
                    self._session,
                    method,
                    url,
                    headers=helpers.create_headers(access_token),
                    json=payload,
                    timeout=REQUEST_TIMEOUT,
                )
            except helpers.RETRYABLE_EXCEPTIONS as err:
                error_msg = f"Request failed ({method} {path}): {err}"
                raise MelCloudTransientError(error_msg) from err

            status = response.status_code
            if helpers.is_success(status):
                return parse_body(body)

            if status == helpers.HTTP_UNAUTHORIZED and not auth_retried:
                _LOGGER.debug("Got HTTP 401, forcing token refresh and retrying")
                auth_retried = True
                self._token_manager.invalidate()
                continue

            _LOGGER.debug("HTTP %d response body: %s", status, body[:500])
            if status == helpers.HTTP_UNAUTHORIZED:
                error_msg = "Authentication error"
                raise MelCloudAuthError(error_msg, status)
            if helpers.is_retryable_status(status):
                error_msg = f"Request failed after retries: HTTP {status}"
                raise MelCloudTransientError(error_msg, status)
            error_msg = f"Request failed: {status}"
            raise MelCloudApiError(error_msg, status)
