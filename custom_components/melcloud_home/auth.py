"""OAuth token lifecycle for the MELCloud Home API.

The access token is refreshed from a rotating refresh token. Refresh tokens
are single use, so concurrent callers must share one in-flight refresh.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import httpx

from . import helpers
from .const import (
    CLIENT_AUTH,
    REQUEST_TIMEOUT,
    TOKEN_EXPIRY_BUFFER,
    TOKEN_URL,
    USER_AGENT,
)
from .exceptions import (
    MelCloudNoRefreshTokenError,
    MelCloudRefreshFailedError,
    MelCloudValidationError,
)
from .models import Credentials

if TYPE_CHECKING:
    from collections.abc import Callable

_LOGGER = logging.getLogger(__name__)


class AuthState(StrEnum):
    """Lifecycle of the token pair."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    EXPIRING = "expiring"


def create_token_headers() -> dict[str, str]:
    """Create HTTP headers for token endpoint requests."""
    return {
        "Accept": "application/json",
        "Content-Type": "application/x-www-form-urlencoded",
        "Authorization": CLIENT_AUTH,
        "User-Agent": USER_AGENT,
    }


def extract_credentials(data: Any) -> Credentials:  # noqa: ANN401
    """Extract a token triple from a token endpoint response.

    Args:
        data: Parsed JSON body of the token response.

    Returns:
        Credentials with expiry derived from ``expires_in``.

    Raises:
        MelCloudValidationError: If a required field is missing or mistyped.

    """
    if (
        not isinstance(data, dict)
        or not isinstance(data.get("access_token"), str)
        or not isinstance(data.get("refresh_token"), str)
        or not isinstance(data.get("expires_in"), int | float)
        or isinstance(data.get("expires_in"), bool)
    ):
        error_msg = "Invalid token response: missing required fields"
        raise MelCloudValidationError(error_msg)

    return Credentials(
        access_token=data["access_token"],
        refresh_token=data["refresh_token"],
        expires_at=datetime.now(UTC) + timedelta(seconds=data["expires_in"]),
    )


class TokenManager:
    """Owns the access/refresh token pair and refreshes it on demand."""

    def __init__(
        self,
        session: httpx.AsyncClient,
        refresh_token: str | None,
        *,
        on_rotate: Callable[[str], None] | None = None,
        expiry_buffer: timedelta = timedelta(seconds=TOKEN_EXPIRY_BUFFER),
    ) -> None:
        """Initialize the token manager.

        Args:
            session: HTTP client session.
            refresh_token: Refresh token obtained from an external login.
            on_rotate: Called with the new refresh token whenever it rotates.
            expiry_buffer: Minimum remaining lifetime of a returned token.

        """
        self._session = session
        self._refresh_token = refresh_token
        self._on_rotate = on_rotate
        self._expiry_buffer = expiry_buffer
        self._credentials: Credentials | None = None
        self._refresh_task: asyncio.Task[Credentials] | None = None

    @property
    def refresh_token(self) -> str | None:
        """Return the current (possibly rotated) refresh token."""
        return self._refresh_token

    @property
    def state(self) -> AuthState:
        """Return the current lifecycle state."""
        if self._refresh_task is not None:
            return AuthState.AUTHENTICATING
        if self._credentials is None:
            return AuthState.UNAUTHENTICATED
        if self._credentials.expires_within(self._expiry_buffer):
            return AuthState.EXPIRING
        return AuthState.AUTHENTICATED

    def invalidate(self) -> None:
        """Drop the access token so the next request forces a refresh."""
        _LOGGER.debug("Access token invalidated")
        self._credentials = None

    async def async_get_access_token(self) -> str:
        """Return an access token valid for at least the buffer window.

        Raises:
            MelCloudNoRefreshTokenError: If there is nothing to refresh with.
            MelCloudRefreshFailedError: If the refresh exchange fails.

        """
        credentials = self._credentials
        if credentials is not None and not credentials.expires_within(
            self._expiry_buffer
        ):
            return credentials.access_token

        if self._refresh_task is None:
            _LOGGER.debug("Access token missing or expiring, refreshing")
            task = asyncio.get_running_loop().create_task(self._async_refresh())
            task.add_done_callback(self._clear_refresh_task)
            self._refresh_task = task

        credentials = await asyncio.shield(self._refresh_task)
        return credentials.access_token

    def _clear_refresh_task(self, task: asyncio.Task[Credentials]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _async_refresh(self) -> Credentials:
        if not self._refresh_token:
            raise MelCloudNoRefreshTokenError

        previous_refresh_token = self._refresh_token
        response, body = await self._async_request_token(previous_refresh_token)

        try:
            credentials = extract_credentials(json.loads(body))
        except (json.JSONDecodeError, UnicodeDecodeError, MelCloudValidationError) as err:
            _LOGGER.debug("Token refresh response body: %s", body[:500])
            raise MelCloudRefreshFailedError(
                response.status_code, body.decode(errors="replace")
            ) from err

        self._credentials = credentials
        self._refresh_token = credentials.refresh_token
        _LOGGER.debug(
            "Access token refreshed, expires at %s", credentials.expires_at.isoformat()
        )

        if credentials.refresh_token != previous_refresh_token:
            _LOGGER.debug("Refresh token rotated")
            if self._on_rotate is not None:
                self._on_rotate(credentials.refresh_token)

        return credentials

    async def _async_request_token(
        self, refresh_token: str
    ) -> tuple[httpx.Response, bytes]:
        """Post the refresh grant.

        Transient failures are retried by the session's retry transport; what
        reaches this method is final.
        """
        try:
            response, body = await helpers.async_stream_request(
                self._session,
                "POST",
                TOKEN_URL,
                headers=create_token_headers(),
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                },
                timeout=REQUEST_TIMEOUT,
            )
        except helpers.RETRYABLE_EXCEPTIONS as err:
            _LOGGER.warning("Token refresh failed: %s", err)
            self._credentials = None
            raise MelCloudRefreshFailedError(None, str(err)) from err
        except MelCloudValidationError as err:
            self._credentials = None
            raise MelCloudRefreshFailedError(err.status, str(err)) from err

        if not helpers.is_success(response.status_code):
            text = body.decode(errors="replace")
            _LOGGER.debug("Token refresh response body: %s", text[:500])
            self._credentials = None
            raise MelCloudRefreshFailedError(response.status_code, text)
        return response, body
