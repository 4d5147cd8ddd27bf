"""
Configuration flow for MELCloud Home integration.

This module handles the setup, re-authentication and options of the
MELCloud Home integration through Home Assistant's config flow system.
The account is linked with a refresh token obtained from an external login;
refresh tokens rotate on use, so the rotated token is what gets stored.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import voluptuous as vol
from homeassistant.config_entries import (
    ConfigEntry,
    ConfigFlow,
    ConfigFlowResult,
    OptionsFlow,
)
from homeassistant.core import callback

from .api import MelCloudClient, create_session_client
from .auth import TokenManager
from .const import (
    CONF_DEBUG,
    CONF_FAN_SPEED_BUTTONS,
    CONF_POLL_INTERVAL,
    CONF_REFRESH_TOKEN,
    CONF_VANE_BUTTONS,
    DOMAIN,
    ERROR_API_ERROR,
    ERROR_CANNOT_CONNECT,
    ERROR_INVALID_AUTH,
    ERROR_UNKNOWN,
    MAX_POLL_INTERVAL,
    MIN_POLL_INTERVAL,
)
from .exceptions import (
    MelCloudApiError,
    MelCloudAuthError,
    MelCloudRefreshFailedError,
    MelCloudTransientError,
)
from .models import RuntimeConfig

_LOGGER = logging.getLogger(__name__)

TOKEN_SCHEMA = vol.Schema({vol.Required(CONF_REFRESH_TOKEN): str})


def _error_key(err: MelCloudApiError) -> str:
    """Map a client error to a form error key."""
    if isinstance(err, MelCloudRefreshFailedError) and err.is_transient:
        return ERROR_CANNOT_CONNECT
    if isinstance(err, MelCloudAuthError):
        return ERROR_INVALID_AUTH
    if isinstance(err, MelCloudTransientError):
        return ERROR_CANNOT_CONNECT
    return ERROR_API_ERROR


class MelCloudHomeConfigFlow(ConfigFlow, domain=DOMAIN):
    """Handle configuration flow for MELCloud Home integration."""

    VERSION = 1

    async def _async_validate_token(
        self, refresh_token: str
    ) -> tuple[str, dict[str, Any]]:
        """Exchange the refresh token and fetch the account context.

        Args:
            refresh_token: Refresh token supplied by the user.

        Returns:
            Tuple of the rotated refresh token and the user context.

        Raises:
            MelCloudApiError: If the token is rejected or the cloud fails.

        """
        session = create_session_client(self.hass)
        try:
            token_manager = TokenManager(session, refresh_token.strip())
            client = MelCloudClient(session, token_manager)
            context = await client.async_fetch_user_context()
        finally:
            await session.aclose()
        return token_manager.refresh_token or refresh_token, context

    async def _async_try_validate(
        self, user_input: dict[str, Any], errors: dict[str, str]
    ) -> tuple[str, dict[str, Any]] | None:
        try:
            result = await self._async_validate_token(user_input[CONF_REFRESH_TOKEN])
        except MelCloudApiError as err:
            errors["base"] = _error_key(err)
            _LOGGER.warning("Token validation failed (%s): %s", errors["base"], err)
        except Exception:
            _LOGGER.exception(
                "Unexpected error during authentication (%s)", ERROR_UNKNOWN
            )
            errors["base"] = ERROR_UNKNOWN
        else:
            _LOGGER.info("Successfully authenticated with MELCloud Home")
            return result
        return None

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """
        Handle the initial step of the config flow.

        Args:
            user_input: User input data containing the refresh token.

        Returns:
            ConfigFlowResult indicating the next step or errors.

        """
        errors: dict[str, str] = {}

        if user_input is not None:
            result = await self._async_try_validate(user_input, errors)
            if result is not None:
                refresh_token, context = result
                account = str(context.get("email") or context.get("id") or "")
                await self.async_set_unique_id(str(context.get("id") or account))
                self._abort_if_unique_id_configured()

                return self.async_create_entry(
                    title=f"MELCloud Home ({account})" if account else "MELCloud Home",
                    data={CONF_REFRESH_TOKEN: refresh_token},
                )

        return self.async_show_form(
            step_id="user", data_schema=TOKEN_SCHEMA, errors=errors
        )

    async def async_step_reauth(
        self, entry_data: Mapping[str, Any]  # noqa: ARG002
    ) -> ConfigFlowResult:
        """Start re-authentication after the refresh token was rejected."""
        return await self.async_step_reauth_confirm()

    async def async_step_reauth_confirm(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Ask for a fresh refresh token."""
        errors: dict[str, str] = {}

        if user_input is not None:
            result = await self._async_try_validate(user_input, errors)
            if result is not None:
                refresh_token, context = result
                entry = self._get_reauth_entry()
                if context.get("id") is not None:
                    await self.async_set_unique_id(str(context["id"]))
                    self._abort_if_unique_id_mismatch(reason="wrong_account")
                return self.async_update_reload_and_abort(
                    entry, data_updates={CONF_REFRESH_TOKEN: refresh_token}
                )

        return self.async_show_form(
            step_id="reauth_confirm", data_schema=TOKEN_SCHEMA, errors=errors
        )

    @staticmethod
    @callback
    def async_get_options_flow(config_entry: ConfigEntry) -> OptionsFlow:
        """Return the options flow handler for this config entry."""
        return MelCloudHomeOptionsFlow(config_entry)


class MelCloudHomeOptionsFlow(OptionsFlow):
    """Options flow for polling, logging and toggle entities."""

    def __init__(self, entry: ConfigEntry) -> None:
        """Store the entry being configured."""
        self.entry = entry

    async def async_step_init(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Show or process the options form."""
        if user_input is not None:
            return self.async_create_entry(title="", data=user_input)

        current = RuntimeConfig.from_entry_data(self.entry.data, self.entry.options)
        schema = vol.Schema(
            {
                vol.Optional(
                    CONF_POLL_INTERVAL, default=current.poll_interval
                ): vol.All(
                    vol.Coerce(int),
                    vol.Clamp(min=MIN_POLL_INTERVAL, max=MAX_POLL_INTERVAL),
                ),
                vol.Optional(CONF_DEBUG, default=current.debug): bool,
                vol.Optional(
                    CONF_FAN_SPEED_BUTTONS, default=current.fan_speed_buttons
                ): bool,
                vol.Optional(CONF_VANE_BUTTONS, default=current.vane_buttons): bool,
            }
        )
        return self.async_show_form(step_id="init", data_schema=schema)
