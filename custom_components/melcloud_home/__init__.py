"""The MELCloud Home integration."""

from __future__ import annotations

import logging
from typing import Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.const import Platform
from homeassistant.core import HomeAssistant, callback
from homeassistant.exceptions import ConfigEntryAuthFailed, ConfigEntryNotReady
from homeassistant.helpers import device_registry as dr

from .api import MelCloudClient, create_session_client
from .auth import TokenManager
from .const import CONF_REFRESH_TOKEN, DOMAIN
from .coordinator import MelCloudCoordinator
from .engine import ReconciliationEngine
from .models import RuntimeConfig

_LOGGER = logging.getLogger(__name__)

PLATFORMS = [Platform.CLIMATE, Platform.SWITCH]


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up MELCloud Home from a config entry.

    Raises:
        ConfigEntryAuthFailed: If the stored refresh token is rejected.
        ConfigEntryNotReady: If the cloud cannot be reached.

    """
    _LOGGER.info("Setting up MELCloud Home integration for entry %s", entry.entry_id)

    config = RuntimeConfig.from_entry_data(entry.data, entry.options)
    if config.debug:
        logging.getLogger(__package__).setLevel(logging.DEBUG)

    if not config.refresh_token:
        error_msg = "Missing refresh token"
        raise ConfigEntryAuthFailed(error_msg)

    @callback
    def _async_persist_refresh_token(refresh_token: str) -> None:
        _LOGGER.debug("Persisting rotated refresh token for entry %s", entry.entry_id)
        hass.config_entries.async_update_entry(
            entry, data={**entry.data, CONF_REFRESH_TOKEN: refresh_token}
        )

    session = create_session_client(hass)
    token_manager = TokenManager(
        session, config.refresh_token, on_rotate=_async_persist_refresh_token
    )
    client = MelCloudClient(session, token_manager)
    engine = ReconciliationEngine(client)
    coordinator = MelCloudCoordinator(hass, entry, engine, config.poll_interval)

    try:
        await coordinator.async_config_entry_first_refresh()
    except ConfigEntryAuthFailed as err:
        _LOGGER.warning(
            "Authentication failed for entry %s: %s", entry.entry_id, str(err)
        )
        await session.aclose()
        raise
    except ConfigEntryNotReady as err:
        _LOGGER.warning("MELCloud Home not ready for entry %s: %s", entry.entry_id, err)
        await session.aclose()
        raise

    _LOGGER.info("Retrieved %d units from MELCloud Home", len(engine.handles))

    hass.data.setdefault(DOMAIN, {})[entry.entry_id] = {
        "session": session,
        "token_manager": token_manager,
        "engine": engine,
        "coordinator": coordinator,
        "config": config,
        "options": dict(entry.options),
    }

    _async_remove_stale_devices(hass, entry, engine)

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)
    entry.async_on_unload(entry.add_update_listener(_async_update_listener))

    _LOGGER.info(
        "Successfully set up MELCloud Home integration for entry %s", entry.entry_id
    )
    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry."""
    _LOGGER.info("Unloading MELCloud Home integration for entry %s", entry.entry_id)

    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if not unload_ok:
        _LOGGER.warning("Failed to unload some platforms for entry %s", entry.entry_id)
        return False

    entry_data: dict[str, Any] = hass.data[DOMAIN].pop(entry.entry_id)
    await entry_data["coordinator"].async_shutdown()
    entry_data["engine"].async_shutdown()
    await entry_data["session"].aclose()
    _LOGGER.debug("Cleaned up data for entry %s", entry.entry_id)
    return True


async def _async_update_listener(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Reload the entry when its options change.

    Refresh token rotation also updates the entry; that must not reload it.
    """
    entry_data = hass.data.get(DOMAIN, {}).get(entry.entry_id)
    if entry_data is not None and entry_data["options"] == dict(entry.options):
        return
    _LOGGER.debug("Options changed for entry %s, reloading", entry.entry_id)
    await hass.config_entries.async_reload(entry.entry_id)


@callback
def _async_remove_stale_devices(
    hass: HomeAssistant, entry: ConfigEntry, engine: ReconciliationEngine
) -> None:
    """Remove registry devices for units the account no longer reports."""
    known = {handle.unit_id for handle in engine.handles}
    dev_reg = dr.async_get(hass)

    for device_entry in dr.async_entries_for_config_entry(dev_reg, entry.entry_id):
        unit_ids = {
            identifier for domain, identifier in device_entry.identifiers
            if domain == DOMAIN
        }
        if unit_ids and not unit_ids & known:
            _LOGGER.info("Removing stale device %s", device_entry.name)
            dev_reg.async_remove_device(device_entry.id)
