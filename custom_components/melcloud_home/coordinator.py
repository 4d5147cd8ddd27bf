"""Coordinator for MELCloud Home integration."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from homeassistant.exceptions import ConfigEntryAuthFailed
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed

from .const import DEFAULT_POLL_INTERVAL, DOMAIN, MAX_POLL_INTERVAL, MIN_POLL_INTERVAL
from .exceptions import MelCloudApiError, MelCloudAuthError, MelCloudRefreshFailedError

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant

    from .engine import ReconciliationEngine
    from .models import DeviceState

_LOGGER = logging.getLogger(__name__)


def clamp_poll_interval(interval: float | None) -> float:
    """Clamp a poll interval to the supported range."""
    if interval is None:
        return float(DEFAULT_POLL_INTERVAL)
    return float(min(MAX_POLL_INTERVAL, max(MIN_POLL_INTERVAL, interval)))


def requires_reauth(err: MelCloudApiError) -> bool:
    """Return True if the error means the refresh token must be replaced."""
    if isinstance(err, MelCloudRefreshFailedError):
        return not err.is_transient
    return isinstance(err, MelCloudAuthError)


class MelCloudCoordinator(DataUpdateCoordinator[dict[str, "DeviceState"]]):
    """Coordinator that polls every unit of the account.

    Polled snapshots go through the reconciliation engine, so a poll never
    overwrites a command that is still being verified. State changes the
    engine makes between polls are pushed to the same listeners.
    """

    def __init__(
        self,
        hass: HomeAssistant,
        config_entry: ConfigEntry,
        engine: ReconciliationEngine,
        poll_interval: float | None = DEFAULT_POLL_INTERVAL,
    ) -> None:
        """Initialize the coordinator.

        Args:
            hass: Home Assistant instance.
            config_entry: Entry the coordinator belongs to.
            engine: Engine owning the canonical unit state.
            poll_interval: Seconds between polls, clamped to the supported range.

        """
        super().__init__(
            hass,
            _LOGGER,
            config_entry=config_entry,
            name=f"{DOMAIN}_units",
            update_interval=timedelta(seconds=clamp_poll_interval(poll_interval)),
        )
        self.engine = engine
        self.data = {}
        engine.on_update = self._handle_engine_update

    async def _async_update_data(self) -> dict[str, DeviceState]:
        try:
            await self.engine.async_refresh()
        except MelCloudApiError as err:
            if requires_reauth(err):
                error_msg = f"Authentication failed while polling units: {err}"
                raise ConfigEntryAuthFailed(error_msg) from err
            error_msg = f"Error while polling units: {err}"
            raise UpdateFailed(error_msg) from err

        handles = self.engine.handles
        _LOGGER.debug("Polled state for %d units", len(handles))
        return {handle.unit_id: handle.device for handle in handles}

    def _handle_engine_update(self, unit_id: str) -> None:
        _LOGGER.debug("Unit %s changed outside of a poll", unit_id)
        self.async_update_listeners()
