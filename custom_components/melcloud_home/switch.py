"""Fan speed and vane toggles for MELCloud Home units.

Each toggle selects one value of a setting. Within a group at most one toggle
is on, since they all read the same canonical setting.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from homeassistant.components.switch import SwitchEntity
from homeassistant.exceptions import HomeAssistantError

from .const import DOMAIN
from .entity import MelCloudEntity
from .exceptions import MelCloudCommunicationError
from .views import FanSpeedView, VaneView, fan_speed_views, vane_views

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant
    from homeassistant.helpers.entity_platform import AddEntitiesCallback

    from .coordinator import MelCloudCoordinator
    from .models import RuntimeConfig

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up fan speed and vane toggles."""
    entry_data = hass.data[DOMAIN][entry.entry_id]
    coordinator: MelCloudCoordinator = entry_data["coordinator"]
    config: RuntimeConfig = entry_data["config"]

    entities: list[MelCloudButtonSwitch] = []
    for handle in coordinator.engine.handles:
        views: list[FanSpeedView | VaneView] = []
        if config.fan_speed_buttons:
            views.extend(fan_speed_views(handle))
        if config.vane_buttons:
            views.extend(vane_views(handle))
        entities.extend(MelCloudButtonSwitch(coordinator, view) for view in views)

    _LOGGER.debug("Adding %d toggle entities", len(entities))
    async_add_entities(entities)


class MelCloudButtonSwitch(MelCloudEntity, SwitchEntity):
    """Toggle selecting one fan speed or vane position."""

    _view: FanSpeedView | VaneView

    def __init__(
        self, coordinator: MelCloudCoordinator, view: FanSpeedView | VaneView
    ) -> None:
        """Initialize the toggle."""
        super().__init__(coordinator, view)
        prefix = "Fan" if isinstance(view, FanSpeedView) else "Vane"
        self._attr_name = f"{prefix} {view.display_name}"
        self._attr_icon = "mdi:fan" if isinstance(view, FanSpeedView) else "mdi:air-filter"

    @property
    def is_on(self) -> bool:
        """Return True if the unit is using this value."""
        return self._view.is_on

    async def async_turn_on(self, **kwargs: Any) -> None:  # noqa: ANN401, ARG002
        """Select this value, powering the unit on."""
        await self._async_apply(on=True)

    async def async_turn_off(self, **kwargs: Any) -> None:  # noqa: ANN401, ARG002
        """Fall back to Auto if this value is active."""
        await self._async_apply(on=False)

    async def _async_apply(self, *, on: bool) -> None:
        patch = self._view.patch_for(on)
        if patch is None:
            _LOGGER.debug("%s: already off, nothing to send", self.entity_id)
            self.async_write_ha_state()
            return
        try:
            await self._engine.async_dispatch_command(self._view.unit_id, patch)
        except MelCloudCommunicationError as err:
            raise HomeAssistantError(str(err)) from err
