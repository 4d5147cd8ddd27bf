"""Base entity for MELCloud Home units."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from homeassistant.core import callback
from homeassistant.helpers.device_registry import DeviceInfo
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import DOMAIN, MANUFACTURER
from .coordinator import MelCloudCoordinator

if TYPE_CHECKING:
    from .views import UnitView

_LOGGER = logging.getLogger(__name__)


class MelCloudEntity(CoordinatorEntity[MelCloudCoordinator]):
    """Entity backed by a view of one unit's canonical state.

    The coordinator notifies after every poll and whenever the engine changes
    a unit between polls; the view always reads the current state.
    """

    _attr_has_entity_name = True

    def __init__(self, coordinator: MelCloudCoordinator, view: UnitView) -> None:
        """Initialize the entity.

        Args:
            coordinator: Coordinator polling the account's units.
            view: Projection this entity reads.

        """
        super().__init__(coordinator)
        self._engine = coordinator.engine
        self._view = view
        self._attr_unique_id = (
            view.unit_id if view.key == "main" else f"{view.unit_id}_{view.key}"
        )
        device = view.device
        self._attr_device_info = DeviceInfo(
            identifiers={(DOMAIN, view.unit_id)},
            manufacturer=MANUFACTURER,
            name=device.display_name,
            model="Air-to-air unit",
        )

    @property
    def available(self) -> bool:
        """Return True if the last poll succeeded and the adapter is online."""
        return super().available and self._view.device.connection.is_connected

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        """Return connectivity details of the unit."""
        connection = self._view.device.connection
        return {
            "rssi": connection.rssi,
            "in_error": connection.is_in_error,
        }

    @callback
    def _handle_coordinator_update(self) -> None:
        _LOGGER.debug("%s: state updated", self.entity_id)
        self.async_write_ha_state()
