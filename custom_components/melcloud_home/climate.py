"""Climate entities for MELCloud Home air-to-air units.

Each unit is exposed as one climate entity reading a MainUnitView. Commands
go through the reconciliation engine, which updates the shared state
optimistically and notifies every entity of the unit.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from homeassistant.components.climate import (
    ATTR_HVAC_MODE,
    ATTR_TARGET_TEMP_HIGH,
    ATTR_TARGET_TEMP_LOW,
    ClimateEntity,
    ClimateEntityFeature,
    HVACAction,
    HVACMode,
)
from homeassistant.const import ATTR_TEMPERATURE, UnitOfTemperature
from homeassistant.exceptions import HomeAssistantError

from .const import (
    DOMAIN,
    MODE_AUTO,
    MODE_COOL,
    MODE_DRY,
    MODE_FAN,
    MODE_HEAT,
    SETTING_FAN_SPEED,
    SETTING_OPERATION_MODE,
    SETTING_POWER,
    SETTING_SET_TEMPERATURE,
    SETTING_VANE_VERTICAL,
)
from .entity import MelCloudEntity
from .exceptions import MelCloudCommunicationError
from .views import (
    ACTION_COOLING,
    ACTION_DRYING,
    ACTION_FAN,
    ACTION_HEATING,
    ACTION_IDLE,
    ACTION_OFF,
    MainUnitView,
    fan_speed_views,
)

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant
    from homeassistant.helpers.entity_platform import AddEntitiesCallback

    from .coordinator import MelCloudCoordinator

_LOGGER = logging.getLogger(__name__)

HVAC_MODE_MAP = {
    MODE_HEAT: HVACMode.HEAT,
    MODE_COOL: HVACMode.COOL,
    MODE_AUTO: HVACMode.HEAT_COOL,
    MODE_DRY: HVACMode.DRY,
    MODE_FAN: HVACMode.FAN_ONLY,
}
HVAC_MODE_TO_API = {hvac_mode: mode for mode, hvac_mode in HVAC_MODE_MAP.items()}

HVAC_ACTION_MAP = {
    ACTION_OFF: HVACAction.OFF,
    ACTION_IDLE: HVACAction.IDLE,
    ACTION_HEATING: HVACAction.HEATING,
    ACTION_COOLING: HVACAction.COOLING,
    ACTION_DRYING: HVACAction.DRYING,
    ACTION_FAN: HVACAction.FAN,
}

# Swing mode -> vertical vane token
SWING_MODE_MAP = {
    "auto": "Auto",
    "1": "One",
    "2": "Two",
    "3": "Three",
    "4": "Four",
    "5": "Five",
    "swing": "Swing",
}
SWING_MODE_FROM_API = {token: mode for mode, token in SWING_MODE_MAP.items()}


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up climate entities for MELCloud Home units."""
    coordinator: MelCloudCoordinator = hass.data[DOMAIN][entry.entry_id]["coordinator"]

    async_add_entities(
        MelCloudClimateEntity(coordinator, MainUnitView(handle))
        for handle in coordinator.engine.handles
    )


class MelCloudClimateEntity(MelCloudEntity, ClimateEntity):
    """Climate entity for a MELCloud Home air-to-air unit."""

    _attr_name = None
    _attr_temperature_unit = UnitOfTemperature.CELSIUS
    _view: MainUnitView

    def __init__(self, coordinator: MelCloudCoordinator, view: MainUnitView) -> None:
        """Initialize the climate entity.

        Args:
            coordinator: Coordinator polling the account's units.
            view: Main projection of the unit.

        """
        super().__init__(coordinator, view)
        self._configure_features()

    def _configure_features(self) -> None:
        """Derive modes and features from the unit's capabilities."""
        capabilities = self._view.device.capabilities

        self._attr_hvac_modes = [HVACMode.OFF] + [
            HVAC_MODE_MAP[mode] for mode in capabilities.supported_modes
        ]
        self._fan_modes = {
            view.key.removeprefix("fan_"): view.assigned_value
            for view in fan_speed_views(self._engine.get_handle(self._view.unit_id))
        }
        self._attr_fan_modes = list(self._fan_modes)
        self._attr_target_temperature_step = capabilities.temperature_step

        features = (
            ClimateEntityFeature.TARGET_TEMPERATURE
            | ClimateEntityFeature.TURN_ON
            | ClimateEntityFeature.TURN_OFF
        )
        if self._attr_fan_modes:
            features |= ClimateEntityFeature.FAN_MODE
        if capabilities.has_auto_operation_mode:
            features |= ClimateEntityFeature.TARGET_TEMPERATURE_RANGE
        if capabilities.has_air_direction or capabilities.has_swing:
            features |= ClimateEntityFeature.SWING_MODE
            self._attr_swing_modes = list(SWING_MODE_MAP)
        self._attr_supported_features = features

    @property
    def hvac_mode(self) -> HVACMode | None:
        """Return the current HVAC mode."""
        if not self._view.power:
            return HVACMode.OFF
        mode = self._view.mode
        if mode not in HVAC_MODE_MAP:
            _LOGGER.debug("%s: unknown operation mode %s", self.entity_id, mode)
            return None
        return HVAC_MODE_MAP[mode]

    @property
    def hvac_action(self) -> HVACAction:
        """Return the current running action."""
        return HVAC_ACTION_MAP[self._view.action]

    @property
    def current_temperature(self) -> float | None:
        """Return the room temperature."""
        return self._view.room_temperature

    @property
    def target_temperature(self) -> float | None:
        """Return the setpoint; Auto mode exposes a range instead."""
        if self._view.mode == MODE_AUTO:
            return None
        return self._view.target_temperature

    @property
    def target_temperature_low(self) -> float | None:
        """Return the heating threshold in Auto mode."""
        if self._view.mode != MODE_AUTO:
            return None
        return self._view.heating_threshold

    @property
    def target_temperature_high(self) -> float | None:
        """Return the cooling threshold in Auto mode."""
        if self._view.mode != MODE_AUTO:
            return None
        return self._view.cooling_threshold

    @property
    def min_temp(self) -> float:
        """Return the lowest setpoint for the current mode."""
        capabilities = self._view.device.capabilities
        return capabilities.temperature_range(self._view.mode)[0]

    @property
    def max_temp(self) -> float:
        """Return the highest setpoint for the current mode."""
        capabilities = self._view.device.capabilities
        return capabilities.temperature_range(self._view.mode)[1]

    @property
    def fan_mode(self) -> str | None:
        """Return the current fan mode."""
        speed = self._view.fan_speed
        for fan_mode, token in self._fan_modes.items():
            if token == speed:
                return fan_mode
        return None

    @property
    def swing_mode(self) -> str | None:
        """Return the vertical vane position."""
        return SWING_MODE_FROM_API.get(self._view.vane_position or "")

    async def async_set_hvac_mode(self, hvac_mode: HVACMode) -> None:
        """Set the HVAC mode, powering the unit on or off as needed.

        Home Assistant selects a mode and powers on in one call, so the mode
        is always sent together with Power. Queuing a mode for the next power
        on only happens for engine callers that change the mode of a unit
        that is off.

        Args:
            hvac_mode: The HVAC mode to set.

        """
        if hvac_mode == HVACMode.OFF:
            await self._async_dispatch({SETTING_POWER: False})
            return
        if hvac_mode not in HVAC_MODE_TO_API:
            error_msg = f"Unsupported HVAC mode: {hvac_mode}"
            raise HomeAssistantError(error_msg)
        await self._async_dispatch(
            {SETTING_OPERATION_MODE: HVAC_MODE_TO_API[hvac_mode], SETTING_POWER: True}
        )

    async def async_set_temperature(self, **kwargs: Any) -> None:  # noqa: ANN401
        """Set the setpoint or the Auto-mode thresholds.

        Args:
            **kwargs: Keyword arguments containing temperature data.

        """
        if (hvac_mode := kwargs.get(ATTR_HVAC_MODE)) is not None:
            await self.async_set_hvac_mode(hvac_mode)

        low = kwargs.get(ATTR_TARGET_TEMP_LOW)
        high = kwargs.get(ATTR_TARGET_TEMP_HIGH)
        if low is not None or high is not None:
            try:
                await self._engine.async_set_thresholds(
                    self._view.unit_id, heating=low, cooling=high
                )
            except MelCloudCommunicationError as err:
                raise HomeAssistantError(str(err)) from err
            return

        if (temperature := kwargs.get(ATTR_TEMPERATURE)) is not None:
            await self._async_dispatch({SETTING_SET_TEMPERATURE: temperature})

    async def async_set_fan_mode(self, fan_mode: str) -> None:
        """Set the fan speed.

        Args:
            fan_mode: The fan mode to set.

        """
        if fan_mode not in self._fan_modes:
            error_msg = f"Unsupported fan mode: {fan_mode}"
            raise HomeAssistantError(error_msg)
        await self._async_dispatch({SETTING_FAN_SPEED: self._fan_modes[fan_mode]})

    async def async_set_swing_mode(self, swing_mode: str) -> None:
        """Set the vertical vane position.

        Args:
            swing_mode: The swing mode to set.

        """
        if swing_mode not in SWING_MODE_MAP:
            error_msg = f"Unsupported swing mode: {swing_mode}"
            raise HomeAssistantError(error_msg)
        await self._async_dispatch({SETTING_VANE_VERTICAL: SWING_MODE_MAP[swing_mode]})

    async def async_turn_on(self) -> None:
        """Turn the unit on, applying any mode chosen while it was off."""
        await self._async_dispatch({SETTING_POWER: True})

    async def async_turn_off(self) -> None:
        """Turn the unit off."""
        await self._async_dispatch({SETTING_POWER: False})

    async def _async_dispatch(self, patch: dict[str, Any]) -> None:
        try:
            await self._engine.async_dispatch_command(self._view.unit_id, patch)
        except MelCloudCommunicationError as err:
            raise HomeAssistantError(str(err)) from err

