"""Read-only projections of a unit's canonical state.

Each host entity reads one view. Views hold no state of their own, so every
view of a unit always reflects the same UnitHandle.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .const import (
    DEFAULT_TEMPERATURE,
    FAN_SPEED_AUTO,
    FAN_SPEED_BUTTONS,
    MODE_AUTO,
    MODE_COOL,
    MODE_DRY,
    MODE_FAN,
    MODE_HEAT,
    SETTING_FAN_SPEED,
    SETTING_POWER,
    SETTING_ROOM_TEMPERATURE,
    SETTING_SET_TEMPERATURE,
    SETTING_VANE_VERTICAL,
    VANE_AUTO,
    VANE_BUTTONS,
)
from .models import fan_speed_level

if TYPE_CHECKING:
    from .engine import UnitHandle
    from .models import DeviceState

ACTION_OFF = "off"
ACTION_IDLE = "idle"
ACTION_HEATING = "heating"
ACTION_COOLING = "cooling"
ACTION_DRYING = "drying"
ACTION_FAN = "fan"

_MODE_ACTIONS = {
    MODE_HEAT: ACTION_HEATING,
    MODE_COOL: ACTION_COOLING,
    MODE_DRY: ACTION_DRYING,
    MODE_FAN: ACTION_FAN,
}

# Fan button key -> minimum number of fan speeds the unit must report
_FAN_BUTTON_MIN_SPEEDS = {"quiet": 1, "2": 2, "3": 3, "4": 4, "max": 5}


class UnitView:
    """Base projection bound to a unit handle."""

    key = "main"

    def __init__(self, handle: UnitHandle) -> None:
        """Initialize the view."""
        self._handle = handle

    @property
    def unit_id(self) -> str:
        """Return the unit identifier."""
        return self._handle.unit_id

    @property
    def device(self) -> DeviceState:
        """Return the current canonical state."""
        return self._handle.device

    @property
    def power(self) -> bool:
        """Return True if the unit is on."""
        return self.device.power


class MainUnitView(UnitView):
    """Projection backing the unit's climate control."""

    @property
    def mode(self) -> str | None:
        """Return the operation mode token."""
        return self.device.operation_mode

    @property
    def action(self) -> str:
        """Return what the unit is doing right now."""
        if not self.power:
            return ACTION_OFF
        return _MODE_ACTIONS.get(self.mode or "", ACTION_IDLE)

    @property
    def room_temperature(self) -> float | None:
        """Return the measured room temperature."""
        return self._handle.temperature(SETTING_ROOM_TEMPERATURE)

    @property
    def target_temperature(self) -> float:
        """Return the setpoint, or a default when it was never reported."""
        value = self._handle.temperature(SETTING_SET_TEMPERATURE)
        return DEFAULT_TEMPERATURE if value is None else value

    @property
    def heating_threshold(self) -> float:
        """Return the lower bound shown by the range control."""
        heating = self._handle.thresholds.heating
        if self.mode == MODE_AUTO and heating is not None:
            return heating
        return self.target_temperature

    @property
    def cooling_threshold(self) -> float:
        """Return the upper bound shown by the range control."""
        cooling = self._handle.thresholds.cooling
        if self.mode == MODE_AUTO and cooling is not None:
            return cooling
        return self.target_temperature

    @property
    def fan_speed(self) -> str | None:
        """Return the fan speed text token."""
        return self.device.fan_speed

    @property
    def fan_level(self) -> int | None:
        """Return the fan speed level, 0 meaning Auto."""
        return fan_speed_level(self.device.setting(SETTING_FAN_SPEED))

    @property
    def vane_position(self) -> str | None:
        """Return the vertical vane text token."""
        return self.device.vane_vertical


class _ButtonView(UnitView):
    """A single selectable value of one setting, exposed as an on/off toggle."""

    setting_name: str
    auto_value: str

    def __init__(self, handle: UnitHandle, key: str, value: str, name: str) -> None:
        super().__init__(handle)
        self.key = key
        self.assigned_value = value
        self.display_name = name

    def _current(self) -> str | None:
        raise NotImplementedError

    @property
    def is_on(self) -> bool:
        """Return True if the unit is on and using this value."""
        return self.power and self._current() == self.assigned_value

    def patch_for(self, on: bool) -> dict[str, Any] | None:  # noqa: FBT001
        """Return the patch that turns this toggle on or off.

        Turning on also powers the unit on. Turning off an active toggle
        falls back to Auto; turning off an inactive one does nothing.
        """
        if on:
            return {self.setting_name: self.assigned_value, SETTING_POWER: True}
        if self.is_on:
            return {self.setting_name: self.auto_value}
        return None


class FanSpeedView(_ButtonView):
    """Toggle for one fan speed."""

    setting_name = SETTING_FAN_SPEED
    auto_value = FAN_SPEED_AUTO

    def __init__(self, handle: UnitHandle, speed_key: str) -> None:
        """Initialize the view for a key of FAN_SPEED_BUTTONS."""
        value, name = FAN_SPEED_BUTTONS[speed_key]
        super().__init__(handle, f"fan_{speed_key}", value, name)

    def _current(self) -> str | None:
        return self.device.fan_speed


class VaneView(_ButtonView):
    """Toggle for one vertical vane position."""

    setting_name = SETTING_VANE_VERTICAL
    auto_value = VANE_AUTO

    def __init__(self, handle: UnitHandle, position_key: str) -> None:
        """Initialize the view for a key of VANE_BUTTONS."""
        value, name = VANE_BUTTONS[position_key]
        super().__init__(handle, f"vane_{position_key}", value, name)

    def _current(self) -> str | None:
        return self.device.vane_vertical


def fan_speed_views(handle: UnitHandle) -> list[FanSpeedView]:
    """Return the fan speed toggles the unit supports."""
    capabilities = handle.device.capabilities
    views = []
    for key in FAN_SPEED_BUTTONS:
        if key == "auto":
            supported = capabilities.has_automatic_fan_speed
        else:
            supported = capabilities.number_of_fan_speeds >= _FAN_BUTTON_MIN_SPEEDS[key]
        if supported:
            views.append(FanSpeedView(handle, key))
    return views


def vane_views(handle: UnitHandle) -> list[VaneView]:
    """Return the vane toggles, if the unit has adjustable vanes."""
    capabilities = handle.device.capabilities
    if not (capabilities.has_air_direction or capabilities.has_swing):
        return []
    return [VaneView(handle, key) for key in VANE_BUTTONS]
