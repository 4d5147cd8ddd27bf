"""Data models for MELCloud Home integration."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from .const import (
    CONF_DEBUG,
    CONF_FAN_SPEED_BUTTONS,
    CONF_POLL_INTERVAL,
    CONF_REFRESH_TOKEN,
    CONF_VANE_BUTTONS,
    DEFAULT_POLL_INTERVAL,
    FAN_SPEED_LEVELS,
    FAN_SPEED_TOKENS,
    MAX_SANE_TEMPERATURE,
    MIN_SANE_TEMPERATURE,
    MODE_AUTO,
    MODE_COOL,
    MODE_DRY,
    MODE_FAN,
    MODE_HEAT,
    SETTING_FAN_SPEED,
    SETTING_OPERATION_MODE,
    SETTING_POWER,
    SETTING_SET_TEMPERATURE,
    SETTING_VANE_HORIZONTAL,
    SETTING_VANE_VERTICAL,
    VANE_POSITION_TOKENS,
)
from .helpers import to_float, to_int

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

_FAN_SPEED_LOOKUP = {
    **{token.lower(): token for token in FAN_SPEED_TOKENS.values()},
    **FAN_SPEED_TOKENS,
}
_VANE_POSITION_LOOKUP = {
    **{token.lower(): token for token in VANE_POSITION_TOKENS.values()},
    **VANE_POSITION_TOKENS,
}


@dataclass
class Credentials:
    """Represents an OAuth token pair with its expiration timestamp."""

    access_token: str
    refresh_token: str
    expires_at: datetime

    def expires_within(self, buffer: timedelta) -> bool:
        """Return True if the access token expires inside the buffer window."""
        return datetime.now(UTC) >= self.expires_at - buffer


@dataclass(frozen=True, slots=True)
class DeviceSetting:
    """A single name/value pair as reported by the vendor API."""

    name: str
    value: str


@dataclass(frozen=True, slots=True)
class DeviceCapabilities:
    """Static capabilities of an air-to-air unit."""

    number_of_fan_speeds: int = 5
    has_automatic_fan_speed: bool = True
    has_heat_operation_mode: bool = True
    has_cool_operation_mode: bool = True
    has_auto_operation_mode: bool = True
    has_dry_operation_mode: bool = True
    has_air_direction: bool = False
    has_swing: bool = False
    has_standby: bool = False
    has_half_degree_increments: bool = False
    min_temp_cool_dry: float = 16.0
    max_temp_cool_dry: float = 31.0
    min_temp_heat: float = 10.0
    max_temp_heat: float = 31.0
    min_temp_automatic: float = 16.0
    max_temp_automatic: float = 31.0

    @classmethod
    def from_api(cls, data: Mapping[str, Any] | None) -> DeviceCapabilities:
        """Build capabilities from the API payload, keeping defaults for gaps."""
        data = data or {}
        defaults = cls()

        def _temp(key: str, default: float) -> float:
            return to_float(data.get(key), default)

        return cls(
            number_of_fan_speeds=to_int(
                data.get("numberOfFanSpeeds"), defaults.number_of_fan_speeds
            ),
            has_automatic_fan_speed=bool(data.get("hasAutomaticFanSpeed", True)),
            has_heat_operation_mode=bool(data.get("hasHeatOperationMode", True)),
            has_cool_operation_mode=bool(data.get("hasCoolOperationMode", True)),
            has_auto_operation_mode=bool(data.get("hasAutoOperationMode", True)),
            has_dry_operation_mode=bool(data.get("hasDryOperationMode", True)),
            has_air_direction=bool(data.get("hasAirDirection", False)),
            has_swing=bool(data.get("hasSwing", False)),
            has_standby=bool(data.get("hasStandby", False)),
            has_half_degree_increments=bool(
                data.get("hasHalfDegreeIncrements", False)
            ),
            min_temp_cool_dry=_temp("minTempCoolDry", defaults.min_temp_cool_dry),
            max_temp_cool_dry=_temp("maxTempCoolDry", defaults.max_temp_cool_dry),
            min_temp_heat=_temp("minTempHeat", defaults.min_temp_heat),
            max_temp_heat=_temp("maxTempHeat", defaults.max_temp_heat),
            min_temp_automatic=_temp(
                "minTempAutomatic", defaults.min_temp_automatic
            ),
            max_temp_automatic=_temp(
                "maxTempAutomatic", defaults.max_temp_automatic
            ),
        )

    @property
    def supported_modes(self) -> list[str]:
        """Return the operation modes the unit accepts."""
        modes = []
        if self.has_heat_operation_mode:
            modes.append(MODE_HEAT)
        if self.has_cool_operation_mode:
            modes.append(MODE_COOL)
        if self.has_auto_operation_mode:
            modes.append(MODE_AUTO)
        if self.has_dry_operation_mode:
            modes.append(MODE_DRY)
        modes.append(MODE_FAN)
        return modes

    @property
    def temperature_step(self) -> float:
        """Return the setpoint increment."""
        return 0.5 if self.has_half_degree_increments else 1.0

    def temperature_range(self, mode: str | None) -> tuple[float, float]:
        """Return the (min, max) setpoint bounds for an operation mode."""
        if mode == MODE_HEAT:
            return self.min_temp_heat, self.max_temp_heat
        if mode == MODE_AUTO:
            return self.min_temp_automatic, self.max_temp_automatic
        return self.min_temp_cool_dry, self.max_temp_cool_dry


@dataclass(frozen=True, slots=True)
class ConnectionInfo:
    """Connectivity details of a unit's wifi adapter."""

    is_connected: bool = True
    rssi: int | None = None
    interface_id: str | None = None
    is_in_error: bool = False


@dataclass(slots=True)
class DeviceState:
    """Canonical representation of one air-to-air unit."""

    id: str
    display_name: str
    settings: list[DeviceSetting]
    capabilities: DeviceCapabilities = field(default_factory=DeviceCapabilities)
    connection: ConnectionInfo = field(default_factory=ConnectionInfo)
    building_name: str | None = None

    @classmethod
    def from_api(
        cls, data: Mapping[str, Any], building_name: str | None = None
    ) -> DeviceState:
        """Build a DeviceState from an airToAirUnits entry.

        Raises:
            KeyError: If the unit has no identifier.

        """
        unit_id = str(data["id"])
        settings = [
            DeviceSetting(
                name=str(item["name"]),
                value="" if item.get("value") is None else str(item["value"]),
            )
            for item in data.get("settings") or []
            if isinstance(item, dict) and item.get("name")
        ]
        rssi = data.get("rssi")
        return cls(
            id=unit_id,
            display_name=str(data.get("givenDisplayName") or unit_id),
            settings=settings,
            capabilities=DeviceCapabilities.from_api(data.get("capabilities")),
            connection=ConnectionInfo(
                is_connected=bool(data.get("isConnected", True)),
                rssi=to_int(rssi) if rssi is not None else None,
                interface_id=data.get("connectedInterfaceIdentifier"),
                is_in_error=bool(data.get("isInError", False)),
            ),
            building_name=building_name,
        )

    @property
    def parsed_settings(self) -> dict[str, str]:
        """Return the settings list as a lookup map."""
        return parse_settings(self.settings)

    def setting(self, name: str) -> str | None:
        """Return the raw value of a setting, or None if absent."""
        return self.parsed_settings.get(name)

    @property
    def power(self) -> bool:
        """Return True if the unit is powered on."""
        return str(self.setting(SETTING_POWER)).lower() == "true"

    @property
    def operation_mode(self) -> str | None:
        """Return the operation mode token."""
        return self.setting(SETTING_OPERATION_MODE)

    @property
    def fan_speed(self) -> str | None:
        """Return the fan speed as a normalized text token."""
        return normalize_fan_speed(self.setting(SETTING_FAN_SPEED))

    @property
    def vane_vertical(self) -> str | None:
        """Return the vertical vane position as a normalized text token."""
        return normalize_vane_position(self.setting(SETTING_VANE_VERTICAL))

    @property
    def vane_horizontal(self) -> str | None:
        """Return the horizontal vane position as reported."""
        return self.setting(SETTING_VANE_HORIZONTAL)

    def apply_patch(self, values: Mapping[str, str]) -> None:
        """Replace setting values in wire format, appending unknown names."""
        remaining = dict(values)
        updated = []
        for setting in self.settings:
            if setting.name in remaining:
                updated.append(DeviceSetting(setting.name, remaining.pop(setting.name)))
            else:
                updated.append(setting)
        updated.extend(DeviceSetting(name, value) for name, value in remaining.items())
        self.settings = updated


@dataclass(slots=True)
class DeviceCommand:
    """Command body for the unit control endpoint; None means unchanged."""

    power: bool | None = None
    operation_mode: str | None = None
    set_fan_speed: str | None = None
    vane_horizontal_direction: str | None = None
    vane_vertical_direction: str | None = None
    set_temperature: float | None = None
    temperature_increment_override: int | None = None
    in_standby_mode: bool | None = None

    def as_payload(self) -> dict[str, Any]:
        """Return the JSON payload, keeping null fields."""
        return {
            "power": self.power,
            "operationMode": self.operation_mode,
            "setFanSpeed": self.set_fan_speed,
            "vaneHorizontalDirection": self.vane_horizontal_direction,
            "vaneVerticalDirection": self.vane_vertical_direction,
            "setTemperature": self.set_temperature,
            "temperatureIncrementOverride": self.temperature_increment_override,
            "inStandbyMode": self.in_standby_mode,
        }


_COMMAND_FIELDS = {
    SETTING_POWER: "power",
    SETTING_OPERATION_MODE: "operation_mode",
    SETTING_FAN_SPEED: "set_fan_speed",
    SETTING_VANE_HORIZONTAL: "vane_horizontal_direction",
    SETTING_VANE_VERTICAL: "vane_vertical_direction",
    SETTING_SET_TEMPERATURE: "set_temperature",
}
PATCHABLE_SETTINGS = frozenset(_COMMAND_FIELDS)


@dataclass(frozen=True, slots=True)
class RuntimeConfig:
    """Configuration handed to the client, engine and coordinator."""

    refresh_token: str | None
    poll_interval: int = DEFAULT_POLL_INTERVAL
    debug: bool = False
    fan_speed_buttons: bool = True
    vane_buttons: bool = True

    @classmethod
    def from_entry_data(
        cls, data: Mapping[str, Any], options: Mapping[str, Any] | None = None
    ) -> RuntimeConfig:
        """Merge config entry data with options, options taking precedence."""
        merged = {**data, **(options or {})}
        return cls(
            refresh_token=merged.get(CONF_REFRESH_TOKEN),
            poll_interval=to_int(
                merged.get(CONF_POLL_INTERVAL), DEFAULT_POLL_INTERVAL
            ),
            debug=bool(merged.get(CONF_DEBUG, False)),
            fan_speed_buttons=bool(merged.get(CONF_FAN_SPEED_BUTTONS, True)),
            vane_buttons=bool(merged.get(CONF_VANE_BUTTONS, True)),
        )


def parse_settings(settings: Iterable[DeviceSetting]) -> dict[str, str]:
    """Convert a settings list into a map; later duplicates win."""
    return {setting.name: setting.value for setting in settings}


def normalize_fan_speed(value: str | None) -> str | None:
    """Map numeric ("3") and text ("Three") fan speeds to the text token."""
    if value is None:
        return None
    value = str(value).strip()
    return _FAN_SPEED_LOOKUP.get(value) or _FAN_SPEED_LOOKUP.get(value.lower(), value)


def normalize_vane_position(value: str | None) -> str | None:
    """Map numeric ("7") and text ("Swing") vane positions to the text token."""
    if value is None:
        return None
    value = str(value).strip()
    return _VANE_POSITION_LOOKUP.get(value) or _VANE_POSITION_LOOKUP.get(
        value.lower(), value
    )


def fan_speed_level(value: str | None) -> int | None:
    """Return the numeric fan speed level, 0 meaning Auto."""
    return FAN_SPEED_LEVELS.get(normalize_fan_speed(value) or "")


def parse_temperature(value: Any) -> float | None:  # noqa: ANN401
    """Parse a temperature string, rejecting junk and implausible values."""
    temperature = to_float(value)
    if temperature is None:
        return None
    if not MIN_SANE_TEMPERATURE <= temperature <= MAX_SANE_TEMPERATURE:
        return None
    return temperature


def format_temperature(value: float) -> str:
    """Format a temperature the way the API reports it ("21", "21.5")."""
    return f"{float(value):g}"


def format_setting(name: str, value: Any) -> str:  # noqa: ANN401
    """Render a typed patch value as its settings-list string."""
    if name == SETTING_POWER:
        return "True" if value else "False"
    if name == SETTING_SET_TEMPERATURE:
        return format_temperature(value)
    if name == SETTING_FAN_SPEED:
        return normalize_fan_speed(value) or ""
    if name == SETTING_VANE_VERTICAL:
        return normalize_vane_position(value) or ""
    return str(value)


def build_command(state: DeviceState, patch: Mapping[str, Any]) -> DeviceCommand:
    """Echo the unit's current settings, replacing only the patched fields.

    Fan speed and vertical vane are echoed as text tokens since the API
    reports numbers but expects text. An unparseable setpoint is sent as
    null, which the API treats as unchanged.
    """
    settings = state.parsed_settings
    command = DeviceCommand(
        power=state.power,
        operation_mode=settings.get(SETTING_OPERATION_MODE),
        set_fan_speed=normalize_fan_speed(settings.get(SETTING_FAN_SPEED)),
        vane_horizontal_direction=settings.get(SETTING_VANE_HORIZONTAL),
        vane_vertical_direction=normalize_vane_position(
            settings.get(SETTING_VANE_VERTICAL)
        ),
        set_temperature=parse_temperature(settings.get(SETTING_SET_TEMPERATURE)),
    )
    for name, value in patch.items():
        setattr(command, _COMMAND_FIELDS[name], value)
    return command
