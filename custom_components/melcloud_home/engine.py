"""Device-state reconciliation for MELCloud Home units.

One canonical DeviceState per unit lives in a UnitHandle that every view of
that unit reads through. The engine is the only writer: it applies polled
snapshots, patches state optimistically after commands and keeps stale polls
from overwriting a command that the cloud has not reflected yet.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from .const import (
    MODE_AUTO,
    MODE_COOL,
    MODE_DRY,
    MODE_HEAT,
    POWER_VERIFICATION_DELAY,
    SETTING_FAN_SPEED,
    SETTING_OPERATION_MODE,
    SETTING_POWER,
    SETTING_SET_TEMPERATURE,
    SETTING_VANE_HORIZONTAL,
    SETTING_VANE_VERTICAL,
    THRESHOLD_OFFSET,
    VERIFICATION_DELAY,
    VERIFICATION_SAFETY_TIMEOUT,
)
from .exceptions import MelCloudApiError, MelCloudCommunicationError
from .models import (
    PATCHABLE_SETTINGS,
    DeviceState,
    build_command,
    format_setting,
    normalize_fan_speed,
    normalize_vane_position,
    parse_temperature,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from .api import MelCloudClient

_LOGGER = logging.getLogger(__name__)

TEMPERATURE_TOLERANCE = 0.05
THRESHOLD_DRIFT = 0.25
_POWER_OFF_IGNORED = (SETTING_FAN_SPEED, SETTING_VANE_VERTICAL, SETTING_VANE_HORIZONTAL)


class UnitSyncState(StrEnum):
    """Reconciliation state of a unit."""

    UNKNOWN = "unknown"
    SYNCED = "synced"
    OPTIMISTIC = "optimistic"
    VERIFICATION_PENDING = "verification_pending"


@dataclass(frozen=True, slots=True)
class EngineTimings:
    """Debounce and safety windows, in seconds."""

    verification_delay: float = VERIFICATION_DELAY
    power_verification_delay: float = POWER_VERIFICATION_DELAY
    safety_timeout: float = VERIFICATION_SAFETY_TIMEOUT
    threshold_offset: float = THRESHOLD_OFFSET


@dataclass(slots=True)
class ThresholdCache:
    """Last requested heating/cooling thresholds for the range UI."""

    heating: float | None = None
    cooling: float | None = None


def values_match(name: str, current: Any, requested: Any) -> bool:  # noqa: ANN401
    """Compare a setting value against a requested one across encodings."""
    if current is None or requested is None:
        return current is None and requested is None
    if name == SETTING_POWER:
        return str(current).lower() == str(requested).lower()
    if name == SETTING_SET_TEMPERATURE:
        current_temp = parse_temperature(current)
        requested_temp = parse_temperature(requested)
        if current_temp is None or requested_temp is None:
            return False
        return abs(current_temp - requested_temp) < TEMPERATURE_TOLERANCE
    if name == SETTING_FAN_SPEED:
        return normalize_fan_speed(str(current)) == normalize_fan_speed(str(requested))
    if name == SETTING_VANE_VERTICAL:
        return normalize_vane_position(str(current)) == normalize_vane_position(
            str(requested)
        )
    return str(current) == str(requested)


class UnitHandle:
    """Shared-ownership cell holding the canonical state of one unit."""

    def __init__(self, device: DeviceState) -> None:
        """Initialize the handle with the first observed state."""
        self.device = device
        self.sync_state = UnitSyncState.UNKNOWN
        self.thresholds = ThresholdCache()
        self.pending_mode_change: str | None = None
        self.pending_fields: dict[str, str] = {}
        self.command_seq = 0
        self.verify_task: asyncio.Task[None] | None = None
        self.fetch_tasks: set[asyncio.Task[None]] = set()
        self.safety_timer: asyncio.TimerHandle | None = None
        self._last_good: dict[str, float] = {}

    @property
    def unit_id(self) -> str:
        """Return the unit identifier."""
        return self.device.id

    @property
    def pending_verification(self) -> bool:
        """Return True while an optimistic update awaits confirmation."""
        return self.sync_state is UnitSyncState.VERIFICATION_PENDING

    def temperature(self, name: str) -> float | None:
        """Return a temperature setting, falling back to its last good value."""
        value = parse_temperature(self.device.setting(name))
        if value is None:
            return self._last_good.get(name)
        self._last_good[name] = value
        return value


class ReconciliationEngine:
    """Keeps canonical unit state consistent across polls and commands."""

    def __init__(
        self,
        client: MelCloudClient,
        timings: EngineTimings | None = None,
        on_update: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            client: Cloud client used for commands and verification polls.
            timings: Debounce and safety windows.
            on_update: Called with the unit id whenever a unit's state changes
                outside of a regular poll.

        """
        self._client = client
        self._timings = timings or EngineTimings()
        self._units: dict[str, UnitHandle] = {}
        self.on_update = on_update

    @property
    def handles(self) -> list[UnitHandle]:
        """Return the handles of all known units."""
        return list(self._units.values())

    def get_handle(self, unit_id: str) -> UnitHandle:
        """Return the handle for a unit.

        Raises:
            KeyError: If the unit has never been observed.

        """
        return self._units[unit_id]

    async def async_refresh(self) -> None:
        """Poll the cloud and apply every unit snapshot.

        Does not fire the update hook.
        """
        units = await self._client.async_fetch_state()
        for unit in units:
            self.apply_remote_state(unit, notify=False)

    def apply_remote_state(
        self, unit: DeviceState, *, verification: bool = False, notify: bool = True
    ) -> bool:
        """Apply a polled snapshot of a unit.

        While a command is being verified, a background snapshot that
        contradicts the optimistic values is discarded. Verification
        snapshots always win.

        Args:
            unit: Snapshot reported by the cloud.
            verification: Whether the snapshot confirms a command just sent.
            notify: Whether to fire the update hook when the snapshot is applied.

        Returns:
            True if the snapshot was applied.

        """
        handle = self._units.get(unit.id)
        if handle is None:
            handle = UnitHandle(unit)
            self._units[unit.id] = handle
            self._reconcile_thresholds(handle)
            handle.sync_state = UnitSyncState.SYNCED
            _LOGGER.debug("Discovered unit %s (%s)", unit.display_name, unit.id)
            return True

        if handle.pending_verification and not verification:
            contradicted = [
                name
                for name, expected in handle.pending_fields.items()
                if not values_match(name, unit.setting(name), expected)
            ]
            if contradicted:
                _LOGGER.debug(
                    "[%s] Discarding stale poll, pending verification of %s",
                    unit.display_name,
                    contradicted,
                )
                return False

        if verification:
            self._clear_verification(handle)

        handle.device = unit
        if not handle.pending_verification:
            handle.sync_state = UnitSyncState.SYNCED
        self._reconcile_thresholds(handle)
        if notify:
            self._notify(handle)
        return True

    async def async_dispatch_command(
        self, unit_id: str, patch: Mapping[str, Any]
    ) -> bool:
        """Send a field patch to a unit and update state optimistically.

        Args:
            unit_id: Target unit identifier.
            patch: Setting names mapped to requested values.

        Returns:
            True if a command was sent, False if nothing needed sending.

        Raises:
            MelCloudCommunicationError: If the unit is unknown or the command
                could not be delivered.

        """
        handle = self._units.get(unit_id)
        if handle is None:
            error_msg = f"Unknown unit {unit_id}"
            raise MelCloudCommunicationError(error_msg)

        device = handle.device
        name = device.display_name
        requested = self._normalize_patch(handle, patch)
        changes = {
            key: value
            for key, value in requested.items()
            if not self._matches_current(handle, key, value)
        }
        powering_on = changes.get(SETTING_POWER) is True

        if not device.power and not powering_on:
            if SETTING_OPERATION_MODE in requested:
                mode = changes.pop(SETTING_OPERATION_MODE, None)
                handle.pending_mode_change = mode
                if mode is not None:
                    _LOGGER.info(
                        "[%s] Unit is off, mode %s queued for next power on",
                        name,
                        mode,
                    )
            for key in _POWER_OFF_IGNORED:
                if changes.pop(key, None) is not None:
                    _LOGGER.info("[%s] Unit is off, ignoring %s change", name, key)

        if (
            powering_on
            and handle.pending_mode_change is not None
            and SETTING_OPERATION_MODE not in requested
            and handle.pending_mode_change != device.operation_mode
        ):
            changes[SETTING_OPERATION_MODE] = handle.pending_mode_change

        if not changes:
            _LOGGER.info("[%s] State already matches, skipping command", name)
            return False

        command = build_command(device, changes)
        try:
            await self._client.async_send_command(unit_id, command)
        except MelCloudApiError as err:
            _LOGGER.error("[%s] Failed to send command %s: %s", name, changes, err)
            error_msg = f"Failed to control {name}: {err}"
            raise MelCloudCommunicationError(error_msg) from err

        if powering_on:
            handle.pending_mode_change = None

        wire_values = {key: format_setting(key, value) for key, value in changes.items()}
        handle.device.apply_patch(wire_values)
        handle.command_seq += 1
        handle.sync_state = UnitSyncState.OPTIMISTIC
        self._mark_verification_pending(handle, wire_values)
        self._notify(handle)

        delay = (
            self._timings.power_verification_delay
            if SETTING_POWER in changes
            else self._timings.verification_delay
        )
        self._schedule_verification(handle, delay)
        return True

    async def async_set_thresholds(
        self,
        unit_id: str,
        *,
        heating: float | None = None,
        cooling: float | None = None,
    ) -> bool:
        """Apply heating/cooling thresholds from a range control.

        In Auto mode the unit's single setpoint becomes the midpoint of the
        cached thresholds; the cached pair is what the range UI displays.

        Returns:
            True if a command was sent.

        """
        handle = self._units.get(unit_id)
        if handle is None:
            error_msg = f"Unknown unit {unit_id}"
            raise MelCloudCommunicationError(error_msg)

        thresholds = handle.thresholds
        previous = ThresholdCache(thresholds.heating, thresholds.cooling)
        if heating is not None:
            thresholds.heating = float(heating)
        if cooling is not None:
            thresholds.cooling = float(cooling)

        mode = handle.device.operation_mode
        target: float | None = None
        if mode == MODE_AUTO:
            if thresholds.heating is not None and thresholds.cooling is not None:
                target = (thresholds.heating + thresholds.cooling) / 2
        elif mode == MODE_HEAT:
            target = heating
        elif mode in (MODE_COOL, MODE_DRY):
            target = cooling

        if target is None:
            _LOGGER.debug(
                "[%s] Thresholds cached (%s/%s), no setpoint change in mode %s",
                handle.device.display_name,
                thresholds.heating,
                thresholds.cooling,
                mode,
            )
            self._notify(handle)
            return False

        try:
            sent = await self.async_dispatch_command(
                unit_id, {SETTING_SET_TEMPERATURE: target}
            )
        except MelCloudCommunicationError:
            handle.thresholds = previous
            raise
        if not sent:
            self._notify(handle)
        return sent

    def async_shutdown(self) -> None:
        """Cancel all pending verification work, including fetches in flight."""
        self.on_update = None
        for handle in self._units.values():
            if handle.verify_task is not None and not handle.verify_task.done():
                handle.verify_task.cancel()
            handle.verify_task = None
            for task in list(handle.fetch_tasks):
                task.cancel()
            handle.fetch_tasks.clear()
            if handle.safety_timer is not None:
                handle.safety_timer.cancel()
                handle.safety_timer = None

    def _normalize_patch(
        self, handle: UnitHandle, patch: Mapping[str, Any]
    ) -> dict[str, Any]:
        normalized: dict[str, Any] = {}
        for key, value in patch.items():
            if key not in PATCHABLE_SETTINGS:
                error_msg = f"Unsupported setting {key}"
                raise ValueError(error_msg)
            if key == SETTING_POWER:
                normalized[key] = bool(value)
            elif key == SETTING_SET_TEMPERATURE:
                normalized[key] = self._constrain_setpoint(handle, patch, float(value))
            elif key == SETTING_FAN_SPEED:
                normalized[key] = normalize_fan_speed(str(value))
            elif key == SETTING_VANE_VERTICAL:
                normalized[key] = normalize_vane_position(str(value))
            else:
                normalized[key] = str(value)
        return normalized

    @staticmethod
    def _constrain_setpoint(
        handle: UnitHandle, patch: Mapping[str, Any], value: float
    ) -> float:
        capabilities = handle.device.capabilities
        mode = patch.get(SETTING_OPERATION_MODE, handle.device.operation_mode)
        low, high = capabilities.temperature_range(mode)
        step = capabilities.temperature_step
        return min(high, max(low, round(value / step) * step))

    @staticmethod
    def _matches_current(handle: UnitHandle, key: str, value: Any) -> bool:  # noqa: ANN401
        if key == SETTING_POWER:
            return handle.device.power == value
        if key == SETTING_SET_TEMPERATURE:
            current = handle.temperature(SETTING_SET_TEMPERATURE)
            return current is not None and abs(current - value) < TEMPERATURE_TOLERANCE
        return values_match(key, handle.device.setting(key), value)

    def _reconcile_thresholds(self, handle: UnitHandle) -> None:
        setpoint = handle.temperature(SETTING_SET_TEMPERATURE)
        if setpoint is None:
            return
        thresholds = handle.thresholds
        offset = self._timings.threshold_offset
        if thresholds.heating is None and thresholds.cooling is None:
            thresholds.heating = setpoint - offset
            thresholds.cooling = setpoint + offset
            return
        if (
            handle.device.operation_mode != MODE_AUTO
            or thresholds.heating is None
            or thresholds.cooling is None
        ):
            return
        midpoint = self._constrain_setpoint(
            handle, {}, (thresholds.heating + thresholds.cooling) / 2
        )
        drift = setpoint - midpoint
        if abs(drift) > THRESHOLD_DRIFT:
            thresholds.heating += drift
            thresholds.cooling += drift

    def _mark_verification_pending(
        self, handle: UnitHandle, wire_values: Mapping[str, str]
    ) -> None:
        handle.pending_fields.update(wire_values)
        handle.sync_state = UnitSyncState.VERIFICATION_PENDING
        if handle.safety_timer is not None:
            handle.safety_timer.cancel()
        handle.safety_timer = asyncio.get_running_loop().call_later(
            self._timings.safety_timeout, self._expire_verification, handle
        )

    def _expire_verification(self, handle: UnitHandle) -> None:
        handle.safety_timer = None
        if handle.pending_verification:
            _LOGGER.debug(
                "[%s] Verification window expired, polls win again",
                handle.device.display_name,
            )
        self._clear_verification(handle)

    @staticmethod
    def _clear_verification(handle: UnitHandle) -> None:
        if handle.safety_timer is not None:
            handle.safety_timer.cancel()
            handle.safety_timer = None
        handle.pending_fields.clear()
        handle.sync_state = UnitSyncState.SYNCED

    def _schedule_verification(self, handle: UnitHandle, delay: float) -> None:
        if handle.verify_task is not None and not handle.verify_task.done():
            handle.verify_task.cancel()
        task = asyncio.get_running_loop().create_task(self._async_verify(handle, delay))
        handle.verify_task = task
        handle.fetch_tasks.add(task)
        task.add_done_callback(handle.fetch_tasks.discard)

    async def _async_verify(self, handle: UnitHandle, delay: float) -> None:
        await asyncio.sleep(delay)
        # Detach so a newer command schedules a fresh task instead of
        # cancelling this fetch. Shutdown still reaches it through fetch_tasks.
        handle.verify_task = None
        seq = handle.command_seq
        name = handle.device.display_name

        try:
            units = await self._client.async_fetch_state()
        except MelCloudApiError as err:
            _LOGGER.warning("[%s] Verification refresh failed: %s", name, err)
            if seq == handle.command_seq:
                self._clear_verification(handle)
            return

        # A command sent while fetching makes this snapshot a background one.
        verified = seq == handle.command_seq
        seen = False
        for unit in units:
            is_target = unit.id == handle.unit_id
            seen = seen or is_target
            self.apply_remote_state(unit, verification=is_target and verified)
        if verified and not seen:
            _LOGGER.debug("[%s] Unit missing from verification refresh", name)
            self._clear_verification(handle)

    def _notify(self, handle: UnitHandle) -> None:
        if self.on_update is not None:
            self.on_update(handle.unit_id)
