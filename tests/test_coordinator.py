"""Tests for the MELCloud Home coordinator."""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from homeassistant.exceptions import ConfigEntryAuthFailed
from homeassistant.helpers.update_coordinator import UpdateFailed

from custom_components.melcloud_home.const import (
    DEFAULT_POLL_INTERVAL,
    MAX_POLL_INTERVAL,
    MIN_POLL_INTERVAL,
)
from custom_components.melcloud_home.coordinator import (
    MelCloudCoordinator,
    clamp_poll_interval,
    requires_reauth,
)
from custom_components.melcloud_home.engine import ReconciliationEngine
from custom_components.melcloud_home.exceptions import (
    MelCloudNoRefreshTokenError,
    MelCloudRefreshFailedError,
    MelCloudTransientError,
    MelCloudValidationError,
)
from tests.conftest import UNIT_ID, create_coordinator, create_unit


class TestClampPollInterval:
    """Tests for clamp_poll_interval function."""

    def test_clamps_to_range(self) -> None:
        """Test that intervals are kept inside the supported range."""
        assert clamp_poll_interval(1) == MIN_POLL_INTERVAL
        assert clamp_poll_interval(99999) == MAX_POLL_INTERVAL
        assert clamp_poll_interval(120) == 120.0

    def test_none_uses_default(self) -> None:
        """Test that a missing interval uses the default."""
        assert clamp_poll_interval(None) == DEFAULT_POLL_INTERVAL


class TestRequiresReauth:
    """Tests for requires_reauth function."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (MelCloudRefreshFailedError(400, "invalid_grant"), True),
            (MelCloudRefreshFailedError(401, "revoked"), True),
            (MelCloudRefreshFailedError(429, "slow down"), False),
            (MelCloudRefreshFailedError(502, "bad gateway"), False),
            (MelCloudRefreshFailedError(None, "timeout"), False),
            (MelCloudNoRefreshTokenError(), True),
            (MelCloudTransientError("down"), False),
            (MelCloudValidationError("bad body"), False),
        ],
    )
    def test_classifies_errors(self, error: Exception, expected: bool) -> None:
        """Test that only definitive auth failures require a new token."""
        assert requires_reauth(error) is expected


class TestMelCloudCoordinatorInit:
    """Tests for coordinator construction."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("interval", "expected"),
        [(None, DEFAULT_POLL_INTERVAL), (5, MIN_POLL_INTERVAL), (120, 120)],
    )
    async def test_update_interval_is_clamped(
        self, engine: ReconciliationEngine, interval: int | None, expected: int
    ) -> None:
        """Test that the configured interval is clamped before use."""
        coordinator = MelCloudCoordinator(Mock(), Mock(), engine, interval)
        assert coordinator.update_interval == timedelta(seconds=expected)

    @pytest.mark.asyncio
    async def test_engine_hook_is_wired(self, engine: ReconciliationEngine) -> None:
        """Test that the coordinator receives engine updates."""
        coordinator = create_coordinator(engine)
        assert coordinator.engine is engine
        assert engine.on_update is not None


class TestMelCloudCoordinatorUpdate:
    """Tests for _async_update_data method."""

    @pytest.mark.asyncio
    async def test_returns_units_by_id(
        self, engine: ReconciliationEngine, mock_client: Mock
    ) -> None:
        """Test that a poll returns the canonical state of every unit."""
        mock_client.async_fetch_state.return_value = [create_unit(SetFanSpeed="5")]
        coordinator = create_coordinator(engine)

        data = await coordinator._async_update_data()

        assert list(data) == [UNIT_ID]
        assert data[UNIT_ID] is engine.get_handle(UNIT_ID).device
        assert data[UNIT_ID].fan_speed == "Five"

    @pytest.mark.asyncio
    async def test_transient_error_raises_update_failed(
        self, engine: ReconciliationEngine, mock_client: Mock
    ) -> None:
        """Test that an unreachable cloud fails the update."""
        mock_client.async_fetch_state.side_effect = MelCloudTransientError("down")
        coordinator = create_coordinator(engine)

        with pytest.raises(UpdateFailed):
            await coordinator._async_update_data()

    @pytest.mark.asyncio
    async def test_rejected_token_raises_auth_failed(
        self, engine: ReconciliationEngine, mock_client: Mock
    ) -> None:
        """Test that a rejected refresh token starts reauthentication."""
        mock_client.async_fetch_state.side_effect = MelCloudRefreshFailedError(
            400, "invalid_grant"
        )
        coordinator = create_coordinator(engine)

        with pytest.raises(ConfigEntryAuthFailed):
            await coordinator._async_update_data()

    @pytest.mark.asyncio
    async def test_transient_refresh_failure_raises_update_failed(
        self, engine: ReconciliationEngine, mock_client: Mock
    ) -> None:
        """Test that a token endpoint outage does not start reauthentication."""
        mock_client.async_fetch_state.side_effect = MelCloudRefreshFailedError(
            503, "busy"
        )
        coordinator = create_coordinator(engine)

        with pytest.raises(UpdateFailed):
            await coordinator._async_update_data()

    @pytest.mark.asyncio
    async def test_poll_keeps_state_pending_verification(
        self, engine: ReconciliationEngine, mock_client: Mock
    ) -> None:
        """Test that a stale poll does not revert a command being verified."""
        coordinator = create_coordinator(engine)
        await engine.async_dispatch_command(UNIT_ID, {"SetFanSpeed": "5"})
        mock_client.async_fetch_state.return_value = [create_unit(SetFanSpeed="3")]

        data = await coordinator._async_update_data()

        assert data[UNIT_ID].fan_speed == "Five"


class TestMelCloudCoordinatorListeners:
    """Tests for listener notification."""

    @pytest.mark.asyncio
    async def test_engine_change_notifies_listeners(
        self, engine: ReconciliationEngine
    ) -> None:
        """Test that a change between polls reaches coordinator listeners."""
        coordinator = create_coordinator(engine)
        listener = Mock()
        remove = coordinator.async_add_listener(listener)

        engine.apply_remote_state(create_unit(RoomTemperature="22"))
        listener.assert_called_once()

        remove()
        engine.apply_remote_state(create_unit(RoomTemperature="23"))
        listener.assert_called_once()

    @pytest.mark.asyncio
    async def test_poll_does_not_notify_per_unit(
        self, engine: ReconciliationEngine, mock_client: Mock
    ) -> None:
        """Test that polled snapshots are left for the coordinator to announce."""
        mock_client.async_fetch_state.return_value = [create_unit(RoomTemperature="22")]
        coordinator = create_coordinator(engine)
        listener = Mock()
        coordinator.async_add_listener(listener)

        await coordinator._async_update_data()

        listener.assert_not_called()
