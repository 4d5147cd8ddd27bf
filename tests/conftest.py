"""Pytest configuration and fixtures for MELCloud Home tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
import pytest_asyncio
from httpx_retries import RetryTransport

from custom_components.melcloud_home.coordinator import MelCloudCoordinator
from custom_components.melcloud_home.engine import EngineTimings, ReconciliationEngine
from custom_components.melcloud_home.helpers import create_retry
from custom_components.melcloud_home.models import DeviceState

UNIT_ID = "0efc1234-5678-4abc-9def-0123456789ab"
USER_ID = "user-1"


def create_unit_data(
    unit_id: str = UNIT_ID,
    name: str = "Living Room",
    capabilities: dict[str, Any] | None = None,
    **settings: str,
) -> dict[str, Any]:
    """Create an airToAirUnits entry as returned by the context endpoint.

    Args:
        unit_id: Unit identifier.
        name: Display name of the unit.
        capabilities: Capability overrides.
        **settings: Setting overrides by name.

    Returns:
        A dictionary representing one air-to-air unit.

    """
    values = {
        "Power": "True",
        "OperationMode": "Heat",
        "SetFanSpeed": "3",
        "VaneVerticalDirection": "0",
        "VaneHorizontalDirection": "Auto",
        "SetTemperature": "21",
        "RoomTemperature": "19.5",
        **settings,
    }
    return {
        "id": unit_id,
        "givenDisplayName": name,
        "isConnected": True,
        "rssi": -52,
        "settings": [{"name": key, "value": value} for key, value in values.items()],
        "capabilities": {
            "numberOfFanSpeeds": 5,
            "hasAutomaticFanSpeed": True,
            "hasAirDirection": True,
            "hasSwing": True,
            "minTempHeat": 10,
            "maxTempHeat": 31,
            "minTempCoolDry": 16,
            "maxTempCoolDry": 31,
            "minTempAutomatic": 16,
            "maxTempAutomatic": 31,
            **(capabilities or {}),
        },
    }


def create_unit(**settings: str) -> DeviceState:
    """Create a DeviceState with setting overrides."""
    return DeviceState.from_api(create_unit_data(**settings), "Home")


def create_context(*units: dict[str, Any]) -> dict[str, Any]:
    """Create a user context response holding the given units."""
    return {
        "id": USER_ID,
        "email": "user@example.com",
        "buildings": [{"name": "Home", "airToAirUnits": list(units)}],
    }


@pytest.fixture
def sample_unit_data() -> dict[str, Any]:
    """Fixture providing a single powered-on unit in Heat mode."""
    return create_unit_data()


@pytest.fixture
def sample_context(sample_unit_data: dict[str, Any]) -> dict[str, Any]:
    """Fixture providing a user context with one building and one unit."""
    return create_context(sample_unit_data)


@pytest.fixture
def sample_token_response() -> dict[str, Any]:
    """Fixture providing a token endpoint response with a rotated token."""
    return {
        "access_token": "access-1",
        "refresh_token": "refresh-2",
        "expires_in": 3600,
        "token_type": "Bearer",
    }


@pytest.fixture
def mock_client() -> Mock:
    """Create a mock cloud client."""
    client = Mock()
    client.async_send_command = AsyncMock()
    client.async_fetch_state = AsyncMock(return_value=[])
    return client


@pytest.fixture
def fast_timings() -> EngineTimings:
    """Fixture providing short debounce and safety windows."""
    return EngineTimings(
        verification_delay=0.02,
        power_verification_delay=0.01,
        safety_timeout=0.1,
    )


@pytest_asyncio.fixture
async def engine(mock_client: Mock) -> AsyncGenerator[ReconciliationEngine, None]:
    """Create an engine that already knows the sample unit."""
    engine = ReconciliationEngine(mock_client)
    engine.apply_remote_state(create_unit())
    yield engine
    engine.async_shutdown()


@pytest_asyncio.fixture
async def retry_session() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Create an HTTP client with the production retry transport."""
    transport = RetryTransport(retry=create_retry())
    async with httpx.AsyncClient(transport=transport) as session:
        yield session


def create_coordinator(engine: ReconciliationEngine) -> MelCloudCoordinator:
    """Create a coordinator around an engine with Home Assistant mocked.

    Polling is disabled on the mocked entry so no refresh gets scheduled.
    """
    hass = Mock()
    entry = Mock()
    entry.pref_disable_polling = True
    return MelCloudCoordinator(hass, entry, engine)
