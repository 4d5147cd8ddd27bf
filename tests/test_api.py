"""Tests for the MELCloud Home API client."""

import json
from typing import Any
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from pytest_httpx import HTTPXMock

from custom_components.melcloud_home import api
from custom_components.melcloud_home.api import MelCloudClient
from custom_components.melcloud_home.const import BASE_URL, MAX_RESPONSE_SIZE
from custom_components.melcloud_home.exceptions import (
    MelCloudApiError,
    MelCloudAuthError,
    MelCloudTransientError,
    MelCloudValidationError,
)
from custom_components.melcloud_home.models import DeviceCommand
from tests.conftest import UNIT_ID, create_context, create_unit_data

CONTEXT_URL = f"{BASE_URL}/context"
CONTROL_URL = f"{BASE_URL}/monitor/ataunit/{UNIT_ID}"
SLEEP_PATH = "asyncio.sleep"


@pytest.fixture
def mock_token_manager() -> Mock:
    """Create a mock token manager handing out a fixed token."""
    manager = Mock()
    manager.async_get_access_token = AsyncMock(return_value="access-1")
    manager.invalidate = Mock()
    return manager


class TestParseBody:
    """Tests for parse_body function."""

    def test_parse_body_returns_none_for_empty_body(self) -> None:
        """Test that an empty body is a successful None."""
        assert api.parse_body(b"") is None
        assert api.parse_body(b"  \n") is None

    def test_parse_body_parses_json(self) -> None:
        """Test that JSON bodies are decoded."""
        assert api.parse_body(b'{"a": 1}') == {"a": 1}

    def test_parse_body_rejects_invalid_json(self) -> None:
        """Test that invalid JSON raises a validation error."""
        with pytest.raises(MelCloudValidationError):
            api.parse_body(b"<html>")


class TestExtractUnits:
    """Tests for extract_units function."""

    def test_extract_units_flattens_buildings(self) -> None:
        """Test that units from every building are returned."""
        context = {
            "buildings": [
                {"name": "Home", "airToAirUnits": [create_unit_data("a")]},
                {"name": "Cabin", "airToAirUnits": [create_unit_data("b")]},
                {"name": "Empty"},
            ]
        }
        units = api.extract_units(context)
        assert [(unit.id, unit.building_name) for unit in units] == [
            ("a", "Home"),
            ("b", "Cabin"),
        ]

    def test_extract_units_skips_bad_units(self) -> None:
        """Test that units that fail to parse are skipped."""
        context = create_context({"givenDisplayName": "No id"}, create_unit_data())
        units = api.extract_units(context)
        assert [unit.id for unit in units] == [UNIT_ID]

    @pytest.mark.parametrize("context", [None, {}, {"buildings": "nope"}])
    def test_extract_units_requires_buildings(self, context: Any) -> None:  # noqa: ANN401
        """Test that a context without buildings is rejected."""
        with pytest.raises(MelCloudValidationError):
            api.extract_units(context)


class TestCreateSessionClient:
    """Tests for create_session_client function."""

    @patch("custom_components.melcloud_home.api.create_async_httpx_client")
    @patch("custom_components.melcloud_home.api.RetryTransport")
    def test_create_session_client_creates_client_with_retry_transport(
        self,
        mock_retry_transport: Mock,
        mock_create: Mock,
    ) -> None:
        """Test that the HA httpx client gets the timeout and retry transport."""
        hass = Mock()
        result = api.create_session_client(hass)
        mock_create.assert_called_once_with(hass, timeout=10.0)
        mock_retry_transport.assert_called_once()
        assert result == mock_create.return_value
        assert result._transport == mock_retry_transport.return_value


class TestMelCloudClientFetchState:
    """Tests for async_fetch_state method."""

    @pytest.mark.asyncio
    async def test_fetch_state_returns_units(
        self,
        httpx_mock: HTTPXMock,
        mock_token_manager: Mock,
        sample_context: dict[str, Any],
    ) -> None:
        """Test that the context is fetched with a bearer token."""
        httpx_mock.add_response(url=CONTEXT_URL, method="GET", json=sample_context)
        async with httpx.AsyncClient() as session:
            client = MelCloudClient(session, mock_token_manager)
            units = await client.async_fetch_state()

        assert [unit.id for unit in units] == [UNIT_ID]
        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Bearer access-1"
        assert request.headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_fetch_state_rejects_non_object(
        self,
        httpx_mock: HTTPXMock,
        mock_token_manager: Mock,
    ) -> None:
        """Test that a non-object context is a validation error."""
        httpx_mock.add_response(url=CONTEXT_URL, method="GET", json=[1, 2])
        async with httpx.AsyncClient() as session:
            client = MelCloudClient(session, mock_token_manager)
            with pytest.raises(MelCloudValidationError):
                await client.async_fetch_state()

    @pytest.mark.asyncio
    async def test_fetch_state_rejects_invalid_json(
        self,
        httpx_mock: HTTPXMock,
        mock_token_manager: Mock,
    ) -> None:
        """Test that an HTML error page is a validation error."""
        httpx_mock.add_response(url=CONTEXT_URL, method="GET", text="<html></html>")
        async with httpx.AsyncClient() as session:
            client = MelCloudClient(session, mock_token_manager)
            with pytest.raises(MelCloudValidationError):
                await client.async_fetch_state()

    @pytest.mark.asyncio
    async def test_fetch_state_rejects_oversized_response(
        self,
        httpx_mock: HTTPXMock,
        mock_token_manager: Mock,
    ) -> None:
        """Test that responses above the size cap are refused."""
        httpx_mock.add_response(
            url=CONTEXT_URL,
            method="GET",
            content=b" " * (MAX_RESPONSE_SIZE + 1),
        )
        async with httpx.AsyncClient() as session:
            client = MelCloudClient(session, mock_token_manager)
            with pytest.raises(MelCloudValidationError):
                await client.async_fetch_state()


class TestMelCloudClientSendCommand:
    """Tests for async_send_command method."""

    @pytest.mark.asyncio
    async def test_send_command_puts_full_payload(
        self,
        httpx_mock: HTTPXMock,
        mock_token_manager: Mock,
    ) -> None:
        """Test that the command is sent with null fields kept."""
        httpx_mock.add_response(url=CONTROL_URL, method="PUT", status_code=200)
        command = DeviceCommand(power=True, operation_mode="Cool", set_temperature=22.0)
        async with httpx.AsyncClient() as session:
            client = MelCloudClient(session, mock_token_manager)
            await client.async_send_command(UNIT_ID, command)

        payload = json.loads(httpx_mock.get_request().content)
        assert payload == {
            "power": True,
            "operationMode": "Cool",
            "setFanSpeed": None,
            "vaneHorizontalDirection": None,
            "vaneVerticalDirection": None,
            "setTemperature": 22.0,
            "temperatureIncrementOverride": None,
            "inStandbyMode": None,
        }

    @pytest.mark.asyncio
    async def test_send_command_accepts_empty_body(
        self,
        httpx_mock: HTTPXMock,
        mock_token_manager: Mock,
    ) -> None:
        """Test that an empty success body does not raise."""
        httpx_mock.add_response(url=CONTROL_URL, method="PUT", content=b"")
        async with httpx.AsyncClient() as session:
            client = MelCloudClient(session, mock_token_manager)
            await client.async_send_command(UNIT_ID, DeviceCommand(power=False))


class TestMelCloudClientRetries:
    """Tests for retry and re-authentication handling."""

    @pytest.mark.asyncio
    async def test_retries_503_until_success(
        self,
        httpx_mock: HTTPXMock,
        retry_session: httpx.AsyncClient,
        mock_token_manager: Mock,
        sample_context: dict[str, Any],
    ) -> None:
        """Test that 503 responses are retried by the transport."""
        httpx_mock.add_response(url=CONTEXT_URL, status_code=503)
        httpx_mock.add_response(url=CONTEXT_URL, status_code=503)
        httpx_mock.add_response(url=CONTEXT_URL, json=sample_context)
        with patch(SLEEP_PATH, new_callable=AsyncMock) as mock_sleep:
            client = MelCloudClient(retry_session, mock_token_manager)
            units = await client.async_fetch_state()

        assert len(units) == 1
        assert len(httpx_mock.get_requests()) == 3
        mock_sleep.assert_awaited()

    @pytest.mark.asyncio
    async def test_honors_retry_after_on_429(
        self,
        httpx_mock: HTTPXMock,
        retry_session: httpx.AsyncClient,
        mock_token_manager: Mock,
        sample_context: dict[str, Any],
    ) -> None:
        """Test that a 429 waits for the Retry-After value."""
        httpx_mock.add_response(
            url=CONTEXT_URL, status_code=429, headers={"Retry-After": "5"}
        )
        httpx_mock.add_response(url=CONTEXT_URL, json=sample_context)
        with patch(SLEEP_PATH, new_callable=AsyncMock) as mock_sleep:
            client = MelCloudClient(retry_session, mock_token_manager)
            await client.async_fetch_state()

        mock_sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    async def test_raises_transient_error_when_retries_exhausted(
        self,
        httpx_mock: HTTPXMock,
        retry_session: httpx.AsyncClient,
        mock_token_manager: Mock,
    ) -> None:
        """Test that persistent 500s raise after three retries."""
        for _ in range(4):
            httpx_mock.add_response(url=CONTEXT_URL, status_code=500)
        with patch(SLEEP_PATH, new_callable=AsyncMock):
            client = MelCloudClient(retry_session, mock_token_manager)
            with pytest.raises(MelCloudTransientError) as exc_info:
                await client.async_fetch_state()

        assert exc_info.value.status == 500
        assert len(httpx_mock.get_requests()) == 4

    @pytest.mark.asyncio
    async def test_retries_timeouts(
        self,
        httpx_mock: HTTPXMock,
        retry_session: httpx.AsyncClient,
        mock_token_manager: Mock,
        sample_context: dict[str, Any],
    ) -> None:
        """Test that a timeout is retried."""
        httpx_mock.add_exception(httpx.ReadTimeout("slow"), url=CONTEXT_URL)
        httpx_mock.add_response(url=CONTEXT_URL, json=sample_context)
        with patch(SLEEP_PATH, new_callable=AsyncMock):
            client = MelCloudClient(retry_session, mock_token_manager)
            units = await client.async_fetch_state()

        assert len(units) == 1

    @pytest.mark.asyncio
    async def test_persistent_timeouts_raise_transient_error(
        self,
        httpx_mock: HTTPXMock,
        retry_session: httpx.AsyncClient,
        mock_token_manager: Mock,
    ) -> None:
        """Test that exhausted network retries surface as a transient error."""
        for _ in range(4):
            httpx_mock.add_exception(httpx.ConnectError("down"), url=CONTEXT_URL)
        with patch(SLEEP_PATH, new_callable=AsyncMock):
            client = MelCloudClient(retry_session, mock_token_manager)
            with pytest.raises(MelCloudTransientError):
                await client.async_fetch_state()

    @pytest.mark.asyncio
    async def test_retries_put_commands(
        self,
        httpx_mock: HTTPXMock,
        retry_session: httpx.AsyncClient,
        mock_token_manager: Mock,
    ) -> None:
        """Test that control commands are retried too."""
        httpx_mock.add_response(url=CONTROL_URL, method="PUT", status_code=502)
        httpx_mock.add_response(url=CONTROL_URL, method="PUT", status_code=200)
        with patch(SLEEP_PATH, new_callable=AsyncMock):
            client = MelCloudClient(retry_session, mock_token_manager)
            await client.async_send_command(UNIT_ID, DeviceCommand(power=True))

        assert len(httpx_mock.get_requests()) == 2

    @pytest.mark.asyncio
    async def test_does_not_retry_client_errors(
        self,
        httpx_mock: HTTPXMock,
        retry_session: httpx.AsyncClient,
        mock_token_manager: Mock,
    ) -> None:
        """Test that a 400 fails immediately."""
        httpx_mock.add_response(url=CONTROL_URL, method="PUT", status_code=400)
        with patch(SLEEP_PATH, new_callable=AsyncMock) as mock_sleep:
            client = MelCloudClient(retry_session, mock_token_manager)
            with pytest.raises(MelCloudApiError) as exc_info:
                await client.async_send_command(UNIT_ID, DeviceCommand())

        assert exc_info.value.status == 400
        assert not isinstance(exc_info.value, MelCloudTransientError)
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_401_refreshes_token_and_replays(
        self,
        httpx_mock: HTTPXMock,
        retry_session: httpx.AsyncClient,
        mock_token_manager: Mock,
        sample_context: dict[str, Any],
    ) -> None:
        """Test that one 401 invalidates the token and replays the request."""
        mock_token_manager.async_get_access_token.side_effect = ["stale", "fresh"]
        httpx_mock.add_response(url=CONTEXT_URL, status_code=401)
        httpx_mock.add_response(url=CONTEXT_URL, json=sample_context)
        with patch(SLEEP_PATH, new_callable=AsyncMock) as mock_sleep:
            client = MelCloudClient(retry_session, mock_token_manager)
            await client.async_fetch_state()

        mock_token_manager.invalidate.assert_called_once()
        requests = httpx_mock.get_requests()
        assert requests[0].headers["Authorization"] == "Bearer stale"
        assert requests[1].headers["Authorization"] == "Bearer fresh"
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_second_401_raises_auth_error(
        self,
        httpx_mock: HTTPXMock,
        retry_session: httpx.AsyncClient,
        mock_token_manager: Mock,
    ) -> None:
        """Test that a 401 after a forced refresh is an auth error."""
        httpx_mock.add_response(url=CONTEXT_URL, status_code=401)
        httpx_mock.add_response(url=CONTEXT_URL, status_code=401)
        client = MelCloudClient(retry_session, mock_token_manager)
        with pytest.raises(MelCloudAuthError):
            await client.async_fetch_state()

        mock_token_manager.invalidate.assert_called_once()

    @pytest.mark.asyncio
    async def test_401_replay_gets_its_own_retry_budget(
        self,
        httpx_mock: HTTPXMock,
        retry_session: httpx.AsyncClient,
        mock_token_manager: Mock,
        sample_context: dict[str, Any],
    ) -> None:
        """Test that the auth replay is counted separately from retries."""
        httpx_mock.add_response(url=CONTEXT_URL, status_code=503)
        httpx_mock.add_response(url=CONTEXT_URL, status_code=503)
        httpx_mock.add_response(url=CONTEXT_URL, status_code=401)
        httpx_mock.add_response(url=CONTEXT_URL, status_code=503)
        httpx_mock.add_response(url=CONTEXT_URL, status_code=503)
        httpx_mock.add_response(url=CONTEXT_URL, json=sample_context)
        with patch(SLEEP_PATH, new_callable=AsyncMock) as mock_sleep:
            client = MelCloudClient(retry_session, mock_token_manager)
            units = await client.async_fetch_state()

        assert len(units) == 1
        assert len(httpx_mock.get_requests()) == 6
        mock_sleep.assert_awaited()
