"""Tests for the Frank Energie GraphQL client."""

from datetime import date

import aiohttp
import pytest

from homeassistant.core import HomeAssistant
from homeassistant.helpers.aiohttp_client import async_get_clientsession

from pytest_homeassistant_custom_component.test_util.aiohttp import AiohttpClientMocker

from custom_components.frank_energie_battery.client import (
    FrankEnergieAuthError,
    FrankEnergieClient,
    FrankEnergieConnectionError,
    FrankEnergieError,
    detect_trading_mode,
)
from custom_components.frank_energie_battery.const import GRAPHQL_URL, TRADING_MODES

from conftest import battery_payload

SESSIONS_PAYLOAD = {
    "data": {
        "smartBatterySessions": {
            "deviceId": "bat-1",
            "periodStartDate": "2025-03-10",
            "periodEndDate": "2025-03-10",
            "periodEpexResult": -0.5,
            "periodFrankSlim": 0.25,
            "periodImbalanceResult": 1.5,
            "periodTotalResult": 2.75,
            "periodTradingResult": 2.0,
            "sessions": [
                {
                    "cumulativeResult": 120.5,
                    "date": "2025-03-10",
                    "result": 2.0,
                    "status": "ACTIVE",
                },
                {
                    "cumulativeResult": 118.5,
                    "date": "2025-03-09",
                    "result": 1.0,
                    "status": "COMPLETE",
                },
            ],
        }
    }
}


def _client(hass: HomeAssistant, token: str | None = "token") -> FrankEnergieClient:
    return FrankEnergieClient(async_get_clientsession(hass), auth_token=token)


async def test_login_keeps_tokens(
    hass: HomeAssistant, aioclient_mock: AiohttpClientMocker
) -> None:
    aioclient_mock.post(
        GRAPHQL_URL,
        json={"data": {"login": {"authToken": "auth", "refreshToken": "refresh"}}},
    )
    client = _client(hass, token=None)

    tokens = await client.async_login("user@example.com", "secret")

    assert tokens == {"auth_token": "auth", "refresh_token": "refresh"}
    assert client.is_authenticated
    _, _, body, headers = aioclient_mock.mock_calls[0]
    assert body["operationName"] == "Login"
    assert body["variables"] == {"email": "user@example.com", "password": "secret"}
    assert "Authorization" not in headers


async def test_session_result_is_parsed(
    hass: HomeAssistant, aioclient_mock: AiohttpClientMocker
) -> None:
    aioclient_mock.post(GRAPHQL_URL, json=SESSIONS_PAYLOAD)

    result = await _client(hass).async_get_session_result(
        "bat-1", date(2025, 3, 10), date(2025, 3, 10)
    )

    assert result.source_id == "bat-1"
    assert result.period_trading_result == 2.0
    assert result.period_total_result == 2.75
    assert result.period_epex_result == -0.5
    assert result.period_frank_slim == 0.25
    assert result.period_imbalance_result == 1.5
    assert result.cumulative_result == 120.5
    assert len(result.sessions) == 2

    _, _, body, headers = aioclient_mock.mock_calls[0]
    assert body["variables"] == {
        "deviceId": "bat-1",
        "startDate": "2025-03-10",
        "endDate": "2025-03-10",
    }
    assert headers["Authorization"] == "Bearer token"


async def test_smart_batteries(
    hass: HomeAssistant, aioclient_mock: AiohttpClientMocker
) -> None:
    aioclient_mock.post(
        GRAPHQL_URL,
        json={"data": {"smartBatteries": [{"id": "bat-1", "brand": "SessyBattery"}]}},
    )

    batteries = await _client(hass).async_get_smart_batteries()

    assert batteries == [{"id": "bat-1", "brand": "SessyBattery"}]


async def test_smart_battery_settings(
    hass: HomeAssistant, aioclient_mock: AiohttpClientMocker
) -> None:
    aioclient_mock.post(GRAPHQL_URL, json=battery_payload("SELF_CONSUMPTION_MIX"))

    battery = await _client(hass).async_get_smart_battery("bat-1")

    assert battery["settings"]["batteryMode"] == "SELF_CONSUMPTION_MIX"
    _, _, body, _ = aioclient_mock.mock_calls[0]
    assert body["operationName"] == "SmartBattery"
    assert body["variables"] == {"deviceId": "bat-1"}


async def test_unknown_smart_battery(
    hass: HomeAssistant, aioclient_mock: AiohttpClientMocker
) -> None:
    aioclient_mock.post(GRAPHQL_URL, json={"data": {"smartBattery": None}})

    with pytest.raises(FrankEnergieError, match="bat-9"):
        await _client(hass).async_get_smart_battery("bat-9")


@pytest.mark.parametrize(
    ("settings", "mode"),
    [
        (
            {"batteryMode": "IMBALANCE_TRADING", "imbalanceTradingStrategy": "STANDARD"},
            "imbalance",
        ),
        (
            {
                "batteryMode": "IMBALANCE_TRADING",
                "imbalanceTradingStrategy": "AGGRESSIVE",
            },
            "imbalance_aggressive",
        ),
        (
            {"batteryMode": "IMBALANCE_TRADING", "imbalanceTradingStrategy": None},
            "manual",
        ),
        (
            {"batteryMode": "SELF_CONSUMPTION_MIX", "imbalanceTradingStrategy": None},
            "self_consumption_plus",
        ),
        (
            {
                "batteryMode": "SELF_CONSUMPTION_MIX",
                "imbalanceTradingStrategy": "AGGRESSIVE",
            },
            "self_consumption_plus",
        ),
        ({"batteryMode": "MANUAL"}, "manual"),
        ({}, "manual"),
        (None, "manual"),
    ],
)
def test_detect_trading_mode(settings, mode) -> None:
    assert detect_trading_mode(settings) == mode
    assert mode in TRADING_MODES


async def test_calls_need_a_token(hass: HomeAssistant) -> None:
    with pytest.raises(FrankEnergieAuthError):
        await _client(hass, token=None).async_get_smart_batteries()


async def test_not_authorised_error(
    hass: HomeAssistant, aioclient_mock: AiohttpClientMocker
) -> None:
    aioclient_mock.post(
        GRAPHQL_URL,
        json={"errors": [{"message": "user-error:auth-not-authorised"}], "data": None},
    )

    with pytest.raises(FrankEnergieAuthError):
        await _client(hass).async_get_smart_batteries()


async def test_other_graphql_error(
    hass: HomeAssistant, aioclient_mock: AiohttpClientMocker
) -> None:
    aioclient_mock.post(
        GRAPHQL_URL, json={"errors": [{"message": "Something broke"}], "data": None}
    )

    with pytest.raises(FrankEnergieError, match="Something broke") as exc_info:
        await _client(hass).async_get_smart_batteries()

    assert not isinstance(exc_info.value, FrankEnergieAuthError)


@pytest.mark.parametrize(
    ("status", "error"),
    [(401, FrankEnergieAuthError), (500, FrankEnergieConnectionError)],
)
async def test_http_errors(
    hass: HomeAssistant, aioclient_mock: AiohttpClientMocker, status, error
) -> None:
    aioclient_mock.post(GRAPHQL_URL, status=status)

    with pytest.raises(error):
        await _client(hass).async_get_smart_batteries()


@pytest.mark.parametrize("exc", [aiohttp.ClientError(), TimeoutError()])
async def test_transport_errors(
    hass: HomeAssistant, aioclient_mock: AiohttpClientMocker, exc
) -> None:
    aioclient_mock.post(GRAPHQL_URL, exc=exc)

    with pytest.raises(FrankEnergieConnectionError):
        await _client(hass).async_get_smart_batteries()
