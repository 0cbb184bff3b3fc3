"""Fixtures for Frank Energie Battery tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from homeassistant.config_entries import ConfigEntryState
from homeassistant.const import CONF_EMAIL
from homeassistant.core import HomeAssistant, State
from homeassistant.helpers import entity_registry as er

from pytest_homeassistant_custom_component.common import MockConfigEntry
from pytest_homeassistant_custom_component.test_util.aiohttp import (
    AiohttpClientMocker,
    AiohttpClientMockResponse,
)

from custom_components.frank_energie_battery.batterymetrics.core.engine import (
    BatteryMetricsEngine,
)
from custom_components.frank_energie_battery.const import (
    CONF_AUTH_TOKEN,
    CONF_BATTERIES,
    CONF_REFRESH_TOKEN,
    DOMAIN,
    GRAPHQL_URL,
)

MOCK_EMAIL = "user@example.com"
MOCK_ENTRY_ID = "test_entry"
MOCK_BATTERIES = [
    {"id": "bat-1", "name": "Garage"},
    {"id": "bat-2", "name": "Attic"},
]
MOCK_ENTRY_DATA = {
    CONF_EMAIL: MOCK_EMAIL,
    CONF_AUTH_TOKEN: "token",
    CONF_REFRESH_TOKEN: "refresh",
    CONF_BATTERIES: MOCK_BATTERIES,
}


def session_payload(trading: float = 2.0, cumulative: float = 120.5) -> dict:
    """A smartBatterySessions response with one active session."""
    return {
        "data": {
            "smartBatterySessions": {
                "deviceId": "ignored",
                "periodEpexResult": 0.5,
                "periodFrankSlim": 0.25,
                "periodImbalanceResult": 1.0,
                "periodTotalResult": trading + 1.75,
                "periodTradingResult": trading,
                "sessions": [
                    {
                        "cumulativeResult": cumulative,
                        "date": "2025-03-10",
                        "result": trading,
                        "status": "ACTIVE",
                    }
                ],
            }
        }
    }


def battery_payload(
    battery_mode: str = "IMBALANCE_TRADING", strategy: str | None = "STANDARD"
) -> dict:
    """A smartBattery response carrying the trading settings."""
    return {
        "data": {
            "smartBattery": {
                "brand": "SessyBattery",
                "capacity": 5.0,
                "externalReference": "A1",
                "id": "bat-1",
                "settings": {
                    "batteryMode": battery_mode,
                    "imbalanceTradingStrategy": strategy,
                    "selfConsumptionTradingAllowed": False,
                },
            }
        }
    }


async def healthy_api(method, url, data) -> AiohttpClientMockResponse:
    """Answer each GraphQL operation with a successful payload."""
    if data["operationName"] == "SmartBattery":
        return AiohttpClientMockResponse(method, url, json=battery_payload())
    return AiohttpClientMockResponse(method, url, json=session_payload())


@pytest.fixture(autouse=True)
def auto_enable_custom_integrations(request):
    """Enable custom integrations in every test that uses Home Assistant."""
    if "hass" in request.fixturenames:
        request.getfixturevalue("enable_custom_integrations")
    yield


# 10:00 in Amsterdam (CET)
START = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@dataclass
class _Timer:
    due: datetime
    action: Any
    cancelled: bool = False


class FakeScheduler:
    """Scheduler whose timers only run when a test advances the clock."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self._timers: list[_Timer] = []

    def call_later(self, delay, action):
        timer = _Timer(self.clock() + timedelta(seconds=delay), action)
        self._timers.append(timer)

        def _cancel() -> None:
            timer.cancelled = True

        return _cancel

    @property
    def pending(self) -> list[datetime]:
        return sorted(t.due for t in self._timers if not t.cancelled)

    async def advance_to(self, moment: datetime) -> None:
        """Move the clock to ``moment``, firing due timers in order."""
        while True:
            due = [t for t in self._timers if not t.cancelled and t.due <= moment]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self._timers.remove(timer)
            self.clock.current = max(self.clock.current, timer.due)
            await timer.action()
        self.clock.current = moment


class MemoryStore:
    """StateStore kept in memory, with switchable failures."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data = data
        self.saves = 0
        self.fail_load = False
        self.fail_save = False

    async def async_load(self) -> dict[str, Any] | None:
        if self.fail_load:
            raise OSError("disk unavailable")
        return self.data

    async def async_save(self, data: dict[str, Any]) -> None:
        if self.fail_save:
            raise OSError("disk full")
        self.saves += 1
        self.data = data

    async def async_remove(self) -> None:
        self.data = None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> FakeScheduler:
    return FakeScheduler(clock)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def engine(memory_store, scheduler, clock) -> BatteryMetricsEngine:
    return BatteryMetricsEngine(memory_store, scheduler, now=clock)


@pytest.fixture
def mock_config_entry(hass: HomeAssistant) -> MockConfigEntry:
    """A Frank Energie account with two batteries."""
    entry = MockConfigEntry(
        domain=DOMAIN,
        entry_id=MOCK_ENTRY_ID,
        title=f"Frank Energie Battery ({MOCK_EMAIL})",
        unique_id=MOCK_EMAIL,
        data=MOCK_ENTRY_DATA,
    )
    entry.add_to_hass(hass)
    return entry


@pytest.fixture
async def init_integration(
    hass: HomeAssistant,
    mock_config_entry: MockConfigEntry,
    aioclient_mock: AiohttpClientMocker,
):
    """Set up the integration against a healthy API and unload it afterwards."""
    aioclient_mock.post(GRAPHQL_URL, side_effect=healthy_api)

    assert await hass.config_entries.async_setup(mock_config_entry.entry_id)
    await hass.async_block_till_done()

    yield mock_config_entry

    if mock_config_entry.state is ConfigEntryState.LOADED:
        assert await hass.config_entries.async_unload(mock_config_entry.entry_id)
        await hass.async_block_till_done()


@pytest.fixture
def sensor_state(hass: HomeAssistant, mock_config_entry: MockConfigEntry):
    """Look up a sensor's state by description key."""

    def _state(key: str) -> State:
        entity_id = er.async_get(hass).async_get_entity_id(
            "sensor", DOMAIN, f"{DOMAIN}_{mock_config_entry.entry_id}_{key}"
        )
        assert entity_id is not None, key
        state = hass.states.get(entity_id)
        assert state is not None, entity_id
        return state

    return _state
