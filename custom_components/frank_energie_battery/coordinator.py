"""DataUpdateCoordinator for the Frank Energie Battery integration.

Owns one BatteryMetricsEngine per config entry. Energy totals are pushed by
the engine whenever a report is recorded or a day rolls over; trading results
are polled from the Frank Energie API on the configured interval.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, time, timedelta
import logging
from typing import Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, callback
from homeassistant.exceptions import ConfigEntryAuthFailed
from homeassistant.helpers.event import async_call_later
from homeassistant.helpers.storage import Store
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed
from homeassistant.util import dt as dt_util

from .batterymetrics.core.engine import BatteryMetricsEngine, EngineEvent
from .batterymetrics.core.errors import AllSourcesFailedError, BatteryMetricsError
from .batterymetrics.core.types import (
    Aggregate,
    CloseReason,
    DayClosed,
    FinancialAggregate,
)
from .client import (
    FrankEnergieAuthError,
    FrankEnergieClient,
    FrankEnergieError,
    detect_trading_mode,
)
from .const import (
    CONF_BATTERIES,
    CONF_BATTERY_ID,
    CONF_BATTERY_NAME,
    CONF_SCAN_INTERVAL,
    CONF_TIME_ZONE,
    DEFAULT_SCAN_INTERVAL,
    DEFAULT_TIME_ZONE,
    DOMAIN,
    EVENT_DAILY_TOTALS,
)

_LOGGER = logging.getLogger(__name__)

STORE_VERSION = 1

# Events after which today's totals restart below their previous value
_COUNTERS_RESTARTED = (
    EngineEvent.BASELINE_RESET,
    EngineEvent.SOURCE_REMOVED,
    EngineEvent.CLEARED,
)


class HassScheduler:
    """Engine scheduler backed by Home Assistant's event helpers."""

    def __init__(self, hass: HomeAssistant) -> None:
        self._hass = hass

    def call_later(
        self, delay: float, action: Callable[[], Awaitable[None]]
    ) -> Callable[[], None]:
        async def _run(_now: datetime) -> None:
            await action()

        return async_call_later(self._hass, delay, _run)


class FrankEnergieBatteryCoordinator(DataUpdateCoordinator[dict[str, Any]]):
    """Keep the energy and trading aggregates of one account current.

    ``data["energy"]`` is the engine's Aggregate, ``data["financial"]`` the
    FinancialAggregate of the last successful poll and ``data["trading_mode"]``
    the mode read from the primary battery's settings, None until known.
    """

    config_entry: ConfigEntry

    def __init__(
        self, hass: HomeAssistant, entry: ConfigEntry, client: FrankEnergieClient
    ) -> None:
        """Initialize the coordinator."""
        super().__init__(
            hass,
            _LOGGER,
            name=DOMAIN,
            config_entry=entry,
            update_interval=timedelta(
                minutes=entry.options.get(CONF_SCAN_INTERVAL, DEFAULT_SCAN_INTERVAL)
            ),
        )
        self.client = client
        self.batteries: list[dict[str, str]] = entry.data.get(CONF_BATTERIES, [])
        self.display_names: dict[str, str] = {
            b[CONF_BATTERY_ID]: b.get(CONF_BATTERY_NAME) or b[CONF_BATTERY_ID]
            for b in self.batteries
        }

        self._store = Store(hass, STORE_VERSION, f"{DOMAIN}_{entry.entry_id}_metrics")
        self.engine = BatteryMetricsEngine(
            self._store,
            HassScheduler(hass),
            fetcher=client,
            display_names=self.display_names,
            now=dt_util.utcnow,
            time_zone=entry.options.get(CONF_TIME_ZONE, DEFAULT_TIME_ZONE),
        )
        self._remove_engine_listener: Callable[[], None] | None = None
        # Start of the current counting period of the daily energy sensors
        self.energy_last_reset: datetime | None = None

        self.data: dict[str, Any] = {
            "energy": Aggregate(),
            "financial": FinancialAggregate(source_count=len(self.batteries)),
            "trading_mode": None,
            "battery_settings": {},
        }

    @property
    def battery_ids(self) -> list[str]:
        return list(self.display_names)

    async def async_start(self) -> None:
        """Catch up on a missed midnight and arm the daily reset."""
        self._remove_engine_listener = self.engine.add_listener(
            self._handle_engine_event
        )
        if await self.engine.async_ensure_rollover_for_today():
            _LOGGER.info("Accounting day rolled over while Home Assistant was stopped")
        self.data = {**self.data, "energy": await self.engine.async_get_aggregate()}
        self.energy_last_reset = self._start_of_accounting_day()
        self.engine.schedule_automatic_reset()

    async def async_stop(self) -> None:
        """Cancel engine timers."""
        if self._remove_engine_listener is not None:
            self._remove_engine_listener()
            self._remove_engine_listener = None
        await self.engine.async_shutdown()

    def _start_of_accounting_day(self) -> datetime:
        state = self.engine.state
        day = state.last_reset_date if state is not None else self.engine.today()
        return datetime.combine(day, time.min, tzinfo=self.engine.rollover.time_zone)

    async def _async_update_data(self) -> dict[str, Any]:
        """Poll trading results and the trading mode.

        Energy totals are pushed by the engine and do not depend on this poll;
        a failure here only leaves the financial sensors unavailable.
        """
        self.data = {**self.data, **await self._async_fetch_trading_mode()}

        today = self.engine.today()
        try:
            financial = await self.engine.async_aggregate_financial_results(
                self.battery_ids, today, today
            )
            energy = await self.engine.async_get_aggregate()
        except AllSourcesFailedError as err:
            if isinstance(err.__cause__, FrankEnergieAuthError):
                raise ConfigEntryAuthFailed(err) from err
            raise UpdateFailed(str(err)) from err
        except BatteryMetricsError as err:
            raise UpdateFailed(f"Error updating battery metrics: {err}") from err

        return {**self.data, "energy": energy, "financial": financial}

    async def _async_fetch_trading_mode(self) -> dict[str, Any]:
        """Read the trading mode from the primary battery's settings.

        The previous mode is kept when the settings cannot be read.
        """
        if not self.battery_ids:
            return {}
        primary = self.battery_ids[0]
        try:
            battery = await self.client.async_get_smart_battery(primary)
        except FrankEnergieError as err:
            _LOGGER.warning(
                "Could not read settings of battery %s: %s",
                self.display_names[primary],
                err,
            )
            return {}

        settings = battery.get("settings") or {}
        mode = detect_trading_mode(settings)
        _LOGGER.debug(
            "Trading mode %s (batteryMode=%s, strategy=%s)",
            mode,
            settings.get("batteryMode"),
            settings.get("imbalanceTradingStrategy"),
        )
        return {"trading_mode": mode, "battery_settings": settings}

    @callback
    def _handle_engine_event(
        self, event: EngineEvent, payload: Aggregate | DayClosed
    ) -> None:
        if isinstance(payload, DayClosed):
            if payload.reason is CloseReason.ROLLOVER:
                self.energy_last_reset = self._start_of_accounting_day()
            else:
                self.energy_last_reset = dt_util.utcnow()
            totals = payload.aggregate
            _LOGGER.info(
                "Day %s closed (%s): charged %.2f kWh, discharged %.2f kWh "
                "over %d batteries",
                payload.accounting_date.isoformat(),
                payload.reason,
                totals.daily_charged,
                totals.daily_discharged,
                totals.source_count,
            )
            self.hass.bus.async_fire(
                EVENT_DAILY_TOTALS,
                {
                    "config_entry_id": self.config_entry.entry_id,
                    "accounting_date": payload.accounting_date.isoformat(),
                    "reason": str(payload.reason),
                    "daily_charged": totals.daily_charged,
                    "daily_discharged": totals.daily_discharged,
                    "average_percentage": totals.average_percentage,
                    "battery_count": totals.source_count,
                },
            )
            return

        if event in _COUNTERS_RESTARTED:
            self.energy_last_reset = dt_util.utcnow()

        # Not async_set_updated_data: that would keep postponing the poll
        self.data = {**self.data, "energy": payload}
        self.async_update_listeners()

    def get_diagnostics_data(self) -> dict[str, Any]:
        """Return coordinator diagnostics snapshot."""
        state = self.engine.state
        rollover = self.engine.rollover
        financial: FinancialAggregate = self.data["financial"]
        return {
            "engine_state": state.to_dict() if state is not None else None,
            "time_zone": str(rollover.time_zone),
            "next_automatic_reset": (
                rollover.next_automatic_reset.isoformat()
                if rollover.next_automatic_reset is not None
                else None
            ),
            "next_one_shot_reset": (
                rollover.next_one_shot_reset.isoformat()
                if rollover.next_one_shot_reset is not None
                else None
            ),
            "energy": self.data["energy"].to_dict(),
            "financial": financial.to_dict(),
            "trading_mode": self.data["trading_mode"],
        }
