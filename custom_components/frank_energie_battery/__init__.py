"""The Frank Energie Battery integration.

Lifecycle management for the Frank Energie Battery custom component.
Creates the API client and coordinator, starts the daily reset timer, and
registers the services that feed battery readings into the engine.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
import logging
from typing import Any

import voluptuous as vol

from homeassistant.config_entries import ConfigEntry, ConfigEntryState
from homeassistant.const import Platform
from homeassistant.core import HomeAssistant, ServiceCall
from homeassistant.exceptions import (
    ConfigEntryNotReady,
    HomeAssistantError,
    ServiceValidationError,
)
from homeassistant.helpers import config_validation as cv
from homeassistant.helpers.aiohttp_client import async_get_clientsession

from .batterymetrics.core.errors import (
    BatteryMetricsError,
    InvalidReportError,
    InvalidSourceError,
    PersistenceError,
    UnknownSourceError,
)
from .client import FrankEnergieClient
from .const import (
    ATTR_AT,
    ATTR_BATTERY_ID,
    ATTR_CHARGED,
    ATTR_DISCHARGED,
    ATTR_PERCENTAGE,
    CONF_AUTH_TOKEN,
    CONF_CONFIG_ENTRY_ID,
    CONF_REFRESH_TOKEN,
    DOMAIN,
    SERVICE_CLEAR_BATTERIES,
    SERVICE_EMERGENCY_RESET,
    SERVICE_RECORD_CUMULATIVE,
    SERVICE_RECORD_DAILY,
    SERVICE_REFRESH_RESULTS,
    SERVICE_REMOVE_BATTERY,
    SERVICE_SCHEDULE_RESET,
)
from .coordinator import FrankEnergieBatteryCoordinator

_LOGGER = logging.getLogger(__name__)

PLATFORMS: list[Platform] = [Platform.SENSOR]

_ENTRY_SCHEMA = {vol.Optional(CONF_CONFIG_ENTRY_ID): cv.string}

RECORD_SCHEMA = vol.Schema(
    {
        **_ENTRY_SCHEMA,
        vol.Required(ATTR_BATTERY_ID): cv.string,
        vol.Required(ATTR_CHARGED): vol.Coerce(float),
        vol.Required(ATTR_DISCHARGED): vol.Coerce(float),
        vol.Optional(ATTR_PERCENTAGE, default=0.0): vol.All(
            vol.Coerce(float), vol.Range(min=0, max=100)
        ),
    }
)

BATTERY_SCHEMA = vol.Schema(
    {**_ENTRY_SCHEMA, vol.Required(ATTR_BATTERY_ID): cv.string}
)

OPTIONAL_BATTERY_SCHEMA = vol.Schema(
    {**_ENTRY_SCHEMA, vol.Optional(ATTR_BATTERY_ID): cv.string}
)

SCHEDULE_RESET_SCHEMA = vol.Schema(
    {
        **_ENTRY_SCHEMA,
        vol.Required(ATTR_AT): cv.datetime,
        vol.Optional(ATTR_BATTERY_ID): cv.string,
    }
)

ENTRY_ONLY_SCHEMA = vol.Schema(_ENTRY_SCHEMA)


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up Frank Energie Battery from a config entry.

    1. Create the API client from the stored tokens.
    2. Create the coordinator and restore the engine state.
    3. Run an initial refresh of the trading results; a failure leaves the
       entry loaded.
    4. Store the coordinator, forward platforms, register services.
    """
    hass.data.setdefault(DOMAIN, {})

    client = FrankEnergieClient(
        async_get_clientsession(hass),
        auth_token=entry.data.get(CONF_AUTH_TOKEN),
        refresh_token=entry.data.get(CONF_REFRESH_TOKEN),
    )
    coordinator = FrankEnergieBatteryCoordinator(hass, entry, client)

    try:
        await coordinator.async_start()
    except PersistenceError as err:
        await coordinator.async_stop()
        raise ConfigEntryNotReady(f"Could not restore battery metrics: {err}") from err

    entry.async_on_unload(coordinator.async_stop)

    # Only the financial sensors depend on this poll
    await coordinator.async_refresh()

    hass.data[DOMAIN][entry.entry_id] = coordinator

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)

    if not hass.services.has_service(DOMAIN, SERVICE_RECORD_CUMULATIVE):
        _async_register_services(hass)

    # Listen for options updates to reload with the new interval / time zone
    entry.async_on_unload(entry.add_update_listener(_async_update_options))

    return True


async def _async_update_options(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Reload the entry when its options change."""
    await hass.config_entries.async_reload(entry.entry_id)


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry; services go away with the last entry."""
    if unload_ok := await hass.config_entries.async_unload_platforms(entry, PLATFORMS):
        hass.data[DOMAIN].pop(entry.entry_id)
        if not hass.data[DOMAIN]:
            for service in hass.services.async_services_for_domain(DOMAIN):
                hass.services.async_remove(DOMAIN, service)

    return unload_ok


# ---------------------------------------------------------------------------
#  Services
# ---------------------------------------------------------------------------

def _get_coordinator(
    hass: HomeAssistant, call: ServiceCall
) -> FrankEnergieBatteryCoordinator:
    """Resolve the target entry of a service call."""
    coordinators: dict[str, FrankEnergieBatteryCoordinator] = hass.data.get(DOMAIN, {})
    if entry_id := call.data.get(CONF_CONFIG_ENTRY_ID):
        entry = hass.config_entries.async_get_entry(entry_id)
        if (
            entry is None
            or entry.state is not ConfigEntryState.LOADED
            or entry_id not in coordinators
        ):
            raise ServiceValidationError(f"Config entry {entry_id} is not loaded")
        return coordinators[entry_id]

    if len(coordinators) != 1:
        raise ServiceValidationError(
            f"{len(coordinators)} accounts are loaded, specify {CONF_CONFIG_ENTRY_ID}"
        )
    return next(iter(coordinators.values()))


async def _async_call_engine(
    hass: HomeAssistant,
    call: ServiceCall,
    operation: Callable[[FrankEnergieBatteryCoordinator], Awaitable[Any]],
) -> Any:
    """Run ``operation`` and translate engine errors for the service caller."""
    coordinator = _get_coordinator(hass, call)
    try:
        return await operation(coordinator)
    except (InvalidSourceError, InvalidReportError, UnknownSourceError) as err:
        raise ServiceValidationError(str(err)) from err
    except BatteryMetricsError as err:
        raise HomeAssistantError(str(err)) from err


def _async_register_services(hass: HomeAssistant) -> None:
    """Register the integration's services."""

    async def handle_record_cumulative(call: ServiceCall) -> None:
        await _async_call_engine(
            hass,
            call,
            lambda coordinator: coordinator.engine.async_record_cumulative(
                call.data[ATTR_BATTERY_ID],
                call.data[ATTR_CHARGED],
                call.data[ATTR_DISCHARGED],
                call.data[ATTR_PERCENTAGE],
            ),
        )

    async def handle_record_daily(call: ServiceCall) -> None:
        await _async_call_engine(
            hass,
            call,
            lambda coordinator: coordinator.engine.async_record_daily(
                call.data[ATTR_BATTERY_ID],
                call.data[ATTR_CHARGED],
                call.data[ATTR_DISCHARGED],
                call.data[ATTR_PERCENTAGE],
            ),
        )

    async def handle_emergency_reset(call: ServiceCall) -> None:
        _LOGGER.warning("Emergency reset requested via service call")
        await _async_call_engine(
            hass,
            call,
            lambda coordinator: coordinator.engine.async_emergency_reset(
                call.data.get(ATTR_BATTERY_ID)
            ),
        )

    async def handle_schedule_reset(call: ServiceCall) -> None:
        async def _schedule(coordinator: FrankEnergieBatteryCoordinator) -> None:
            coordinator.engine.schedule_one_shot_reset(
                call.data[ATTR_AT], call.data.get(ATTR_BATTERY_ID)
            )

        await _async_call_engine(hass, call, _schedule)

    async def handle_remove_battery(call: ServiceCall) -> None:
        battery_id = call.data[ATTR_BATTERY_ID]
        removed = await _async_call_engine(
            hass,
            call,
            lambda coordinator: coordinator.engine.async_remove_source(battery_id),
        )
        if not removed:
            raise ServiceValidationError(f"Battery {battery_id} is not tracked")

    async def handle_clear_batteries(call: ServiceCall) -> None:
        await _async_call_engine(
            hass, call, lambda coordinator: coordinator.engine.async_clear_all()
        )

    async def handle_refresh_results(call: ServiceCall) -> None:
        _LOGGER.info("Manual refresh requested via service call")
        coordinator = _get_coordinator(hass, call)
        await coordinator.async_refresh()

    hass.services.async_register(
        DOMAIN, SERVICE_RECORD_CUMULATIVE, handle_record_cumulative, schema=RECORD_SCHEMA
    )
    hass.services.async_register(
        DOMAIN, SERVICE_RECORD_DAILY, handle_record_daily, schema=RECORD_SCHEMA
    )
    hass.services.async_register(
        DOMAIN,
        SERVICE_EMERGENCY_RESET,
        handle_emergency_reset,
        schema=OPTIONAL_BATTERY_SCHEMA,
    )
    hass.services.async_register(
        DOMAIN,
        SERVICE_SCHEDULE_RESET,
        handle_schedule_reset,
        schema=SCHEDULE_RESET_SCHEMA,
    )
    hass.services.async_register(
        DOMAIN, SERVICE_REMOVE_BATTERY, handle_remove_battery, schema=BATTERY_SCHEMA
    )
    hass.services.async_register(
        DOMAIN,
        SERVICE_CLEAR_BATTERIES,
        handle_clear_batteries,
        schema=ENTRY_ONLY_SCHEMA,
    )
    hass.services.async_register(
        DOMAIN,
        SERVICE_REFRESH_RESULTS,
        handle_refresh_results,
        schema=ENTRY_ONLY_SCHEMA,
    )
