"""Diagnostics support for Frank Energie Battery."""

from __future__ import annotations

from typing import Any

from homeassistant.components.diagnostics import async_redact_data
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import CONF_EMAIL
from homeassistant.core import HomeAssistant

from .const import CONF_AUTH_TOKEN, CONF_REFRESH_TOKEN, DOMAIN
from .coordinator import FrankEnergieBatteryCoordinator

TO_REDACT = {CONF_EMAIL, CONF_AUTH_TOKEN, CONF_REFRESH_TOKEN}


async def async_get_config_entry_diagnostics(
    hass: HomeAssistant,
    entry: ConfigEntry,
) -> dict[str, Any]:
    """Return diagnostics for a config entry."""
    coordinator: FrankEnergieBatteryCoordinator = hass.data[DOMAIN][entry.entry_id]

    return {
        "config_entry": async_redact_data(entry.as_dict(), TO_REDACT),
        "last_update_success": coordinator.last_update_success,
        "tracked_batteries": await coordinator.engine.async_get_tracked_sources(),
        **coordinator.get_diagnostics_data(),
    }
