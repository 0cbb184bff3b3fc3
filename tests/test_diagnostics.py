"""Tests for Frank Energie Battery diagnostics."""

from homeassistant.components.diagnostics import REDACTED
from homeassistant.core import HomeAssistant

from custom_components.frank_energie_battery.const import DOMAIN
from custom_components.frank_energie_battery.diagnostics import (
    async_get_config_entry_diagnostics,
)


async def test_config_entry_diagnostics_redacts_credentials(
    hass: HomeAssistant, init_integration
) -> None:
    """Tokens and email are redacted; battery state is kept."""
    coordinator = hass.data[DOMAIN][init_integration.entry_id]
    await coordinator.engine.async_record_cumulative("bat-1", 100, 50)
    await coordinator.engine.async_record_cumulative("bat-1", 112, 54)

    diagnostics = await async_get_config_entry_diagnostics(hass, init_integration)

    data = diagnostics["config_entry"]["data"]
    assert data["email"] == REDACTED
    assert data["auth_token"] == REDACTED
    assert data["refresh_token"] == REDACTED
    assert [b["id"] for b in data["batteries"]] == ["bat-1", "bat-2"]

    assert diagnostics["last_update_success"] is True
    assert diagnostics["tracked_batteries"] == ["bat-1"]
    assert diagnostics["energy"]["daily_charged"] == 12.0
    assert diagnostics["engine_state"]["baselines"]["bat-1"]["current_charged"] == 112.0
    assert diagnostics["financial"]["succeeded_count"] == 2
    assert diagnostics["trading_mode"] == "imbalance"
