"""Config flow for Frank Energie Battery integration.

Flow: user (email/password) → login → battery discovery → entry
Reauth: reauth_confirm (password) → new tokens
Options: init (poll interval, reference time zone)
"""

from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import Any

import voluptuous as vol

from homeassistant.config_entries import (
    ConfigEntry,
    ConfigFlow,
    ConfigFlowResult,
    OptionsFlow,
)
from homeassistant.const import CONF_EMAIL, CONF_PASSWORD
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers.aiohttp_client import async_get_clientsession
from homeassistant.util import dt as dt_util

from .client import (
    FrankEnergieAuthError,
    FrankEnergieClient,
    FrankEnergieConnectionError,
    FrankEnergieError,
)
from .const import (
    CONF_AUTH_TOKEN,
    CONF_BATTERIES,
    CONF_BATTERY_ID,
    CONF_BATTERY_NAME,
    CONF_REFRESH_TOKEN,
    CONF_SCAN_INTERVAL,
    CONF_TIME_ZONE,
    DEFAULT_NAME,
    DEFAULT_SCAN_INTERVAL,
    DEFAULT_TIME_ZONE,
    DOMAIN,
)

_LOGGER = logging.getLogger(__name__)

STEP_USER_DATA_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_EMAIL): str,
        vol.Required(CONF_PASSWORD): str,
    }
)

STEP_REAUTH_DATA_SCHEMA = vol.Schema({vol.Required(CONF_PASSWORD): str})


def _battery_name(battery: dict[str, Any]) -> str:
    """Friendly name from the API's brand and external reference."""
    parts = [battery.get("brand"), battery.get("externalReference")]
    name = " ".join(str(part) for part in parts if part)
    return name or f"Battery {battery['id'][:8]}"


async def validate_login(
    hass: HomeAssistant, email: str, password: str
) -> dict[str, Any]:
    """Log in and discover the account's batteries.

    Returns the entry data; raises FrankEnergieError subclasses.
    """
    client = FrankEnergieClient(async_get_clientsession(hass))
    tokens = await client.async_login(email, password)
    batteries = await client.async_get_smart_batteries()
    return {
        CONF_EMAIL: email,
        CONF_AUTH_TOKEN: tokens["auth_token"],
        CONF_REFRESH_TOKEN: tokens["refresh_token"],
        CONF_BATTERIES: [
            {CONF_BATTERY_ID: battery["id"], CONF_BATTERY_NAME: _battery_name(battery)}
            for battery in batteries
            if battery.get("id")
        ],
    }


class FrankEnergieBatteryConfigFlow(ConfigFlow, domain=DOMAIN):
    """Handle a config flow for Frank Energie Battery."""

    VERSION = 1

    @staticmethod
    @callback
    def async_get_options_flow(
        config_entry: ConfigEntry,
    ) -> FrankEnergieBatteryOptionsFlow:
        """Get the options flow for this handler."""
        return FrankEnergieBatteryOptionsFlow(config_entry)

    async def _async_login(
        self, email: str, password: str, errors: dict[str, str]
    ) -> dict[str, Any] | None:
        try:
            return await validate_login(self.hass, email, password)
        except FrankEnergieAuthError:
            errors["base"] = "invalid_auth"
        except FrankEnergieConnectionError:
            errors["base"] = "cannot_connect"
        except FrankEnergieError:
            _LOGGER.exception("Unexpected response from Frank Energie")
            errors["base"] = "unknown"
        return None

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Handle credentials entry."""
        errors: dict[str, str] = {}

        if user_input is not None:
            email = user_input[CONF_EMAIL].strip()
            await self.async_set_unique_id(email.lower())
            self._abort_if_unique_id_configured()

            data = await self._async_login(email, user_input[CONF_PASSWORD], errors)
            if data is not None:
                if not data[CONF_BATTERIES]:
                    errors["base"] = "no_batteries"
                else:
                    return self.async_create_entry(
                        title=f"{DEFAULT_NAME} ({email})", data=data
                    )

        return self.async_show_form(
            step_id="user",
            data_schema=STEP_USER_DATA_SCHEMA,
            errors=errors,
        )

    async def async_step_reauth(
        self, entry_data: Mapping[str, Any]
    ) -> ConfigFlowResult:
        """Start reauth after the stored token was rejected."""
        return await self.async_step_reauth_confirm()

    async def async_step_reauth_confirm(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Ask for the password again and store fresh tokens."""
        errors: dict[str, str] = {}
        entry = self._get_reauth_entry()

        if user_input is not None:
            data = await self._async_login(
                entry.data[CONF_EMAIL], user_input[CONF_PASSWORD], errors
            )
            if data is not None:
                return self.async_update_reload_and_abort(
                    entry, data={**entry.data, **data}
                )

        return self.async_show_form(
            step_id="reauth_confirm",
            data_schema=STEP_REAUTH_DATA_SCHEMA,
            errors=errors,
            description_placeholders={"email": entry.data[CONF_EMAIL]},
        )


class FrankEnergieBatteryOptionsFlow(OptionsFlow):
    """Edit the poll interval and the accounting-day time zone."""

    def __init__(self, config_entry: ConfigEntry) -> None:
        """Initialize options flow."""
        self._config_entry = config_entry

    async def async_step_init(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Edit the options."""
        errors: dict[str, str] = {}

        if user_input is not None:
            if dt_util.get_time_zone(user_input[CONF_TIME_ZONE]) is None:
                errors[CONF_TIME_ZONE] = "invalid_time_zone"
            else:
                return self.async_create_entry(title="", data=user_input)

        options = self._config_entry.options
        schema = vol.Schema(
            {
                vol.Required(
                    CONF_SCAN_INTERVAL,
                    default=options.get(CONF_SCAN_INTERVAL, DEFAULT_SCAN_INTERVAL),
                ): vol.All(vol.Coerce(int), vol.Range(min=1, max=1440)),
                vol.Required(
                    CONF_TIME_ZONE,
                    default=options.get(CONF_TIME_ZONE, DEFAULT_TIME_ZONE),
                ): str,
            }
        )
        return self.async_show_form(step_id="init", data_schema=schema, errors=errors)
