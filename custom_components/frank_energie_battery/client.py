"""Frank Energie GraphQL client.

Only the operations the integration needs: logging in, listing the
account's smart batteries, reading a battery's settings and fetching its
trading sessions.
The client satisfies the engine's SessionFetcher protocol.
"""

from __future__ import annotations

import asyncio
from datetime import date
import logging
from typing import Any

import aiohttp

from .batterymetrics.core.types import SessionResult, TradingSession
from .const import (
    GRAPHQL_URL,
    REQUEST_TIMEOUT,
    TRADING_MODE_IMBALANCE,
    TRADING_MODE_IMBALANCE_AGGRESSIVE,
    TRADING_MODE_MANUAL,
    TRADING_MODE_SELF_CONSUMPTION_PLUS,
    USER_AGENT,
)

_LOGGER = logging.getLogger(__name__)

AUTH_ERROR_MESSAGE = "user-error:auth-not-authorised"

LOGIN_MUTATION = """
mutation Login($email: String!, $password: String!) {
  login(email: $email, password: $password) {
    authToken
    refreshToken
  }
}
"""

SMART_BATTERIES_QUERY = """
query SmartBatteries {
  smartBatteries {
    brand
    capacity
    externalReference
    id
    provider
  }
}
"""

SMART_BATTERY_QUERY = """
query SmartBattery($deviceId: String!) {
  smartBattery(deviceId: $deviceId) {
    brand
    capacity
    externalReference
    id
    settings {
      batteryMode
      imbalanceTradingStrategy
      selfConsumptionTradingAllowed
    }
  }
}
"""

SMART_BATTERY_SESSIONS_QUERY = """
query SmartBatterySessions($startDate: String!, $endDate: String!, $deviceId: String!) {
  smartBatterySessions(startDate: $startDate, endDate: $endDate, deviceId: $deviceId) {
    deviceId
    periodStartDate
    periodEndDate
    periodEpexResult
    periodFrankSlim
    periodImbalanceResult
    periodTotalResult
    periodTradingResult
    sessions {
      cumulativeResult
      date
      result
      status
    }
  }
}
"""


class FrankEnergieError(Exception):
    """Base error for the Frank Energie API."""


class FrankEnergieAuthError(FrankEnergieError):
    """Credentials rejected or token expired."""


class FrankEnergieConnectionError(FrankEnergieError):
    """The API could not be reached or answered with an HTTP error."""


def _number(value: Any) -> float:
    return float(value) if value is not None else 0.0


def parse_session_result(source_id: str, payload: dict[str, Any]) -> SessionResult:
    """Build a SessionResult from a ``smartBatterySessions`` payload."""
    return SessionResult(
        source_id=source_id,
        period_total_result=_number(payload.get("periodTotalResult")),
        period_epex_result=_number(payload.get("periodEpexResult")),
        period_trading_result=_number(payload.get("periodTradingResult")),
        period_frank_slim=_number(payload.get("periodFrankSlim")),
        period_imbalance_result=_number(payload.get("periodImbalanceResult")),
        sessions=tuple(
            TradingSession(
                cumulative_result=_number(session.get("cumulativeResult")),
                date=session.get("date", ""),
                result=_number(session.get("result")),
                status=session.get("status"),
            )
            for session in payload.get("sessions") or []
        ),
    )


def detect_trading_mode(settings: dict[str, Any] | None) -> str:
    """Map a battery's ``batteryMode``/``imbalanceTradingStrategy`` to a mode.

    Combinations not listed below are treated as manual control.
    """
    settings = settings or {}
    battery_mode = settings.get("batteryMode")
    strategy = settings.get("imbalanceTradingStrategy")

    if battery_mode == "IMBALANCE_TRADING" and strategy == "STANDARD":
        return TRADING_MODE_IMBALANCE
    if battery_mode == "IMBALANCE_TRADING" and strategy == "AGGRESSIVE":
        return TRADING_MODE_IMBALANCE_AGGRESSIVE
    if battery_mode == "SELF_CONSUMPTION_MIX":
        return TRADING_MODE_SELF_CONSUMPTION_PLUS
    return TRADING_MODE_MANUAL


class FrankEnergieClient:
    """Thin async wrapper around the Frank Energie GraphQL endpoint."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        auth_token: str | None = None,
        refresh_token: str | None = None,
    ) -> None:
        self._session = session
        self.auth_token = auth_token
        self.refresh_token = refresh_token

    @property
    def is_authenticated(self) -> bool:
        return bool(self.auth_token)

    async def _async_query(
        self,
        operation_name: str,
        query: str,
        variables: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        body: dict[str, Any] = {"operationName": operation_name, "query": query}
        if variables:
            body["variables"] = variables

        try:
            async with (
                asyncio.timeout(REQUEST_TIMEOUT),
                self._session.post(GRAPHQL_URL, json=body, headers=headers) as response,
            ):
                if response.status in (401, 403):
                    raise FrankEnergieAuthError(
                        f"{operation_name} rejected with HTTP {response.status}"
                    )
                response.raise_for_status()
                payload = await response.json()
        except (aiohttp.ClientError, TimeoutError) as err:
            raise FrankEnergieConnectionError(
                f"{operation_name} request failed: {err or type(err).__name__}"
            ) from err

        if errors := payload.get("errors"):
            messages = [error.get("message", "") for error in errors]
            if AUTH_ERROR_MESSAGE in messages:
                raise FrankEnergieAuthError("Authentication required or token expired")
            raise FrankEnergieError(f"GraphQL errors: {', '.join(messages)}")

        data = payload.get("data")
        if data is None:
            raise FrankEnergieError(f"{operation_name} returned no data")
        return data

    def _require_auth(self) -> None:
        if not self.is_authenticated:
            raise FrankEnergieAuthError("Authentication required, log in first")

    async def async_login(self, email: str, password: str) -> dict[str, str]:
        """Log in and keep the returned tokens for subsequent calls."""
        data = await self._async_query(
            "Login", LOGIN_MUTATION, {"email": email, "password": password}
        )
        login = data.get("login") or {}
        if not login.get("authToken"):
            raise FrankEnergieAuthError("Login did not return a token")
        self.auth_token = login["authToken"]
        self.refresh_token = login.get("refreshToken")
        _LOGGER.debug("Authenticated with Frank Energie")
        return {"auth_token": self.auth_token, "refresh_token": self.refresh_token}

    async def async_get_smart_batteries(self) -> list[dict[str, Any]]:
        """Return the smart batteries registered to the account."""
        self._require_auth()
        data = await self._async_query("SmartBatteries", SMART_BATTERIES_QUERY)
        batteries = data.get("smartBatteries") or []
        _LOGGER.debug("Retrieved %d smart batteries", len(batteries))
        return batteries

    async def async_get_session_result(
        self, source_id: str, start: date, end: date
    ) -> SessionResult:
        """Return the trading results of one battery between two dates."""
        self._require_auth()
        data = await self._async_query(
            "SmartBatterySessions",
            SMART_BATTERY_SESSIONS_QUERY,
            {
                "deviceId": source_id,
                "startDate": start.isoformat(),
                "endDate": end.isoformat(),
            },
        )
        payload = data.get("smartBatterySessions")
        if payload is None:
            raise FrankEnergieError(f"No session data for battery {source_id}")
        return parse_session_result(source_id, payload)

    async def async_get_smart_battery(self, source_id: str) -> dict[str, Any]:
        """Return one battery's details including its trading settings."""
        self._require_auth()
        data = await self._async_query(
            "SmartBattery", SMART_BATTERY_QUERY, {"deviceId": source_id}
        )
        battery = data.get("smartBattery")
        if battery is None:
            raise FrankEnergieError(f"Battery {source_id} not found")
        return battery
