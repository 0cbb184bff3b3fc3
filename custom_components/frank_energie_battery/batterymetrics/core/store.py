"""Persistence for the battery metrics engine.

Contains the StateStore protocol (any async get/set/unset of one blob),
JsonFileStateStore (a file-backed StateStore for standalone use), and
BaselineStore, which turns the stored blob into an EngineState and back,
upgrading older blob layouts on load.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import date, datetime, timezone
import json
import logging
from pathlib import Path
from typing import Any, Protocol

from .errors import PersistenceError
from .types import EngineState

_LOGGER = logging.getLogger(__name__)

STATE_VERSION = 2


class StateStore(Protocol):
    """Minimal async key-value slot holding the engine blob.

    ``homeassistant.helpers.storage.Store`` satisfies this protocol as-is.
    """

    async def async_load(self) -> dict[str, Any] | None:
        """Return the stored blob, or None when nothing was saved yet."""

    async def async_save(self, data: dict[str, Any]) -> None:
        """Replace the stored blob."""

    async def async_remove(self) -> None:
        """Delete the stored blob."""


# ---------------------------------------------------------------------------
#  JsonFileStateStore
# ---------------------------------------------------------------------------

class JsonFileStateStore:
    """StateStore backed by a JSON file on disk.

    File access runs in a worker thread.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _read(self) -> dict[str, Any] | None:
        try:
            with open(self.path) as f:
                return json.load(f)
        except FileNotFoundError:
            return None

    def _write(self, data: dict[str, Any]) -> None:
        """Atomic write: write to .tmp then rename."""
        tmp = self.path.with_suffix('.tmp')
        with open(tmp, 'w') as f:
            json.dump(data, f, indent=2)
        tmp.replace(self.path)

    async def async_load(self) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._read)

    async def async_save(self, data: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, data)

    async def async_remove(self) -> None:
        await asyncio.to_thread(self.path.unlink, missing_ok=True)


# ---------------------------------------------------------------------------
#  Blob migration
# ---------------------------------------------------------------------------

def _migrate_v1(data: dict[str, Any]) -> dict[str, Any]:
    """Convert the legacy associative-array layout to per-source records.

    v1 kept one map per metric (``current.charged[id]``,
    ``startOfDay.charged[id]``, ``dailyOnly.dailyCharged[id]``, ...) and a
    millisecond ``lastUpdated`` timestamp per source, but no activation time.
    """
    current = data.get("current") or {}
    start_of_day = data.get("startOfDay") or {}
    daily_only = data.get("dailyOnly") or {}
    last_updated = data.get("lastUpdated") or {}

    def _seen(source_id: str) -> str | None:
        millis = last_updated.get(source_id)
        if millis is None:
            return None
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat()

    current_charged = current.get("charged") or {}
    current_discharged = current.get("discharged") or {}
    baselines: dict[str, Any] = {}
    for source_id in current_discharged:
        discharged = current_discharged[source_id]
        charged = current_charged.get(source_id, 0.0)
        seen = _seen(source_id)
        baselines[source_id] = {
            "current_charged": charged,
            "current_discharged": discharged,
            "start_of_day_charged": (start_of_day.get("charged") or {}).get(
                source_id, charged
            ),
            "start_of_day_discharged": (start_of_day.get("discharged") or {}).get(
                source_id, discharged
            ),
            "percentage": (current.get("percentage") or {}).get(source_id, 0.0),
            "last_seen_at": seen,
            "activated_at": seen,
        }

    # A v1 rollover emptied dailyCharged but kept percentage, so a daily
    # source may only be visible through its percentage entry.
    daily_charged = daily_only.get("dailyCharged") or {}
    daily_percentage = daily_only.get("percentage") or {}
    daily_direct: dict[str, Any] = {}
    for source_id in dict.fromkeys([*daily_charged, *daily_percentage]):
        if source_id in baselines:
            continue
        seen = _seen(source_id)
        daily_direct[source_id] = {
            "daily_charged": daily_charged.get(source_id, 0.0),
            "daily_discharged": (daily_only.get("dailyDischarged") or {}).get(
                source_id, 0.0
            ),
            "percentage": daily_percentage.get(source_id, 0.0),
            "last_seen_at": seen,
            "activated_at": seen,
        }

    return {
        "version": 2,
        "last_reset_date": data["lastResetDate"],
        "baselines": baselines,
        "daily_direct": daily_direct,
    }


def migrate_state(data: dict[str, Any]) -> dict[str, Any]:
    """Upgrade a stored blob to the current layout."""
    version = data.get("version")
    if version is None and "current" in data:
        _LOGGER.info("Migrating battery metrics state from version 1 to %d", STATE_VERSION)
        data = _migrate_v1(data)
        version = 2
    if version is not None and version > STATE_VERSION:
        _LOGGER.warning(
            "Battery metrics state has unknown version %s, reading it as version %d",
            version,
            STATE_VERSION,
        )
    return data


# ---------------------------------------------------------------------------
#  BaselineStore
# ---------------------------------------------------------------------------

class BaselineStore:
    """Loads and saves EngineState through a StateStore."""

    def __init__(self, store: StateStore, today: Callable[[], date]) -> None:
        self._store = store
        self._today = today

    def empty_state(self) -> EngineState:
        return EngineState(last_reset_date=self._today())

    async def async_load(self) -> EngineState:
        """Return the persisted state, or a fresh one dated today."""
        try:
            raw = await self._store.async_load()
        except Exception as err:
            raise PersistenceError(f"Failed to load battery metrics: {err}") from err

        if raw is None:
            _LOGGER.debug("No stored battery metrics found, starting empty")
            return self.empty_state()

        try:
            state = EngineState.from_dict(migrate_state(raw))
        except (KeyError, TypeError, ValueError, AttributeError):
            _LOGGER.warning(
                "Failed to restore battery metrics from store, starting fresh"
            )
            return self.empty_state()

        _LOGGER.info(
            "Restored battery metrics: %d cumulative, %d daily sources "
            "(last reset %s)",
            len(state.baselines),
            len(state.daily_direct),
            state.last_reset_date.isoformat(),
        )
        return state

    async def async_save(self, state: EngineState) -> None:
        data = {"version": STATE_VERSION, **state.to_dict()}
        try:
            await self._store.async_save(data)
        except Exception as err:
            raise PersistenceError(f"Failed to save battery metrics: {err}") from err

    async def async_clear(self) -> None:
        try:
            await self._store.async_remove()
        except Exception as err:
            raise PersistenceError(f"Failed to clear battery metrics: {err}") from err
