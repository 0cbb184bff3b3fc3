"""BatteryMetricsEngine: the interface the rest of the application talks to.

One engine per account/device. Every mutating call runs under a single lock,
applies any owed rollover first, works on a copy of the state, persists it,
and only then commits the copy in memory. A failed save therefore leaves the
previous state (and any owed rollover) untouched and the call retryable.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime, timezone, tzinfo
from enum import StrEnum
import logging
import math

from .aggregate import aggregate, is_regressed
from .errors import (
    BatteryMetricsError,
    InvalidReportError,
    InvalidSourceError,
    PersistenceError,
    UnknownSourceError,
)
from .results import ResultAggregator, SessionFetcher
from .rollover import DEFAULT_TIME_ZONE, RolloverManager, Scheduler
from .store import BaselineStore, StateStore
from .types import (
    Aggregate,
    BaselineRecord,
    CloseReason,
    DailyRecord,
    DayClosed,
    EngineState,
    FinancialAggregate,
)

_LOGGER = logging.getLogger(__name__)


class EngineEvent(StrEnum):
    """Why listeners are being called."""

    RECORDED = "recorded"
    DAY_CLOSED = "day_closed"
    ROLLOVER = "rollover"
    BASELINE_RESET = "baseline_reset"
    SOURCE_REMOVED = "source_removed"
    CLEARED = "cleared"


# DAY_CLOSED delivers a DayClosed, every other event the new Aggregate
Listener = Callable[[EngineEvent, Aggregate | DayClosed], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_source_id(source_id: str) -> str:
    if not isinstance(source_id, str) or not source_id.strip():
        raise InvalidSourceError(f"Invalid battery id: {source_id!r}")
    return source_id.strip()


def _validate_value(name: str, value: float, *, allow_negative: bool = False) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as err:
        raise InvalidReportError(f"{name} must be a number, got {value!r}") from err
    if not math.isfinite(number):
        raise InvalidReportError(f"{name} must be finite, got {value!r}")
    if number < 0 and not allow_negative:
        raise InvalidReportError(f"{name} must not be negative, got {value!r}")
    return number


class BatteryMetricsEngine:
    """Daily baseline tracking and aggregation for a set of batteries."""

    def __init__(
        self,
        store: StateStore,
        scheduler: Scheduler,
        *,
        fetcher: SessionFetcher | None = None,
        display_names: Mapping[str, str] | None = None,
        now: Callable[[], datetime] = _utcnow,
        time_zone: str | tzinfo = DEFAULT_TIME_ZONE,
    ) -> None:
        self._now = now
        self._rollover = RolloverManager(scheduler, now, time_zone)
        self._baselines = BaselineStore(store, self._rollover.today)
        self._results = (
            ResultAggregator(fetcher, display_names) if fetcher is not None else None
        )
        self._lock = asyncio.Lock()
        self._state: EngineState | None = None
        self._listeners: list[Listener] = []

    @property
    def rollover(self) -> RolloverManager:
        return self._rollover

    @property
    def state(self) -> EngineState | None:
        """Last committed state, or None before the first load."""
        return self._state

    def today(self) -> date:
        return self._rollover.today()

    # -------------------------------------------------------------------
    #  Listeners
    # -------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` after every committed change; returns a remover."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify(self, event: EngineEvent, result: Aggregate | DayClosed) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, result)
            except Exception:
                _LOGGER.exception("Error calling battery metrics listener (%s)", event)

    # -------------------------------------------------------------------
    #  State plumbing (lock must be held)
    # -------------------------------------------------------------------

    async def _async_state(self) -> EngineState:
        if self._state is None:
            self._state = await self._baselines.async_load()
        return self._state

    def _roll_if_due(
        self, state: EngineState
    ) -> tuple[EngineState, DayClosed | None]:
        """Return a working copy with any owed rollover applied.

        The second item closes the previous day when a rollover was applied,
        else None.
        """
        if not self._rollover.is_due(state):
            return state.copy(), None
        _LOGGER.info(
            "New day detected (%s -> %s), resetting daily counters",
            state.last_reset_date.isoformat(),
            self.today().isoformat(),
        )
        closing = DayClosed(
            state.last_reset_date, CloseReason.ROLLOVER, aggregate(state)
        )
        return self._rollover.roll(state), closing

    async def _async_commit(
        self,
        state: EngineState,
        event: EngineEvent,
        closing: DayClosed | None = None,
    ) -> Aggregate:
        await self._baselines.async_save(state)
        self._state = state
        result = aggregate(state)
        if closing is not None:
            self._notify(EngineEvent.DAY_CLOSED, closing)
        self._notify(event, result)
        return result

    # -------------------------------------------------------------------
    #  Reports
    # -------------------------------------------------------------------

    async def async_record_cumulative(
        self,
        source_id: str,
        charged: float,
        discharged: float,
        percentage: float = 0.0,
    ) -> Aggregate:
        """Record lifetime totals (kWh) for a cumulative battery."""
        source_id = _validate_source_id(source_id)
        charged = _validate_value("charged", charged)
        discharged = _validate_value("discharged", discharged)
        percentage = _validate_value("percentage", percentage)

        async with self._lock:
            state, closing = self._roll_if_due(await self._async_state())
            now = self._now()
            record = state.baselines.get(source_id)

            if record is None:
                activated_at = now
                previous = state.daily_direct.pop(source_id, None)
                if previous is not None:
                    activated_at = previous.activated_at or now
                    _LOGGER.info(
                        "Battery %s switched from daily to cumulative reporting",
                        source_id,
                    )
                # No retroactive delta: the first reading is today's zero point
                record = BaselineRecord(
                    current_charged=charged,
                    current_discharged=discharged,
                    start_of_day_charged=charged,
                    start_of_day_discharged=discharged,
                    activated_at=activated_at,
                )
                state.baselines[source_id] = record
                _LOGGER.info(
                    "Initialized start of day for battery %s: charged %s kWh, "
                    "discharged %s kWh",
                    source_id,
                    charged,
                    discharged,
                )
            else:
                was_regressed = is_regressed(record)
                record.current_charged = charged
                record.current_discharged = discharged
                if is_regressed(record) and not was_regressed:
                    _LOGGER.warning(
                        "Battery %s counters went below start of day "
                        "(charged %s < %s or discharged %s < %s); "
                        "daily delta clamped to 0",
                        source_id,
                        charged,
                        record.start_of_day_charged,
                        discharged,
                        record.start_of_day_discharged,
                    )

            record.percentage = percentage
            record.last_seen_at = now
            _LOGGER.debug(
                "Updated battery %s - charged: %s kWh, discharged: %s kWh, "
                "percentage: %s%%",
                source_id,
                charged,
                discharged,
                percentage,
            )
            return await self._async_commit(state, EngineEvent.RECORDED, closing)

    async def async_record_daily(
        self,
        source_id: str,
        daily_charged: float,
        daily_discharged: float,
        percentage: float = 0.0,
    ) -> Aggregate:
        """Record today's values (kWh) for a battery that computes its own deltas."""
        source_id = _validate_source_id(source_id)
        daily_charged = _validate_value("daily_charged", daily_charged)
        daily_discharged = _validate_value("daily_discharged", daily_discharged)
        percentage = _validate_value("percentage", percentage)

        async with self._lock:
            state, closing = self._roll_if_due(await self._async_state())
            now = self._now()
            activated_at = now
            if (existing := state.daily_direct.get(source_id)) is not None:
                activated_at = existing.activated_at or now
            elif (previous := state.baselines.pop(source_id, None)) is not None:
                activated_at = previous.activated_at or now
                _LOGGER.info(
                    "Battery %s switched from cumulative to daily reporting",
                    source_id,
                )

            state.daily_direct[source_id] = DailyRecord(
                daily_charged=daily_charged,
                daily_discharged=daily_discharged,
                percentage=percentage,
                last_seen_at=now,
                activated_at=activated_at,
            )
            _LOGGER.debug(
                "Updated daily battery %s - charged: %s kWh, discharged: %s kWh, "
                "percentage: %s%%",
                source_id,
                daily_charged,
                daily_discharged,
                percentage,
            )
            return await self._async_commit(state, EngineEvent.RECORDED, closing)

    async def async_get_aggregate(self) -> Aggregate:
        """Return today's totals without recording anything.

        An owed rollover is applied first. If it cannot be persisted the
        rolled-over totals are still returned and the rollover stays owed.
        """
        async with self._lock:
            current = await self._async_state()
            if not self._rollover.is_due(current):
                return aggregate(current)
            state, closing = self._roll_if_due(current)
            try:
                return await self._async_commit(state, EngineEvent.ROLLOVER, closing)
            except PersistenceError as err:
                _LOGGER.warning("Could not persist rollover, will retry: %s", err)
                return aggregate(state)

    async def async_get_tracked_sources(self) -> list[str]:
        async with self._lock:
            return (await self._async_state()).source_ids

    async def async_get_last_seen(self, source_id: str) -> datetime | None:
        async with self._lock:
            state = await self._async_state()
        record = state.baselines.get(source_id) or state.daily_direct.get(source_id)
        return record.last_seen_at if record is not None else None

    # -------------------------------------------------------------------
    #  Rollover and resets
    # -------------------------------------------------------------------

    async def async_ensure_rollover_for_today(self) -> bool:
        """Roll over if the stored reset date is not today. Returns True if it did.

        Call once at startup to catch a midnight that passed while the
        process was not running.
        """
        async with self._lock:
            current = await self._async_state()
            if not self._rollover.is_due(current):
                return False
            state, closing = self._roll_if_due(current)
            await self._async_commit(state, EngineEvent.ROLLOVER, closing)
            return True

    async def _async_automatic_reset(self) -> None:
        try:
            if await self.async_ensure_rollover_for_today():
                _LOGGER.info(
                    "Automatic midnight reset executed, start of day set to "
                    "current values"
                )
        except BatteryMetricsError as err:
            _LOGGER.error("Automatic reset failed, retrying on next report: %s", err)

    def schedule_automatic_reset(self) -> datetime:
        """Arm the midnight rollover; returns when it will fire."""
        return self._rollover.schedule_automatic(self._async_automatic_reset)

    def schedule_one_shot_reset(
        self, at: datetime, source_id: str | None = None
    ) -> datetime:
        """Re-baseline at ``at`` (e.g. 23:59) after announcing the day's totals.

        Replaces any previously armed one-shot reset.
        """
        if source_id is not None:
            source_id = _validate_source_id(source_id)

        async def _reset() -> None:
            try:
                await self._async_rebaseline(source_id, close_day=True)
            except BatteryMetricsError as err:
                _LOGGER.error("Scheduled reset failed: %s", err)

        return self._rollover.schedule_one_shot(at, _reset)

    async def async_emergency_reset(self, source_id: str | None = None) -> Aggregate:
        """Treat current readings as the new zero point, starting now.

        Recovery for a baseline captured at the wrong moment (e.g. an engine
        initialised mid-day with an already elevated reading). Applies to one
        battery or, without ``source_id``, to all cumulative batteries.
        """
        if source_id is not None:
            source_id = _validate_source_id(source_id)
        return await self._async_rebaseline(source_id, close_day=False)

    async def _async_rebaseline(
        self, source_id: str | None, *, close_day: bool
    ) -> Aggregate:
        async with self._lock:
            current = await self._async_state()
            state, closing = self._roll_if_due(current)

            if source_id is not None and source_id not in state.baselines:
                if source_id not in state.daily_direct:
                    raise UnknownSourceError(f"Unknown battery: {source_id}")
                _LOGGER.info(
                    "Battery %s reports daily values, no baseline to reset",
                    source_id,
                )
                if closing is None:
                    return aggregate(state)
                return await self._async_commit(state, EngineEvent.ROLLOVER, closing)

            if close_day and closing is None:
                closing = DayClosed(
                    state.last_reset_date,
                    CloseReason.SCHEDULED_RESET,
                    aggregate(state),
                )
            state = self._rollover.rebaseline(state, source_id)
            _LOGGER.warning(
                "Baseline for %s set to current values; delta is correct from "
                "the next measurement",
                f"battery {source_id}" if source_id else "all batteries",
            )
            return await self._async_commit(
                state, EngineEvent.BASELINE_RESET, closing
            )

    # -------------------------------------------------------------------
    #  Source management
    # -------------------------------------------------------------------

    async def async_remove_source(self, source_id: str) -> bool:
        """Stop tracking one battery. Returns False if it was not tracked."""
        source_id = _validate_source_id(source_id)
        async with self._lock:
            current = await self._async_state()
            if current.style_of(source_id) is None:
                return False
            state, closing = self._roll_if_due(current)
            state.baselines.pop(source_id, None)
            state.daily_direct.pop(source_id, None)
            await self._async_commit(state, EngineEvent.SOURCE_REMOVED, closing)
            _LOGGER.info("Removed battery %s", source_id)
            return True

    async def async_clear_all(self) -> None:
        """Forget every battery and restart the accounting day today."""
        async with self._lock:
            await self._baselines.async_clear()
            self._state = self._baselines.empty_state()
            _LOGGER.info("Cleared all battery metrics")
            self._notify(EngineEvent.CLEARED, aggregate(self._state))

    # -------------------------------------------------------------------
    #  Remote trading results
    # -------------------------------------------------------------------

    async def async_aggregate_financial_results(
        self, source_ids: Sequence[str], start: date, end: date
    ) -> FinancialAggregate:
        """Sum the trading results of ``source_ids``; see ResultAggregator."""
        if self._results is None:
            raise BatteryMetricsError("No session fetcher configured")
        return await self._results.async_aggregate(source_ids, start, end)

    # -------------------------------------------------------------------
    #  Lifecycle
    # -------------------------------------------------------------------

    async def async_shutdown(self) -> None:
        """Cancel all timers; the engine must not be used afterwards."""
        self._rollover.cancel()
        self._listeners.clear()
        _LOGGER.debug("Battery metrics engine shut down")
