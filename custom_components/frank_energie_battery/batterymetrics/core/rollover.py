"""Accounting-day rollover: boundary detection, state transitions and timers.

The accounting day follows a fixed reference time zone, which need not match
the host clock. Timers are armed through an injected Scheduler so that the
automatic midnight reset and operator one-shot resets can be driven by a fake
clock in tests and cancelled deterministically on shutdown.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import date, datetime, time, timedelta, timezone, tzinfo
import logging
from typing import Protocol
from zoneinfo import ZoneInfo

from .types import DailyRecord, EngineState

_LOGGER = logging.getLogger(__name__)

DEFAULT_TIME_ZONE = "Europe/Amsterdam"

Action = Callable[[], Awaitable[None]]
CancelCallback = Callable[[], None]


class Scheduler(Protocol):
    """Runs an async action once after a delay."""

    def call_later(self, delay: float, action: Action) -> CancelCallback:
        """Arm ``action`` to run after ``delay`` seconds; return a canceller."""


# ---------------------------------------------------------------------------
#  Calendar helpers
# ---------------------------------------------------------------------------

def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def local_date(moment: datetime, tz: tzinfo) -> date:
    """Calendar date of ``moment`` in ``tz`` (naive datetimes are UTC)."""
    return _as_utc(moment).astimezone(tz).date()


def next_local_midnight(moment: datetime, tz: tzinfo) -> datetime:
    """First 00:00 in ``tz`` strictly after ``moment``."""
    local = _as_utc(moment).astimezone(tz)
    return datetime.combine(local.date() + timedelta(days=1), time.min, tzinfo=tz)


def seconds_until(target: datetime, moment: datetime) -> float:
    """Elapsed seconds from ``moment`` to ``target``, never negative.

    Both sides are converted to UTC first; subtracting two datetimes that
    share a ZoneInfo compares wall clocks and is off by an hour across DST.
    """
    return max(0.0, (_as_utc(target) - _as_utc(moment)).total_seconds())


# ---------------------------------------------------------------------------
#  RolloverManager
# ---------------------------------------------------------------------------

class RolloverManager:
    """Decides when a new accounting day began and owns the reset timers."""

    def __init__(
        self,
        scheduler: Scheduler,
        now: Callable[[], datetime],
        time_zone: str | tzinfo = DEFAULT_TIME_ZONE,
    ) -> None:
        self._scheduler = scheduler
        self._now = now
        self.time_zone: tzinfo = (
            ZoneInfo(time_zone) if isinstance(time_zone, str) else time_zone
        )
        self._cancel_automatic: CancelCallback | None = None
        self._automatic_generation = 0
        self._cancel_one_shot: CancelCallback | None = None
        self.next_automatic_reset: datetime | None = None
        self.next_one_shot_reset: datetime | None = None

    def today(self) -> date:
        return local_date(self._now(), self.time_zone)

    def is_due(self, state: EngineState) -> bool:
        return state.last_reset_date != self.today()

    def roll(self, state: EngineState) -> EngineState:
        """Start a new accounting day on a copy of ``state``.

        Cumulative sources keep their counters and move them into start-of-day;
        daily-direct sources are zeroed but keep their last percentage.
        """
        rolled = state.copy()
        for record in rolled.baselines.values():
            record.start_of_day_charged = record.current_charged
            record.start_of_day_discharged = record.current_discharged
        for source_id, daily in rolled.daily_direct.items():
            rolled.daily_direct[source_id] = DailyRecord(
                percentage=daily.percentage,
                last_seen_at=daily.last_seen_at,
                activated_at=daily.activated_at,
            )
        rolled.last_reset_date = self.today()
        return rolled

    @staticmethod
    def rebaseline(state: EngineState, source_id: str | None = None) -> EngineState:
        """Treat current readings as the new zero point, now.

        Applies to one cumulative source or, when ``source_id`` is None, to all
        of them. Daily-direct records and the reset date are left alone.
        """
        rebased = state.copy()
        targets = (
            rebased.baselines.values()
            if source_id is None
            else [rebased.baselines[source_id]]
        )
        for record in targets:
            record.start_of_day_charged = record.current_charged
            record.start_of_day_discharged = record.current_discharged
        return rebased

    # -------------------------------------------------------------------
    #  Timers
    # -------------------------------------------------------------------

    def schedule_automatic(self, action: Action) -> datetime:
        """Arm ``action`` for the next local midnight, re-arming after each run.

        The boundary is recomputed on every fire rather than trusting a fixed
        24h period, so the timer stays on midnight across DST transitions.
        """
        if self._cancel_automatic is not None:
            self._cancel_automatic()

        now = self._now()
        target = next_local_midnight(now, self.time_zone)
        delay = seconds_until(target, now)
        generation = self._automatic_generation

        async def _fire() -> None:
            self._cancel_automatic = None
            self.next_automatic_reset = None
            try:
                await action()
            finally:
                # cancel() while the action ran means shutdown: stay disarmed
                if generation == self._automatic_generation:
                    self.schedule_automatic(action)

        self._cancel_automatic = self._scheduler.call_later(delay, _fire)
        self.next_automatic_reset = target
        _LOGGER.info(
            "Scheduled automatic reset at %s (%.0f minutes from now)",
            target.isoformat(),
            delay / 60,
        )
        return target

    def schedule_one_shot(self, at: datetime, action: Action) -> datetime:
        """Arm a single future action, replacing any pending one-shot.

        Naive ``at`` values are read as wall-clock time in the reference zone.
        """
        self.cancel_one_shot()
        if at.tzinfo is None:
            at = at.replace(tzinfo=self.time_zone)
        delay = seconds_until(at, self._now())

        async def _fire() -> None:
            self._cancel_one_shot = None
            self.next_one_shot_reset = None
            await action()

        self._cancel_one_shot = self._scheduler.call_later(delay, _fire)
        self.next_one_shot_reset = at
        _LOGGER.info("Scheduled one-shot reset at %s", at.isoformat())
        return at

    def cancel_one_shot(self) -> None:
        if self._cancel_one_shot is not None:
            self._cancel_one_shot()
            self._cancel_one_shot = None
            self.next_one_shot_reset = None

    def cancel(self) -> None:
        """Cancel every armed timer."""
        self._automatic_generation += 1
        if self._cancel_automatic is not None:
            self._cancel_automatic()
            self._cancel_automatic = None
            self.next_automatic_reset = None
        self.cancel_one_shot()
