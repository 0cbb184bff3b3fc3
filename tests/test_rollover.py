"""Tests for the accounting-day boundary and the reset timers."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from custom_components.frank_energie_battery.batterymetrics.core.rollover import (
    RolloverManager,
    local_date,
    next_local_midnight,
    seconds_until,
)
from custom_components.frank_energie_battery.batterymetrics.core.types import (
    BaselineRecord,
    DailyRecord,
    EngineState,
)

AMSTERDAM = ZoneInfo("Europe/Amsterdam")


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestCalendar:
    """Date and midnight arithmetic in the reference zone."""

    def test_local_date_differs_from_utc_date(self) -> None:
        """23:30 UTC is already the next day in Amsterdam."""
        assert local_date(_utc(2025, 3, 9, 23, 30), AMSTERDAM) == date(2025, 3, 10)

    def test_naive_moment_is_utc(self) -> None:
        assert local_date(datetime(2025, 3, 9, 22, 0), AMSTERDAM) == date(2025, 3, 9)

    def test_next_midnight_ordinary_day(self) -> None:
        target = next_local_midnight(_utc(2025, 3, 10, 9, 0), AMSTERDAM)

        assert target == _utc(2025, 3, 10, 23, 0)
        assert seconds_until(target, _utc(2025, 3, 10, 9, 0)) == 14 * 3600

    def test_spring_forward_day_is_23_hours(self) -> None:
        """Midnight to midnight on the last Sunday of March."""
        start = _utc(2025, 3, 29, 23, 0)  # 00:00 CET, 30 March
        target = next_local_midnight(start, AMSTERDAM)

        assert target == _utc(2025, 3, 30, 22, 0)  # 00:00 CEST, 31 March
        assert seconds_until(target, start) == 23 * 3600

    def test_fall_back_day_is_25_hours(self) -> None:
        """Midnight to midnight on the last Sunday of October."""
        start = _utc(2025, 10, 25, 22, 0)  # 00:00 CEST, 26 October
        target = next_local_midnight(start, AMSTERDAM)

        assert target == _utc(2025, 10, 26, 23, 0)  # 00:00 CET, 27 October
        assert seconds_until(target, start) == 25 * 3600

    def test_seconds_until_never_negative(self) -> None:
        assert seconds_until(_utc(2025, 1, 1), _utc(2025, 1, 2)) == 0.0


def _state() -> EngineState:
    return EngineState(
        last_reset_date=date(2025, 3, 9),
        baselines={
            "a": BaselineRecord(
                current_charged=112.0,
                current_discharged=54.0,
                start_of_day_charged=100.0,
                start_of_day_discharged=50.0,
            ),
            "b": BaselineRecord(
                current_charged=20.0,
                current_discharged=10.0,
                start_of_day_charged=15.0,
                start_of_day_discharged=10.0,
            ),
        },
        daily_direct={
            "d": DailyRecord(daily_charged=7.0, daily_discharged=2.0, percentage=40.0)
        },
    )


class TestTransitions:
    """Pure state transitions."""

    @pytest.fixture
    def manager(self, scheduler, clock) -> RolloverManager:
        return RolloverManager(scheduler, clock)

    def test_is_due_on_new_day(self, manager) -> None:
        state = _state()

        assert manager.is_due(state)
        state.last_reset_date = manager.today()
        assert not manager.is_due(state)

    def test_roll_moves_current_into_start_of_day(self, manager) -> None:
        state = _state()

        rolled = manager.roll(state)

        assert rolled.last_reset_date == date(2025, 3, 10)
        assert rolled.baselines["a"].start_of_day_charged == 112.0
        assert rolled.baselines["a"].start_of_day_discharged == 54.0
        assert rolled.daily_direct["d"] == DailyRecord(percentage=40.0)
        # Input untouched
        assert state.baselines["a"].start_of_day_charged == 100.0
        assert state.daily_direct["d"].daily_charged == 7.0

    def test_rebaseline_single_battery(self, manager) -> None:
        rebased = manager.rebaseline(_state(), "a")

        assert rebased.baselines["a"].start_of_day_charged == 112.0
        assert rebased.baselines["b"].start_of_day_charged == 15.0
        assert rebased.daily_direct["d"].daily_charged == 7.0
        assert rebased.last_reset_date == date(2025, 3, 9)

    def test_rebaseline_all_batteries(self, manager) -> None:
        rebased = manager.rebaseline(_state())

        assert rebased.baselines["a"].start_of_day_charged == 112.0
        assert rebased.baselines["b"].start_of_day_charged == 20.0


class TestTimers:
    """Timer arming, re-arming and cancellation."""

    @pytest.fixture
    def manager(self, scheduler, clock) -> RolloverManager:
        return RolloverManager(scheduler, clock)

    async def test_automatic_reset_rearms_each_midnight(
        self, manager, scheduler
    ) -> None:
        fired: list[datetime] = []

        async def action() -> None:
            fired.append(scheduler.clock())

        target = manager.schedule_automatic(action)

        assert target == _utc(2025, 3, 10, 23, 0)
        assert scheduler.pending == [target]
        assert manager.next_automatic_reset == target

        await scheduler.advance_to(_utc(2025, 3, 12, 12, 0))

        assert fired == [_utc(2025, 3, 10, 23, 0), _utc(2025, 3, 11, 23, 0)]
        assert scheduler.pending == [_utc(2025, 3, 12, 23, 0)]

    async def test_automatic_reset_follows_dst(self, clock, scheduler) -> None:
        """The timer stays on local midnight when the offset changes."""
        clock.current = _utc(2025, 3, 29, 12, 0)
        manager = RolloverManager(scheduler, clock)

        async def action() -> None:
            return None

        manager.schedule_automatic(action)
        await scheduler.advance_to(_utc(2025, 3, 30, 12, 0))

        assert scheduler.pending == [_utc(2025, 3, 30, 22, 0)]

    async def test_action_error_still_rearms(self, manager, scheduler) -> None:
        async def action() -> None:
            raise RuntimeError("boom")

        manager.schedule_automatic(action)

        with pytest.raises(RuntimeError):
            await scheduler.advance_to(_utc(2025, 3, 11, 0, 0))

        assert scheduler.pending == [_utc(2025, 3, 11, 23, 0)]

    async def test_cancel_during_action_stays_disarmed(
        self, manager, scheduler
    ) -> None:
        async def action() -> None:
            manager.cancel()

        manager.schedule_automatic(action)
        await scheduler.advance_to(_utc(2025, 3, 12, 0, 0))

        assert scheduler.pending == []
        assert manager.next_automatic_reset is None

    async def test_one_shot_replaces_previous(self, manager, scheduler) -> None:
        calls: list[str] = []

        async def first() -> None:
            calls.append("first")

        async def second() -> None:
            calls.append("second")

        manager.schedule_one_shot(_utc(2025, 3, 10, 20, 0), first)
        manager.schedule_one_shot(_utc(2025, 3, 10, 21, 0), second)

        assert scheduler.pending == [_utc(2025, 3, 10, 21, 0)]

        await scheduler.advance_to(_utc(2025, 3, 11, 0, 0))

        assert calls == ["second"]
        assert manager.next_one_shot_reset is None
        assert scheduler.pending == []

    def test_naive_one_shot_is_local_time(self, manager, scheduler) -> None:
        async def action() -> None:
            return None

        at = manager.schedule_one_shot(datetime(2025, 3, 10, 23, 59), action)

        assert at == datetime(2025, 3, 10, 23, 59, tzinfo=AMSTERDAM)
        assert scheduler.pending == [_utc(2025, 3, 10, 22, 59)]

    def test_one_shot_in_the_past_fires_immediately(
        self, manager, scheduler, clock
    ) -> None:
        async def action() -> None:
            return None

        manager.schedule_one_shot(clock() - timedelta(hours=1), action)

        assert scheduler.pending == [clock()]

    def test_cancel_disarms_everything(self, manager, scheduler) -> None:
        async def action() -> None:
            return None

        manager.schedule_automatic(action)
        manager.schedule_one_shot(_utc(2025, 3, 10, 20, 0), action)

        manager.cancel()

        assert scheduler.pending == []
        assert manager.next_automatic_reset is None
        assert manager.next_one_shot_reset is None
