"""Daily delta calculation and cross-source energy aggregation.

Pure functions over EngineState; nothing here touches storage or clocks.
"""

from __future__ import annotations

from .types import (
    Aggregate,
    BaselineRecord,
    EngineState,
    ReportingStyle,
    SourceSnapshot,
)


def daily_delta(current: float, start_of_day: float) -> float:
    """Return today's contribution of a lifetime counter.

    A counter below its start-of-day value (device replaced, counter reset by
    the source) yields 0. The regression is not compensated, so that day's
    total can be understated.
    """
    return max(0.0, current - start_of_day)


def is_regressed(record: BaselineRecord) -> bool:
    """True when either counter dropped below its start-of-day value."""
    return (
        record.current_charged < record.start_of_day_charged
        or record.current_discharged < record.start_of_day_discharged
    )


def aggregate(state: EngineState) -> Aggregate:
    """Merge every tracked source into one set of today's totals."""
    snapshots: list[SourceSnapshot] = []
    daily_charged = 0.0
    daily_discharged = 0.0
    current_charged = 0.0
    current_discharged = 0.0
    start_charged = 0.0
    start_discharged = 0.0
    percentage_sum = 0.0

    for source_id, record in state.baselines.items():
        charged = daily_delta(record.current_charged, record.start_of_day_charged)
        discharged = daily_delta(
            record.current_discharged, record.start_of_day_discharged
        )
        snapshots.append(
            SourceSnapshot(
                source_id=source_id,
                style=ReportingStyle.CUMULATIVE,
                daily_charged=charged,
                daily_discharged=discharged,
                current_charged=record.current_charged,
                current_discharged=record.current_discharged,
                percentage=record.percentage,
                last_seen_at=record.last_seen_at,
                regressed=is_regressed(record),
            )
        )
        daily_charged += charged
        daily_discharged += discharged
        current_charged += record.current_charged
        current_discharged += record.current_discharged
        start_charged += record.start_of_day_charged
        start_discharged += record.start_of_day_discharged
        percentage_sum += record.percentage

    # Daily-direct sources have no lifetime counters, so they only feed the
    # daily totals and the percentage average.
    for source_id, daily in state.daily_direct.items():
        snapshots.append(
            SourceSnapshot(
                source_id=source_id,
                style=ReportingStyle.DAILY_DIRECT,
                daily_charged=daily.daily_charged,
                daily_discharged=daily.daily_discharged,
                current_charged=0.0,
                current_discharged=0.0,
                percentage=daily.percentage,
                last_seen_at=daily.last_seen_at,
            )
        )
        daily_charged += daily.daily_charged
        daily_discharged += daily.daily_discharged
        percentage_sum += daily.percentage

    count = len(snapshots)
    return Aggregate(
        daily_charged=daily_charged,
        daily_discharged=daily_discharged,
        current_charged=current_charged,
        current_discharged=current_discharged,
        start_of_day_charged=start_charged,
        start_of_day_discharged=start_discharged,
        average_percentage=percentage_sum / count if count else 0.0,
        source_count=count,
        per_source=tuple(snapshots),
    )
