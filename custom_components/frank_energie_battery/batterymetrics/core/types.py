"""Data model for the battery metrics engine.

- Per-source records: BaselineRecord (cumulative sources), DailyRecord
  (sources reporting today's values directly)
- EngineState: the single persisted blob
- Aggregate / SourceSnapshot: derived energy totals, never persisted
- DayClosed: an accounting day's final totals, announced to listeners
- SessionResult / FinancialAggregate: remote trading-result aggregation
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any


class ReportingStyle(StrEnum):
    """How a source reports its charged/discharged energy."""

    CUMULATIVE = "cumulative"
    DAILY_DIRECT = "daily_direct"


def _ts_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _ts_from_str(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


# ---------------------------------------------------------------------------
#  Per-source records
# ---------------------------------------------------------------------------

@dataclass
class BaselineRecord:
    """Lifetime counters of a cumulative source plus its start-of-day values."""

    current_charged: float
    current_discharged: float
    start_of_day_charged: float
    start_of_day_discharged: float
    percentage: float = 0.0
    last_seen_at: datetime | None = None
    activated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_charged": self.current_charged,
            "current_discharged": self.current_discharged,
            "start_of_day_charged": self.start_of_day_charged,
            "start_of_day_discharged": self.start_of_day_discharged,
            "percentage": self.percentage,
            "last_seen_at": _ts_to_str(self.last_seen_at),
            "activated_at": _ts_to_str(self.activated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BaselineRecord:
        last_seen_at = _ts_from_str(data.get("last_seen_at"))
        current_charged = float(data["current_charged"])
        current_discharged = float(data["current_discharged"])
        return cls(
            current_charged=current_charged,
            current_discharged=current_discharged,
            start_of_day_charged=float(
                data.get("start_of_day_charged", current_charged)
            ),
            start_of_day_discharged=float(
                data.get("start_of_day_discharged", current_discharged)
            ),
            percentage=float(data.get("percentage", 0.0)),
            last_seen_at=last_seen_at,
            activated_at=_ts_from_str(data.get("activated_at")) or last_seen_at,
        )


@dataclass
class DailyRecord:
    """Today's values of a source that computes its own daily deltas."""

    daily_charged: float = 0.0
    daily_discharged: float = 0.0
    percentage: float = 0.0
    last_seen_at: datetime | None = None
    activated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "daily_charged": self.daily_charged,
            "daily_discharged": self.daily_discharged,
            "percentage": self.percentage,
            "last_seen_at": _ts_to_str(self.last_seen_at),
            "activated_at": _ts_to_str(self.activated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DailyRecord:
        last_seen_at = _ts_from_str(data.get("last_seen_at"))
        return cls(
            daily_charged=float(data.get("daily_charged", 0.0)),
            daily_discharged=float(data.get("daily_discharged", 0.0)),
            percentage=float(data.get("percentage", 0.0)),
            last_seen_at=last_seen_at,
            activated_at=_ts_from_str(data.get("activated_at")) or last_seen_at,
        )


# ---------------------------------------------------------------------------
#  EngineState
# ---------------------------------------------------------------------------

@dataclass
class EngineState:
    """Everything the engine persists, as one blob.

    ``last_reset_date`` is the calendar date (reference time zone) of the last
    committed rollover. A source id lives in at most one of the two maps.
    """

    last_reset_date: date
    baselines: dict[str, BaselineRecord] = field(default_factory=dict)
    daily_direct: dict[str, DailyRecord] = field(default_factory=dict)

    @property
    def source_ids(self) -> list[str]:
        return [*self.baselines, *self.daily_direct]

    def style_of(self, source_id: str) -> ReportingStyle | None:
        if source_id in self.baselines:
            return ReportingStyle.CUMULATIVE
        if source_id in self.daily_direct:
            return ReportingStyle.DAILY_DIRECT
        return None

    def copy(self) -> EngineState:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_reset_date": self.last_reset_date.isoformat(),
            "baselines": {
                source_id: record.to_dict()
                for source_id, record in self.baselines.items()
            },
            "daily_direct": {
                source_id: record.to_dict()
                for source_id, record in self.daily_direct.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineState:
        return cls(
            last_reset_date=date.fromisoformat(data["last_reset_date"]),
            baselines={
                str(source_id): BaselineRecord.from_dict(record)
                for source_id, record in data.get("baselines", {}).items()
            },
            daily_direct={
                str(source_id): DailyRecord.from_dict(record)
                for source_id, record in data.get("daily_direct", {}).items()
            },
        )


# ---------------------------------------------------------------------------
#  Energy aggregate (derived)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SourceSnapshot:
    """One source's contribution to an Aggregate."""

    source_id: str
    style: ReportingStyle
    daily_charged: float
    daily_discharged: float
    current_charged: float
    current_discharged: float
    percentage: float
    last_seen_at: datetime | None = None
    regressed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "style": str(self.style),
            "daily_charged": self.daily_charged,
            "daily_discharged": self.daily_discharged,
            "current_charged": self.current_charged,
            "current_discharged": self.current_discharged,
            "percentage": self.percentage,
            "last_seen_at": _ts_to_str(self.last_seen_at),
            "regressed": self.regressed,
        }


@dataclass(frozen=True)
class Aggregate:
    """Today's merged totals across all tracked sources."""

    daily_charged: float = 0.0
    daily_discharged: float = 0.0
    current_charged: float = 0.0
    current_discharged: float = 0.0
    start_of_day_charged: float = 0.0
    start_of_day_discharged: float = 0.0
    average_percentage: float = 0.0
    source_count: int = 0
    per_source: tuple[SourceSnapshot, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "daily_charged": self.daily_charged,
            "daily_discharged": self.daily_discharged,
            "current_charged": self.current_charged,
            "current_discharged": self.current_discharged,
            "start_of_day_charged": self.start_of_day_charged,
            "start_of_day_discharged": self.start_of_day_discharged,
            "average_percentage": self.average_percentage,
            "source_count": self.source_count,
            "per_source": [snapshot.to_dict() for snapshot in self.per_source],
        }


class CloseReason(StrEnum):
    """What ended an accounting day."""

    ROLLOVER = "rollover"
    SCHEDULED_RESET = "scheduled_reset"


@dataclass(frozen=True)
class DayClosed:
    """Final totals of an accounting day.

    A scheduled reset shortly before midnight closes the day early; the
    midnight rollover that follows closes the same ``accounting_date`` again
    with only the residual since the reset.
    """

    accounting_date: date
    reason: CloseReason
    aggregate: Aggregate

    def to_dict(self) -> dict[str, Any]:
        return {
            "accounting_date": self.accounting_date.isoformat(),
            "reason": str(self.reason),
            **self.aggregate.to_dict(),
        }


# ---------------------------------------------------------------------------
#  Remote trading results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TradingSession:
    """A single day entry in a source's session list."""

    cumulative_result: float
    date: str
    result: float = 0.0
    status: str | None = None


@dataclass(frozen=True)
class SessionResult:
    """Trading results of one source over a date range."""

    source_id: str
    period_total_result: float = 0.0
    period_epex_result: float = 0.0
    period_trading_result: float = 0.0
    period_frank_slim: float = 0.0
    period_imbalance_result: float = 0.0
    sessions: tuple[TradingSession, ...] = ()

    @property
    def cumulative_result(self) -> float:
        """Running ledger total as reported by the first session entry."""
        return self.sessions[0].cumulative_result if self.sessions else 0.0


@dataclass(frozen=True)
class SourceFailure:
    """A source whose session fetch failed."""

    source_id: str
    display_name: str
    error: str

    def to_dict(self) -> dict[str, str]:
        return {
            "source_id": self.source_id,
            "display_name": self.display_name,
            "error": self.error,
        }


@dataclass
class FinancialAggregate:
    """Sums of the trading results of every source that answered."""

    period_total_result: float = 0.0
    total_trading_result: float = 0.0
    period_epex_result: float = 0.0
    period_trading_result: float = 0.0
    period_frank_slim: float = 0.0
    period_imbalance_result: float = 0.0
    source_count: int = 0
    results: list[SessionResult] = field(default_factory=list)
    failures: list[SourceFailure] = field(default_factory=list)

    @property
    def succeeded_count(self) -> int:
        return len(self.results)

    def add(self, result: SessionResult) -> None:
        self.period_total_result += result.period_total_result
        self.period_epex_result += result.period_epex_result
        self.period_trading_result += result.period_trading_result
        self.period_frank_slim += result.period_frank_slim
        self.period_imbalance_result += result.period_imbalance_result
        self.total_trading_result += result.cumulative_result
        self.results.append(result)

    def to_dict(self) -> dict[str, Any]:
        return {
            "period_total_result": self.period_total_result,
            "total_trading_result": self.total_trading_result,
            "period_epex_result": self.period_epex_result,
            "period_trading_result": self.period_trading_result,
            "period_frank_slim": self.period_frank_slim,
            "period_imbalance_result": self.period_imbalance_result,
            "source_count": self.source_count,
            "succeeded_count": self.succeeded_count,
            "failures": [failure.to_dict() for failure in self.failures],
        }
