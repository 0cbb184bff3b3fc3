"""Exceptions raised by the battery metrics engine."""

from __future__ import annotations

from .types import SourceFailure


class BatteryMetricsError(Exception):
    """Base class for all engine errors."""


class InvalidSourceError(BatteryMetricsError, ValueError):
    """A report or command named an empty or malformed source id."""


class InvalidReportError(BatteryMetricsError, ValueError):
    """A report carried a value that cannot be recorded."""


class UnknownSourceError(BatteryMetricsError, LookupError):
    """A command named a source id the engine does not track."""


class PersistenceError(BatteryMetricsError):
    """The state store could not be read or written.

    In-memory state is never advanced when this is raised, so the operation
    can simply be retried.
    """


class AllSourcesFailedError(BatteryMetricsError):
    """Every configured source failed to return trading results."""

    def __init__(self, failures: list[SourceFailure]) -> None:
        self.failures = failures
        super().__init__(
            f"Failed to fetch data from all {len(failures)} batteries: "
            + "; ".join(f"{f.source_id}: {f.error}" for f in failures)
        )
