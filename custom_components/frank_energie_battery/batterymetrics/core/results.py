"""Cross-source aggregation of remote trading results.

Fetches each source's session data concurrently, waits for every fetch to
finish, and sums whatever succeeded. Individual failures are reported next to
the partial sums; only a failure of every source is an error.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from datetime import date
import logging
from typing import Protocol

from .errors import AllSourcesFailedError
from .types import FinancialAggregate, SessionResult, SourceFailure

_LOGGER = logging.getLogger(__name__)


class SessionFetcher(Protocol):
    """Remote ledger returning one source's trading results."""

    async def async_get_session_result(
        self, source_id: str, start: date, end: date
    ) -> SessionResult:
        """Return the results of ``source_id`` between ``start`` and ``end``."""


def default_display_name(source_id: str) -> str:
    return f"Battery {source_id[:8]}"


class ResultAggregator:
    """Sums trading results across independent per-source ledgers."""

    def __init__(
        self,
        fetcher: SessionFetcher,
        display_names: Mapping[str, str] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._display_names = dict(display_names or {})

    def display_name(self, source_id: str) -> str:
        return self._display_names.get(source_id) or default_display_name(source_id)

    async def async_aggregate(
        self, source_ids: Sequence[str], start: date, end: date
    ) -> FinancialAggregate:
        """Fetch and sum every source's results for ``start``..``end``.

        Raises:
            AllSourcesFailedError: every source failed; a zero aggregate would
                be indistinguishable from sources that truly reported zero.
        """
        results = FinancialAggregate(source_count=len(source_ids))
        if not source_ids:
            return results
        first_error: Exception | None = None

        _LOGGER.debug("Fetching trading results for %d batteries", len(source_ids))
        outcomes = await asyncio.gather(
            *(
                self._fetcher.async_get_session_result(source_id, start, end)
                for source_id in source_ids
            ),
            return_exceptions=True,
        )

        for source_id, outcome in zip(source_ids, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(
                outcome, Exception
            ):
                raise outcome
            if isinstance(outcome, SessionResult):
                results.add(outcome)
                _LOGGER.debug(
                    "Battery %s - period: %.2f, total: %.2f",
                    source_id,
                    outcome.period_trading_result,
                    outcome.cumulative_result,
                )
                continue

            if isinstance(outcome, Exception):
                first_error = first_error or outcome
                error = str(outcome) or type(outcome).__name__
            else:
                error = f"Unexpected response: {outcome!r}"
            _LOGGER.debug("Error fetching sessions for battery %s: %s", source_id, error)
            results.failures.append(
                SourceFailure(
                    source_id=source_id,
                    display_name=self.display_name(source_id),
                    error=error,
                )
            )

        if len(results.failures) == len(source_ids):
            raise AllSourcesFailedError(results.failures) from first_error

        if results.failures:
            _LOGGER.warning(
                "%d of %d batteries failed to fetch trading results: %s",
                len(results.failures),
                len(source_ids),
                ", ".join(f.source_id for f in results.failures),
            )

        return results
