"""batterymetrics public API: build engines without wiring the parts by hand."""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Mapping, Optional, Union

from .core.engine import BatteryMetricsEngine
from .core.results import SessionFetcher
from .core.rollover import DEFAULT_TIME_ZONE, Action, CancelCallback
from .core.store import JsonFileStateStore, StateStore

logger = logging.getLogger(__name__)


class AsyncioScheduler:
    """Scheduler running actions on the current asyncio event loop."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def call_later(self, delay: float, action: Action) -> CancelCallback:
        loop = asyncio.get_running_loop()

        def _run() -> None:
            task = loop.create_task(action())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        handle = loop.call_later(delay, _run)
        return handle.cancel


def create_engine(
    state_file: Union[str, Path, None] = None,
    store: Optional[StateStore] = None,
    fetcher: Optional[SessionFetcher] = None,
    display_names: Optional[Mapping[str, str]] = None,
    time_zone: str = DEFAULT_TIME_ZONE,
    now: Optional[Callable] = None,
) -> BatteryMetricsEngine:
    """Create an engine persisting to ``state_file`` or a custom store.

    Args:
        state_file: JSON file holding the engine state.
        store: Any StateStore; takes precedence over state_file.
        fetcher: Remote ledger used by async_aggregate_financial_results().
        display_names: Friendly battery names used in failure reports.
        time_zone: Reference zone of the accounting day.
        now: Clock override, returning an aware datetime.

    Raises:
        ValueError: If neither state_file nor store is given.
    """
    if store is None:
        if state_file is None:
            raise ValueError("create_engine() needs a state_file or a store")
        store = JsonFileStateStore(state_file)
        logger.debug("Using state file %s", state_file)

    kwargs = {}
    if now is not None:
        kwargs['now'] = now
    return BatteryMetricsEngine(
        store,
        AsyncioScheduler(),
        fetcher=fetcher,
        display_names=display_names,
        time_zone=time_zone,
        **kwargs,
    )
