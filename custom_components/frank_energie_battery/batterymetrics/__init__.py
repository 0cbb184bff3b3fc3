"""batterymetrics: daily charge/discharge tracking for home batteries.

Public surface re-exports from core modules and the api module.
"""

__version__ = '0.1.0'

# Core types
from .core.types import (
    ReportingStyle,
    BaselineRecord,
    DailyRecord,
    EngineState,
    SourceSnapshot,
    Aggregate,
    CloseReason,
    DayClosed,
    TradingSession,
    SessionResult,
    SourceFailure,
    FinancialAggregate,
)

# Errors
from .core.errors import (
    BatteryMetricsError,
    InvalidSourceError,
    InvalidReportError,
    UnknownSourceError,
    PersistenceError,
    AllSourcesFailedError,
)

# Persistence
from .core.store import (
    STATE_VERSION,
    StateStore,
    JsonFileStateStore,
    BaselineStore,
    migrate_state,
)

# Rollover and aggregation
from .core.rollover import (
    DEFAULT_TIME_ZONE,
    Scheduler,
    RolloverManager,
    local_date,
    next_local_midnight,
)
from .core.aggregate import aggregate, daily_delta
from .core.results import SessionFetcher, ResultAggregator

# Engine
from .core.engine import BatteryMetricsEngine, EngineEvent

# API functions
from .api import AsyncioScheduler, create_engine

__all__ = [
    '__version__',
    # Types
    'ReportingStyle', 'BaselineRecord', 'DailyRecord', 'EngineState',
    'SourceSnapshot', 'Aggregate', 'CloseReason', 'DayClosed',
    'TradingSession', 'SessionResult',
    'SourceFailure', 'FinancialAggregate',
    # Errors
    'BatteryMetricsError', 'InvalidSourceError', 'InvalidReportError',
    'UnknownSourceError', 'PersistenceError', 'AllSourcesFailedError',
    # Persistence
    'STATE_VERSION', 'StateStore', 'JsonFileStateStore', 'BaselineStore',
    'migrate_state',
    # Rollover and aggregation
    'DEFAULT_TIME_ZONE', 'Scheduler', 'RolloverManager', 'local_date',
    'next_local_midnight', 'aggregate', 'daily_delta',
    'SessionFetcher', 'ResultAggregator',
    # Engine
    'BatteryMetricsEngine', 'EngineEvent',
    # API
    'AsyncioScheduler', 'create_engine',
]
