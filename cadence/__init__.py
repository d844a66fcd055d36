"""
Measurement-oriented test execution for performance and load testing.

A unit of work is invoked repeatedly on one or more worker threads, with
warmup invocations kept apart from measured trials, a pluggable pacing delay
between invocations, and trial response times checked against fixed or
baseline-relative requirements.
"""

from .config import DistributionSpec, RequirementDefaults, ScheduleConfig
from .distributions import DelayDistribution, register_distribution
from .errors import (
    CadenceError,
    ConfigurationError,
    InvocationError,
    RequirementViolation,
    StatsUnavailable,
)
from .records import ErrorInfo, MeasurementRecord, PolicyResult, RunResult
from .requirements import FixedThreshold, PercentageDegradation, ZScorePercentile
from .scheduler import (
    CancellationToken,
    RoundRobinEntry,
    Scheduler,
    SchedulerState,
    current_invocation,
    run,
    run_round_robin,
)
from .stats import FrameStatsProvider, HistoricalStats, StatsProvider

__all__ = [
    "CadenceError",
    "CancellationToken",
    "ConfigurationError",
    "DelayDistribution",
    "DistributionSpec",
    "ErrorInfo",
    "FixedThreshold",
    "FrameStatsProvider",
    "HistoricalStats",
    "InvocationError",
    "MeasurementRecord",
    "PercentageDegradation",
    "PolicyResult",
    "RequirementDefaults",
    "RequirementViolation",
    "RoundRobinEntry",
    "RunResult",
    "ScheduleConfig",
    "Scheduler",
    "SchedulerState",
    "StatsProvider",
    "StatsUnavailable",
    "ZScorePercentile",
    "current_invocation",
    "register_distribution",
    "run",
    "run_round_robin",
]
