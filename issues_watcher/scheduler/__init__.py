"""Per-target scheduling of fetch, diff and notify cycles."""

from __future__ import annotations

from .backoff import RetryPolicy
from .observability import (
    ErrorCategory,
    WatchEventLogger,
    WatchEventType,
    categorize_error,
)
from .reports import (
    FailureKind,
    FailureReport,
    FailureReporter,
    LoggingFailureReporter,
)
from .scheduler import CycleResult, CycleStatus, SchedulerOptions, WatchScheduler
from .state import WatchPhase, WatchRegistry, WatchState, WatchStatus, WatchTarget

__all__ = [
    "CycleResult",
    "CycleStatus",
    "ErrorCategory",
    "FailureKind",
    "FailureReport",
    "FailureReporter",
    "LoggingFailureReporter",
    "RetryPolicy",
    "SchedulerOptions",
    "WatchEventLogger",
    "WatchEventType",
    "WatchPhase",
    "WatchRegistry",
    "WatchScheduler",
    "WatchState",
    "WatchStatus",
    "WatchTarget",
    "categorize_error",
]
