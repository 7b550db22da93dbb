"""Structured log events for watch cycles.

Provides structured logging and error categorization for fetch, diff and
delivery outcomes. All events are emitted as ``[event.type] key=value`` log
lines suitable for parsing by log aggregators.
"""

from __future__ import annotations

import enum
import typing as typ

from issues_watcher.config.errors import ConfigError
from issues_watcher.github.errors import (
    GitHubAPIError,
    GitHubConfigError,
    GitHubResponseShapeError,
)
from issues_watcher.logging import get_logger, log_error, log_info, log_warning
from issues_watcher.notify.errors import DeliveryError
from issues_watcher.snapshot import SnapshotValidationError
from issues_watcher.sources import FatalFetchError, RetryableFetchError

if typ.TYPE_CHECKING:
    import datetime as dt

    from .reports import FailureReport

logger = get_logger(__name__)


class WatchEventType(enum.StrEnum):
    """Structured log event types for watch cycles."""

    CYCLE_COMPLETED = "watch.cycle.completed"
    BASELINE_CAPTURED = "watch.baseline.captured"
    FETCH_RETRYING = "watch.fetch.retrying"
    DELIVERY_FAILED = "watch.delivery.failed"
    TARGET_FAILED = "watch.target.failed"
    TARGET_STOPPED = "watch.target.stopped"


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts."""

    TRANSIENT = "transient"
    CLIENT_ERROR = "client_error"
    SCHEMA_DRIFT = "schema_drift"
    MALFORMED_SNAPSHOT = "malformed_snapshot"
    CONFIGURATION = "configuration"
    DELIVERY = "delivery"
    UNKNOWN = "unknown"


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (GitHubResponseShapeError, ErrorCategory.SCHEMA_DRIFT),
    (SnapshotValidationError, ErrorCategory.MALFORMED_SNAPSHOT),
    (GitHubConfigError, ErrorCategory.CONFIGURATION),
    (ConfigError, ErrorCategory.CONFIGURATION),
    (DeliveryError, ErrorCategory.DELIVERY),
    (RetryableFetchError, ErrorCategory.TRANSIENT),
    (FatalFetchError, ErrorCategory.CLIENT_ERROR),
)


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alerting purposes.

    Fetch errors raised by the GitHub adapter keep the underlying
    :class:`GitHubAPIError` as their cause, so it is consulted first.
    """
    cause = exc.__cause__ if isinstance(exc.__cause__, BaseException) else None
    for candidate in (exc, cause):
        if isinstance(candidate, GitHubAPIError):
            return (
                ErrorCategory.TRANSIENT
                if candidate.transient
                else ErrorCategory.CLIENT_ERROR
            )
        if isinstance(candidate, GitHubResponseShapeError):
            return ErrorCategory.SCHEMA_DRIFT

    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category

    return ErrorCategory.UNKNOWN


class WatchEventLogger:
    """Emit structured watch events via femtologging.

    Events are emitted at INFO for completed cycles, WARNING for retries and
    delivery failures, and ERROR for failure reports.
    """

    def log_baseline_captured(self, target_key: str, records: int) -> None:
        """Log the first snapshot of a target becoming its baseline."""
        log_info(
            logger,
            "[%s] target=%s records=%d",
            WatchEventType.BASELINE_CAPTURED,
            target_key,
            records,
        )

    def log_cycle_completed(
        self,
        target_key: str,
        *,
        changes: int,
        records: int,
        duration: dt.timedelta,
    ) -> None:
        """Log a completed fetch-diff-notify cycle."""
        log_info(
            logger,
            "[%s] target=%s records=%d changes=%d duration_seconds=%.3f",
            WatchEventType.CYCLE_COMPLETED,
            target_key,
            records,
            changes,
            duration.total_seconds(),
        )

    def log_fetch_retrying(
        self,
        target_key: str,
        error: BaseException,
        *,
        failures: int,
        delay: float,
    ) -> None:
        """Log a retryable fetch failure and the upcoming backoff delay."""
        log_warning(
            logger,
            "[%s] target=%s failures=%d delay_seconds=%.1f "
            "error_type=%s error_category=%s error_message=%s",
            WatchEventType.FETCH_RETRYING,
            target_key,
            failures,
            delay,
            type(error).__name__,
            categorize_error(error),
            str(error),
        )

    def log_delivery_failed(
        self,
        target_key: str,
        error: BaseException,
        *,
        changes: int,
    ) -> None:
        """Log a failed delivery; the baseline is committed regardless."""
        log_warning(
            logger,
            "[%s] target=%s changes_dropped=%d error_type=%s error_message=%s",
            WatchEventType.DELIVERY_FAILED,
            target_key,
            changes,
            type(error).__name__,
            str(error),
        )

    def log_failure_report(self, report: FailureReport) -> None:
        """Log a persistent or fatal failure report."""
        event = (
            WatchEventType.TARGET_STOPPED
            if report.stops_target
            else WatchEventType.TARGET_FAILED
        )
        log_error(
            logger,
            "[%s] target=%s kind=%s failures=%d error_type=%s "
            "error_category=%s error_message=%s",
            event,
            report.target_key,
            report.kind,
            report.failures,
            type(report.error).__name__,
            categorize_error(report.error),
            str(report.error),
            exc_info=report.error,
        )
