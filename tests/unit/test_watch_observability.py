"""Unit tests for watch event logging and failure reports."""

from __future__ import annotations

import datetime as dt

import pytest

from issues_watcher.config import ConfigError
from issues_watcher.github import (
    GitHubAPIError,
    GitHubConfigError,
    GitHubResponseShapeError,
)
from issues_watcher.notify import DeliveryError
from issues_watcher.scheduler import (
    ErrorCategory,
    FailureKind,
    FailureReport,
    LoggingFailureReporter,
    WatchEventLogger,
    WatchEventType,
    categorize_error,
)
from issues_watcher.snapshot import SnapshotValidationError
from issues_watcher.sources import FatalFetchError, RetryableFetchError
from tests.helpers.femtologging_capture import capture_femto_logs
from tests.helpers.watch_builders import BASE_TIME, RecordingDispatcher

_OBSERVABILITY_LOGGER = "issues_watcher.scheduler.observability"


def _caused_by(error: Exception, cause: Exception) -> Exception:
    error.__cause__ = cause
    return error


def _report(kind: FailureKind, error: Exception, failures: int = 1) -> FailureReport:
    return FailureReport(
        target_key="octo/reef",
        kind=kind,
        error=error,
        failures=failures,
        reported_at=BASE_TIME,
    )


class TestCategorizeError:
    """Tests for error categorization."""

    def test_github_5xx_is_transient(self) -> None:
        """GitHub server errors are classified as transient."""
        exc = GitHubAPIError.http_error(502)
        assert categorize_error(exc) == ErrorCategory.TRANSIENT

    def test_github_401_is_client_error(self) -> None:
        """GitHub authentication failures are client errors."""
        exc = GitHubAPIError.http_error(401)
        assert categorize_error(exc) == ErrorCategory.CLIENT_ERROR

    def test_fetch_error_uses_github_cause(self) -> None:
        """Adapter errors are categorized by the API error behind them."""
        transient = _caused_by(
            RetryableFetchError("limited"), GitHubAPIError.rate_limited(429)
        )
        fatal = _caused_by(
            FatalFetchError("missing"), GitHubAPIError.not_found("repository")
        )

        assert categorize_error(transient) == ErrorCategory.TRANSIENT
        assert categorize_error(fatal) == ErrorCategory.CLIENT_ERROR

    def test_shape_error_cause_is_schema_drift(self) -> None:
        """Retried shape errors still point at schema drift."""
        exc = _caused_by(
            RetryableFetchError("odd payload"),
            GitHubResponseShapeError.missing("pageInfo"),
        )
        assert categorize_error(exc) == ErrorCategory.SCHEMA_DRIFT

    @pytest.mark.parametrize(
        ("exc", "expected"),
        [
            (SnapshotValidationError("dupes"), ErrorCategory.MALFORMED_SNAPSHOT),
            (GitHubConfigError.empty_token(), ErrorCategory.CONFIGURATION),
            (ConfigError(["github-token is required"]), ErrorCategory.CONFIGURATION),
            (DeliveryError.timeout(), ErrorCategory.DELIVERY),
            (RetryableFetchError("later"), ErrorCategory.TRANSIENT),
            (FatalFetchError("gone"), ErrorCategory.CLIENT_ERROR),
            (RuntimeError("unexpected"), ErrorCategory.UNKNOWN),
        ],
    )
    def test_local_errors(self, exc: Exception, expected: ErrorCategory) -> None:
        """Errors raised by the watcher itself map to fixed categories."""
        assert categorize_error(exc) == expected


class TestWatchEventLogger:
    """Tests for structured watch event logs."""

    @pytest.fixture
    def event_logger(self) -> WatchEventLogger:
        """Return a fresh event logger."""
        return WatchEventLogger()

    def test_cycle_completed_includes_counts(
        self, event_logger: WatchEventLogger
    ) -> None:
        """Completed cycles log record and change counts at INFO."""
        with capture_femto_logs(_OBSERVABILITY_LOGGER) as capture:
            event_logger.log_cycle_completed(
                "octo/reef",
                changes=2,
                records=40,
                duration=dt.timedelta(seconds=1.25),
            )

        capture.wait_for_count(1)
        record = capture.records[0]
        assert record.level == "INFO"
        assert WatchEventType.CYCLE_COMPLETED in record.message
        assert "target=octo/reef" in record.message
        assert "records=40" in record.message
        assert "changes=2" in record.message
        assert "duration_seconds=1.250" in record.message

    def test_fetch_retrying_includes_delay(
        self, event_logger: WatchEventLogger
    ) -> None:
        """Retries log the failure count, delay and error category."""
        error = _caused_by(RetryableFetchError("boom"), GitHubAPIError.timeout())

        with capture_femto_logs(_OBSERVABILITY_LOGGER) as capture:
            event_logger.log_fetch_retrying("octo/reef", error, failures=2, delay=10.0)

        capture.wait_for_count(1)
        record = capture.records[0]
        assert record.level in {"WARN", "WARNING"}
        assert WatchEventType.FETCH_RETRYING in record.message
        assert "failures=2" in record.message
        assert "delay_seconds=10.0" in record.message
        assert "error_category=transient" in record.message

    def test_failure_report_event_depends_on_kind(
        self, event_logger: WatchEventLogger
    ) -> None:
        """Fatal reports log a stop; persistent ones log a failure."""
        with capture_femto_logs(_OBSERVABILITY_LOGGER) as capture:
            event_logger.log_failure_report(
                _report(FailureKind.FATAL, FatalFetchError("gone"))
            )
            event_logger.log_failure_report(
                _report(FailureKind.PERSISTENT, RetryableFetchError("down"), 3)
            )

        capture.wait_for_count(2)
        stopped, failed = capture.records
        assert stopped.level == "ERROR"
        assert WatchEventType.TARGET_STOPPED in stopped.message
        assert WatchEventType.TARGET_FAILED in failed.message
        assert "failures=3" in failed.message


class TestFailureReport:
    """Tests for ``FailureReport`` summaries."""

    def test_fatal_summary(self) -> None:
        """Fatal reports say the target is no longer watched."""
        report = _report(FailureKind.FATAL, FatalFetchError("repository not found"))

        assert report.stops_target
        assert report.summary() == (
            "Stopped watching octo/reef: repository not found"
        )

    def test_persistent_summary(self) -> None:
        """Persistent reports say polling continues."""
        report = _report(FailureKind.PERSISTENT, RetryableFetchError("timeout"), 3)

        assert not report.stops_target
        assert "failed 3 times in a row" in report.summary()
        assert "will try again next poll" in report.summary()


class _FailingSender:
    async def send_message(self, text: str) -> None:
        del text
        raise DeliveryError.http_error(500)


class TestLoggingFailureReporter:
    """Tests for ``LoggingFailureReporter``."""

    @pytest.mark.asyncio
    async def test_posts_summary_to_channel(self) -> None:
        """Reports are forwarded to the sender as a warning message."""
        sender = RecordingDispatcher()
        reporter = LoggingFailureReporter(sender)

        await reporter.report(_report(FailureKind.FATAL, FatalFetchError("gone")))

        assert sender.messages == [":warning: Stopped watching octo/reef: gone"]

    @pytest.mark.asyncio
    async def test_sender_failure_is_logged(self) -> None:
        """A report that cannot be posted is logged rather than raised."""
        reporter = LoggingFailureReporter(_FailingSender())

        with capture_femto_logs("issues_watcher.scheduler.reports") as capture:
            await reporter.report(
                _report(FailureKind.PERSISTENT, RetryableFetchError("down"))
            )

        capture.wait_for_count(1)
        assert "Could not post failure report" in capture.records[0].message
