"""Failure reports surfaced to operators.

The scheduler absorbs individual fetch and delivery errors. Two situations
are escalated as a :class:`FailureReport`: a target whose fetches keep
failing after every retry, and a target that failed fatally and is no
longer scheduled.
"""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

from issues_watcher.logging import get_logger, log_warning
from issues_watcher.notify.errors import DeliveryError

from .observability import WatchEventLogger

if typ.TYPE_CHECKING:
    import datetime as dt

    from issues_watcher.notify import MessageSender

logger = get_logger(__name__)


class FailureKind(enum.StrEnum):
    """Why a target is being reported."""

    PERSISTENT = "persistent"
    FATAL = "fatal"


@dataclasses.dataclass(frozen=True, slots=True)
class FailureReport:
    """A failure escalated beyond the scheduler."""

    target_key: str
    kind: FailureKind
    error: Exception
    failures: int
    reported_at: dt.datetime

    @property
    def stops_target(self) -> bool:
        """Whether the target is no longer scheduled after this report."""
        return self.kind is FailureKind.FATAL

    def summary(self) -> str:
        """Return a one-line human description of the report."""
        if self.stops_target:
            return f"Stopped watching {self.target_key}: {self.error}"
        return (
            f"Fetching {self.target_key} failed {self.failures} times in a row "
            f"(last error: {self.error}); will try again next poll"
        )


class FailureReporter(typ.Protocol):
    """Receive failure reports from the scheduler."""

    async def report(self, report: FailureReport) -> None:
        """Handle one failure report."""
        ...


class LoggingFailureReporter:
    """Log failure reports and optionally post them to the channel.

    Parameters
    ----------
    sender
        Optional message sender (usually the dispatcher) used to alert the
        channel. Alert delivery failures are logged and otherwise ignored.
    event_logger
        Structured event logger.

    """

    def __init__(
        self,
        sender: MessageSender | None = None,
        *,
        event_logger: WatchEventLogger | None = None,
    ) -> None:
        """Initialise the reporter."""
        self._sender = sender
        self._event_logger = event_logger or WatchEventLogger()

    async def report(self, report: FailureReport) -> None:
        """Log ``report`` and forward a summary to the channel."""
        self._event_logger.log_failure_report(report)
        if self._sender is None:
            return
        try:
            await self._sender.send_message(f":warning: {report.summary()}")
        except DeliveryError as exc:
            log_warning(
                logger,
                "Could not post failure report for %s: %s",
                report.target_key,
                exc,
            )
